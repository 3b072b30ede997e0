"""Stage plans for each BWA algorithm and the runner that executes one stage.

A stage is one invocation of the external aligner. ``mem`` and ``bwasw``
produce the SAM file in a single stage; ``aln`` first writes one ``.sai``
index per read file and then merges them with ``samse``/``sampe``.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from bwashard.utils.various import run_command_comp

logger = logging.getLogger(__name__)

INDEX_SUFFIX = ".sai"


class StageMode(str, Enum):
    SINGLE = "single"
    INDEX = "index"
    MERGE = "merge"


@dataclass(frozen=True)
class StageInvocation:
    """Arguments of one aligner call: ``{mode, readFile1, readFile2?, indexArtifact?, outputFile}``."""

    stage: int
    mode: StageMode
    read_file1: Path
    output_file: Path
    read_file2: Optional[Path] = None
    index_artifacts: Tuple[Path, ...] = ()

    @property
    def paired(self) -> bool:
        return self.read_file2 is not None


class StageRunner(Protocol):
    def run(self, invocation: StageInvocation, cancel_event: Optional[threading.Event] = None) -> int:
        """Run one stage to completion and return the aligner's exit status."""
        ...


class SingleStageAlgorithm:
    """``bwa mem`` / ``bwa bwasw``: reads in, SAM out."""

    multi_stage = False

    def __init__(self, name: str):
        self.name = name

    def plan(self, read_file1: Path, read_file2: Optional[Path], output_file: Path) -> List[StageInvocation]:
        return [StageInvocation(0, StageMode.SINGLE, Path(read_file1), Path(output_file), read_file2)]


class IndexThenMergeAlgorithm:
    """``bwa aln`` per read file followed by ``bwa samse``/``bwa sampe``."""

    name = "aln"
    multi_stage = True
    merge_stage = 2

    def plan(self, read_file1: Path, read_file2: Optional[Path], output_file: Path) -> List[StageInvocation]:
        read_file1 = Path(read_file1)
        index1 = index_artifact(read_file1)
        stages = [StageInvocation(0, StageMode.INDEX, read_file1, index1)]
        artifacts = [index1]
        if read_file2 is not None:
            read_file2 = Path(read_file2)
            index2 = index_artifact(read_file2)
            stages.append(StageInvocation(1, StageMode.INDEX, read_file2, index2))
            artifacts.append(index2)
        stages.append(
            StageInvocation(
                self.merge_stage,
                StageMode.MERGE,
                read_file1,
                Path(output_file),
                read_file2,
                tuple(artifacts),
            )
        )
        return stages


ALGORITHMS = {
    "mem": lambda: SingleStageAlgorithm("mem"),
    "bwasw": lambda: SingleStageAlgorithm("bwasw"),
    "aln": IndexThenMergeAlgorithm,
}


def get_algorithm(name: str):
    try:
        return ALGORITHMS[name]()
    except KeyError:
        raise ValueError(f"Unknown algorithm '{name}', expected one of {', '.join(ALGORITHMS)}") from None


def index_artifact(read_file: Path) -> Path:
    return Path(f"{read_file}{INDEX_SUFFIX}")


class BwaRunner:
    """Run stages with the ``bwa`` executable.

    Args:
        algorithm: ``mem``, ``bwasw`` or ``aln``; picks the sub-command of
            single-stage invocations.
        index_path: Prefix of the reference index built with ``bwa index``.
        bwa_path: Executable to call.
        threads: Value for ``-t`` on sub-commands that accept it.
        extra_args: Free-form arguments added to single-stage and index calls.
        timeout: Optional per-stage timeout in seconds.
    """

    def __init__(
        self,
        algorithm: str,
        index_path: str,
        bwa_path: str = "bwa",
        threads: int = 1,
        extra_args: str = "",
        timeout: Optional[float] = None,
    ):
        self.algorithm = algorithm
        self.index_path = str(index_path)
        self.bwa_path = bwa_path
        self.threads = threads
        self.extra_args = extra_args
        self.timeout = timeout

    @classmethod
    def from_context(cls, context, timeout: Optional[float] = None) -> "BwaRunner":
        return cls(
            algorithm=context.algorithm,
            index_path=context.index_path,
            bwa_path=context.bwa_path,
            threads=context.bwa_threads,
            extra_args=context.bwa_args,
            timeout=timeout,
        )

    def command(self, invocation: StageInvocation) -> Tuple[str, dict, List[str], str]:
        """Sub-command, options, positional arguments and extra arguments of a stage."""
        reads = [str(invocation.read_file1)]
        if invocation.paired:
            reads.append(str(invocation.read_file2))

        if invocation.mode is StageMode.SINGLE:
            return self.algorithm, {"t": self.threads}, [self.index_path] + reads, self.extra_args
        if invocation.mode is StageMode.INDEX:
            return "aln", {"t": self.threads}, [self.index_path, str(invocation.read_file1)], self.extra_args
        merge = "sampe" if invocation.paired else "samse"
        indexes = [str(path) for path in invocation.index_artifacts]
        return merge, {}, [self.index_path] + indexes + reads, ""

    def run(self, invocation: StageInvocation, cancel_event: Optional[threading.Event] = None) -> int:
        subcommand, params, positionals, extra = self.command(invocation)
        result = run_command_comp(
            f"{self.bwa_path} {subcommand}",
            params=params,
            positional_args=positionals,
            extra_args=extra,
            prefix_style="single",
            stdout_file=invocation.output_file,
            output_file=invocation.output_file,
            timeout=self.timeout,
            cancel_event=cancel_event,
            logger=logger,
        )
        return result.returncode
