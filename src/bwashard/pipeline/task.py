"""Per-partition alignment task.

States::

    PENDING -> STAGE_RUNNING(k) -> COMPLETED
                              \\-> FAILED | CANCELLED

Every temporary file the task creates (partition slices and ``.sai``
indexes) is removed when it leaves its last stage, whatever the outcome.
A failed or cancelled task also removes its partial SAM output.
"""

import logging
import subprocess
import threading
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from bwashard.pipeline.aligner import StageMode, StageRunner, get_algorithm
from bwashard.pipeline.context import AlignmentJobContext
from bwashard.pipeline.errors import AlignmentStageError, MalformedInputError, RunCancelled
from bwashard.pipeline.partitioner import ReadPartition, extract_partition
from bwashard.utils.various import CommandCancelled

logger = logging.getLogger(__name__)

# stage number reported when the partition slices cannot be written
EXTRACT_STAGE = -1


class TaskState(str, Enum):
    PENDING = "pending"
    STAGE_RUNNING = "stage_running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def remove_paths(paths: Iterable[Path]) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Could not remove temporary file {path}: {e}")


class AlignmentTask:
    """Align one partition with the context's algorithm.

    The task never retries; a scheduler re-runs a fresh task for the same
    partition, which writes to the same file names.
    """

    def __init__(self, partition: ReadPartition, context: AlignmentJobContext, runner: StageRunner):
        if partition.paired != context.paired:
            raise ValueError(
                f"Partition {partition.ordinal} is {'paired' if partition.paired else 'single-end'} "
                f"but the run is {'paired' if context.paired else 'single-end'}"
            )
        self.partition = partition
        self.context = context
        self.runner = runner
        self.algorithm = get_algorithm(context.algorithm)
        self.state = TaskState.PENDING
        self.stage: Optional[int] = None
        self.output_file = context.local_output(partition.ordinal)

        self.read_file1 = context.local_reads(partition.ordinal, 1)
        self.read_file2 = context.local_reads(partition.ordinal, 2) if partition.paired else None
        self.stages = self.algorithm.plan(self.read_file1, self.read_file2, self.output_file)

    @property
    def temporary_artifacts(self) -> List[Path]:
        artifacts = [self.read_file1]
        if self.read_file2 is not None:
            artifacts.append(self.read_file2)
        artifacts.extend(s.output_file for s in self.stages if s.mode is StageMode.INDEX)
        return artifacts

    def _transition(self, state: TaskState, stage: Optional[int] = None) -> None:
        self.state = state
        self.stage = stage
        label = state.value if stage is None else f"{state.value}({stage})"
        logger.debug(f"partition {self.partition.ordinal}: {label}")

    def _run_stage(self, invocation, cancel_event) -> None:
        self._transition(TaskState.STAGE_RUNNING, invocation.stage)
        try:
            status = self.runner.run(invocation, cancel_event)
        except CommandCancelled as e:
            raise RunCancelled(f"partition {self.partition.ordinal} cancelled in stage {invocation.stage}") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise AlignmentStageError(self.partition.ordinal, invocation.stage, None, str(e)) from e

        if status != 0:
            raise AlignmentStageError(self.partition.ordinal, invocation.stage, status)
        # stdout is redirected into the output file, so it exists even when the aligner wrote nothing
        if not invocation.output_file.exists() or invocation.output_file.stat().st_size == 0:
            raise AlignmentStageError(
                self.partition.ordinal, invocation.stage, status, f"{invocation.output_file} was not written"
            )

    def run(self, cancel_event: Optional[threading.Event] = None) -> Path:
        """Run every stage and return the local SAM file.

        Raises:
            AlignmentStageError: a stage exited non-zero or left no output.
            RunCancelled: ``cancel_event`` fired before or during a stage.
        """
        if self.state is not TaskState.PENDING:
            raise RuntimeError(f"Task for partition {self.partition.ordinal} already ran ({self.state.value})")

        ordinal = self.partition.ordinal
        succeeded = False
        try:
            try:
                extract_partition(self.partition, self.read_file1, self.read_file2)
            except (OSError, MalformedInputError) as e:
                raise AlignmentStageError(ordinal, EXTRACT_STAGE, None, f"could not extract reads: {e}") from e

            for invocation in self.stages:
                if cancel_event is not None and cancel_event.is_set():
                    raise RunCancelled(f"partition {ordinal} cancelled before stage {invocation.stage}")
                self._run_stage(invocation, cancel_event)

            succeeded = True
            self._transition(TaskState.COMPLETED)
            return self.output_file
        except RunCancelled:
            self._transition(TaskState.CANCELLED, self.stage)
            raise
        except Exception:
            self._transition(TaskState.FAILED, self.stage)
            raise
        finally:
            remove_paths(self.temporary_artifacts)
            if not succeeded:
                remove_paths([self.output_file])
