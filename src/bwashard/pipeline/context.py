"""Immutable per-run context shared by every partition task."""

import logging
import os
import re
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("mem", "bwasw", "aln")


def generate_app_id() -> str:
    """Application id in the style of a local Spark session, e.g. ``local-1476283743529``."""
    return f"local-{int(time.time() * 1000)}"


def resolve_tmp_dir(candidate: Optional[Union[str, Path]]) -> Path:
    """Return a writable base directory for temporary files.

    Accepts ``file:``-prefixed URIs. Falls back to the system temporary
    directory when the candidate is missing, not a directory or not writable.
    """
    if candidate:
        candidate = re.sub(r"^file:", "", str(candidate))
        path = Path(candidate)
        if path.is_dir() and os.access(path, os.W_OK):
            return path.resolve()
        logger.warning(f"Temporary directory {candidate} is not a writable directory, using {tempfile.gettempdir()}")
    return Path(tempfile.gettempdir())


@dataclass(frozen=True)
class AlignmentJobContext:
    """Identity and settings of one alignment run.

    Built once (see :meth:`create`) and passed by reference to every task;
    nothing in the pipeline mutates it.
    """

    app_name: str
    app_id: str
    tmp_dir: Path
    algorithm: str
    paired: bool
    output_dir: str
    index_path: Optional[str] = None
    bwa_path: str = "bwa"
    bwa_threads: int = 1
    bwa_args: str = ""

    def __post_init__(self):
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Unknown algorithm '{self.algorithm}', expected one of {', '.join(SUPPORTED_ALGORITHMS)}"
            )
        for label, value in (("app_name", self.app_name), ("app_id", self.app_id)):
            if not value or "/" in value:
                raise ValueError(f"{label} must be a non-empty string without '/', got {value!r}")

    @classmethod
    def create(
        cls,
        app_name: str,
        output_dir: Union[str, Path],
        algorithm: str = "mem",
        paired: bool = False,
        app_id: Optional[str] = None,
        tmp_dir: Optional[Union[str, Path]] = None,
        **aligner_settings,
    ) -> "AlignmentJobContext":
        """Resolve run identity and create the per-run temporary directory."""
        app_id = app_id or generate_app_id()
        run_tmp = resolve_tmp_dir(tmp_dir) / f"bwashard_{app_name}_{app_id}"
        run_tmp.mkdir(parents=True, exist_ok=True)
        context = cls(
            app_name=app_name,
            app_id=app_id,
            tmp_dir=run_tmp,
            algorithm=algorithm,
            paired=paired,
            output_dir=str(output_dir),
            **aligner_settings,
        )
        logger.info(f"[{cls.__name__}] :: {context.app_id} - {context.app_name}")
        return context

    @property
    def is_multi_stage(self) -> bool:
        return self.algorithm == "aln"

    def published_name(self, ordinal: int) -> str:
        return f"{self.app_name}-{self.app_id}-{ordinal}.sam"

    def local_output(self, ordinal: int) -> Path:
        return self.tmp_dir / self.published_name(ordinal)

    def local_reads(self, ordinal: int, mate: int) -> Path:
        return self.tmp_dir / f"{self.app_name}-{self.app_id}-{ordinal}_{mate}.fastq"

    def to_dict(self) -> Dict:
        return {k: str(v) if isinstance(v, Path) else v for k, v in asdict(self).items()}
