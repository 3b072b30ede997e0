"""Error types raised by the partition/align/publish pipeline."""

from typing import List, Optional, Sequence


class BwaShardError(Exception):
    """Base class for all pipeline errors."""


class MalformedInputError(BwaShardError):
    """Input reads cannot be split on record boundaries (or mates do not line up)."""

    def __init__(self, path, message: str):
        self.path = str(path)
        super().__init__(f"{self.path}: {message}")


class AlignmentStageError(BwaShardError):
    """An external aligner invocation failed for one partition."""

    def __init__(self, partition: int, stage: int, exit_status: Optional[int], reason: str = ""):
        self.partition = partition
        self.stage = stage
        self.exit_status = exit_status
        message = f"partition {partition}: stage {stage} failed (exit status {exit_status})"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class PublishError(BwaShardError):
    """Copying a local result into the shared output directory failed."""

    def __init__(self, local_path, shared_path, reason: str):
        self.local_path = str(local_path)
        self.shared_path = str(shared_path)
        super().__init__(f"could not publish {self.local_path} to {self.shared_path}: {reason}")


class PartitionFailure(BwaShardError):
    """One or more partitions never completed within the retry budget."""

    def __init__(self, partition_ids: Sequence[int], results: Optional[List] = None):
        self.partition_ids = sorted(partition_ids)
        self.results = results or []
        super().__init__(
            f"{len(self.partition_ids)} partition(s) failed: "
            + ", ".join(str(p) for p in self.partition_ids)
        )


class RunCancelled(BwaShardError):
    """The run was cancelled before every partition finished."""
