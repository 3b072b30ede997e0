"""Partition the input, fan out one align-then-publish unit per partition, collect results."""

import functools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

import polars as pl

from bwashard.pipeline.aligner import StageRunner
from bwashard.pipeline.context import AlignmentJobContext
from bwashard.pipeline.errors import AlignmentStageError, PartitionFailure, PublishError, RunCancelled
from bwashard.pipeline.filesystem import FilesystemClient, get_filesystem_client
from bwashard.pipeline.partitioner import ReadPartition, partition_reads
from bwashard.pipeline.publisher import ResultPublisher
from bwashard.pipeline.scheduler import WorkerPoolScheduler
from bwashard.pipeline.task import AlignmentTask, remove_paths

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PUBLISHED = "published"
    ALIGNMENT_FAILED = "alignment_failed"
    PUBLISH_FAILED = "publish_failed"
    CANCELLED = "cancelled"


@dataclass
class TaskResult:
    ordinal: int
    status: TaskStatus
    local_output: Optional[str] = None
    published_path: Optional[str] = None
    attempts: int = 1
    failed_stage: Optional[int] = None
    exit_status: Optional[int] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.PUBLISHED

    @property
    def retryable(self) -> bool:
        return self.status in (TaskStatus.ALIGNMENT_FAILED, TaskStatus.PUBLISH_FAILED)


def execute_partition(
    partition: ReadPartition,
    context: AlignmentJobContext,
    runner: StageRunner,
    client: FilesystemClient,
    cancel_event: Optional[threading.Event] = None,
    previous: Optional[TaskResult] = None,
) -> TaskResult:
    """Align one partition and publish its result.

    Any error raised while aligning or publishing this partition is turned
    into a failed :class:`TaskResult` instead of propagating. When
    ``previous`` records a failed publish whose local output is still
    around, alignment is skipped and only the publish is retried.
    """
    ordinal = partition.ordinal
    if cancel_event is not None and cancel_event.is_set():
        return TaskResult(ordinal, TaskStatus.CANCELLED, error="run cancelled before start")

    if (
        previous is not None
        and previous.status is TaskStatus.PUBLISH_FAILED
        and previous.local_output
        and Path(previous.local_output).is_file()
    ):
        logger.info(f"partition {ordinal}: alignment output kept from last attempt, retrying publish only")
        local_output = Path(previous.local_output)
    else:
        try:
            local_output = AlignmentTask(partition, context, runner).run(cancel_event)
        except AlignmentStageError as e:
            logger.error(str(e))
            return TaskResult(
                ordinal,
                TaskStatus.ALIGNMENT_FAILED,
                failed_stage=e.stage,
                exit_status=e.exit_status,
                error=str(e),
            )
        except RunCancelled as e:
            return TaskResult(ordinal, TaskStatus.CANCELLED, error=str(e))
        except Exception as e:
            logger.exception(f"partition {ordinal}: alignment raised {type(e).__name__}")
            return TaskResult(ordinal, TaskStatus.ALIGNMENT_FAILED, error=f"{type(e).__name__}: {e}")

    if cancel_event is not None and cancel_event.is_set():
        remove_paths([local_output])
        return TaskResult(ordinal, TaskStatus.CANCELLED, error="run cancelled before publish")

    try:
        published = ResultPublisher(context, client).publish(local_output, ordinal)
    except PublishError as e:
        logger.error(str(e))
        return TaskResult(ordinal, TaskStatus.PUBLISH_FAILED, local_output=str(local_output), error=str(e))
    except Exception as e:
        logger.exception(f"partition {ordinal}: publishing raised {type(e).__name__}")
        return TaskResult(
            ordinal, TaskStatus.PUBLISH_FAILED, local_output=str(local_output), error=f"{type(e).__name__}: {e}"
        )

    logger.info(f"partition {ordinal}: published {published}")
    return TaskResult(ordinal, TaskStatus.PUBLISHED, local_output=str(local_output), published_path=published)


def write_summary(results: List[TaskResult], summary_path: Union[str, Path]) -> None:
    frame = pl.DataFrame(
        {
            "partition": [r.ordinal for r in results],
            "status": [r.status.value for r in results],
            "attempts": [r.attempts for r in results],
            "published_path": [r.published_path for r in results],
            "failed_stage": [r.failed_stage for r in results],
            "exit_status": [r.exit_status for r in results],
            "error": [r.error for r in results],
        },
        schema={
            "partition": pl.Int64,
            "status": pl.Utf8,
            "attempts": pl.Int64,
            "published_path": pl.Utf8,
            "failed_stage": pl.Int64,
            "exit_status": pl.Int64,
            "error": pl.Utf8,
        },
    )
    frame.write_csv(summary_path, separator="\t")
    logger.debug(f"Wrote run summary to {summary_path}")


class Orchestrator:
    """Drive one alignment run.

    Args:
        context: The run's immutable settings.
        runner: Executes single aligner stages (``BwaRunner`` in production).
        client: Filesystem client for the output directory; picked from the
            output directory's scheme when omitted.
        scheduler: Worker pool running the per-partition units.
        summary_path: Optional TSV file receiving one row per partition.
    """

    def __init__(
        self,
        context: AlignmentJobContext,
        runner: StageRunner,
        client: Optional[FilesystemClient] = None,
        scheduler: Optional[WorkerPoolScheduler] = None,
        summary_path: Optional[Union[str, Path]] = None,
    ):
        self.context = context
        self.runner = runner
        self.client = client or get_filesystem_client(context.output_dir)
        self.scheduler = scheduler or WorkerPoolScheduler()
        self.summary_path = summary_path
        self.cancel_event = threading.Event()
        self.results: List[TaskResult] = []

    def cancel(self) -> None:
        logger.warning(f"Cancelling run {self.context.app_id}")
        self.cancel_event.set()

    def _unit(self, partition: ReadPartition, previous: Optional[TaskResult] = None) -> TaskResult:
        return execute_partition(partition, self.context, self.runner, self.client, self.cancel_event, previous)

    def dispatch(self, partitions: List[ReadPartition]) -> List[TaskResult]:
        units = {p.ordinal: functools.partial(self._unit, p) for p in partitions}
        results = self.scheduler.run(units)
        return [results[ordinal] for ordinal in sorted(results)]

    def run(
        self,
        read_file1: Union[str, Path],
        read_file2: Optional[Union[str, Path]] = None,
        partitions: int = 1,
    ) -> List[str]:
        """Align the reads and return the published SAM locations ordered by partition.

        Raises:
            MalformedInputError: the input cannot be partitioned; nothing was run.
            PartitionFailure: some partitions failed after every retry.
            RunCancelled: :meth:`cancel` was called during the run.
        """
        if (read_file2 is not None) != self.context.paired:
            raise ValueError("A second read file must be given exactly when the run is paired")

        try:
            read_partitions = partition_reads(read_file1, read_file2, partitions)
            logger.info(
                f"Dispatching {len(read_partitions)} partitions ({self.context.algorithm}, "
                f"{self.scheduler.max_workers} workers, {self.scheduler.max_attempts} attempts each)"
            )
            self.results = self.dispatch(read_partitions)
        finally:
            self._cleanup_tmp_dir()

        if self.summary_path is not None:
            write_summary(self.results, self.summary_path)

        if self.cancel_event.is_set() or any(r.status is TaskStatus.CANCELLED for r in self.results):
            raise RunCancelled(f"run {self.context.app_id} was cancelled")

        failed = [r.ordinal for r in self.results if not r.succeeded]
        if failed:
            raise PartitionFailure(failed, self.results)

        logger.info(f"All {len(self.results)} partitions published to {self.context.output_dir}")
        return [r.published_path for r in self.results]

    def _cleanup_tmp_dir(self) -> None:
        try:
            self.context.tmp_dir.rmdir()
        except FileNotFoundError:
            pass
        except OSError:
            # unpublished outputs are kept for a later publish attempt
            leftovers = sorted(p.name for p in self.context.tmp_dir.iterdir())
            logger.warning(f"Keeping {self.context.tmp_dir}, it still holds: {', '.join(leftovers)}")
