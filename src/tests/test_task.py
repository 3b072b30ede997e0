from __future__ import annotations

import threading
from pathlib import Path

import pytest

from bwashard.pipeline.aligner import BwaRunner
from bwashard.pipeline.errors import AlignmentStageError, RunCancelled
from bwashard.pipeline.partitioner import partition_reads
from bwashard.pipeline.task import EXTRACT_STAGE, AlignmentTask, TaskState

from conftest import StubRunner, make_context, write_fastq


def local_files(context) -> list[str]:
    return sorted(p.name for p in context.tmp_dir.iterdir())


def test_multi_stage_paired_run_leaves_only_the_sam(paired_fastq, tmp_path: Path) -> None:
    context = make_context(tmp_path, algorithm="aln", paired=True)
    partition = partition_reads(*paired_fastq, partitions=4)[2]
    runner = StubRunner()

    task = AlignmentTask(partition, context, runner)
    output = task.run()

    assert task.state is TaskState.COMPLETED
    assert [call.stage for call in runner.calls] == [0, 1, 2]
    merge = runner.calls[-1]
    assert merge.index_artifacts == (runner.calls[0].output_file, runner.calls[1].output_file)
    assert output == context.local_output(2)
    assert local_files(context) == ["app-123-2.sam"]


def test_multi_stage_single_end_skips_second_index(single_fastq, tmp_path: Path) -> None:
    context = make_context(tmp_path, algorithm="aln", paired=False)
    partition = partition_reads(single_fastq, partitions=1)[0]
    runner = StubRunner()

    AlignmentTask(partition, context, runner).run()

    assert [call.stage for call in runner.calls] == [0, 2]
    assert runner.calls[-1].read_file2 is None
    assert local_files(context) == ["app-123-0.sam"]


def test_single_stage_run_invokes_aligner_once(paired_fastq, tmp_path: Path) -> None:
    context = make_context(tmp_path, algorithm="mem", paired=True)
    partition = partition_reads(*paired_fastq, partitions=2)[0]
    runner = StubRunner()

    output = AlignmentTask(partition, context, runner).run()

    assert len(runner.calls) == 1
    assert runner.calls[0].read_file2 is not None
    sam_reads = [line for line in output.read_text().splitlines() if not line.startswith("@")]
    assert len(sam_reads) == 500


def test_stage_one_failure_stops_before_merge(paired_fastq, tmp_path: Path) -> None:
    context = make_context(tmp_path, algorithm="aln", paired=True)
    partition = partition_reads(*paired_fastq, partitions=4)[1]
    runner = StubRunner(fail_stage=1, exit_status=3)
    task = AlignmentTask(partition, context, runner)

    with pytest.raises(AlignmentStageError) as excinfo:
        task.run()

    assert excinfo.value.partition == 1
    assert excinfo.value.stage == 1
    assert excinfo.value.exit_status == 3
    assert [call.stage for call in runner.calls] == [0, 1]
    assert task.state is TaskState.FAILED
    # slices, both .sai files and any partial SAM are gone
    assert local_files(context) == []


def test_missing_output_counts_as_failure(single_fastq, tmp_path: Path) -> None:
    context = make_context(tmp_path, algorithm="mem", paired=False)
    partition = partition_reads(single_fastq)[0]
    task = AlignmentTask(partition, context, StubRunner(skip_output_stage=0))

    with pytest.raises(AlignmentStageError, match="was not written") as excinfo:
        task.run()
    assert excinfo.value.exit_status == 0
    assert local_files(context) == []


def test_silent_aligner_exit_is_a_stage_failure(single_fastq, tmp_path: Path) -> None:
    # exits 0 without printing a SAM record
    fake_bwa = tmp_path / "fake_bwa.sh"
    fake_bwa.write_text("#!/bin/sh\nexit 0\n")
    fake_bwa.chmod(0o755)
    context = make_context(tmp_path, algorithm="mem", paired=False)
    runner = BwaRunner("mem", str(tmp_path / "ref.fa"), bwa_path=str(fake_bwa))
    task = AlignmentTask(partition_reads(single_fastq)[0], context, runner)

    with pytest.raises(AlignmentStageError, match="was not written") as excinfo:
        task.run()

    assert excinfo.value.exit_status == 0
    assert task.state is TaskState.FAILED
    assert local_files(context) == []


def test_final_stage_failure_removes_partial_sam(single_fastq, tmp_path: Path) -> None:
    context = make_context(tmp_path, algorithm="aln", paired=False)
    partition = partition_reads(single_fastq)[0]

    with pytest.raises(AlignmentStageError):
        AlignmentTask(partition, context, StubRunner(fail_stage=2)).run()
    assert local_files(context) == []


def test_runner_os_error_becomes_stage_error(single_fastq, tmp_path: Path) -> None:
    class MissingExecutable:
        def run(self, invocation, cancel_event=None):
            raise FileNotFoundError("bwa")

    context = make_context(tmp_path, algorithm="mem", paired=False)
    partition = partition_reads(single_fastq)[0]
    with pytest.raises(AlignmentStageError) as excinfo:
        AlignmentTask(partition, context, MissingExecutable()).run()
    assert excinfo.value.stage == 0
    assert excinfo.value.exit_status is None


def test_unreadable_partition_fails_in_extract_stage(tmp_path: Path) -> None:
    fastq = write_fastq(tmp_path / "r.fq", 4)
    context = make_context(tmp_path, algorithm="mem", paired=False)
    partition = partition_reads(fastq, partitions=2)[1]
    fastq.unlink()

    runner = StubRunner()
    with pytest.raises(AlignmentStageError) as excinfo:
        AlignmentTask(partition, context, runner).run()
    assert excinfo.value.stage == EXTRACT_STAGE
    assert runner.calls == []


def test_cancelled_task_cleans_up(paired_fastq, tmp_path: Path) -> None:
    context = make_context(tmp_path, algorithm="aln", paired=True)
    partition = partition_reads(*paired_fastq, partitions=2)[0]
    cancel_event = threading.Event()

    class CancelAfterFirstStage(StubRunner):
        def run(self, invocation, cancel_event=None):
            status = super().run(invocation, cancel_event)
            cancel_event.set()
            return status

    runner = CancelAfterFirstStage()
    task = AlignmentTask(partition, context, runner)
    with pytest.raises(RunCancelled):
        task.run(cancel_event)

    assert [call.stage for call in runner.calls] == [0]
    assert task.state is TaskState.CANCELLED
    assert local_files(context) == []


def test_task_runs_only_once(single_fastq, tmp_path: Path) -> None:
    context = make_context(tmp_path, algorithm="mem", paired=False)
    task = AlignmentTask(partition_reads(single_fastq)[0], context, StubRunner())
    task.run()
    with pytest.raises(RuntimeError):
        task.run()


def test_paired_partition_in_single_end_run_is_rejected(paired_fastq, tmp_path: Path) -> None:
    context = make_context(tmp_path, algorithm="mem", paired=False)
    with pytest.raises(ValueError):
        AlignmentTask(partition_reads(*paired_fastq)[0], context, StubRunner())
