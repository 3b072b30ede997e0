from __future__ import annotations

import threading
from pathlib import Path

import pytest

from bwashard.pipeline.aligner import StageMode
from bwashard.pipeline.context import AlignmentJobContext
from bwashard.pipeline.filesystem import LocalFilesystemClient


def pytest_addoption(parser):
    group = parser.getgroup("bwashard-cli")
    group.addoption(
        "--cli-scenarios",
        action="store",
        default="",
        help="Comma-separated scenario ids to run from cli_scenarios.json",
    )
    group.addoption(
        "--cli-commands",
        action="store",
        default="",
        help="Comma-separated top-level command names to run (e.g. align,partition)",
    )
    group.addoption(
        "--cli-match",
        action="store",
        default="",
        help="Comma-separated tokens; run scenarios whose id, description or command contains one",
    )


def write_fastq(path: Path, n_reads: int, mate: int | None = None, read_length: int = 8) -> Path:
    """Write ``n_reads`` four-line records named read<i> (with /1 or /2 when ``mate`` is set)."""
    suffix = f"/{mate}" if mate else ""
    with open(path, "w") as handle:
        for i in range(n_reads):
            handle.write(f"@read{i}{suffix} sample=test\n")
            handle.write("ACGT" * (read_length // 4) + "\n")
            handle.write("+\n")
            handle.write("I" * read_length + "\n")
    return path


@pytest.fixture
def paired_fastq(tmp_path: Path) -> tuple[Path, Path]:
    reads = tmp_path / "reads"
    reads.mkdir()
    return (
        write_fastq(reads / "sample_R1.fastq", 1000, mate=1),
        write_fastq(reads / "sample_R2.fastq", 1000, mate=2),
    )


@pytest.fixture
def single_fastq(tmp_path: Path) -> Path:
    reads = tmp_path / "reads"
    reads.mkdir(exist_ok=True)
    return write_fastq(reads / "single.fastq", 10)


def make_context(tmp_path: Path, algorithm: str = "mem", paired: bool = True) -> AlignmentJobContext:
    (tmp_path / "local").mkdir(exist_ok=True)
    return AlignmentJobContext.create(
        app_name="app",
        app_id="123",
        output_dir=tmp_path / "shared",
        algorithm=algorithm,
        paired=paired,
        tmp_dir=tmp_path / "local",
        index_path=str(tmp_path / "ref.fa"),
    )


class StubRunner:
    """Stands in for BWA: writes a small artifact per stage and returns a chosen status."""

    def __init__(self, fail_stage: int | None = None, exit_status: int = 1, skip_output_stage: int | None = None):
        self.fail_stage = fail_stage
        self.exit_status = exit_status
        self.skip_output_stage = skip_output_stage
        self.calls = []
        self.lock = threading.Lock()

    def run(self, invocation, cancel_event=None):
        with self.lock:
            self.calls.append(invocation)
        if invocation.stage == self.skip_output_stage:
            return 0
        if invocation.mode is StageMode.INDEX:
            invocation.output_file.write_bytes(b"sai")
        else:
            with open(invocation.read_file1) as reads:
                n_reads = sum(1 for _ in reads) // 4
            with open(invocation.output_file, "w") as sam:
                sam.write("@HD\tVN:1.6\n@SQ\tSN:chr1\tLN:1000\n")
                for i in range(n_reads):
                    sam.write(f"r{i}\t4\t*\t0\t0\t*\t*\t0\t0\tACGT\tIIII\n")
        if invocation.stage == self.fail_stage:
            return self.exit_status
        return 0

    def stages(self, ordinal=None):
        return [call.stage for call in self.calls if ordinal is None or f"-{ordinal}_" in call.read_file1.name]


class FlakyClient(LocalFilesystemClient):
    """Local client whose first ``failures`` copies raise."""

    def __init__(self, failures: int = 1):
        self.failures = failures
        self.copies = 0

    def copy_local_to_shared(self, local_path, shared_path):
        self.copies += 1
        if self.copies <= self.failures:
            raise OSError("shared storage unavailable")
        super().copy_local_to_shared(local_path, shared_path)
