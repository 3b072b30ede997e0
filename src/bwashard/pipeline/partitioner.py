"""Split FASTQ read files into balanced, mate-pair preserving partitions.

Boundaries are computed on file 1 and carried over to file 2 by record
ordinal, never by an independent byte split, so both halves of a pair
always land in the same partition.
"""

import logging
from array import array
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from bwashard.pipeline.errors import MalformedInputError
from bwashard.utils.bio.fastq import mate_name, open_fastq

logger = logging.getLogger(__name__)

COPY_CHUNK = 1024 * 1024


@dataclass(frozen=True)
class FileRange:
    """Half-open byte range ``[start, end)`` of one read file."""

    path: str
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class ReadPartition:
    ordinal: int
    first_record: int
    record_count: int
    file1: FileRange
    file2: Optional[FileRange] = None

    @property
    def paired(self) -> bool:
        return self.file2 is not None


def scan_records(file_path: Union[str, Path]) -> array:
    """Return the byte offset of every FASTQ record start, plus the end offset.

    Records must be plain four-line FASTQ. Blank lines are tolerated only at
    the end of the file.

    Raises:
        MalformedInputError: if a record header, separator or quality line is
            missing or the quality length differs from the sequence length.
    """
    offsets = array("q")
    position = 0
    records_end = 0
    line_no = 0
    trailing_blank = False
    with open_fastq(file_path) as handle:
        while True:
            header = handle.readline()
            if not header:
                break
            line_no += 1
            if not header.strip():
                trailing_blank = True
                position += len(header)
                continue
            if trailing_blank:
                raise MalformedInputError(file_path, f"line {line_no}: record after blank line")
            if not header.startswith(b"@"):
                raise MalformedInputError(file_path, f"line {line_no}: expected '@' record header")

            sequence = handle.readline()
            separator = handle.readline()
            quality = handle.readline()
            if not quality:
                raise MalformedInputError(file_path, f"line {line_no}: truncated record")
            if not separator.startswith(b"+"):
                raise MalformedInputError(file_path, f"line {line_no + 2}: expected '+' separator")
            if len(sequence.rstrip(b"\r\n")) != len(quality.rstrip(b"\r\n")):
                raise MalformedInputError(
                    file_path, f"line {line_no + 3}: quality length differs from sequence length"
                )

            offsets.append(position)
            position += len(header) + len(sequence) + len(separator) + len(quality)
            records_end = position
            line_no += 3
    # end sentinel; trailing blank lines stay outside every partition
    offsets.append(records_end)
    return offsets


def balanced_ranges(total: int, parts: int) -> List[Tuple[int, int]]:
    """Split ``total`` records into ``(first, count)`` ranges differing by at most one.

    Never returns empty ranges, so fewer than ``parts`` ranges come back when
    there are fewer records than requested partitions.
    """
    if parts <= 0:
        raise ValueError(f"Partition count must be positive, got {parts}")
    parts = min(parts, total)
    if parts == 0:
        return []

    base_size, remainder = divmod(total, parts)
    ranges = []
    first = 0
    for i in range(parts):
        size = base_size + (1 if i < remainder else 0)
        ranges.append((first, size))
        first += size
    return ranges


def _header_at(handle, offset: int) -> bytes:
    handle.seek(offset)
    return handle.readline()


def check_mates(
    file1: Union[str, Path],
    offsets1: Sequence[int],
    file2: Union[str, Path],
    offsets2: Sequence[int],
    records: Sequence[int],
) -> None:
    """Verify that both files carry the same read name at the given record ordinals.

    Only the listed records are compared. ``partition_reads`` passes the first
    record of every partition and the last record, so a mismatch inside a
    partition is not detected here; the equal record count is the only check
    that covers the rest of the files.
    """
    with open_fastq(file1) as handle1, open_fastq(file2) as handle2:
        for record in sorted(set(records)):
            name1 = mate_name(_header_at(handle1, offsets1[record]))
            name2 = mate_name(_header_at(handle2, offsets2[record]))
            if name1 != name2:
                raise MalformedInputError(
                    file2, f"record {record}: mate '{name2}' does not match '{name1}' in {file1}"
                )


def partition_reads(
    read_file1: Union[str, Path],
    read_file2: Optional[Union[str, Path]] = None,
    partitions: int = 1,
) -> List[ReadPartition]:
    """Split one (single-end) or two (paired-end) FASTQ files into partitions.

    Args:
        read_file1: FASTQ with the reads (or the first mates).
        read_file2: FASTQ with the second mates, for paired-end input.
        partitions: Requested number of partitions.

    Returns:
        Partitions ordered by ordinal, covering every read exactly once.

    Raises:
        MalformedInputError: on unparsable input, an empty file 1, a mate
            count mismatch or mismatching mate names at partition boundaries.
    """
    logger.info(f"Scanning {read_file1}")
    offsets1 = scan_records(read_file1)
    total = len(offsets1) - 1
    if total == 0:
        raise MalformedInputError(read_file1, "no FASTQ records found")

    ranges = balanced_ranges(total, partitions)
    if len(ranges) < partitions:
        logger.warning(f"Only {total} reads available, producing {len(ranges)} partitions instead of {partitions}")

    offsets2 = None
    if read_file2 is not None:
        logger.info(f"Scanning {read_file2}")
        offsets2 = scan_records(read_file2)
        if len(offsets2) - 1 != total:
            raise MalformedInputError(
                read_file2, f"has {len(offsets2) - 1} reads but {read_file1} has {total}"
            )
        boundary_records = [first for first, _ in ranges] + [total - 1]
        check_mates(read_file1, offsets1, read_file2, offsets2, boundary_records)

    result = []
    for ordinal, (first, count) in enumerate(ranges):
        last = first + count
        file2_range = None
        if offsets2 is not None:
            file2_range = FileRange(str(read_file2), offsets2[first], offsets2[last])
        result.append(
            ReadPartition(
                ordinal=ordinal,
                first_record=first,
                record_count=count,
                file1=FileRange(str(read_file1), offsets1[first], offsets1[last]),
                file2=file2_range,
            )
        )
    logger.info(f"Split {total} {'pairs' if offsets2 is not None else 'reads'} into {len(result)} partitions")
    return result


def copy_range(file_range: FileRange, destination: Union[str, Path]) -> Path:
    """Write the bytes of ``file_range`` (decompressed) into ``destination``."""
    destination = Path(destination)
    remaining = file_range.size
    with open_fastq(file_range.path) as source, open(destination, "wb") as target:
        source.seek(file_range.start)
        while remaining > 0:
            chunk = source.read(min(COPY_CHUNK, remaining))
            if not chunk:
                raise MalformedInputError(file_range.path, f"ended before byte {file_range.end}")
            target.write(chunk)
            remaining -= len(chunk)
    return destination


def extract_partition(
    partition: ReadPartition,
    destination1: Union[str, Path],
    destination2: Optional[Union[str, Path]] = None,
) -> Tuple[Path, Optional[Path]]:
    """Materialise a partition as local FASTQ file(s) for the aligner."""
    path1 = copy_range(partition.file1, destination1)
    path2 = None
    if partition.paired:
        if destination2 is None:
            raise ValueError(f"Partition {partition.ordinal} is paired but no second destination was given")
        path2 = copy_range(partition.file2, destination2)
    return path1, path2
