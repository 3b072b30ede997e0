"""FASTQ file helpers: compression detection, opening, mate names and read counts."""

import gzip
import re
from pathlib import Path
from typing import BinaryIO, Union

from needletail import parse_fastx_file

MATE_SUFFIX = re.compile(r"/[12]$")


def is_gzipped(file_path: Union[str, Path]) -> bool:
    """Check if a file is gzip compressed.

    Args:
        file_path: Path to the file to check

    Returns:
        True if file is gzip compressed, False otherwise
    """
    try:
        with open(file_path, "rb") as test_f:
            return test_f.read(2).startswith(b"\x1f\x8b")
    except (OSError, IOError):
        return False


def open_fastq(file_path: Union[str, Path]) -> BinaryIO:
    """Open a plain or gzipped FASTQ for binary reading.

    Offsets reported by ``tell()`` refer to the decompressed stream in both
    cases, and ``seek()`` accepts them back.
    """
    if is_gzipped(file_path):
        return gzip.open(file_path, "rb")
    return open(file_path, "rb")


def mate_name(header: Union[bytes, str]) -> str:
    """Read name shared by both mates: no '@', no comment, no /1 or /2 suffix."""
    if isinstance(header, bytes):
        header = header.decode(errors="replace")
    name = header.strip().lstrip("@").split(maxsplit=1)
    return MATE_SUFFIX.sub("", name[0]) if name else ""


def count_reads(file_path: Union[str, Path]) -> int:
    """Count the records of a FASTA/FASTQ file (plain or compressed) with needletail."""
    return sum(1 for _ in parse_fastx_file(str(file_path)))
