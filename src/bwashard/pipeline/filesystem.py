"""Clients for the shared output location.

Only the publisher goes through these; nothing else in the pipeline writes
outside the run's local temporary directory.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Protocol, Union

from bwashard.utils.various import run_command_comp

logger = logging.getLogger(__name__)


class FilesystemClient(Protocol):
    def copy_local_to_shared(self, local_path: Union[str, Path], shared_path: str) -> None:
        """Copy a local file to the shared location, raising ``OSError`` on failure."""
        ...

    def exists(self, shared_path: str) -> bool: ...

    def size(self, shared_path: str) -> int: ...

    def join(self, directory: str, name: str) -> str: ...

    def makedirs(self, directory: str) -> None: ...


class LocalFilesystemClient:
    """Shared storage mounted as a local path (e.g. an NFS home shared by every node)."""

    def copy_local_to_shared(self, local_path, shared_path):
        destination = Path(shared_path)
        partial = destination.with_name(destination.name + ".partial")
        try:
            shutil.copyfile(local_path, partial)
            # rename is atomic, so readers never see a half-written result
            os.replace(partial, destination)
        except OSError:
            partial.unlink(missing_ok=True)
            raise

    def exists(self, shared_path):
        return Path(shared_path).is_file()

    def size(self, shared_path):
        return Path(shared_path).stat().st_size

    def join(self, directory, name):
        return str(Path(directory) / name)

    def makedirs(self, directory):
        Path(directory).mkdir(parents=True, exist_ok=True)


class HdfsCliClient:
    """HDFS through the ``hdfs dfs`` command line client."""

    def __init__(self, hdfs_path: str = "hdfs"):
        self.base_cmd = f"{hdfs_path} dfs"

    def _dfs(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        try:
            return run_command_comp(
                self.base_cmd,
                positional_args=list(args),
                check_status=check,
                logger=logger,
            )
        except subprocess.CalledProcessError as e:
            raise OSError(f"{' '.join(e.cmd)} exited with {e.returncode}: {(e.stderr or '').strip()}") from e

    def copy_local_to_shared(self, local_path, shared_path):
        self._dfs("-put", "-f", str(local_path), shared_path)

    def exists(self, shared_path):
        return self._dfs("-test", "-e", shared_path, check=False).returncode == 0

    def size(self, shared_path):
        output = self._dfs("-stat", "%b", shared_path).stdout.strip()
        try:
            return int(output)
        except ValueError:
            raise OSError(f"unexpected size {output!r} for {shared_path}") from None

    def join(self, directory, name):
        return f"{directory.rstrip('/')}/{name}"

    def makedirs(self, directory):
        self._dfs("-mkdir", "-p", directory)


def get_filesystem_client(output_dir: str) -> FilesystemClient:
    if str(output_dir).startswith("hdfs://"):
        return HdfsCliClient()
    return LocalFilesystemClient()
