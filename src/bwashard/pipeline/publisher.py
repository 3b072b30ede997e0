"""Publish local SAM results to the shared output directory."""

import logging
import shutil
from pathlib import Path
from typing import Iterable, Union

from bwashard.pipeline.context import AlignmentJobContext
from bwashard.pipeline.errors import PublishError
from bwashard.pipeline.filesystem import FilesystemClient

logger = logging.getLogger(__name__)


class ResultPublisher:
    """Copy a partition's SAM file to ``<output_dir>/<appName>-<appId>-<ordinal>.sam``.

    The local file is deleted only once the shared copy exists with the same
    size. If anything goes wrong the local file stays, so a later attempt can
    publish it without aligning again.
    """

    def __init__(self, context: AlignmentJobContext, client: FilesystemClient):
        self.context = context
        self.client = client

    def published_path(self, ordinal: int) -> str:
        return self.client.join(self.context.output_dir, self.context.published_name(ordinal))

    def publish(self, local_output: Union[str, Path], ordinal: int) -> str:
        local_output = Path(local_output)
        shared_path = self.published_path(ordinal)
        logger.info(f"[{self.context.app_id} - {self.context.app_name}] Copying {local_output.name} to {shared_path}")

        if not local_output.is_file():
            raise PublishError(local_output, shared_path, "local output does not exist")
        expected_size = local_output.stat().st_size

        try:
            self.client.makedirs(self.context.output_dir)
            self.client.copy_local_to_shared(local_output, shared_path)
            if not self.client.exists(shared_path):
                raise PublishError(local_output, shared_path, "copy is missing after upload")
            copied_size = self.client.size(shared_path)
        except OSError as e:
            raise PublishError(local_output, shared_path, str(e)) from e

        if copied_size != expected_size:
            raise PublishError(
                local_output, shared_path, f"copy has {copied_size} bytes, expected {expected_size}"
            )

        local_output.unlink()
        return shared_path


def merge_sam_files(paths: Iterable[Union[str, Path]], destination: Union[str, Path]) -> Path:
    """Concatenate SAM files into one, keeping the ``@`` header of the first file only.

    Partitions of one run share the reference, so their headers are identical
    apart from the ``@PG`` command lines.
    """
    destination = Path(destination)
    paths = [Path(p) for p in paths]
    with open(destination, "wb") as target:
        for index, path in enumerate(paths):
            with open(path, "rb") as source:
                if index == 0:
                    shutil.copyfileobj(source, target)
                    continue
                for line in source:
                    if not line.startswith(b"@"):
                        target.write(line)
    logger.info(f"Merged {len(paths)} SAM files into {destination}")
    return destination
