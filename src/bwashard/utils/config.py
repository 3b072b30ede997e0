"""Configuration management for bwashard commands.

Holds the parameters shared by every command (output location, temporary
directory, worker threads, logging); values can also come from a JSON file.

Example:
    ```python
    config = BaseConfig(output="sam_out", threads=8, log_level="debug")
    print(config.to_dict())
    ```
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from bwashard.utils.logging.loggit import parse_log_level, setup_logging


class BaseConfig:
    """Configuration manager for bwashard commands.

    Args:
        output (str, optional): Output directory; a local path or an
            ``hdfs://`` URI.
        config_file (Path, optional): JSON configuration file the values came from.
        threads (int, optional): Number of partitions processed concurrently.
        log_file (Path, optional): Path to log file.
        tmp_dir (str, optional): Base directory for per-run temporary files.
        overwrite (bool, optional): Whether existing output files may be replaced.
        log_level (str, optional): "debug", "info", "warning", "error" or "critical".
    """

    def __init__(
        self,
        output: Optional[str] = "bwashard_out",
        config_file: Optional[Path] = None,
        threads: int = 1,
        log_file: Optional[Path] = None,
        tmp_dir: Optional[str] = None,
        overwrite: bool = False,
        log_level: str = "info",
    ):
        self.threads = threads
        self.config_file = config_file
        self.log_file = log_file
        self.log_level = parse_log_level(log_level)
        self.logger = self.setup_logger()
        self.tmp_dir = tmp_dir
        self.overwrite = overwrite
        self.output = str(output)
        self.is_local_output = "://" not in self.output

        if self.is_local_output:
            output_dir = Path(self.output)
            if not output_dir.exists():
                self.logger.warning(f"Creating output directory: {output_dir}")
                output_dir.mkdir(parents=True, exist_ok=True)
            elif any(output_dir.iterdir()) and not overwrite:
                self.logger.warning(
                    f"Output directory {output_dir} is not empty and overwrite is set to False. "
                    "Results of a run with the same application id would replace files in it."
                )

    def setup_logger(self) -> logging.Logger:
        if isinstance(self.log_file, logging.Logger):
            return self.log_file
        return setup_logging(self.log_file, log_level=self.log_level)

    def to_dict(self) -> Dict[str, Any]:
        return {
            k: str(v) if isinstance(v, Path) else v
            for k, v in self.__dict__.items()
            if k != "logger"
        }

    @staticmethod
    def load(config_file: Path) -> Dict[str, Any]:
        with open(config_file, "r") as f:
            config_dict = json.load(f)
        if not isinstance(config_dict, dict):
            raise ValueError(f"{config_file} must contain a JSON object")
        return config_dict

    def __str__(self):
        return f"{type(self).__name__}(output={self.output})"
