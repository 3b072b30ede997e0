import inspect
import logging
import os
import socket
from pathlib import Path
from typing import Dict, Optional, Union

from rich.console import Console
from rich.logging import RichHandler


BWASHARD_HANDLER_ATTR = "bwashard_handler_type"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def get_version_info() -> str:
    """Get the installed version of bwashard, or "Unknown" when running from a bare checkout."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("bwashard")
    except PackageNotFoundError:
        return "Unknown"


def parse_log_level(log_level: Union[int, str]) -> int:
    if isinstance(log_level, str):
        return LOG_LEVELS.get(log_level.lower(), logging.INFO)
    return log_level


def setup_logging(
    log_file: Union[str, Path, logging.Logger, None],
    log_level: Union[int, str] = logging.INFO,
) -> logging.Logger:
    """Setup logging for bwashard with both file and console logging using rich formatting.

    Handlers are installed on the root logger and tagged, so calling this
    again (e.g. from a second command in the same interpreter) swaps the
    log file and level instead of stacking handlers.
    """

    # If log_file is already a logger, return it
    if isinstance(log_file, logging.Logger):
        return log_file

    if log_file is None:
        log_file = Path.cwd() / "bwashard.log"

    log_file = Path(log_file)
    log_level = parse_log_level(log_level)

    log_file.parent.mkdir(parents=True, exist_ok=True)
    log_file.touch(exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(log_level)

    console_handler = None
    file_handlers = []
    for handler in logger.handlers:
        handler_type = getattr(handler, BWASHARD_HANDLER_ATTR, None)
        if handler_type == "console":
            console_handler = handler
        elif handler_type == "file":
            file_handlers.append(handler)

    if console_handler is None:
        console_handler = RichHandler(
            rich_tracebacks=True,
            console=Console(width=150, stderr=True),
            show_time=False,
            show_path=True,
            markup=True,
        )
        setattr(console_handler, BWASHARD_HANDLER_ATTR, "console")
        logger.addHandler(console_handler)

    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))

    existing_file_handler = None
    for file_handler in file_handlers:
        if Path(file_handler.baseFilename).resolve() == log_file.resolve():
            existing_file_handler = file_handler
        else:
            logger.removeHandler(file_handler)
            file_handler.close()

    if existing_file_handler is None:
        existing_file_handler = logging.FileHandler(log_file)
        setattr(existing_file_handler, BWASHARD_HANDLER_ATTR, "file")
        logger.addHandler(existing_file_handler)

    existing_file_handler.setLevel(log_level)
    existing_file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s --- %(levelname)s --- %(threadName)s --- %(message)s --- %(pathname)s:%(lineno)d",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    return logger


def log_start_info(logger: logging.Logger, config_dict: Dict):
    """Log initial information about the run: version, command line, host and config parameters."""
    from getpass import getuser
    from sys import argv as sys_argv

    logger.debug(f"Original command called: {' '.join(sys_argv)}")
    logger.debug(f"bwashard version: {get_version_info()}")
    logger.debug(f"Launch location: {Path.cwd()}")
    try:
        logger.debug(f"Submitter name: {getuser()}")
    except (KeyError, OSError):
        logger.debug(f"Submitter uid: {os.getuid()}")
    logger.debug(f"HOSTNAME: {socket.gethostname()}")
    logger.debug("Config parameters:")
    for key, value in config_dict.items():
        logger.debug(f"{key}: {value}")


def get_logger(logger: Optional[logging.Logger] = None) -> logging.Logger:
    """Get a logger instance, named after the calling module if none provided."""
    if isinstance(logger, logging.Logger):
        return logger

    caller_name = None
    for frame_info in inspect.stack()[1:]:
        module = inspect.getmodule(frame_info.frame)
        if module and module.__name__ != __name__:
            caller_name = module.__name__
            break

    # no handlers here; setup_logging owns formatting for every module
    return logging.getLogger(caller_name or __name__)
