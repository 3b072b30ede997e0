from __future__ import annotations

import importlib
import logging
from pathlib import Path

import click

from bwashard.bwashard import bwashard
from bwashard.utils.logging import loggit
from bwashard.utils.logging.loggit import get_logger, setup_logging


def clear_bwashard_handlers() -> logging.Logger:
    logger = logging.getLogger()
    for handler in list(logger.handlers):
        if getattr(handler, loggit.BWASHARD_HANDLER_ATTR, None) in {"console", "file"}:
            logger.removeHandler(handler)
            handler.close()
    return logger


def get_bwashard_handlers(logger: logging.Logger) -> tuple[list, list]:
    console_handlers = []
    file_handlers = []
    for handler in logger.handlers:
        handler_type = getattr(handler, loggit.BWASHARD_HANDLER_ATTR, None)
        if handler_type == "console":
            console_handlers.append(handler)
        elif handler_type == "file":
            file_handlers.append(handler)
    return console_handlers, file_handlers


def test_setup_logging_reconfigures_without_duplicate_handlers(tmp_path: Path) -> None:
    root_logger = clear_bwashard_handlers()

    setup_logging(tmp_path / "first.log", "INFO")
    setup_logging(tmp_path / "second.log", "DEBUG")

    console_handlers, file_handlers = get_bwashard_handlers(root_logger)

    assert len(console_handlers) == 1
    assert len(file_handlers) == 1
    assert root_logger.level == logging.DEBUG
    assert file_handlers[0].level == logging.DEBUG
    assert Path(file_handlers[0].baseFilename).resolve() == (tmp_path / "second.log").resolve()


def test_pipeline_messages_reach_the_log_file(tmp_path: Path) -> None:
    clear_bwashard_handlers()
    log_file = tmp_path / "run.log"
    setup_logging(log_file, "debug")

    logging.getLogger("bwashard.pipeline.orchestrator").info("partition 3: published")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "partition 3: published" in log_file.read_text()
    clear_bwashard_handlers()


def test_get_logger_defaults_to_calling_module() -> None:
    assert get_logger().name == __name__
    named = logging.getLogger("custom")
    assert get_logger(named) is named


def test_pipeline_import_does_not_setup_handlers() -> None:
    root_logger = clear_bwashard_handlers()

    for name in ("bwashard.commands.align.align_reads", "bwashard.commands.align.partition_reads"):
        importlib.reload(importlib.import_module(name))

    console_handlers, file_handlers = get_bwashard_handlers(root_logger)
    assert len(console_handlers) == 0
    assert len(file_handlers) == 0


def test_all_registered_commands_support_log_level_option() -> None:
    ctx = click.Context(bwashard)
    missing = []
    for command_name in sorted(set(bwashard.list_commands(ctx))):
        command = bwashard.get_command(ctx, command_name)
        has_log_level = command is not None and any(
            isinstance(parameter, click.Option) and ("--log-level" in parameter.opts or "-ll" in parameter.opts)
            for parameter in command.params
        )
        if not has_log_level:
            missing.append(command_name)

    assert not missing, "Commands missing --log-level/-ll option: " + ", ".join(missing)
