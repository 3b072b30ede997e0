"""Helpers for running external commands and checking their availability."""

import logging
import shlex
import shutil
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from bwashard.utils.logging.loggit import get_logger

# seconds between termination signals when a command is cancelled
TERMINATE_GRACE = 10


class CommandCancelled(RuntimeError):
    """Raised when a running command was terminated because its cancel event fired."""

    def __init__(self, cmd: Sequence[str]):
        self.cmd = list(cmd)
        super().__init__(f"Command cancelled: {' '.join(self.cmd)}")


def check_dependencies(tools: List[str], logger: Optional[logging.Logger] = None) -> None:
    """Exit if any of the given executables cannot be found on PATH."""
    logger = get_logger(logger)
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        logger.error(f"Missing required tools: {', '.join(missing)}")
        raise SystemExit(1)
    logger.debug(f"All dependencies found: {', '.join(tools)}")


def render_params(
    params: Dict[str, Union[str, int, float, bool, None]],
    prefix_style: str = "auto",
    assign_operator: str = " ",
) -> List[str]:
    """Turn a parameter dict into argv tokens.

    ``True`` renders a bare flag, ``False``/``None`` drop the parameter.
    ``prefix_style`` is "single" (-k), "double" (--key) or "auto" (single for
    one-letter keys, double otherwise).
    """
    tokens = []
    for key, value in params.items():
        if value is None or value is False:
            continue
        if prefix_style == "single":
            prefix = "-"
        elif prefix_style == "double":
            prefix = "--"
        else:
            prefix = "-" if len(key) == 1 else "--"
        flag = f"{prefix}{key}"
        if value is True:
            tokens.append(flag)
        elif assign_operator == " ":
            tokens.extend([flag, str(value)])
        else:
            tokens.append(f"{flag}{assign_operator}{value}")
    return tokens


def build_command(
    base_cmd: str,
    params: Optional[Dict] = None,
    positional_args: Optional[List[str]] = None,
    positional_args_location: str = "end",
    extra_args: Optional[str] = None,
    prefix_style: str = "auto",
    assign_operator: str = " ",
) -> List[str]:
    cmd = shlex.split(base_cmd)
    positionals = [str(arg) for arg in positional_args or []]
    rendered = render_params(params or {}, prefix_style, assign_operator)
    extra = shlex.split(extra_args) if extra_args else []
    if positional_args_location == "start":
        return cmd + positionals + rendered + extra
    return cmd + rendered + extra + positionals


def _terminate(process: subprocess.Popen, logger: logging.Logger) -> None:
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {process.pid} ignored SIGTERM, killing it")
        process.kill()
        process.wait()


def run_command_comp(
    base_cmd: str,
    params: Optional[Dict] = None,
    positional_args: Optional[List[str]] = None,
    positional_args_location: str = "end",
    extra_args: Optional[str] = None,
    prefix_style: str = "auto",
    assign_operator: str = " ",
    stdout_file: Optional[Union[str, Path]] = None,
    output_file: Optional[Union[str, Path]] = None,
    check_status: bool = False,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    poll_interval: float = 0.5,
    logger: Optional[logging.Logger] = None,
) -> subprocess.CompletedProcess:
    """Run an external command, blocking until it exits.

    Args:
        base_cmd: Executable plus any sub-command, e.g. ``"bwa mem"``.
        params: Option dict rendered by :func:`render_params`.
        positional_args: Arguments placed after (or before, see
            ``positional_args_location``) the options.
        extra_args: Free-form argument string appended after the options.
        stdout_file: Redirect stdout into this file instead of capturing it.
        output_file: If given, the command only counts as successful when this
            file exists afterwards.
        check_status: Raise ``subprocess.CalledProcessError`` on non-zero exit.
        timeout: Seconds before the process is terminated and
            ``subprocess.TimeoutExpired`` raised.
        cancel_event: When set while the command runs, the process is
            terminated and :class:`CommandCancelled` raised.

    Returns:
        subprocess.CompletedProcess: stdout is ``None`` when redirected to
        ``stdout_file``; stderr is always captured as text.
    """
    logger = get_logger(logger)
    cmd = build_command(
        base_cmd,
        params=params,
        positional_args=positional_args,
        positional_args_location=positional_args_location,
        extra_args=extra_args,
        prefix_style=prefix_style,
        assign_operator=assign_operator,
    )
    logger.debug(f"Running command: {shlex.join(cmd)}")

    stdout_handle = open(stdout_file, "wb") if stdout_file is not None else tempfile.TemporaryFile()
    # stderr goes to a file so a chatty process cannot fill a pipe and block
    stderr_handle = tempfile.TemporaryFile()
    started = time.monotonic()
    try:
        process = subprocess.Popen(cmd, stdout=stdout_handle, stderr=stderr_handle)
        while True:
            try:
                process.wait(timeout=poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning(f"Cancelling command: {shlex.join(cmd)}")
                    _terminate(process, logger)
                    raise CommandCancelled(cmd)
                if timeout is not None and time.monotonic() - started > timeout:
                    logger.error(f"Command timed out after {timeout} seconds: {shlex.join(cmd)}")
                    _terminate(process, logger)
                    raise subprocess.TimeoutExpired(cmd, timeout)

        stderr_handle.seek(0)
        stderr = stderr_handle.read().decode(errors="replace")
        stdout = None
        if stdout_file is None:
            stdout_handle.seek(0)
            stdout = stdout_handle.read().decode(errors="replace")
    finally:
        stdout_handle.close()
        stderr_handle.close()

    elapsed = time.monotonic() - started
    logger.debug(f"Command exited with status {process.returncode} after {elapsed:.1f}s")
    if process.returncode != 0:
        logger.error(f"Command failed ({process.returncode}): {shlex.join(cmd)}")
        if stderr.strip():
            logger.error(stderr.strip().splitlines()[-1])
        if check_status:
            raise subprocess.CalledProcessError(process.returncode, cmd, stdout, stderr)
    elif output_file is not None and not Path(output_file).exists():
        logger.error(f"Expected output file {output_file} was not created")

    return subprocess.CompletedProcess(cmd, process.returncode, stdout, stderr)
