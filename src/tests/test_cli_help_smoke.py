from __future__ import annotations

from pathlib import Path

import click
from click.testing import CliRunner

from bwashard.bwashard import bwashard


def registered_commands() -> list[str]:
    return sorted(set(bwashard.list_commands(click.Context(bwashard))))


def test_top_level_help_smoke() -> None:
    result = CliRunner().invoke(bwashard, ["--help"], catch_exceptions=False)
    assert result.exit_code == 0, result.output


def test_expected_commands_are_registered() -> None:
    assert registered_commands() == ["align", "partition"]


def test_each_command_help_smoke(tmp_path: Path) -> None:
    runner = CliRunner()
    for command_name in registered_commands():
        log_file = tmp_path / f"{command_name}_help_smoke.log"
        result = runner.invoke(
            bwashard,
            [command_name, "--log-file", str(log_file), "--help"],
            catch_exceptions=False,
        )
        assert result.exit_code == 0, f"`bwashard {command_name} --help` failed\n{result.output}"


def test_version_option() -> None:
    result = CliRunner().invoke(bwashard, ["--version"], catch_exceptions=False)
    assert result.exit_code == 0
    assert "bwashard" in result.output
