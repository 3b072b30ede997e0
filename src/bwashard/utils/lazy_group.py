"""Lazy loading for the (Rich)Click command group.

Sub-commands are given as import paths and imported on first use, so
``bwashard --help`` does not pay for importing polars or needletail.
Commands are listed in titled panels, one per section.

Example:
    ```python
    @click.group(cls=LazyGroup, lazy_subcommands={
        "alignment": {
            "name": "Distributed Alignment",
            "commands": {"align": "bwashard.commands.align.align_reads.align"},
        },
    })
    def cli():
        pass
    ```
"""

import importlib

import rich_click as click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()


class LazyGroup(click.RichGroup):
    """Click group whose sub-commands are imported on demand.

    Args:
        lazy_subcommands (dict): Section key -> ``{"name": title, "commands":
            {command name: "module.attribute"}}``. A plain
            ``{command name: "module.attribute"}`` entry is also accepted and
            shown outside any section.
    """

    def __init__(self, *args, lazy_subcommands=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.lazy_subcommands = {}
        self.sections = {}
        for key, value in (lazy_subcommands or {}).items():
            if isinstance(value, dict):
                self.sections[key] = value
                self.lazy_subcommands.update(value["commands"])
            else:
                self.lazy_subcommands[key] = value

    def list_commands(self, ctx):
        return super().list_commands(ctx) + sorted(self.lazy_subcommands)

    def get_command(self, ctx, cmd_name):
        if cmd_name in self.lazy_subcommands:
            return self._lazy_load(cmd_name)
        return super().get_command(ctx, cmd_name)

    def _lazy_load(self, cmd_name):
        import_path = self.lazy_subcommands[cmd_name]
        modname, cmd_object_name = import_path.rsplit(".", 1)
        mod = importlib.import_module(modname)
        cmd_object = getattr(mod, cmd_object_name)
        if not isinstance(cmd_object, click.Command):
            raise ValueError(f"{import_path} is not a Click command")
        return cmd_object

    def format_commands(self, ctx, formatter):
        """Print one panel per section instead of the flat command list."""
        for section in self.sections.values():
            table = Table(show_header=False, box=None, padding=(0, 2), show_edge=False)
            table.add_column("Command", style="bold cyan", width=20)
            table.add_column("Description", no_wrap=False)
            for cmd_name in sorted(section["commands"]):
                cmd = self.get_command(ctx, cmd_name)
                table.add_row(cmd_name, cmd.get_short_help_str(limit=200))
            console.print(
                Panel(table, title=f"[bold]{section['name']}[/bold]", title_align="left", border_style="dim")
            )
