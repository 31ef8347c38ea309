"""parse command - show how a comment is parsed, without touching any platform."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("parse")
@click.argument("comment")
def parse_cmd(comment: str):
    """Parse COMMENT and print the resulting command(s)."""
    from prcli_core.errors import ParseError
    from prcli_core.parser import BuiltInCommand, InvalidCommand, MultiCommand, format_command, parse_comment

    try:
        command = parse_comment(comment)
    except ParseError as exc:
        raise click.ClickException(str(exc)) from exc

    commands = command.commands if isinstance(command, MultiCommand) else (command,)
    kind = "multi" if isinstance(command, MultiCommand) else "single"

    table = Table(title=f"Parsed command ({kind})", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Type", width=9)
    table.add_column("Name", style="bold")
    table.add_column("Arguments")

    for index, sub in enumerate(commands, 1):
        if isinstance(sub, InvalidCommand):
            table.add_row(str(index), "[red]invalid[/red]", sub.raw, f"[red]{sub.error}[/red]")
            continue
        sub_kind = "built-in" if isinstance(sub, BuiltInCommand) else "command"
        table.add_row(str(index), sub_kind, sub.name, " ".join(repr(a) for a in sub.args) or "[dim]-[/dim]")

    console.print(table)
    console.print(f"[dim]Normalized:[/dim] {format_command(command)}")
