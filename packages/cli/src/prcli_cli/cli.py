"""CLI entry point for prcli.

Commands:
  run      - execute one comment command against one pull request
  serve    - start the webhook service
  status   - show the LGTM tally and check runs of a pull request
  parse    - show how a comment is parsed (no platform access)
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prcli_cli.commands.parse import parse_cmd
from prcli_cli.commands.run import run_cmd
from prcli_cli.commands.serve import serve_cmd
from prcli_cli.commands.status import status_cmd

LOG_LEVELS = ["debug", "info", "warning", "error"]


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prcli"),
    prog_name="prcli",
)
@click.option(
    "--config",
    "config_path",
    default=".prcli.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRCLI_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="info",
    show_default=True,
    envvar="PRCLI_LOG_LEVEL",
    help="Logging verbosity.",
)
@click.pass_context
def main(ctx: click.Context, config_path: str, log_level: str):
    """Slash-command control for GitHub pull requests and GitLab merge requests."""
    ctx.ensure_object(dict)
    _setup_logging(log_level)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


main.add_command(run_cmd)
main.add_command(serve_cmd)
main.add_command(status_cmd)
main.add_command(parse_cmd)
