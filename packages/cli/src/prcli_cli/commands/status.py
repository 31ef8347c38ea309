"""status command - show the LGTM tally and check runs of a pull request."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prcli_cli.loader import load_command_config, split_repo

console = Console()

_CONCLUSION_STYLE = {
    "success": "green",
    "neutral": "cyan",
    "skipped": "cyan",
    "failure": "red",
    "timed_out": "red",
    "cancelled": "yellow",
}


@click.command("status")
@click.option("--platform", type=click.Choice(["github", "gitlab"]), default=None, help="Code-hosting platform.")
@click.option("--repo", required=True, help="Repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.pass_context
def status_cmd(ctx, platform: str | None, repo: str, pr_number: int):
    """Show approvals, the threshold and check runs without changing anything."""
    from prcli_core.checks import is_self_check, latest_per_name
    from prcli_core.config import CommandContext, validate_config
    from prcli_core.errors import ConfigError, PRCliError
    from prcli_core.lgtm import LGTMEngine
    from prcli_core.platforms.factory import create_client
    from prcli_core.session import PRSession

    owner, name = split_repo(repo)
    config = load_command_config(ctx, {"platform": platform, "owner": owner, "repo": name, "pr_number": pr_number})
    try:
        validate_config(config, command_mode=False)
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc

    context = CommandContext.from_config(config)
    session = PRSession(create_client(context), context)
    try:
        pr = session.pull_request
        status = LGTMEngine(session).status(include_checks=True)
        checks = latest_per_name(session.client.list_check_runs())
    except PRCliError as exc:
        raise click.ClickException(str(exc)) from exc

    style = "green" if status.ready else "yellow"
    console.print(f"[bold]#{pr.number}[/bold] {pr.title}  [dim]({pr.state.value})[/dim]")
    console.print(f"LGTM: [{style}]{status.count}/{status.threshold}[/{style}]  ({status.needed} needed)\n")

    approvers = Table(title="Approvals", show_header=True, header_style="bold cyan")
    approvers.add_column("User", style="bold")
    approvers.add_column("Permission")
    for login, permission in status.approvers:
        approvers.add_row(f"@{login}", permission)
    console.print(approvers)

    table = Table(title="Check runs", show_header=True, header_style="bold cyan")
    table.add_column("Name", max_width=50)
    table.add_column("Status", width=12)
    table.add_column("Conclusion", width=12)
    for check in checks:
        conclusion = check.conclusion or "-"
        check_style = _CONCLUSION_STYLE.get(conclusion, "white")
        label = f"{check.name} [dim](excluded)[/dim]" if is_self_check(check.name, context.self_check_name) else check.name
        table.add_row(label, check.status, f"[{check_style}]{conclusion}[/{check_style}]")
    console.print(table)

    if status.failing_checks:
        console.print(f"[red]{len(status.failing_checks)} check(s) not passing.[/red]")
