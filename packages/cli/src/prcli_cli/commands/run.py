"""run command - execute one trigger comment against one pull request."""

from __future__ import annotations

import click
from rich.console import Console

from prcli_cli.loader import load_command_config, split_repo

console = Console()


@click.command("run")
@click.option("--platform", type=click.Choice(["github", "gitlab"]), default=None, help="Code-hosting platform.")
@click.option("--base-url", default=None, help="API base URL for GitHub Enterprise or self-hosted GitLab.")
@click.option("--repo", default=None, help="Repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, default=None, help="Pull request number.")
@click.option("--sender", "comment_sender", default=None, help="Login of the user who posted the comment.")
@click.option("--comment", "trigger_comment", default=None, help="The trigger comment, e.g. '/lgtm'.")
@click.option("--lgtm-threshold", type=int, default=None, help="Approvals required before merging.")
@click.option("--lgtm-permissions", default=None, help="Comma-separated permissions whose approvals count.")
@click.option(
    "--merge-method",
    type=click.Choice(["auto", "merge", "squash", "rebase"]),
    default=None,
    help="Default merge method for /merge.",
)
@click.option("--results-dir", default=None, help="Directory for result files (merge-successful, ...).")
@click.option("--debug/--no-debug", "debug_mode", default=None, help="Allow self-approval and skip sender checks.")
@click.pass_context
def run_cmd(
    ctx,
    platform: str | None,
    base_url: str | None,
    repo: str | None,
    pr_number: int | None,
    comment_sender: str | None,
    trigger_comment: str | None,
    lgtm_threshold: int | None,
    lgtm_permissions: str | None,
    merge_method: str | None,
    results_dir: str | None,
    debug_mode: bool | None,
):
    """Execute a slash command from a PR comment.

    Errors are posted on the pull request and make the command exit non-zero.

    \b
    Required environment variables:
      GITHUB_TOKEN or GITLAB_TOKEN   Platform token (or use gh CLI on GitHub)
      PR_COMMENT_TOKEN               Optional token used only for comments
    """
    from prcli_core.config import CommandContext, validate_config
    from prcli_core.errors import ConfigError, ParseError, PRCliError
    from prcli_core.executor import CommandExecutor, CommandFailedError, ExecutionConfig
    from prcli_core.parser import parse_comment
    from prcli_core.platforms.factory import create_client
    from prcli_core.session import PRSession
    from prcli_results.factory import build_sink

    owner, name = split_repo(repo)
    config = load_command_config(
        ctx,
        {
            "platform": platform,
            "base_url": base_url,
            "owner": owner,
            "repo": name,
            "pr_number": pr_number,
            "comment_sender": comment_sender,
            "trigger_comment": trigger_comment,
            "lgtm_threshold": lgtm_threshold,
            "lgtm_permissions": lgtm_permissions,
            "merge_method": merge_method,
            "results_dir": results_dir,
            "debug_mode": debug_mode,
        },
    )
    try:
        validate_config(config, command_mode=True)
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc

    context = CommandContext.from_config(config)
    sink = build_sink(context.results_dir)
    ctx.call_on_close(sink.close)
    session = PRSession(create_client(context), context, sink)
    executor = CommandExecutor(session, ExecutionConfig.cli(debug_mode=context.debug_mode))

    try:
        try:
            command = parse_comment(context.trigger_comment)
        except ParseError as exc:
            executor.report_parse_error(context.trigger_comment, exc)
            return
        result = executor.execute(command, trusted=True)
    except CommandFailedError as exc:
        raise click.ClickException(str(exc)) from exc
    except PRCliError as exc:
        raise click.ClickException(f"{context.full_name}#{context.pr_number}: {exc}") from exc

    for row in result.results:
        console.print(row.row())
    console.print(f"[green]✓[/green] {result.command} on {context.full_name}#{context.pr_number}")
