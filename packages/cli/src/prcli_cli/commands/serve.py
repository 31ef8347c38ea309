"""serve command - run the webhook service."""

from __future__ import annotations

import click

from prcli_cli.loader import load_command_config


@click.command("serve")
@click.option("--listen", "listen_addr", default=None, help="Listen address, e.g. ':8080' or '127.0.0.1:9000'.")
@click.option("--webhook-path", default=None, help="Path that receives webhook POSTs.")
@click.option("--workers", "worker_count", type=int, default=None, help="Number of worker threads.")
@click.option("--queue-size", type=int, default=None, help="Maximum number of queued jobs.")
@click.option("--async/--sync", "async_processing", default=None, help="Queue jobs or process them inline.")
@click.option(
    "--require-signature/--no-require-signature",
    default=None,
    help="Reject webhooks without a valid signature or token.",
)
@click.option("--allowed-repos", default=None, help="Comma-separated owner/name patterns ('org/*', '*').")
@click.pass_context
def serve_cmd(
    ctx,
    listen_addr: str | None,
    webhook_path: str | None,
    worker_count: int | None,
    queue_size: int | None,
    async_processing: bool | None,
    require_signature: bool | None,
    allowed_repos: str | None,
):
    """Start the webhook service.

    \b
    Environment variables:
      GITHUB_TOKEN or GITLAB_TOKEN          Platform token
      WEBHOOK_SECRET / WEBHOOK_SECRET_FILE  Shared webhook secret
      LISTEN_ADDR, WORKER_COUNT, QUEUE_SIZE, ALLOWED_REPOS, ...
    """
    from prcli_core.config import load_webhook_config, validate_config, validate_webhook_config
    from prcli_core.errors import ConfigError
    from prcli_server.app import serve

    config = load_command_config(ctx)
    try:
        webhook = load_webhook_config(config)
        overrides = {
            "listen_addr": listen_addr,
            "webhook_path": webhook_path,
            "worker_count": worker_count,
            "queue_size": queue_size,
            "async_processing": async_processing,
            "require_signature": require_signature,
            "allowed_repos": [r.strip() for r in allowed_repos.split(",") if r.strip()] if allowed_repos else None,
        }
        webhook.update({k: v for k, v in overrides.items() if v is not None})
        validate_config(config, command_mode=False)
        validate_webhook_config(webhook)
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc

    try:
        serve(config)
    except OSError as exc:
        raise click.ClickException(f"Cannot listen on {webhook['listen_addr']}: {exc}") from exc
