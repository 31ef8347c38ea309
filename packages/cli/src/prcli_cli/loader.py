from __future__ import annotations

import click

from prcli_cli.auth import resolve_token
from prcli_core.config import load_config
from prcli_core.errors import ConfigError


def load_command_config(ctx: click.Context, overrides: dict | None = None) -> dict:
    """Load the config file named by ``--config`` with ``overrides`` applied.

    Falls back to the gh CLI session when no token was configured.
    """
    config_path = (ctx.find_root().obj or {}).get("config_path", ".prcli.yml")
    try:
        config = load_config(config_path, cli_overrides=overrides)
    except ConfigError as exc:
        raise click.UsageError(str(exc)) from exc
    if not config.get("token"):
        config["token"] = resolve_token(config.get("platform") or "github")
    return config


def split_repo(repo: str | None) -> tuple[str | None, str | None]:
    """``"owner/name"`` -> ``("owner", "name")``; GitLab subgroups keep their path in owner."""
    if not repo:
        return None, None
    if "/" not in repo:
        raise click.BadParameter(f"expected owner/name, got {repo!r}", param_hint="--repo")
    owner, name = repo.rsplit("/", 1)
    return owner, name
