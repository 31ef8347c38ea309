from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import yaml

from prcli_core.errors import ConfigError
from prcli_core.models import MergeMethod, Platform

if TYPE_CHECKING:
    from prcli_core.models import Event

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict = {
    "platform": "github",
    "base_url": None,  # None = platform default (api.github.com / gitlab.com)
    "token": None,
    "comment_token": None,  # optional second identity used only for posting comments
    "owner": None,
    "repo": None,
    "pr_number": None,
    "comment_sender": None,
    "trigger_comment": None,
    "lgtm_threshold": 1,
    "lgtm_permissions": ["admin", "write"],
    "lgtm_review_event": "APPROVE",
    "robot_accounts": [],
    "merge_method": "auto",
    "self_check_name": "pr-cli",
    "use_git_cli_for_cherry_pick": False,
    "treat_skipped_as_passing": True,
    "debug_mode": False,
    "results_dir": None,  # None = results are dropped
    "request_timeout": 30,
    "log_level": "info",
}

DEFAULT_WEBHOOK_CONFIG: dict = {
    "listen_addr": ":8080",
    "webhook_path": "/webhook",
    "health_path": "/health",
    "metrics_path": "/metrics",
    "allowed_repos": [],  # "owner/name", "owner/*" or "*"; empty = allow all
    "require_signature": True,
    "webhook_secret": None,
    "async_processing": True,
    "worker_count": 10,
    "queue_size": 100,
    "fallback_to_sync": False,  # run inline instead of 503 when the queue is full
    "ingress_timeout": 5,
    "shutdown_timeout": 30,
    "rate_limit": {"enabled": True, "rpm": 100},
    # Slash commands owned by other tooling (e.g. CI bots); never reported as unknown.
    "passthrough_commands": ["test", "ok-to-test"],
    # GitHub pull_request lifecycle events trigger a workflow dispatch when enabled.
    "pr_events": {
        "enabled": False,
        "actions": ["opened", "synchronize", "reopened", "ready_for_review", "edited"],
        "workflow_file": None,
        "workflow_ref": "main",
        "workflow_inputs": {},
    },
}

_TRUE = {"1", "true", "yes", "on"}


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE


def _as_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


def load_config(config_path: str = ".prcli.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prcli.yml in the current directory
      3. CLI argument overrides
      4. Credentials from the environment (only when still unset)
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["webhook"] = copy.deepcopy(DEFAULT_WEBHOOK_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ConfigError(f"Configuration file {config_path} must contain a mapping.")
        webhook = file_config.pop("webhook", None) or {}
        config.update(file_config)
        rate_limit = webhook.pop("rate_limit", None) or {}
        pr_events = webhook.pop("pr_events", None) or {}
        config["webhook"].update(webhook)
        config["webhook"]["rate_limit"].update(rate_limit)
        config["webhook"]["pr_events"].update(pr_events)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    if not config.get("token"):
        platform_var = "GITLAB_TOKEN" if config.get("platform") == "gitlab" else "GITHUB_TOKEN"
        config["token"] = os.environ.get(platform_var) or os.environ.get("PR_TOKEN")
    if not config.get("comment_token"):
        config["comment_token"] = os.environ.get("PR_COMMENT_TOKEN")

    return config


def load_webhook_config(config: dict, environ: Optional[dict] = None) -> dict:
    """Overlay webhook environment variables onto ``config["webhook"]``.

    Returns the merged webhook mapping; ``config`` is updated in place.
    """
    env = os.environ if environ is None else environ
    webhook = config.setdefault("webhook", copy.deepcopy(DEFAULT_WEBHOOK_CONFIG))
    rate_limit = webhook.setdefault("rate_limit", dict(DEFAULT_WEBHOOK_CONFIG["rate_limit"]))

    if env.get("LISTEN_ADDR"):
        webhook["listen_addr"] = env["LISTEN_ADDR"]
    if env.get("WEBHOOK_PATH"):
        webhook["webhook_path"] = env["WEBHOOK_PATH"]
    if env.get("WEBHOOK_SECRET"):
        webhook["webhook_secret"] = env["WEBHOOK_SECRET"]
    elif env.get("WEBHOOK_SECRET_FILE"):
        secret_path = Path(env["WEBHOOK_SECRET_FILE"])
        try:
            webhook["webhook_secret"] = secret_path.read_text().strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read webhook secret file {secret_path}: {exc}") from exc
    if env.get("ALLOWED_REPOS"):
        webhook["allowed_repos"] = _as_list(env["ALLOWED_REPOS"])
    if env.get("REQUIRE_SIGNATURE"):
        webhook["require_signature"] = _as_bool(env["REQUIRE_SIGNATURE"])
    if env.get("ASYNC_PROCESSING"):
        webhook["async_processing"] = _as_bool(env["ASYNC_PROCESSING"])
    try:
        if env.get("WORKER_COUNT"):
            webhook["worker_count"] = int(env["WORKER_COUNT"])
        if env.get("QUEUE_SIZE"):
            webhook["queue_size"] = int(env["QUEUE_SIZE"])
        if env.get("RATE_LIMIT_REQUESTS"):
            rate_limit["rpm"] = int(env["RATE_LIMIT_REQUESTS"])
    except ValueError as exc:
        raise ConfigError(f"Invalid integer in webhook environment: {exc}") from exc
    if env.get("RATE_LIMIT_ENABLED"):
        rate_limit["enabled"] = _as_bool(env["RATE_LIMIT_ENABLED"])

    webhook["allowed_repos"] = _as_list(webhook.get("allowed_repos"))
    return webhook


def validate_config(config: dict, command_mode: bool = True) -> None:
    """Raise ConfigError when ``config`` cannot drive a command execution."""
    try:
        Platform(config.get("platform"))
    except ValueError:
        raise ConfigError(f"Unknown platform: {config.get('platform')!r}. Choose 'github' or 'gitlab'.") from None
    try:
        MergeMethod(config.get("merge_method"))
    except ValueError:
        raise ConfigError(f"Unknown merge method: {config.get('merge_method')!r}.") from None
    if int(config.get("lgtm_threshold") or 0) < 1:
        raise ConfigError("lgtm_threshold must be at least 1.")
    if not config.get("token"):
        raise ConfigError("No platform token configured. Set GITHUB_TOKEN / GITLAB_TOKEN or pass --token.")
    if not config.get("robot_accounts"):
        logger.warning(
            "robot_accounts is empty: only the token's own login and [bot] accounts are treated as robots, "
            "so comments from any other automation are handled as user commands."
        )

    if command_mode:
        missing = [k for k in ("owner", "repo", "pr_number", "comment_sender", "trigger_comment") if not config.get(k)]
        if missing:
            raise ConfigError(f"Missing required option(s): {', '.join(missing)}")


def validate_webhook_config(webhook: dict) -> None:
    if int(webhook.get("worker_count") or 0) < 1:
        raise ConfigError("worker_count must be at least 1.")
    if int(webhook.get("queue_size") or 0) < 1:
        raise ConfigError("queue_size must be at least 1.")
    if webhook.get("require_signature") and not webhook.get("webhook_secret"):
        raise ConfigError("require_signature is enabled but no webhook secret is configured.")
    rate_limit = webhook.get("rate_limit") or {}
    if rate_limit.get("enabled") and int(rate_limit.get("rpm") or 0) < 1:
        raise ConfigError("rate_limit.rpm must be at least 1 when rate limiting is enabled.")
    pr_events = webhook.get("pr_events") or {}
    if pr_events.get("enabled") and not pr_events.get("workflow_file"):
        raise ConfigError("pr_events.workflow_file is required when pull request events are enabled.")


@dataclass(frozen=True)
class CommandContext:
    """Everything one job needs to know, built once and passed down explicitly."""

    platform: Platform
    owner: str
    repo: str
    pr_number: int
    comment_sender: str
    trigger_comment: str
    token: str = field(repr=False)
    comment_token: str | None = field(default=None, repr=False)
    base_url: str | None = None
    lgtm_threshold: int = 1
    lgtm_permissions: tuple[str, ...] = ("admin", "write")
    lgtm_review_event: str = "APPROVE"
    robot_accounts: frozenset[str] = frozenset()
    merge_method: MergeMethod = MergeMethod.AUTO
    self_check_name: str = "pr-cli"
    use_git_cli_for_cherry_pick: bool = False
    treat_skipped_as_passing: bool = True
    debug_mode: bool = False
    results_dir: str | None = None
    request_timeout: float = 30
    event_id: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @classmethod
    def from_config(cls, config: dict, **overrides) -> CommandContext:
        values = {
            "platform": Platform(config.get("platform") or "github"),
            "owner": config.get("owner") or "",
            "repo": config.get("repo") or "",
            "pr_number": int(config.get("pr_number") or 0),
            "comment_sender": (config.get("comment_sender") or "").strip(),
            "trigger_comment": config.get("trigger_comment") or "",
            "token": config.get("token") or "",
            "comment_token": config.get("comment_token"),
            "base_url": config.get("base_url"),
            "lgtm_threshold": int(config.get("lgtm_threshold") or 1),
            "lgtm_permissions": tuple(_as_list(config.get("lgtm_permissions"))),
            "lgtm_review_event": config.get("lgtm_review_event") or "APPROVE",
            "robot_accounts": frozenset(a.lower() for a in _as_list(config.get("robot_accounts"))),
            "merge_method": MergeMethod(config.get("merge_method") or "auto"),
            "self_check_name": config.get("self_check_name") or "",
            "use_git_cli_for_cherry_pick": _as_bool(config.get("use_git_cli_for_cherry_pick", False)),
            "treat_skipped_as_passing": _as_bool(config.get("treat_skipped_as_passing", True)),
            "debug_mode": _as_bool(config.get("debug_mode", False)),
            "results_dir": config.get("results_dir"),
            "request_timeout": float(config.get("request_timeout") or 30),
        }
        values.update(overrides)
        return cls(**values)

    def for_event(self, event: Event) -> CommandContext:
        """Bind a service-wide context to a single webhook event."""
        return replace(
            self,
            platform=event.platform,
            owner=event.repository.owner,
            repo=event.repository.name,
            pr_number=event.pull_request.number,
            comment_sender=event.sender,
            trigger_comment=event.comment.body if event.comment else "",
            event_id=event.raw_id,
        )
