"""Tests for configuration loading and validation."""

import logging

import pytest

from prcli_core.config import (
    CommandContext,
    load_config,
    load_webhook_config,
    validate_config,
    validate_webhook_config,
)
from prcli_core.errors import ConfigError
from prcli_core.models import Comment, Event, EventKind, MergeMethod, Platform, PRState, PullRequest, Repository


@pytest.fixture(autouse=True)
def _no_token_env(monkeypatch):
    for var in ("GITHUB_TOKEN", "GITLAB_TOKEN", "PR_TOKEN", "PR_COMMENT_TOKEN"):
        monkeypatch.delenv(var, raising=False)


def _command_config(**overrides):
    config = load_config("nonexistent.yml")
    config.update(
        token="tok",
        owner="owner",
        repo="repo",
        pr_number=1,
        comment_sender="alice",
        trigger_comment="/lgtm",
    )
    config.update(overrides)
    return config


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["platform"] == "github"
    assert config["lgtm_threshold"] == 1
    assert config["lgtm_permissions"] == ["admin", "write"]
    assert config["merge_method"] == "auto"
    assert config["results_dir"] is None
    assert config["webhook"]["worker_count"] == 10
    assert config["webhook"]["pr_events"]["enabled"] is False


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".prcli.yml"
    cfg.write_text("lgtm_threshold: 2\nmerge_method: squash\n")
    config = load_config(config_path=str(cfg))
    assert config["lgtm_threshold"] == 2
    assert config["merge_method"] == "squash"


def test_nested_webhook_sections_merge(tmp_path):
    cfg = tmp_path / ".prcli.yml"
    cfg.write_text("webhook:\n  queue_size: 5\n  rate_limit:\n    rpm: 10\n  pr_events:\n    workflow_file: ci.yml\n")
    webhook = load_config(config_path=str(cfg))["webhook"]
    assert webhook["queue_size"] == 5
    assert webhook["worker_count"] == 10
    assert webhook["rate_limit"] == {"enabled": True, "rpm": 10}
    assert webhook["pr_events"]["workflow_file"] == "ci.yml"
    assert webhook["pr_events"]["workflow_ref"] == "main"


def test_non_mapping_file_rejected(tmp_path):
    cfg = tmp_path / ".prcli.yml"
    cfg.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(config_path=str(cfg))


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".prcli.yml"
    cfg.write_text("merge_method: squash\n")
    config = load_config(config_path=str(cfg), cli_overrides={"merge_method": "rebase", "owner": None})
    assert config["merge_method"] == "rebase"
    assert config["owner"] is None


def test_token_from_environment(monkeypatch):
    monkeypatch.setenv("GITLAB_TOKEN", "gl-tok")
    monkeypatch.setenv("PR_COMMENT_TOKEN", "c-tok")
    config = load_config("nonexistent.yml", cli_overrides={"platform": "gitlab"})
    assert config["token"] == "gl-tok"
    assert config["comment_token"] == "c-tok"


def test_pr_token_fallback(monkeypatch):
    monkeypatch.setenv("PR_TOKEN", "generic")
    assert load_config("nonexistent.yml")["token"] == "generic"


# ---------------------------------------------------------------------------
# load_webhook_config
# ---------------------------------------------------------------------------


class TestWebhookEnvironment:
    def test_environment_overlays(self):
        config = load_config("nonexistent.yml")
        webhook = load_webhook_config(
            config,
            environ={
                "LISTEN_ADDR": ":9000",
                "WEBHOOK_SECRET": "s3cret",
                "ALLOWED_REPOS": "org/*, other/repo",
                "ASYNC_PROCESSING": "false",
                "WORKER_COUNT": "4",
                "RATE_LIMIT_REQUESTS": "30",
            },
        )
        assert webhook is config["webhook"]
        assert webhook["listen_addr"] == ":9000"
        assert webhook["webhook_secret"] == "s3cret"
        assert webhook["allowed_repos"] == ["org/*", "other/repo"]
        assert webhook["async_processing"] is False
        assert webhook["worker_count"] == 4
        assert webhook["rate_limit"]["rpm"] == 30

    def test_secret_file(self, tmp_path):
        secret = tmp_path / "secret"
        secret.write_text("from-file\n")
        webhook = load_webhook_config(load_config("nonexistent.yml"), environ={"WEBHOOK_SECRET_FILE": str(secret)})
        assert webhook["webhook_secret"] == "from-file"

    def test_missing_secret_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read webhook secret file"):
            load_webhook_config(load_config("nonexistent.yml"), environ={"WEBHOOK_SECRET_FILE": str(tmp_path / "x")})

    def test_bad_integer(self):
        with pytest.raises(ConfigError):
            load_webhook_config(load_config("nonexistent.yml"), environ={"QUEUE_SIZE": "lots"})


# ---------------------------------------------------------------------------
# validation
# ---------------------------------------------------------------------------


class TestValidateConfig:
    def test_valid(self):
        validate_config(_command_config())

    def test_unknown_platform(self):
        with pytest.raises(ConfigError, match="Unknown platform"):
            validate_config(_command_config(platform="bitbucket"))

    def test_unknown_merge_method(self):
        with pytest.raises(ConfigError, match="Unknown merge method"):
            validate_config(_command_config(merge_method="octopus"))

    def test_threshold_must_be_positive(self):
        with pytest.raises(ConfigError):
            validate_config(_command_config(lgtm_threshold=0))

    def test_missing_token(self):
        with pytest.raises(ConfigError, match="token"):
            validate_config(_command_config(token=None))

    def test_missing_command_fields(self):
        with pytest.raises(ConfigError, match="comment_sender, trigger_comment"):
            validate_config(_command_config(comment_sender=None, trigger_comment=""))

    def test_service_mode_needs_no_command_fields(self):
        validate_config(_command_config(owner=None, pr_number=None), command_mode=False)

    def test_warns_without_robot_accounts(self, caplog):
        with caplog.at_level(logging.WARNING, logger="prcli_core.config"):
            validate_config(_command_config())
        assert "robot_accounts is empty" in caplog.text

    def test_no_warning_with_robot_accounts(self, caplog):
        with caplog.at_level(logging.WARNING, logger="prcli_core.config"):
            validate_config(_command_config(robot_accounts=["ci-bot"]))
        assert "robot_accounts" not in caplog.text


class TestValidateWebhookConfig:
    def _webhook(self, **overrides):
        webhook = load_config("nonexistent.yml")["webhook"]
        webhook["webhook_secret"] = "s"
        webhook.update(overrides)
        return webhook

    def test_valid(self):
        validate_webhook_config(self._webhook())

    def test_signature_requires_secret(self):
        with pytest.raises(ConfigError, match="secret"):
            validate_webhook_config(self._webhook(webhook_secret=None))

    def test_signature_disabled_without_secret(self):
        validate_webhook_config(self._webhook(webhook_secret=None, require_signature=False))

    def test_pr_events_need_workflow(self):
        webhook = self._webhook()
        webhook["pr_events"]["enabled"] = True
        with pytest.raises(ConfigError, match="workflow_file"):
            validate_webhook_config(webhook)

    def test_worker_count(self):
        with pytest.raises(ConfigError):
            validate_webhook_config(self._webhook(worker_count=0))


# ---------------------------------------------------------------------------
# CommandContext
# ---------------------------------------------------------------------------


class TestCommandContext:
    def test_from_config(self):
        context = CommandContext.from_config(
            _command_config(lgtm_permissions="admin, maintain", robot_accounts=["CI-Bot"], merge_method="squash")
        )
        assert context.platform == Platform.GITHUB
        assert context.lgtm_permissions == ("admin", "maintain")
        assert context.robot_accounts == frozenset({"ci-bot"})
        assert context.merge_method == MergeMethod.SQUASH
        assert context.full_name == "owner/repo"
        assert "tok" not in repr(context)

    def test_for_event(self):
        base = CommandContext.from_config(_command_config(owner=None, repo=None, pr_number=None))
        event = Event(
            platform=Platform.GITLAB,
            kind=EventKind.ISSUE_COMMENT,
            repository=Repository("group/sub", "proj"),
            pull_request=PullRequest(number=7, state=PRState.OPEN, author="dave"),
            sender="erin",
            raw_id="delivery-1",
            comment=Comment(id=1, author="erin", body="/lgtm"),
        )
        context = base.for_event(event)
        assert context.platform == Platform.GITLAB
        assert context.full_name == "group/sub/proj"
        assert context.pr_number == 7
        assert context.comment_sender == "erin"
        assert context.trigger_comment == "/lgtm"
        assert context.event_id == "delivery-1"
        assert context.token == "tok"
