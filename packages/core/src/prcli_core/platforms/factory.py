from __future__ import annotations

from typing import TYPE_CHECKING

from prcli_core.models import Platform

if TYPE_CHECKING:
    from prcli_core.config import CommandContext
    from prcli_core.platforms.base import BaseClient


def create_client(context: CommandContext) -> BaseClient:
    """Build the platform client for ``context``."""
    kwargs = dict(
        owner=context.owner,
        repo=context.repo,
        pr_number=context.pr_number,
        token=context.token,
        comment_token=context.comment_token,
        base_url=context.base_url,
        timeout=context.request_timeout,
    )
    if context.platform == Platform.GITHUB:
        from prcli_core.platforms.github import GitHubClient

        return GitHubClient(**kwargs)
    if context.platform == Platform.GITLAB:
        from prcli_core.platforms.gitlab import GitLabClient

        return GitLabClient(**kwargs)
    raise ValueError(f"Unknown platform: {context.platform!r}. Choose 'github' or 'gitlab'.")
