"""Platform token resolution with gh CLI fallback.

Resolution order (stops at first success):
  1. GITHUB_TOKEN / GITLAB_TOKEN, then PR_TOKEN
  2. `gh auth token` (GitHub only; works after `gh auth login`)
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def resolve_token(platform: str = "github") -> str | None:
    """Return a platform token or None if no valid source is available.

    Never raises; callers should check for None and emit a UsageError.
    """
    platform_var = "GITLAB_TOKEN" if platform == "gitlab" else "GITHUB_TOKEN"
    token = os.environ.get(platform_var) or os.environ.get("PR_TOKEN")
    if token:
        return token

    if platform != "github":
        return None

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            gh_token = result.stdout.strip()
            if gh_token:
                logger.debug("Resolved GitHub token via gh CLI session.")
                return gh_token
    except (FileNotFoundError, subprocess.TimeoutExpired):
        logger.debug("gh CLI not available for token resolution.")

    return None
