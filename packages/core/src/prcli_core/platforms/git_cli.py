"""Cherry-pick through a local git checkout instead of the platform API.

Used when ``use_git_cli_for_cherry_pick`` is set: the git CLI performs a real
three-way merge, which the API-only path cannot. Requires ``git`` on PATH.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
from urllib.parse import urlsplit, urlunsplit

from prcli_core.errors import CherryPickError

logger = logging.getLogger(__name__)

_GIT_TIMEOUT = 300


def repository_clone_url(pr_url: str) -> str:
    """Derive the HTTPS clone URL from a PR/MR web URL."""
    for marker in ("/-/merge_requests/", "/pull/"):
        if marker in pr_url:
            return pr_url.split(marker, 1)[0] + ".git"
    raise CherryPickError(f"cannot derive repository URL from {pr_url!r}")


class GitCLICherryPicker:
    def __init__(self, repo_url: str, token: str, user_name: str = "prcli", user_email: str = "prcli@users.noreply"):
        self.repo_url = repo_url
        self.token = token
        self.user_name = user_name
        self.user_email = user_email

    def _authenticated_url(self) -> str:
        parts = urlsplit(self.repo_url)
        netloc = f"x-access-token:{self.token}@{parts.hostname}"
        if parts.port:
            netloc += f":{parts.port}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    def _sanitize(self, text: str) -> str:
        return text.replace(self.token, "***") if self.token else text

    def _git(self, *args: str, cwd: str | None = None) -> str:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=_GIT_TIMEOUT,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
            raise CherryPickError(f"git {args[0]} could not run: {self._sanitize(str(exc))}") from exc
        if result.returncode != 0:
            raise CherryPickError(f"git {args[0]} failed: {self._sanitize(result.stderr.strip() or result.stdout.strip())}")
        return result.stdout.strip()

    def apply(self, commit_sha: str, branch: str) -> str:
        """Cherry-pick ``commit_sha`` onto ``branch`` and push; return the new HEAD."""
        with tempfile.TemporaryDirectory(prefix="prcli-cherry-pick-") as workdir:
            self._git("clone", "--quiet", "--branch", branch, self._authenticated_url(), workdir)
            self._git("config", "user.name", self.user_name, cwd=workdir)
            self._git("config", "user.email", self.user_email, cwd=workdir)
            self._git("fetch", "--quiet", "origin", commit_sha, cwd=workdir)

            parents = self._git("rev-list", "--parents", "-n", "1", commit_sha, cwd=workdir).split()[1:]
            pick = ["cherry-pick", "-x"]
            if len(parents) > 1:
                pick += ["-m", "1"]
            try:
                self._git(*pick, commit_sha, cwd=workdir)
            except CherryPickError as exc:
                logger.warning("Cherry-pick of %s onto %s failed, aborting", commit_sha[:7], branch)
                subprocess.run(["git", "cherry-pick", "--abort"], cwd=workdir, capture_output=True, timeout=_GIT_TIMEOUT)
                if "empty" in str(exc):
                    raise CherryPickError(f"commit {commit_sha[:7]} is already present on {branch}") from exc
                raise

            self._git("push", "--quiet", "origin", f"HEAD:{branch}", cwd=workdir)
            return self._git("rev-parse", "HEAD", cwd=workdir)
