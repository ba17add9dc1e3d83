"""
GitHub adapter — the remote GitOps repository.

Uses the gh and git CLIs, never raw API calls.  Private repositories
get a read-only ed25519 deploy key so the in-cluster GitOps controller
can clone over SSH; public repositories are cloned over HTTPS.  kubepivot
itself always pushes over HTTPS, authenticated with the user's token.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from kubepivot.adapters.base import RepositoryAdapter
from kubepivot.adapters.shell.command import (
    is_transient,
    require_ok,
    run_tool,
    tool_available,
)
from kubepivot.core.errors import RepositoryError, ToolError, reraise_as
from kubepivot.core.models.cluster import Repository

logger = logging.getLogger(__name__)

DEPLOY_KEY_TITLE = "kubepivot"

# Answers git's credential "get" from GH_TOKEN in the environment, so the
# token never appears on a command line.  The empty helper first drops any
# helpers configured on the machine.
TOKEN_CREDENTIAL_HELPER = (
    '!f() { test "$1" = get && echo username=x-access-token && echo "password=$GH_TOKEN"; }; f'
)


def deploy_key_path(workdir: Path, name: str) -> Path:
    """Private half of the deploy key for repository ``name``."""
    return workdir / f"{name}_rsa"


class GitHubRepository(RepositoryAdapter):
    """Create, populate and push the GitOps repository on GitHub."""

    def __init__(self, timeout: int = 120):
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "github"

    def is_available(self) -> bool:
        return tool_available("gh") and tool_available("git")

    # ── Runners ──────────────────────────────────────────────────

    def _gh(self, *args: str, token: str, cwd: Path) -> str:
        result = run_tool(
            "gh", *args,
            env={"GH_TOKEN": token},
            cwd=cwd,
            timeout=self._timeout,
        )
        return require_ok(result, f"gh {' '.join(args[:2])}")

    def _git(self, *args: str, cwd: Path, timeout: int | None = None):
        return run_tool("git", *args, cwd=cwd, timeout=timeout or self._timeout)

    # ── Contract ─────────────────────────────────────────────────

    def create(
        self,
        name: str,
        token: str,
        *,
        private: bool,
        workdir: Path,
    ) -> Repository:
        if not token:
            raise RepositoryError("A GitHub token is required to create the repository")

        visibility = "--private" if private else "--public"
        logger.info("Creating %s repository '%s'", visibility.lstrip("-"), name)

        try:
            self._gh("repo", "create", name, visibility, "--clone", token=token, cwd=workdir)
            info = json.loads(
                self._gh(
                    "repo", "view", name, "--json", "url,sshUrl,nameWithOwner",
                    token=token,
                    cwd=workdir,
                )
            )
        except ToolError as e:
            raise reraise_as(e, RepositoryError, f"Cannot create repository '{name}'") from e
        except ValueError as e:
            raise RepositoryError(f"Unexpected 'gh repo view' output for '{name}': {e}") from e

        local_dir = workdir / name
        if not local_dir.is_dir():
            raise RepositoryError(f"gh did not clone '{name}' into {workdir}")

        # Pushes go over HTTPS with the token, whatever gh's git_protocol is
        url = info["url"]
        try:
            require_ok(
                self._git("remote", "set-url", "origin", f"{url}.git", cwd=local_dir),
                "git remote set-url",
            )
        except ToolError as e:
            raise reraise_as(e, RepositoryError, f"Cannot configure origin for '{name}'") from e

        deploy_key = None
        if private:
            deploy_key = self._add_deploy_key(info["nameWithOwner"], token, workdir, name)

        return Repository(
            name=name,
            url=url,
            clone_url=info["sshUrl"] if private else f"{url}.git",
            local_dir=local_dir,
            deploy_key=deploy_key,
        )

    def _add_deploy_key(self, slug: str, token: str, workdir: Path, name: str) -> Path:
        """Generate an ed25519 key pair and register its public half read-only."""
        key = deploy_key_path(workdir, name)
        try:
            require_ok(
                run_tool(
                    "ssh-keygen", "-t", "ed25519", "-N", "", "-q",
                    "-C", f"{DEPLOY_KEY_TITLE}@{name}",
                    "-f", str(key),
                    timeout=30,
                ),
                "ssh-keygen",
            )
            self._gh(
                "repo", "deploy-key", "add", f"{key}.pub",
                "--repo", slug,
                "--title", DEPLOY_KEY_TITLE,
                token=token,
                cwd=workdir,
            )
        except ToolError as e:
            raise reraise_as(e, RepositoryError, f"Cannot add deploy key to '{slug}'") from e

        logger.debug("Deploy key registered on %s", slug)
        return key

    def commit_and_push(self, repo_dir: Path, message: str, *, token: str) -> str:
        if not message.strip():
            raise RepositoryError("Commit message is required")
        if not token:
            raise RepositoryError("A GitHub token is required to push")

        try:
            require_ok(self._git("add", "-A", cwd=repo_dir), "git add")

            # Exit 0 from diff --quiet means nothing is staged.
            if self._git("diff", "--cached", "--quiet", cwd=repo_dir).returncode != 0:
                require_ok(self._git("commit", "-m", message, cwd=repo_dir), "git commit")
            else:
                logger.info("Nothing to commit in %s", repo_dir.name)

            commit = require_ok(
                self._git("rev-parse", "--short", "HEAD", cwd=repo_dir), "git rev-parse"
            ).strip()
        except ToolError as e:
            raise reraise_as(e, RepositoryError, f"Cannot commit in {repo_dir.name}") from e

        self._push(repo_dir, token)
        return commit

    def _push(self, repo_dir: Path, token: str) -> None:
        try:
            result = run_tool(
                "git",
                "-c", "credential.helper=",
                "-c", f"credential.helper={TOKEN_CREDENTIAL_HELPER}",
                "push", "--set-upstream", "origin", "HEAD",
                env={"GH_TOKEN": token, "GIT_TERMINAL_PROMPT": "0"},
                cwd=repo_dir,
                timeout=self._timeout,
            )
        except ToolError as e:
            raise reraise_as(e, RepositoryError, "Push failed") from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            raise RepositoryError(f"Push failed: {stderr}", retryable=is_transient(stderr))
        logger.info("Pushed %s to origin", repo_dir.name)
