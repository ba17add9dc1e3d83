"""
Tests for the GitHub repository adapter.

run_tool is patched with a dispatcher keyed on the invoked command.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from kubepivot.adapters.vcs.github import (
    DEPLOY_KEY_TITLE,
    TOKEN_CREDENTIAL_HELPER,
    GitHubRepository,
    deploy_key_path,
)
from kubepivot.core.errors import RepositoryError

VIEW = json.dumps({
    "url": "https://github.com/acme/demo",
    "sshUrl": "git@github.com:acme/demo.git",
    "nameWithOwner": "acme/demo",
})


@pytest.fixture
def gh_cli(mock_result):
    """Dispatcher for gh / ssh-keygen / git; override entries per test."""
    responses = {
        "gh repo create": mock_result(stdout="https://github.com/acme/demo"),
        "gh repo view": mock_result(stdout=VIEW),
        "ssh-keygen": mock_result(),
        "gh repo deploy-key": mock_result(),
        "git remote": mock_result(),
        "git add": mock_result(),
        "git diff": mock_result(returncode=1),
        "git commit": mock_result(stdout="[main abc1234] msg"),
        "git rev-parse": mock_result(stdout="abc1234\n"),
        "git push": mock_result(stderr="To github.com:acme/demo.git"),
    }
    calls = []

    def dispatch(binary, *args, **kwargs):
        calls.append(((binary, *args), kwargs))
        # git -c name=value pairs come before the subcommand
        sub = list(args)
        while binary == "git" and sub[:1] == ["-c"]:
            sub = sub[2:]
        key = " ".join((binary, *sub[:2])) if binary == "gh" else " ".join((binary, *sub[:1]))
        if binary == "ssh-keygen":
            key = "ssh-keygen"
        if key == "gh repo create" and kwargs["cwd"].is_dir():
            (kwargs["cwd"] / args[2]).mkdir(exist_ok=True)
        return responses[key]

    dispatch.responses = responses
    dispatch.calls = calls
    dispatch.commands = lambda: [" ".join(c) for c, _ in calls]
    with patch("kubepivot.adapters.vcs.github.run_tool", side_effect=dispatch):
        yield dispatch


# ═══════════════════════════════════════════════════════════════════
#  create
# ═══════════════════════════════════════════════════════════════════


class TestCreate:
    def test_private(self, gh_cli, tmp_path):
        repo = GitHubRepository().create("demo", "ghp_x", private=True, workdir=tmp_path)

        assert repo.name == "demo"
        assert repo.url == "https://github.com/acme/demo"
        assert repo.clone_url == "git@github.com:acme/demo.git"
        assert repo.local_dir == tmp_path / "demo"
        assert repo.deploy_key == deploy_key_path(tmp_path, "demo")

        commands = gh_cli.commands()
        assert commands[0] == "gh repo create demo --private --clone"
        assert commands[1] == "gh repo view demo --json url,sshUrl,nameWithOwner"
        assert commands[2] == "git remote set-url origin https://github.com/acme/demo.git"
        assert commands[3].startswith("ssh-keygen -t ed25519")
        assert commands[4] == (
            f"gh repo deploy-key add {tmp_path / 'demo_rsa'}.pub "
            f"--repo acme/demo --title {DEPLOY_KEY_TITLE}"
        )

    def test_public(self, gh_cli, tmp_path):
        repo = GitHubRepository().create("demo", "ghp_x", private=False, workdir=tmp_path)

        assert repo.deploy_key is None
        assert repo.clone_url == "https://github.com/acme/demo.git"
        assert "gh repo create demo --public --clone" in gh_cli.commands()
        assert not any(c.startswith("ssh-keygen") for c in gh_cli.commands())

    def test_token_passed_as_env(self, gh_cli, tmp_path):
        GitHubRepository().create("demo", "ghp_x", private=False, workdir=tmp_path)
        _, kwargs = gh_cli.calls[0]
        assert kwargs["env"] == {"GH_TOKEN": "ghp_x"}
        assert kwargs["cwd"] == tmp_path

    def test_token_required(self, gh_cli, tmp_path):
        with pytest.raises(RepositoryError, match="token is required"):
            GitHubRepository().create("demo", "", private=True, workdir=tmp_path)
        assert gh_cli.calls == []

    def test_name_taken(self, gh_cli, mock_result, tmp_path):
        gh_cli.responses["gh repo create"] = mock_result(
            returncode=1, stderr="GraphQL: Name already exists on this account"
        )
        with pytest.raises(RepositoryError, match="Cannot create repository 'demo'.*already exists") as exc:
            GitHubRepository().create("demo", "ghp_x", private=True, workdir=tmp_path)
        assert not exc.value.retryable

    def test_unexpected_view_output(self, gh_cli, mock_result, tmp_path):
        gh_cli.responses["gh repo view"] = mock_result(stdout="not json")
        with pytest.raises(RepositoryError, match="Unexpected 'gh repo view' output"):
            GitHubRepository().create("demo", "ghp_x", private=True, workdir=tmp_path)

    def test_clone_missing(self, gh_cli, tmp_path):
        with pytest.raises(RepositoryError, match="did not clone 'demo'"):
            GitHubRepository().create("demo", "ghp_x", private=True, workdir=tmp_path / "elsewhere")

    def test_origin_points_at_https(self, gh_cli, tmp_path):
        GitHubRepository().create("demo", "ghp_x", private=True, workdir=tmp_path)
        (command, kwargs) = gh_cli.calls[2]
        assert command == ("git", "remote", "set-url", "origin", "https://github.com/acme/demo.git")
        assert kwargs["cwd"] == tmp_path / "demo"

    def test_origin_failure(self, gh_cli, mock_result, tmp_path):
        gh_cli.responses["git remote"] = mock_result(returncode=2, stderr="No such remote 'origin'")
        with pytest.raises(RepositoryError, match="No such remote"):
            GitHubRepository().create("demo", "ghp_x", private=False, workdir=tmp_path)

    def test_deploy_key_failure(self, gh_cli, mock_result, tmp_path):
        gh_cli.responses["gh repo deploy-key"] = mock_result(returncode=1, stderr="HTTP 404")
        with pytest.raises(RepositoryError, match="Cannot add deploy key to 'acme/demo'"):
            GitHubRepository().create("demo", "ghp_x", private=True, workdir=tmp_path)


# ═══════════════════════════════════════════════════════════════════
#  commit_and_push
# ═══════════════════════════════════════════════════════════════════


class TestCommitAndPush:
    def test_commits_and_pushes(self, gh_cli, tmp_path):
        commit = GitHubRepository().commit_and_push(
            tmp_path, "Initial state of cluster demo", token="ghp_x"
        )

        assert commit == "abc1234"
        commands = gh_cli.commands()
        assert commands == [
            "git add -A",
            "git diff --cached --quiet",
            "git commit -m Initial state of cluster demo",
            "git rev-parse --short HEAD",
            "git -c credential.helper= -c credential.helper="
            f"{TOKEN_CREDENTIAL_HELPER} push --set-upstream origin HEAD",
        ]

    def test_push_authenticates_with_token(self, gh_cli, tmp_path):
        GitHubRepository().commit_and_push(tmp_path, "msg", token="ghp_SECRET")

        (command, kwargs) = gh_cli.calls[-1]
        assert "push" in command
        assert kwargs["env"] == {"GH_TOKEN": "ghp_SECRET", "GIT_TERMINAL_PROMPT": "0"}
        assert not any("ghp_SECRET" in arg for arg in command)
        # machine-wide helpers are reset before ours is added
        assert command[1:5] == (
            "-c", "credential.helper=", "-c", f"credential.helper={TOKEN_CREDENTIAL_HELPER}"
        )

    def test_local_git_steps_get_no_token(self, gh_cli, tmp_path):
        GitHubRepository().commit_and_push(tmp_path, "msg", token="ghp_SECRET")
        for _, kwargs in gh_cli.calls[:-1]:
            assert "env" not in kwargs

    def test_token_required(self, gh_cli, tmp_path):
        with pytest.raises(RepositoryError, match="token is required to push"):
            GitHubRepository().commit_and_push(tmp_path, "msg", token="")
        assert gh_cli.calls == []

    def test_nothing_to_commit_still_pushes(self, gh_cli, mock_result, tmp_path):
        gh_cli.responses["git diff"] = mock_result(returncode=0)
        GitHubRepository().commit_and_push(tmp_path, "msg", token="ghp_x")

        commands = gh_cli.commands()
        assert not any(c.startswith("git commit") for c in commands)
        assert "push --set-upstream origin HEAD" in commands[-1]

    def test_message_required(self, gh_cli, tmp_path):
        with pytest.raises(RepositoryError, match="Commit message is required"):
            GitHubRepository().commit_and_push(tmp_path, "  ", token="ghp_x")
        assert gh_cli.calls == []

    def test_commit_failure(self, gh_cli, mock_result, tmp_path):
        gh_cli.responses["git commit"] = mock_result(returncode=1, stderr="Author identity unknown")
        with pytest.raises(RepositoryError, match="Author identity unknown"):
            GitHubRepository().commit_and_push(tmp_path, "msg", token="ghp_x")
        assert not any(" push " in c for c in gh_cli.commands())

    def test_transient_push_failure_is_retryable(self, gh_cli, mock_result, tmp_path):
        gh_cli.responses["git push"] = mock_result(
            returncode=128, stderr="fatal: unable to access: Could not resolve host: github.com"
        )
        with pytest.raises(RepositoryError, match="Push failed") as exc:
            GitHubRepository().commit_and_push(tmp_path, "msg", token="ghp_x")
        assert exc.value.retryable

    def test_rejected_push_is_terminal(self, gh_cli, mock_result, tmp_path):
        gh_cli.responses["git push"] = mock_result(
            returncode=1, stderr="! [remote rejected] HEAD -> main (protected branch hook declined)"
        )
        with pytest.raises(RepositoryError) as exc:
            GitHubRepository().commit_and_push(tmp_path, "msg", token="ghp_x")
        assert not exc.value.retryable
