"""Shared fixtures for compare-revisions integration tests.

Provides throwaway "remote" repositories built with the real git binary so
integration tests can exercise mirrors, worktrees and history without
touching the network.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from compare_revisions.git.address import RepoAddress, parse_address
from compare_revisions.git.runner import SubprocessGitRunner
from compare_revisions.git.store import GitStore

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate git from the user's configuration."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Jane Doe")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "jane@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Jane Doe")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "jane@example.com")
    monkeypatch.delenv("GIT_DIR", raising=False)
    monkeypatch.delenv("GIT_WORK_TREE", raising=False)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class RemoteRepo:
    """A non-bare repository on disk that tests commit into."""

    def __init__(self, path: Path) -> None:
        self.path = path
        path.mkdir(parents=True)
        self.git("init", "-q")
        self.git("symbolic-ref", "HEAD", "refs/heads/master")

    @property
    def url(self) -> str:
        return f"file://{self.path}"

    @property
    def address(self) -> RepoAddress:
        return parse_address(self.url)

    def git(self, *args: str, env: dict[str, str] | None = None) -> str:
        result = subprocess.run(
            ["git", "-c", "commit.gpgsign=false", *args],
            cwd=self.path,
            check=True,
            capture_output=True,
            text=True,
            env=env,
        )
        return result.stdout.strip()

    def commit(self, message: str, files: dict[str, str] | None = None, date: str | None = None) -> str:
        """Write *files*, commit everything and return the new commit hash."""
        for name, content in (files or {}).items():
            target = self.path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        self.git("add", "-A")
        env = None
        if date is not None:
            env = {**os.environ, "GIT_AUTHOR_DATE": date, "GIT_COMMITTER_DATE": date}
        self.git("commit", "-q", "--allow-empty", "-m", message, env=env)
        return self.git("rev-parse", "HEAD")

    def short(self, commit: str) -> str:
        return self.git("rev-parse", "--short=7", commit)


@pytest.fixture()
def make_repo(tmp_path: Path) -> Callable[[str], RemoteRepo]:
    def _make(name: str) -> RemoteRepo:
        return RemoteRepo(tmp_path / "remotes" / name)

    return _make


@pytest.fixture()
def git_store(tmp_path: Path) -> GitStore:
    return GitStore(tmp_path / "data", runner=SubprocessGitRunner(timeout=60))
