"""Bare mirrors and worktree checkouts of remote repositories.

Layout under the store root::

    <root>/repos/<sha256(url)>-<name>            bare mirror (``clone --mirror``)
    <root>/repos/<sha256(url)>-<name>/rev-<hash>  worktree for one commit
    <link path>                                   symlink to the current worktree

The link is replaced by creating a temporary symlink next to it and renaming
it over the old one, so readers of the link see either the old tree or the
new tree and never a missing path.  A worktree is deleted once no link in
the checkouts directory (or next to the link that moved) points at it.

The store assumes it is the only writer under its root.  Nothing here
retries; callers decide what to do with a GitProcessError.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from compare_revisions.errors import GitProcessError, RefNotFoundError
from compare_revisions.git.address import RepoAddress, mirror_path
from compare_revisions.git.models import Branch, Hash, RevSpec, Revision
from compare_revisions.git.runner import GitRunner, SubprocessGitRunner
from compare_revisions.observability.logging import get_logger

_log = get_logger("git.store")

# Unit separator between fields of one log line.
_FIELD_SEP = "\x1f"
_LOG_FORMAT = "--format=%H%x1f%an%x1f%cI%x1f%s"

_REF_NOT_FOUND_MARKERS = (
    "unknown revision",
    "bad revision",
    "ambiguous argument",
    "not a valid object name",
)


class GitStore:
    """Owns every mirror and worktree under *root*."""

    def __init__(self, root: Path, runner: GitRunner | None = None) -> None:
        self.root = root.absolute()
        self._runner: GitRunner = runner or SubprocessGitRunner()

    def mirror_path(self, address: RepoAddress) -> Path:
        return mirror_path(self.root, address)

    def checkout_path(self, name: str) -> Path:
        """Path of the checkout link called *name* under the store root."""
        return self.root / "checkouts" / name

    # ------------------------------------------------------------------
    # Mirrors
    # ------------------------------------------------------------------

    async def sync(self, address: RepoAddress, local_path: Path | None = None) -> Path:
        """Clone *address* as a bare mirror, or fetch into the existing one.

        Returns the mirror path.
        """
        path = local_path or self.mirror_path(address)
        if path.exists():
            _log.debug("updating mirror", url=address.to_text(), path=str(path))
            await self._runner.run(["fetch", "--all", "--prune"], cwd=path)
        else:
            _log.info("cloning mirror", url=address.to_text(), path=str(path))
            path.parent.mkdir(parents=True, exist_ok=True)
            await self._runner.run(["clone", "--mirror", address.to_text(), str(path)])
        return path

    async def resolve_branch_head(self, mirror: Path, branch: Branch | str) -> Hash:
        """Return the commit at the tip of *branch*.

        Raises:
            RefNotFoundError: *branch* does not exist in the mirror.
            GitProcessError:  any other git failure.
        """
        try:
            out, _ = await self._runner.run(["rev-list", "-n1", branch], cwd=mirror)
        except RefNotFoundError:
            raise
        except GitProcessError as exc:
            if _is_missing_ref(exc.stderr):
                raise RefNotFoundError(exc.command, exc.exit_code, exc.stdout, exc.stderr, exc.cwd) from exc
            raise
        commit = out.strip()
        if not commit:
            raise RefNotFoundError(
                command=f"git rev-list -n1 {branch}",
                exit_code=0,
                stdout=out,
                stderr=f"no commit found for {branch}",
                cwd=str(mirror),
            )
        return Hash(commit)

    # ------------------------------------------------------------------
    # Checkouts
    # ------------------------------------------------------------------

    async def ensure_checkout(self, mirror: Path, branch: Branch | str, link_path: Path) -> Path:
        """Point *link_path* at a worktree of the current head of *branch*.

        Creates the worktree if this commit has not been checked out yet,
        swaps the link, and removes the worktree the link used to point at
        unless another checkout link still resolves to it.
        Returns the worktree path.
        """
        commit = await self.resolve_branch_head(mirror, branch)
        worktree = mirror / f"rev-{commit}"

        if worktree.exists():
            _log.debug("worktree already present", worktree=str(worktree))
        else:
            await self._runner.run(["worktree", "add", str(worktree), commit], cwd=mirror)
            _log.info("added worktree", worktree=str(worktree), branch=branch, commit=commit)

        previous = swap_symlink(link_path, worktree)
        if previous is not None and previous != worktree:
            holders = self._links_to(previous, link_path.parent)
            if holders:
                _log.debug("worktree still linked", worktree=str(previous), links=[str(p) for p in holders])
            else:
                await self._remove_worktree(previous)
        return worktree

    def _links_to(self, worktree: Path, *extra_dirs: Path) -> list[Path]:
        """Checkout links that currently resolve to *worktree*."""
        holders = []
        for directory in {self.root / "checkouts", *extra_dirs}:
            if not directory.is_dir():
                continue
            for entry in directory.iterdir():
                if not entry.is_symlink():
                    continue
                if Path(os.path.normpath(directory / os.readlink(entry))) == worktree:
                    holders.append(entry)
        return holders

    async def _remove_worktree(self, worktree: Path) -> None:
        # The worktree belongs to the mirror it sits in, which need not be
        # the mirror the link points into now.
        mirror = worktree.parent
        if worktree.exists():
            await asyncio.to_thread(shutil.rmtree, worktree)
        if mirror.is_dir():
            await self._runner.run(["worktree", "prune"], cwd=mirror)
        _log.info("removed worktree", worktree=str(worktree))

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def log(
        self,
        mirror: Path,
        start: RevSpec | str,
        end: RevSpec | str,
        paths: Sequence[str] = (),
    ) -> list[Revision]:
        """First-parent log of ``start..end``, newest first."""
        args = ["log", "--first-parent", _LOG_FORMAT, f"{start}..{end}"]
        if paths:
            args += ["--", *paths]
        out, _ = await self._runner.run(args, cwd=mirror)
        return parse_log(out)

    async def log_since(
        self,
        mirror: Path,
        branch: Branch | str,
        since: datetime,
        paths: Sequence[str] = (),
    ) -> list[Revision]:
        """First-parent log of *branch* restricted to commits after *since*."""
        if since.tzinfo is None:
            since = since.replace(tzinfo=UTC)
        stamp = since.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S +0000")
        args = ["log", "--first-parent", _LOG_FORMAT, f"--since={stamp}", branch]
        if paths:
            args += ["--", *paths]
        out, _ = await self._runner.run(args, cwd=mirror)
        return parse_log(out)


def swap_symlink(link_path: Path, target: Path) -> Path | None:
    """Atomically make *link_path* a relative symlink to *target*.

    Returns the absolute path the link pointed at before the swap, or None
    if there was no link or it already pointed at *target*.
    """
    base = link_path.parent
    base.mkdir(parents=True, exist_ok=True)
    relative = os.path.relpath(target, base)

    try:
        current: str | None = os.readlink(link_path)
    except FileNotFoundError:
        current = None

    if current == relative:
        return None

    tmp_link = base / f".{link_path.name}.tmp-{uuid.uuid4().hex}"
    os.symlink(relative, tmp_link)
    try:
        os.replace(tmp_link, link_path)
    except OSError:
        tmp_link.unlink(missing_ok=True)
        raise
    _log.debug("swapped symlink", link=str(link_path), target=relative, previous=current)

    if current is None:
        return None
    return Path(os.path.normpath(base / current))


def parse_log(output: str) -> list[Revision]:
    revisions = []
    for line in output.splitlines():
        if not line.strip():
            continue
        commit, author, committed, subject = line.split(_FIELD_SEP, 3)
        revisions.append(
            Revision(
                hash=commit,
                author=author,
                committed_at=datetime.fromisoformat(committed),
                subject=subject,
            )
        )
    return revisions


def _is_missing_ref(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _REF_NOT_FOUND_MARKERS)
