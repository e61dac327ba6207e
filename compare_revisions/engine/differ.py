"""The reconciliation loop.

Every poll interval the ClusterDiffer syncs the config repository, checks
out the configured branch, diffs the images declared by the source and
target environments, resolves each changed image to a range of commits in
its own repository, and publishes the result as a new ClusterSnapshot.

A cycle that cannot sync or read its configuration leaves the previous
snapshot in place.  A single image that cannot be resolved is recorded as a
failure inside the snapshot and never aborts the cycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

import structlog

from compare_revisions.config import load_config_file
from compare_revisions.engine.snapshot import (
    ClusterSnapshot,
    FailureReason,
    ImageRevisions,
    ResolutionFailure,
    SnapshotCell,
)
from compare_revisions.errors import (
    ConfigurationError,
    GitProcessError,
    NotFoundError,
    PolicyApplicationError,
)
from compare_revisions.git.address import RepoAddress
from compare_revisions.git.models import Revision
from compare_revisions.git.store import GitStore
from compare_revisions.kube.manifests import diff_images, load_tree
from compare_revisions.kube.models import ImageAdded, ImageChanged, ImageDiff, ImageRemoved, KubeID
from compare_revisions.models.config import Config, ConfigRepo, Environment
from compare_revisions.observability.logging import get_logger
from compare_revisions.observability.metrics import (
    differing_objects,
    image_resolution_failures_total,
    reconcile_cycles_total,
    reconcile_duration_seconds,
)

_log = get_logger("engine.differ")

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]")

CONFIG_CHECKOUT = "config"


class DifferState(StrEnum):
    """Lifecycle of the reconciliation loop."""

    INITIALIZING = "initializing"
    POLLING = "polling"
    SYNCED = "synced"
    SYNC_FAILED = "sync_failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class DifferStatus:
    state: DifferState
    cycles: int
    last_attempt: datetime | None
    last_success: datetime | None
    last_error: str | None


class ClusterDiffer:
    """Owns the reconciliation loop and the latest published snapshot.

    Args:
        config: The configuration document loaded at startup.
        store:  GitStore owning every mirror and checkout.
    """

    def __init__(self, config: Config, store: GitStore) -> None:
        self._config = config
        self._store = store
        self._cell = SnapshotCell()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

        self._state = DifferState.INITIALIZING
        self._cycles = 0
        self._last_attempt: datetime | None = None
        self._last_success: datetime | None = None
        self._last_error: str | None = None

    @property
    def config(self) -> Config:
        return self._config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run the loop as a background task."""
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run(), name="cluster-differ")

    async def stop(self) -> None:
        """Stop the loop, abandoning any in-flight cycle without publishing."""
        self._stop_event.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._state = DifferState.STOPPED

    async def run(self) -> None:
        """Reconcile, sleep for the poll interval, repeat until stopped."""
        _log.info("cluster differ started", poll_interval=self._config.config_repo.poll_interval)
        while not self._stop_event.is_set():
            try:
                await self.reconcile_once()
            except Exception as exc:
                # Keep polling: the next cycle starts from a fresh sync.
                self._state = DifferState.SYNC_FAILED
                self._last_error = str(exc)
                _log.exception("reconcile_cycle_crashed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._config.config_repo.poll_interval)
            except TimeoutError:
                pass
        self._state = DifferState.STOPPED
        _log.info("cluster differ stopped")

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def reconcile_once(self) -> ClusterSnapshot | None:
        """Run a single cycle and publish its snapshot.

        Returns the new snapshot, or None if the cycle failed and the
        previous snapshot was kept.  Log events emitted during the cycle
        carry its number as ``cycle``.
        """
        self._state = DifferState.POLLING
        self._cycles += 1
        self._last_attempt = datetime.now(tz=UTC)
        with structlog.contextvars.bound_contextvars(cycle=self._cycles):
            return await self._reconcile()

    async def _reconcile(self) -> ClusterSnapshot | None:
        started = time.monotonic()
        try:
            snapshot = await self._compute_snapshot()
        except GitProcessError as exc:
            self._cycle_failed(exc, **exc.to_log_fields())
            return None
        except (ConfigurationError, OSError) as exc:
            self._cycle_failed(exc)
            return None
        finally:
            reconcile_duration_seconds.observe(time.monotonic() - started)

        self._cell.publish(snapshot)
        self._state = DifferState.SYNCED
        self._last_success = snapshot.completed_at
        self._last_error = None
        reconcile_cycles_total.labels(outcome="synced").inc()
        differing_objects.set(len(snapshot.diff))
        _log.info(
            "snapshot published",
            config_commit=snapshot.config_commit,
            differing_objects=len(snapshot.diff),
            resolved=sum(1 for r in snapshot.revisions if r.ok),
            failed=sum(1 for r in snapshot.revisions if not r.ok),
        )
        return snapshot

    def _cycle_failed(self, exc: Exception, **fields: object) -> None:
        self._state = DifferState.SYNC_FAILED
        self._last_error = str(exc)
        reconcile_cycles_total.labels(outcome="sync_failed").inc()
        _log.error("reconcile_cycle_failed", error=str(exc), error_type=type(exc).__name__, **fields)

    async def _compute_snapshot(self) -> ClusterSnapshot:
        repo = self._config.config_repo
        mirror = await self._store.sync(repo.url)
        checkout = await self._store.ensure_checkout(
            mirror, repo.branch, self._store.checkout_path(CONFIG_CHECKOUT)
        )

        if repo.config_path:
            # The document in the checkout takes effect from this cycle on.
            self._config = await asyncio.to_thread(load_config_file, checkout / repo.config_path)
            repo = self._config.config_repo
        config = self._config

        source_root = await self._environment_root(mirror, checkout, repo, repo.source_env)
        target_root = await self._environment_root(mirror, checkout, repo, repo.target_env)
        source_objects = await asyncio.to_thread(load_tree, source_root)
        target_objects = await asyncio.to_thread(load_tree, target_root)

        diff = diff_images(source_objects, target_objects)
        revisions = await self._resolve_revisions(config, diff)
        return ClusterSnapshot.build(
            source_env=repo.source_env.name,
            target_env=repo.target_env.name,
            config_commit=checkout.name.removeprefix("rev-"),
            diff=diff,
            revisions=revisions,
        )

    async def _environment_root(
        self,
        mirror: Path,
        default_checkout: Path,
        repo: ConfigRepo,
        env: Environment,
    ) -> Path:
        checkout = default_checkout
        if env.branch and env.branch != repo.branch:
            link = self._store.checkout_path(f"env-{_UNSAFE_NAME_RE.sub('_', env.name)}")
            checkout = await self._store.ensure_checkout(mirror, env.branch, link)
        root = checkout / env.path
        if not root.is_dir():
            raise ConfigurationError(f"environment {env.name!r}: {env.path!r} is not a directory in the checkout")
        return root

    # ------------------------------------------------------------------
    # Revision resolution
    # ------------------------------------------------------------------

    async def _resolve_revisions(
        self,
        config: Config,
        diff: Mapping[KubeID, list[ImageDiff]],
    ) -> list[ImageRevisions]:
        wanted: set[tuple[str, str | None, str | None]] = set()
        for diffs in diff.values():
            for d in diffs:
                if isinstance(d, ImageChanged):
                    wanted.add((d.name, d.old_label, d.new_label))
                # Added and removed images have no range to log; they are
                # reported only when no repository is configured for them.
                elif d.name not in config.images:
                    if isinstance(d, ImageAdded):
                        wanted.add((d.name, None, d.label))
                    elif isinstance(d, ImageRemoved):
                        wanted.add((d.name, d.label, None))
        changes = sorted(wanted, key=lambda change: (change[0], change[1] or "", change[2] or ""))
        mirrors: dict[RepoAddress, Path | GitProcessError] = {}
        results = []
        for name, old_label, new_label in changes:
            result = await self._resolve_image(config, name, old_label, new_label, mirrors)
            if result.error is not None:
                image_resolution_failures_total.labels(reason=result.error.reason.value).inc()
                _log.warning(
                    "image_resolution_failed",
                    image=name,
                    old_label=old_label,
                    new_label=new_label,
                    reason=result.error.reason.value,
                    error=result.error.message,
                )
            results.append(result)
        return results

    async def _resolve_image(
        self,
        config: Config,
        name: str,
        old_label: str | None,
        new_label: str | None,
        mirrors: dict[RepoAddress, Path | GitProcessError],
    ) -> ImageRevisions:
        def failed(reason: FailureReason, message: str, repository: RepoAddress | None = None) -> ImageRevisions:
            return ImageRevisions(
                image=name,
                old_label=old_label,
                new_label=new_label,
                repository=repository,
                error=ResolutionFailure(reason=reason, message=message),
            )

        image_config = config.images.get(name)
        if image_config is None:
            return failed(FailureReason.NO_REPOSITORY, "no repository configured")
        repository = image_config.git_url
        policy = config.revision_policies.get(image_config.policy)
        if policy is None:
            return failed(FailureReason.NO_POLICY, f"unknown revision policy {image_config.policy!r}", repository)

        try:
            start = policy.apply(old_label)
            end = policy.apply(new_label)
        except PolicyApplicationError as exc:
            reason = FailureReason.MISSING_LABEL if not exc.label else FailureReason.POLICY_MISMATCH
            return failed(reason, str(exc), repository)

        mirror = mirrors.get(repository)
        if mirror is None:
            try:
                mirror = await self._store.sync(repository)
            except GitProcessError as exc:
                mirror = exc
            mirrors[repository] = mirror
        if isinstance(mirror, GitProcessError):
            return failed(FailureReason.GIT_ERROR, str(mirror), repository)

        try:
            revisions = await self._store.log(mirror, start, end, image_config.paths)
        except GitProcessError as exc:
            return failed(FailureReason.GIT_ERROR, str(exc), repository)
        return ImageRevisions(
            image=name,
            old_label=old_label,
            new_label=new_label,
            repository=repository,
            revisions=tuple(revisions),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_snapshot(self) -> ClusterSnapshot | None:
        return self._cell.current()

    def get_diff(self) -> Mapping[KubeID, tuple[ImageDiff, ...]] | None:
        snapshot = self._cell.current()
        return None if snapshot is None else snapshot.diff

    def get_revisions(self) -> tuple[ImageRevisions, ...] | None:
        snapshot = self._cell.current()
        return None if snapshot is None else snapshot.revisions

    def status(self) -> DifferStatus:
        return DifferStatus(
            state=self._state,
            cycles=self._cycles,
            last_attempt=self._last_attempt,
            last_success=self._last_success,
            last_error=self._last_error,
        )

    async def changes_since(self, env_name: str, since: datetime) -> list[Revision]:
        """Commits to one environment's manifests after *since*, newest first.

        Raises:
            NotFoundError: unknown environment, or the config repository has
                not been synced yet.
        """
        repo = self._config.config_repo
        env = repo.environment(env_name)
        if env is None:
            raise NotFoundError(f"unknown environment {env_name!r}")
        mirror = self._store.mirror_path(repo.url)
        if not mirror.exists():
            raise NotFoundError("config repository has not been synced yet")
        paths = [env.path] if env.path not in ("", ".") else []
        return await self._store.log_since(mirror, env.branch or repo.branch, since, paths)
