"""Immutable results of a reconciliation cycle."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType

from compare_revisions.git.address import RepoAddress
from compare_revisions.git.models import Revision
from compare_revisions.kube.models import ImageDiff, KubeID


class FailureReason(StrEnum):
    """Why an image's revisions could not be resolved."""

    NO_REPOSITORY = "no_repository"
    NO_POLICY = "no_policy"
    POLICY_MISMATCH = "policy_mismatch"
    MISSING_LABEL = "missing_label"
    GIT_ERROR = "git_error"


@dataclass(frozen=True)
class ResolutionFailure:
    reason: FailureReason
    message: str


@dataclass(frozen=True)
class ImageRevisions:
    """Revisions between the target and source labels of one image in the diff.

    Exactly one of ``revisions`` / ``error`` is meaningful: on failure
    ``revisions`` is empty and ``error`` says why.
    """

    image: str
    old_label: str | None
    new_label: str | None
    repository: RepoAddress | None = None
    revisions: tuple[Revision, ...] = ()
    error: ResolutionFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ClusterSnapshot:
    """Everything one cycle computed.  Replaced wholesale, never mutated."""

    source_env: str
    target_env: str
    config_commit: str
    diff: Mapping[KubeID, tuple[ImageDiff, ...]]
    revisions: tuple[ImageRevisions, ...] = ()
    completed_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @classmethod
    def build(
        cls,
        source_env: str,
        target_env: str,
        config_commit: str,
        diff: Mapping[KubeID, list[ImageDiff]],
        revisions: list[ImageRevisions],
    ) -> ClusterSnapshot:
        frozen = MappingProxyType({kube_id: tuple(diffs) for kube_id, diffs in diff.items()})
        return cls(
            source_env=source_env,
            target_env=target_env,
            config_commit=config_commit,
            diff=frozen,
            revisions=tuple(revisions),
        )

    def revisions_for(self, image: str) -> list[ImageRevisions]:
        return [r for r in self.revisions if r.image == image]


class SnapshotCell:
    """Holds the latest snapshot.

    One writer (the reconciliation loop) calls ``publish``; any number of
    readers call ``current``.  Publishing is a single reference assignment,
    so a reader sees either the previous snapshot or the new one.
    """

    def __init__(self) -> None:
        self._snapshot: ClusterSnapshot | None = None

    def publish(self, snapshot: ClusterSnapshot) -> None:
        self._snapshot = snapshot

    def current(self) -> ClusterSnapshot | None:
        return self._snapshot
