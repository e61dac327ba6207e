"""Reconciliation loop and published snapshots."""

from compare_revisions.engine.differ import ClusterDiffer, DifferState, DifferStatus
from compare_revisions.engine.snapshot import (
    ClusterSnapshot,
    FailureReason,
    ImageRevisions,
    ResolutionFailure,
    SnapshotCell,
)

__all__ = [
    "ClusterDiffer",
    "ClusterSnapshot",
    "DifferState",
    "DifferStatus",
    "FailureReason",
    "ImageRevisions",
    "ResolutionFailure",
    "SnapshotCell",
]
