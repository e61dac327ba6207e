"""Prometheus collectors, exposed by the REST API at ``/metrics``."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

git_commands_total = Counter(
    "compare_revisions_git_commands_total",
    "git invocations by subcommand and outcome.",
    ["command", "success"],
)

reconcile_cycles_total = Counter(
    "compare_revisions_reconcile_cycles_total",
    "Reconciliation cycles by outcome.",
    ["outcome"],
)

reconcile_duration_seconds = Histogram(
    "compare_revisions_reconcile_duration_seconds",
    "Wall-clock duration of one reconciliation cycle.",
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)

image_resolution_failures_total = Counter(
    "compare_revisions_image_resolution_failures_total",
    "Images whose revision range could not be resolved, by reason.",
    ["reason"],
)

differing_objects = Gauge(
    "compare_revisions_differing_objects",
    "Objects with at least one differing image in the last snapshot.",
)
