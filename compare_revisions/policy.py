"""Image-tag to git-revision policies.

A policy turns the tag an image was deployed with into something git can
resolve.  ``identity`` assumes the tag already is a commit; ``regex``
extracts it from the tag with a pattern such as ``^master-([0-9a-f]+)$``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from compare_revisions.errors import ConfigurationError, PolicyApplicationError
from compare_revisions.git.models import RevSpec


class RevisionPolicy(Protocol):
    name: str

    def apply(self, label: str | None) -> RevSpec: ...


def _require_label(policy: str, label: str | None) -> str:
    if not label:
        raise PolicyApplicationError(policy, label, f"policy {policy!r}: image has no tag")
    return label


@dataclass(frozen=True)
class IdentityPolicy:
    """The tag is used verbatim as the revision."""

    name: str = "identity"

    def apply(self, label: str | None) -> RevSpec:
        return RevSpec(_require_label(self.name, label))


@dataclass(frozen=True)
class RegexPolicy:
    """Match the tag against ``match`` and expand ``output`` from the groups.

    ``output`` is a ``re`` template; the default ``\\1`` selects the first
    capture group.  Tags that do not match are an error, never passed through.
    """

    name: str
    match: re.Pattern[str]
    output: str = r"\1"

    @classmethod
    def compile(cls, name: str, pattern: str, output: str | None = None) -> RegexPolicy:
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise ConfigurationError(f"policy {name!r}: invalid regex {pattern!r}: {exc}") from exc
        if output is None:
            if compiled.groups < 1:
                raise ConfigurationError(f"policy {name!r}: pattern {pattern!r} has no capture group")
            output = r"\1"
        return cls(name=name, match=compiled, output=output)

    def apply(self, label: str | None) -> RevSpec:
        tag = _require_label(self.name, label)
        found = self.match.search(tag)
        if found is None:
            raise PolicyApplicationError(
                self.name,
                label,
                f"policy {self.name!r}: tag {tag!r} does not match {self.match.pattern!r}",
            )
        try:
            revision = found.expand(self.output)
        except (re.error, IndexError) as exc:
            raise PolicyApplicationError(
                self.name, label, f"policy {self.name!r}: cannot expand {self.output!r}: {exc}"
            ) from exc
        if not revision:
            raise PolicyApplicationError(self.name, label, f"policy {self.name!r}: empty revision for {tag!r}")
        return RevSpec(revision)


def build_policy(name: str, spec: Mapping[str, Any]) -> RevisionPolicy:
    """Build a policy from its configuration mapping (``type: identity|regex``)."""
    policy_type = spec.get("type")
    if policy_type == "identity":
        return IdentityPolicy(name=name)
    if policy_type == "regex":
        pattern = spec.get("match")
        if not isinstance(pattern, str) or not pattern:
            raise ConfigurationError(f"policy {name!r}: regex policy needs a 'match' pattern")
        output = spec.get("output")
        if output is not None and not isinstance(output, str):
            raise ConfigurationError(f"policy {name!r}: 'output' must be a string")
        return RegexPolicy.compile(name, pattern, output)
    raise ConfigurationError(f"policy {name!r}: unrecognised policy type {policy_type!r}")
