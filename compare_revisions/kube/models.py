"""Normalised view of deployed Kubernetes objects and their images."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


@dataclass(frozen=True, order=True)
class KubeID:
    """Identity of a deployed object."""

    namespace: str
    name: str
    kind: str

    @property
    def namespaced_name(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class Image:
    """A container image reference split into name and optional tag/digest."""

    name: str
    label: str | None = None

    @classmethod
    def parse(cls, reference: str) -> Image:
        """Split ``name[:tag]`` or ``name@digest``.

        A colon before the last ``/`` belongs to a registry port, not a tag.
        """
        reference = reference.strip()
        if "@" in reference:
            name, digest = reference.split("@", 1)
            return cls(name=name, label=digest)
        name, sep, tag = reference.rpartition(":")
        if sep and "/" not in tag:
            return cls(name=name, label=tag)
        return cls(name=reference, label=None)

    def __str__(self) -> str:
        if self.label is None:
            return self.name
        sep = "@" if ":" in self.label else ":"
        return f"{self.name}{sep}{self.label}"


@dataclass(frozen=True)
class KubeObject:
    """One deployed object and the images it declares, in declaration order."""

    id: KubeID
    images: tuple[Image, ...] = field(default_factory=tuple)


class DiffKind(StrEnum):
    """How an image differs between the two environments."""

    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


@dataclass(frozen=True)
class ImageAdded:
    """Image declared in the source environment only."""

    name: str
    label: str | None

    kind = DiffKind.ADDED


@dataclass(frozen=True)
class ImageRemoved:
    """Image declared in the target environment only."""

    name: str
    label: str | None

    kind = DiffKind.REMOVED


@dataclass(frozen=True)
class ImageChanged:
    """Image declared in both environments with different labels.

    ``old_label`` is the target environment's label, ``new_label`` the
    source environment's.
    """

    name: str
    old_label: str | None
    new_label: str | None

    kind = DiffKind.CHANGED


ImageDiff = ImageAdded | ImageRemoved | ImageChanged
