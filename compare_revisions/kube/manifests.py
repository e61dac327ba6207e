"""Reading manifest trees and diffing the images they declare.

Only kinds with a pod template contribute objects; anything else found in a
tree (Services, ConfigMaps, broken YAML) is skipped.  When an image name is
declared more than once for the same object, the first declaration wins.
Trees are walked in sorted order so "first" is stable between runs.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

import yaml

from compare_revisions.errors import ManifestError
from compare_revisions.kube.models import (
    Image,
    ImageAdded,
    ImageChanged,
    ImageDiff,
    ImageRemoved,
    KubeID,
    KubeObject,
)
from compare_revisions.observability.logging import get_logger

_log = get_logger("kube.manifests")

MANIFEST_SUFFIXES = frozenset({".yaml", ".yml", ".json"})
DEFAULT_NAMESPACE = "default"

# kind -> path from the document root to the pod spec
_POD_SPEC_PATHS: dict[str, tuple[str, ...]] = {
    "Pod": ("spec",),
    "Deployment": ("spec", "template", "spec"),
    "StatefulSet": ("spec", "template", "spec"),
    "DaemonSet": ("spec", "template", "spec"),
    "ReplicaSet": ("spec", "template", "spec"),
    "ReplicationController": ("spec", "template", "spec"),
    "Job": ("spec", "template", "spec"),
    "CronJob": ("spec", "jobTemplate", "spec", "template", "spec"),
}


def parse_manifest(text: str) -> KubeObject:
    """Parse a single manifest document.

    Raises:
        ManifestError: the text is not valid YAML, or is not an object of a
            recognised kind.
    """
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ManifestError(f"invalid YAML: {exc}") from exc
    obj = object_from_document(document)
    if obj is None:
        raise ManifestError("document is not a recognised workload manifest")
    return obj


def object_from_document(document: Any) -> KubeObject | None:
    """Build a KubeObject from a decoded document, or None if irrelevant."""
    if not isinstance(document, Mapping):
        return None
    kind = document.get("kind")
    spec_path = _POD_SPEC_PATHS.get(kind) if isinstance(kind, str) else None
    if spec_path is None:
        return None

    metadata = document.get("metadata")
    if not isinstance(metadata, Mapping):
        return None
    name = metadata.get("name")
    if not isinstance(name, str) or not name:
        return None
    namespace = metadata.get("namespace") or DEFAULT_NAMESPACE

    pod_spec = _dig(document, spec_path)
    images = tuple(_declared_images(pod_spec)) if isinstance(pod_spec, Mapping) else ()
    return KubeObject(id=KubeID(namespace=str(namespace), name=name, kind=kind), images=images)


def parse_documents(text: str, source: str | None = None) -> list[KubeObject]:
    """Parse every document in a multi-document YAML stream.

    Irrelevant documents are ignored.  A YAML error stops parsing of the
    stream; objects decoded before the error are kept.
    """
    objects: list[KubeObject] = []
    try:
        for document in yaml.safe_load_all(text):
            objects.extend(_expand(document))
    except yaml.YAMLError as exc:
        _log.warning("manifest_parse_failed", source=source, error=str(exc))
    return objects


def load_tree(root: Path) -> list[KubeObject]:
    """Parse every manifest file below *root*.

    Hidden directories are skipped.  Unreadable files are logged and skipped.

    Raises:
        FileNotFoundError: *root* is not a directory.
    """
    if not root.is_dir():
        raise FileNotFoundError(f"manifest tree {root} does not exist")
    objects: list[KubeObject] = []
    for path in _manifest_files(root):
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            _log.warning("manifest_read_failed", path=str(path), error=str(exc))
            continue
        objects.extend(parse_documents(text, source=str(path)))
    _log.debug("loaded manifest tree", root=str(root), objects=len(objects))
    return objects


def get_image_set(obj: KubeObject) -> dict[str, str | None]:
    """Image name -> label for one object."""
    return image_set([obj])


def image_set(objects: Iterable[KubeObject]) -> dict[str, str | None]:
    """Image name -> label across *objects*; the first declaration wins."""
    result: dict[str, str | None] = {}
    for obj in objects:
        for image in obj.images:
            result.setdefault(image.name, image.label)
    return result


def diff_images(
    source: Iterable[KubeObject],
    target: Iterable[KubeObject],
) -> dict[KubeID, list[ImageDiff]]:
    """Compare the images declared in two environments, object by object.

    Objects are matched by identity.  An image declared only in *source* is
    ImageAdded, only in *target* ImageRemoved, and in both with different
    labels ImageChanged(name, target label, source label).  Objects without
    differences are omitted.
    """
    source_images = _group(source)
    target_images = _group(target)

    result: dict[KubeID, list[ImageDiff]] = {}
    for kube_id in sorted(source_images.keys() | target_images.keys()):
        src = source_images.get(kube_id, {})
        tgt = target_images.get(kube_id, {})
        diffs: list[ImageDiff] = []
        for name in sorted(src.keys() | tgt.keys()):
            if name not in tgt:
                diffs.append(ImageAdded(name=name, label=src[name]))
            elif name not in src:
                diffs.append(ImageRemoved(name=name, label=tgt[name]))
            elif src[name] != tgt[name]:
                diffs.append(ImageChanged(name=name, old_label=tgt[name], new_label=src[name]))
        if diffs:
            result[kube_id] = diffs
    return result


def _group(objects: Iterable[KubeObject]) -> dict[KubeID, dict[str, str | None]]:
    grouped: dict[KubeID, dict[str, str | None]] = {}
    for obj in objects:
        images = grouped.setdefault(obj.id, {})
        for image in obj.images:
            images.setdefault(image.name, image.label)
    return grouped


def _expand(document: Any) -> Iterator[KubeObject]:
    if isinstance(document, Mapping) and document.get("kind") == "List":
        for item in document.get("items") or ():
            yield from _expand(item)
        return
    obj = object_from_document(document)
    if obj is not None:
        yield obj


def _declared_images(pod_spec: Mapping[str, Any]) -> Iterator[Image]:
    for key in ("initContainers", "containers"):
        containers = pod_spec.get(key) or ()
        if not isinstance(containers, list):
            continue
        for container in containers:
            if isinstance(container, Mapping) and isinstance(container.get("image"), str):
                yield Image.parse(container["image"])


def _dig(document: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = document
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def _manifest_files(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if path.suffix in MANIFEST_SUFFIXES:
                yield path
