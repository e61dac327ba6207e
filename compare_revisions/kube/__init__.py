"""Kubernetes manifest model and image diffing."""

from compare_revisions.kube.manifests import (
    diff_images,
    get_image_set,
    image_set,
    load_tree,
    parse_documents,
    parse_manifest,
)
from compare_revisions.kube.models import (
    DiffKind,
    Image,
    ImageAdded,
    ImageChanged,
    ImageDiff,
    ImageRemoved,
    KubeID,
    KubeObject,
)

__all__ = [
    "DiffKind",
    "Image",
    "ImageAdded",
    "ImageChanged",
    "ImageDiff",
    "ImageRemoved",
    "KubeID",
    "KubeObject",
    "diff_images",
    "get_image_set",
    "image_set",
    "load_tree",
    "parse_documents",
    "parse_manifest",
]
