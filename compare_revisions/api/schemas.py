"""Pydantic response models for the REST API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from compare_revisions.engine.snapshot import ClusterSnapshot, ImageRevisions
from compare_revisions.git.models import Revision
from compare_revisions.kube.models import ImageChanged, ImageDiff, KubeID


class ErrorResponse(BaseModel):
    error: str
    detail: str = ""


class ImageDiffModel(BaseModel):
    type: str = Field(description="added, removed or changed")
    image: str
    label: str | None = None
    old_label: str | None = None
    new_label: str | None = None

    @classmethod
    def from_diff(cls, diff: ImageDiff) -> ImageDiffModel:
        if isinstance(diff, ImageChanged):
            return cls(type=diff.kind.value, image=diff.name, old_label=diff.old_label, new_label=diff.new_label)
        return cls(type=diff.kind.value, image=diff.name, label=diff.label)


class ObjectDiffModel(BaseModel):
    namespace: str
    name: str
    kind: str
    diff: list[ImageDiffModel]

    @classmethod
    def from_entry(cls, kube_id: KubeID, diffs: tuple[ImageDiff, ...]) -> ObjectDiffModel:
        return cls(
            namespace=kube_id.namespace,
            name=kube_id.name,
            kind=kube_id.kind,
            diff=[ImageDiffModel.from_diff(d) for d in diffs],
        )


class RevisionModel(BaseModel):
    hash: str
    short_hash: str
    author: str
    committed_at: datetime
    subject: str

    @classmethod
    def from_revision(cls, revision: Revision) -> RevisionModel:
        return cls(
            hash=revision.hash,
            short_hash=revision.short_hash,
            author=revision.author,
            committed_at=revision.committed_at,
            subject=revision.subject,
        )


class ResolutionFailureModel(BaseModel):
    reason: str
    message: str


class ImageRevisionsModel(BaseModel):
    image: str
    old_label: str | None
    new_label: str | None
    repository: str | None
    revisions: list[RevisionModel]
    error: ResolutionFailureModel | None = None

    @classmethod
    def from_result(cls, result: ImageRevisions) -> ImageRevisionsModel:
        return cls(
            image=result.image,
            old_label=result.old_label,
            new_label=result.new_label,
            repository=result.repository.to_text() if result.repository is not None else None,
            revisions=[RevisionModel.from_revision(r) for r in result.revisions],
            error=(
                ResolutionFailureModel(reason=result.error.reason.value, message=result.error.message)
                if result.error is not None
                else None
            ),
        )


class ImagesResponse(BaseModel):
    source_env: str
    target_env: str
    config_commit: str
    completed_at: datetime
    objects: list[ObjectDiffModel]

    @classmethod
    def from_snapshot(cls, snapshot: ClusterSnapshot) -> ImagesResponse:
        return cls(
            source_env=snapshot.source_env,
            target_env=snapshot.target_env,
            config_commit=snapshot.config_commit,
            completed_at=snapshot.completed_at,
            objects=[ObjectDiffModel.from_entry(k, snapshot.diff[k]) for k in sorted(snapshot.diff)],
        )


class RevisionsResponse(ImagesResponse):
    images: list[ImageRevisionsModel]

    @classmethod
    def from_snapshot(cls, snapshot: ClusterSnapshot) -> RevisionsResponse:
        base = ImagesResponse.from_snapshot(snapshot)
        return cls(
            **base.model_dump(),
            images=[ImageRevisionsModel.from_result(r) for r in snapshot.revisions],
        )


class ChangesResponse(BaseModel):
    environment: str
    since: datetime
    revisions: list[RevisionModel]


class StatusResponse(BaseModel):
    version: str
    state: str
    cycles: int
    last_attempt: datetime | None
    last_success: datetime | None
    last_error: str | None
    config_repo: str
    source_env: str
    target_env: str
