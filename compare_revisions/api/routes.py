"""REST routes over the latest published snapshot."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from compare_revisions.api.schemas import (
    ChangesResponse,
    ErrorResponse,
    ImagesResponse,
    RevisionModel,
    RevisionsResponse,
    StatusResponse,
)

router = APIRouter()


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error="SNAPSHOT_UNAVAILABLE",
            detail="No reconciliation cycle has completed yet.",
        ).model_dump(),
    )


@router.get("/images", response_model=ImagesResponse, responses={503: {"model": ErrorResponse}})
async def get_images(request: Request) -> ImagesResponse | JSONResponse:
    """Objects whose images differ between the two environments."""
    snapshot = request.app.state.differ.current_snapshot()
    if snapshot is None:
        return _unavailable()
    return ImagesResponse.from_snapshot(snapshot)


@router.get("/revisions", response_model=RevisionsResponse, responses={503: {"model": ErrorResponse}})
async def get_revisions(request: Request) -> RevisionsResponse | JSONResponse:
    """The image diff plus the commits behind every changed image."""
    snapshot = request.app.state.differ.current_snapshot()
    if snapshot is None:
        return _unavailable()
    return RevisionsResponse.from_snapshot(snapshot)


@router.get(
    "/changes/{environment}",
    response_model=ChangesResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_changes(
    request: Request,
    environment: str,
    since: datetime = Query(description="ISO-8601 timestamp; naive values are UTC"),
) -> ChangesResponse:
    """Commits to one environment's manifests since a point in time."""
    if since.tzinfo is None:
        since = since.replace(tzinfo=UTC)
    revisions = await request.app.state.differ.changes_since(environment, since)
    return ChangesResponse(
        environment=environment,
        since=since,
        revisions=[RevisionModel.from_revision(r) for r in revisions],
    )


@router.get("/status", response_model=StatusResponse)
async def get_status(request: Request) -> StatusResponse:
    """State of the reconciliation loop."""
    from compare_revisions import __version__

    differ = request.app.state.differ
    status = differ.status()
    repo = differ.config.config_repo
    return StatusResponse(
        version=__version__,
        state=status.state.value,
        cycles=status.cycles,
        last_attempt=status.last_attempt,
        last_success=status.last_success,
        last_error=status.last_error,
        config_repo=repo.url.to_text(),
        source_env=repo.source_env.name,
        target_env=repo.target_env.name,
    )
