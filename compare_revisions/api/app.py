"""FastAPI application factory for compare-revisions.

Usage::

    from compare_revisions.api.app import create_app

    app = create_app(differ=differ)

The factory is used by both the production bootstrap
(``compare_revisions.app``) and unit tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from prometheus_client import make_asgi_app

from compare_revisions.api.routes import router
from compare_revisions.api.schemas import ErrorResponse
from compare_revisions.errors import GitProcessError, NotFoundError

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"

_INDEX_HTML = """<!DOCTYPE html>
<html>
<head><title>compare-revisions</title></head>
<body>
<h1>compare-revisions</h1>
<ul>
<li><a href="/api/v1/images">Compare images</a></li>
<li><a href="/api/v1/revisions">Compare revisions</a></li>
<li><a href="/api/v1/status"><code>/api/v1/status</code></a></li>
<li><a href="/metrics"><code>/metrics</code></a></li>
<li><a href="/api/v1/docs">API documentation</a></li>
</ul>
</body>
</html>
"""


def create_app(differ: Any, config: Any = None) -> FastAPI:
    """Create and configure the compare-revisions FastAPI application.

    Args:
        differ: ClusterDiffer whose snapshot and queries are served.
        config: Optional AppConfig, kept on app.state for handlers.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from compare_revisions import __version__

    app = FastAPI(
        title="compare-revisions",
        summary="Show how two environments differ, by source revision",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    app.state.differ = differ
    app.state.config = config

    app.include_router(router, prefix=_API_PREFIX)
    app.mount("/metrics", make_asgi_app())

    @app.get("/", response_class=HTMLResponse, include_in_schema=False)
    async def index() -> str:
        return _INDEX_HTML

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Map Pydantic validation errors to our error envelope."""
        errors = exc.errors()
        detail = ""
        if errors:
            locs = errors[0].get("loc", ())
            field = str(locs[-1]) if locs else ""
            detail = f"{field}: {errors[0].get('msg', '')}"
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_REQUEST", detail=detail).model_dump(),
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(_request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(error="NOT_FOUND", detail=str(exc)).model_dump(),
        )

    @app.exception_handler(GitProcessError)
    async def git_error_handler(request: Request, exc: GitProcessError) -> JSONResponse:
        _log.warning("git_query_failed", path=str(request.url.path), **exc.to_log_fields())
        return JSONResponse(
            status_code=502,
            content=ErrorResponse(error="GIT_ERROR", detail=str(exc)).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                detail="An unexpected error occurred.",
            ).model_dump(),
        )

    return app
