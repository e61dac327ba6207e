"""REST API layer for compare-revisions.

Exposes:
    create_app -- FastAPI application factory.
"""

from compare_revisions.api.app import create_app

__all__ = ["create_app"]
