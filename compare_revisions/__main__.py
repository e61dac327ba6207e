"""Entry point for `python -m compare_revisions`.

Usage:
    python -m compare_revisions
    uv run python -m compare_revisions
"""

from __future__ import annotations

import asyncio

from compare_revisions.app import main

asyncio.run(main())
