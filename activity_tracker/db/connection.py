"""Read-only connections to Cursor's SQLite key-value stores.

The editor keeps writing to these files while we read them, so they are
always opened in ``mode=ro`` and closed as soon as the query is done.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator
from urllib.parse import quote

import aiosqlite

logger = logging.getLogger("tracker.db")


def _readonly_uri(db_path: str | Path) -> str:
    return f"file:{quote(Path(db_path).as_posix())}?mode=ro"


@asynccontextmanager
async def open_readonly(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    """Open a store read-only. Raises sqlite3.Error if it cannot be opened."""
    conn = await aiosqlite.connect(_readonly_uri(db_path), uri=True)
    conn.row_factory = aiosqlite.Row
    try:
        await conn.execute("PRAGMA busy_timeout=5000")
        yield conn
    finally:
        await conn.close()
