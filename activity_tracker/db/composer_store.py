"""Queries against Cursor's composer key-value stores.

Two tables matter: ``ItemTable`` and ``cursorDiskKV``, both plain
``(key, value)`` pairs. Workspace stores hold ``composer.composerData`` (the
list of composers); the global store holds one ``bubbleId:<composer>:<bubble>``
row per message.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

import aiosqlite

logger = logging.getLogger("tracker.db")

COMPOSER_DATA_KEY = "composer.composerData"
BUBBLE_KEY_PREFIX = "bubbleId:"
_COMPOSER_TABLES = ("ItemTable", "cursorDiskKV")


def decode_value(raw: Any) -> Any:
    """Decode a JSON value column (TEXT or BLOB). Malformed values return None."""
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray, memoryview)):
        raw = bytes(raw).decode("utf-8", errors="replace")
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return None


class ComposerStore:
    """Composer metadata and bubble lookups over one open store."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def _composer_heads(self, table: str) -> list[dict]:
        try:
            async with self.db.execute(
                f"SELECT value FROM {table} WHERE key = ?", (COMPOSER_DATA_KEY,)
            ) as cur:
                row = await cur.fetchone()
        except sqlite3.OperationalError:
            # Older stores do not have both tables
            return []
        if row is None:
            return []
        data = decode_value(row["value"])
        if not isinstance(data, dict):
            return []
        heads = data.get("allComposers")
        if not isinstance(heads, list):
            return []
        return [h for h in heads if isinstance(h, dict) and h.get("composerId")]

    async def list_composers(self, include_archived: bool = False) -> list[dict]:
        """Return composer heads from the first table that has any."""
        for table in _COMPOSER_TABLES:
            heads = await self._composer_heads(table)
            if not include_archived:
                heads = [h for h in heads if not h.get("isArchived")]
            if heads:
                return heads
        return []

    async def find_composer(self, composer_id: str) -> dict | None:
        for table in _COMPOSER_TABLES:
            for head in await self._composer_heads(table):
                if head.get("composerId") == composer_id:
                    return head
        return None

    async def list_bubble_payloads(self, composer_id: str) -> list[dict]:
        """Return decoded bubble payloads; malformed rows are skipped."""
        async with self.db.execute(
            "SELECT key, value FROM cursorDiskKV WHERE key LIKE ?",
            (f"{BUBBLE_KEY_PREFIX}{composer_id}:%",),
        ) as cur:
            rows = await cur.fetchall()

        payloads: list[dict] = []
        for row in rows:
            payload = decode_value(row["value"])
            if not isinstance(payload, dict):
                logger.debug(f"Skipping malformed bubble row {row['key']}")
                continue
            payloads.append(payload)
        return payloads

    async def bubble_counts(self) -> dict[str, int]:
        """Return composer id -> number of bubble rows."""
        async with self.db.execute(
            """SELECT substr(key, 10, instr(substr(key, 10), ':') - 1) AS cid,
                      COUNT(*) AS n
               FROM cursorDiskKV
               WHERE key LIKE 'bubbleId:%'
               GROUP BY cid"""
        ) as cur:
            rows = await cur.fetchall()
        return {row["cid"]: int(row["n"]) for row in rows if row["cid"]}

    async def composer_ids_with_bubbles(self) -> set[str]:
        return set(await self.bubble_counts())

    async def bubble_signatures(self) -> dict[str, tuple[int, int, int]]:
        """Return composer id -> (bubble rows, payload bytes, newest rowid).

        Changes when a bubble is added, removed or rewritten in place, so a
        streamed reply that only grows its text or token counts is noticed.
        """
        async with self.db.execute(
            """SELECT substr(key, 10, instr(substr(key, 10), ':') - 1) AS cid,
                      COUNT(*) AS n,
                      SUM(length(value)) AS bytes,
                      MAX(rowid) AS newest
               FROM cursorDiskKV
               WHERE key LIKE 'bubbleId:%'
               GROUP BY cid"""
        ) as cur:
            rows = await cur.fetchall()
        return {
            row["cid"]: (int(row["n"]), int(row["bytes"] or 0), int(row["newest"] or 0))
            for row in rows
            if row["cid"]
        }
