"""In-memory session cache keyed by session id and validated by file mtime.

Entries are never expired by age or size; they are replaced when the backing
file's mtime changes and dropped on explicit invalidation. Concurrent misses
for the same id may both parse; parses are pure, so the last write wins.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from activity_tracker.models import ParsedSession
from activity_tracker.parsers.registry import SessionParser

logger = logging.getLogger("tracker.cache")


@dataclass
class CacheEntry:
    session: ParsedSession
    fingerprint: Optional[int]


def file_fingerprint(file_path: str | Path) -> Optional[int]:
    """Modification time in ns, or None when the file cannot be stat'ed."""
    try:
        return os.stat(file_path).st_mtime_ns
    except OSError:
        return None


class SessionCache:
    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(
        self,
        session_id: str,
        file_path: str | Path,
        parser: SessionParser,
        project_id: str,
    ) -> ParsedSession:
        fingerprint = file_fingerprint(file_path)
        existing = self._entries.get(session_id)
        if existing is not None and fingerprint is not None and existing.fingerprint == fingerprint:
            return existing.session

        session = await parser(file_path, session_id, project_id)
        self._entries[session_id] = CacheEntry(session=session, fingerprint=fingerprint)
        return session

    def invalidate(self, session_id: str) -> None:
        if self._entries.pop(session_id, None) is not None:
            logger.debug(f"Invalidated cached session {session_id}")

    def invalidate_all(self) -> None:
        self._entries.clear()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
