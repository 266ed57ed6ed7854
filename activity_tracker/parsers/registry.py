"""Session parser registry keyed by data source."""
from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Callable, Union

from activity_tracker import config
from activity_tracker.models import DataSource, ParsedSession
from activity_tracker.parsers.composer import ComposerSessionParser
from activity_tracker.parsers.sessions import parse_session_file

SessionParser = Callable[[Union[str, Path], str, str], Awaitable[ParsedSession]]


class ParserRegistry:
    """Route a session-file descriptor's source to the parser that reads it.

    Claude Code ``.jsonl`` transcripts go to the log parser; Cursor composers
    go to the composer parser bound to the global store.
    """

    def __init__(self, cursor_global_db_path: Path | None = None):
        self._parsers: dict[str, SessionParser] = {
            "claude": parse_session_file,
            "cursor": ComposerSessionParser(cursor_global_db_path or config.CURSOR_GLOBAL_DB_PATH),
        }

    def get(self, source: DataSource) -> SessionParser:
        parser = self._parsers.get(source)
        if parser is None:
            raise ValueError(f"No session parser registered for source {source!r}")
        return parser
