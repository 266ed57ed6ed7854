"""Tracker engine: the one object the routing layer talks to.

Owns the session cache and both watchers, and exposes scanning, cached
parsing and metrics as plain async methods.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from activity_tracker import config
from activity_tracker import metrics
from activity_tracker.cache import SessionCache
from activity_tracker.db.file_watcher import ActivityWatcher, BroadcastFn, ComposerWatcher
from activity_tracker.models import (
    GlobalMetrics,
    ParsedSession,
    Project,
    ProjectMetrics,
    SessionFile,
    SessionMetrics,
)
from activity_tracker.parsers.registry import ParserRegistry, SessionParser
from activity_tracker.scanner import ProjectScanner

logger = logging.getLogger("tracker.engine")


class TrackerEngine:
    def __init__(
        self,
        claude_projects_dir: Path | None = None,
        cursor_storage_dir: Path | None = None,
        cursor_global_db_path: Path | None = None,
        debounce_seconds: float | None = None,
    ):
        self.claude_projects_dir = Path(claude_projects_dir or config.CLAUDE_PROJECTS_DIR)
        self.cursor_storage_dir = Path(cursor_storage_dir or config.CURSOR_WORKSPACE_STORAGE_DIR)
        self.cursor_global_db_path = Path(cursor_global_db_path or config.CURSOR_GLOBAL_DB_PATH)
        if debounce_seconds is None:
            debounce_seconds = config.WATCH_DEBOUNCE_MS / 1000
        self.debounce_seconds = debounce_seconds

        self.cache = SessionCache()
        self.parsers = ParserRegistry(self.cursor_global_db_path)
        self.scanner = ProjectScanner(
            self.claude_projects_dir,
            self.cursor_storage_dir,
            self.cursor_global_db_path,
        )
        self.watcher: Optional[ActivityWatcher] = None
        self.composer_watcher: Optional[ComposerWatcher] = None

    # ── Scanning and parsing ───────────────────────────────────────

    async def scan_all_projects(self) -> list[Project]:
        return await self.scanner.scan_all()

    async def find_project(self, project_id: str) -> Project | None:
        for project in await self.scan_all_projects():
            if project.id == project_id:
                return project
        return None

    async def get_cached_session(
        self,
        session_id: str,
        file_path: str | Path,
        parser: SessionParser,
        project_id: str,
    ) -> ParsedSession:
        return await self.cache.get(session_id, file_path, parser, project_id)

    async def load_session(self, session_file: SessionFile, project_id: str) -> ParsedSession:
        parser = self.parsers.get(session_file.source)
        return await self.get_cached_session(session_file.id, session_file.path, parser, project_id)

    async def load_sessions(self, project: Project) -> list[ParsedSession]:
        """Parse every session of a project concurrently, in descriptor order."""
        results = await asyncio.gather(
            *(self.load_session(session_file, project.id) for session_file in project.sessionFiles)
        )
        return list(results)

    async def find_session(self, session_id: str) -> ParsedSession | None:
        for project in await self.scan_all_projects():
            for session_file in project.sessionFiles:
                if session_file.id == session_id:
                    return await self.load_session(session_file, project.id)
        return None

    # ── Metrics ────────────────────────────────────────────────────

    def compute_session_metrics(self, session: ParsedSession) -> SessionMetrics:
        return metrics.compute_session_metrics(session)

    def compute_project_metrics(self, sessions: list[ParsedSession]) -> ProjectMetrics:
        return metrics.compute_project_metrics(sessions)

    def compute_global_metrics(
        self,
        project_count: int,
        session_count: int,
        sessions: list[ParsedSession],
    ) -> GlobalMetrics:
        return metrics.compute_global_metrics(project_count, session_count, sessions)

    async def global_metrics(self) -> GlobalMetrics:
        projects = await self.scan_all_projects()
        per_project = await asyncio.gather(*(self.load_sessions(project) for project in projects))
        sessions = [session for batch in per_project for session in batch]
        return self.compute_global_metrics(len(projects), len(sessions), sessions)

    # ── Cache ──────────────────────────────────────────────────────

    def invalidate_all(self) -> None:
        self.cache.invalidate_all()
        logger.info("Session cache cleared")

    def invalidate_session(self, session_id: str) -> None:
        self.cache.invalidate(session_id)

    # ── Watchers ───────────────────────────────────────────────────

    async def start_watcher(self, broadcast: BroadcastFn) -> None:
        if self.watcher is None:
            self.watcher = ActivityWatcher(
                self.claude_projects_dir,
                self.cache,
                broadcast,
                debounce_seconds=self.debounce_seconds,
            )
        await self.watcher.start()

    async def start_composer_watcher(self, broadcast: BroadcastFn) -> None:
        if self.composer_watcher is None:
            self.composer_watcher = ComposerWatcher(
                self.cursor_global_db_path,
                self.cursor_storage_dir,
                self.cache,
                broadcast,
                debounce_seconds=self.debounce_seconds,
            )
        await self.composer_watcher.start()

    async def stop_watcher(self) -> None:
        for watcher in (self.watcher, self.composer_watcher):
            if watcher is not None:
                await watcher.stop()

    @property
    def watcher_running(self) -> bool:
        return any(w is not None and w.is_running for w in (self.watcher, self.composer_watcher))
