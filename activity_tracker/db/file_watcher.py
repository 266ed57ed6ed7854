"""Live activity watchers built on watchfiles.

``ActivityWatcher`` follows the Claude Code projects tree; ``ComposerWatcher``
follows the Cursor global store. Both debounce bursts of writes per key, drop
stale cache entries and push an ``ActivityEvent`` to a broadcast callback.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import sqlite3
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from watchfiles import Change, awatch

from activity_tracker.activity import ExtractedAction, extract_latest_action, summarize_composer
from activity_tracker.cache import SessionCache
from activity_tracker.date_utils import utc_now_iso
from activity_tracker.db.composer_store import ComposerStore
from activity_tracker.db.connection import open_readonly
from activity_tracker.model_identity import short_model_name
from activity_tracker.models import ActivityEvent, Project, SessionFile
from activity_tracker.parsers.composer import ComposerSessionParser, build_parsed_session, sort_bubbles
from activity_tracker.scanner import SESSION_SUFFIX, humanize_name, scan_cursor_projects

logger = logging.getLogger("tracker.watcher")

BroadcastFn = Callable[[ActivityEvent], Union[Awaitable[None], None]]

# Subagent transcripts live beside their parent session and are not sessions
SUBAGENTS_DIR = "subagents"
STORE_FILE_NAMES = ("state.vscdb", "state.vscdb-wal")
DEFAULT_DEBOUNCE_SECONDS = 0.5
# Coalescing window of the watchfiles backend; per-key debounce happens on top
_AWATCH_DEBOUNCE_MS = 50


class _DebouncedWatcher:
    """Shared start/stop and per-key debounce plumbing.

    Each key has at most one pending timer; a new notification cancels it and
    schedules a fresh one. Processing tasks that already started are left to
    finish on stop.
    """

    name = "watcher"

    def __init__(self, broadcast: BroadcastFn, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS):
        self.broadcast = broadcast
        self.debounce_seconds = debounce_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._inflight: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_keys(self) -> list[str]:
        return list(self._timers)

    def watch_target(self) -> Path | None:
        raise NotImplementedError

    def key_for(self, change: Change, path: Path) -> str | None:
        raise NotImplementedError

    async def process(self, key: str) -> None:
        raise NotImplementedError

    async def on_start(self) -> None:
        return None

    async def start(self) -> None:
        if self._running:
            logger.warning(f"{self.name} already running")
            return
        target = self.watch_target()
        if target is None or not target.is_dir():
            logger.info(f"{self.name} not started, nothing to watch at {target}")
            return
        await self.on_start()
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(target))
        logger.info(f"{self.name} started on {target}")

    async def stop(self) -> None:
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        logger.info(f"{self.name} stopped")

    async def drain(self) -> None:
        """Wait for processing tasks that have already fired."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _watch_loop(self, target: Path) -> None:
        try:
            async for changes in awatch(
                target,
                stop_event=self._stop_event,
                recursive=True,
                debounce=_AWATCH_DEBOUNCE_MS,
            ):
                if not self._running:
                    break
                for change_type, path_str in changes:
                    key = self.key_for(change_type, Path(path_str))
                    if key is not None:
                        self.notify(key)
        except asyncio.CancelledError:
            logger.info(f"{self.name} task cancelled")
        except Exception as e:
            logger.error(f"{self.name} error: {e}")
        finally:
            self._running = False

    def notify(self, key: str) -> None:
        """Record a change for ``key`` and (re)start its debounce timer."""
        loop = asyncio.get_running_loop()
        pending = self._timers.pop(key, None)
        if pending is not None:
            pending.cancel()
        self._timers[key] = loop.call_later(self.debounce_seconds, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        task = asyncio.get_running_loop().create_task(self._process_safely(key))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _process_safely(self, key: str) -> None:
        try:
            await self.process(key)
        except Exception as e:
            logger.error(f"{self.name} failed to process {key}: {e}")

    async def emit(self, event: ActivityEvent) -> None:
        try:
            result = self.broadcast(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Broadcast of {event.sessionId} failed: {e}")


class ActivityWatcher(_DebouncedWatcher):
    """Watch Claude Code session logs and report each session's latest action."""

    name = "Activity watcher"

    def __init__(
        self,
        projects_dir: Path,
        cache: SessionCache,
        broadcast: BroadcastFn,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ):
        super().__init__(broadcast, debounce_seconds)
        self.projects_dir = Path(projects_dir)
        self.cache = cache

    def watch_target(self) -> Path | None:
        return self.projects_dir

    def key_for(self, change: Change, path: Path) -> str | None:
        if change == Change.deleted:
            return None
        if path.suffix != SESSION_SUFFIX or SUBAGENTS_DIR in str(path):
            return None
        return str(path)

    def project_id_for(self, path: Path) -> str:
        """Encoded project directory name, the first segment under the root."""
        try:
            relative = path.relative_to(self.projects_dir)
        except ValueError:
            return path.parent.name
        return relative.parts[0] if len(relative.parts) > 1 else ""

    async def process(self, key: str) -> None:
        path = Path(key)
        session_id = path.stem
        project_id = self.project_id_for(path)
        self.cache.invalidate(session_id)

        try:
            summary = await asyncio.to_thread(extract_latest_action, path)
        except Exception as e:
            logger.warning(f"Activity summary failed for {path}: {e}")
            summary = ExtractedAction()

        event = ActivityEvent(
            projectId=project_id,
            projectName=humanize_name(project_id, summary.cwd),
            sessionId=session_id,
            timestamp=utc_now_iso(),
            source="claude",
            **summary.model_dump(),
        )
        logger.debug(f"{project_id}/{session_id}: {event.action} [{short_model_name(event.model) or 'unknown model'}]")
        await self.emit(event)


class ComposerWatcher(_DebouncedWatcher):
    """Watch the Cursor global store and report composers whose bubbles changed.

    The store changes as a whole, so every notification shares one key and
    per-composer bubble signatures are diffed against the last snapshot.
    """

    name = "Composer watcher"
    STORE_KEY = "composer-store"

    def __init__(
        self,
        global_db_path: Path,
        workspace_storage_dir: Path,
        cache: SessionCache,
        broadcast: BroadcastFn,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ):
        super().__init__(broadcast, debounce_seconds)
        self.global_db_path = Path(global_db_path)
        self.workspace_storage_dir = Path(workspace_storage_dir)
        self.cache = cache
        self.parser = ComposerSessionParser(self.global_db_path)
        self._signatures: Optional[dict[str, tuple[int, int, int]]] = None

    def watch_target(self) -> Path | None:
        return self.global_db_path.parent

    def key_for(self, change: Change, path: Path) -> str | None:
        if path.name not in STORE_FILE_NAMES:
            return None
        return self.STORE_KEY

    async def on_start(self) -> None:
        self._signatures = await self.read_signatures()

    async def read_signatures(self) -> Optional[dict[str, tuple[int, int, int]]]:
        if not await asyncio.to_thread(self.global_db_path.is_file):
            return None
        try:
            async with open_readonly(self.global_db_path) as db:
                return await ComposerStore(db).bubble_signatures()
        except sqlite3.Error as e:
            logger.warning(f"Failed to read composer bubble signatures: {e}")
            return None

    async def changed_composers(self) -> list[str]:
        """Composer ids whose bubbles were added or rewritten since the last snapshot."""
        signatures = await self.read_signatures()
        if signatures is None:
            return []
        previous = self._signatures
        self._signatures = signatures
        if previous is None:
            return []
        return sorted(cid for cid, signature in signatures.items() if previous.get(cid) != signature)

    async def process(self, key: str) -> None:
        changed = await self.changed_composers()
        if not changed:
            return

        projects = await scan_cursor_projects(self.workspace_storage_dir, self.global_db_path)
        owners = {
            session_file.id: (project, session_file)
            for project in projects
            for session_file in project.sessionFiles
        }
        for composer_id in changed:
            self.cache.invalidate(composer_id)
            owner = owners.get(composer_id)
            if owner is None:
                logger.debug(f"Composer {composer_id} has no known workspace")
                continue
            project, session_file = owner
            await self.emit(await self.composer_event(composer_id, project, session_file))

    async def composer_event(
        self,
        composer_id: str,
        project: Project,
        session_file: SessionFile,
    ) -> ActivityEvent:
        bubbles = await self.parser.load_bubbles(composer_id)
        created_at_ms = await self.parser.composer_created_at(session_file.path, composer_id)
        session = build_parsed_session(bubbles, composer_id, project.id, created_at_ms)
        summary = summarize_composer(session, sort_bubbles(bubbles, created_at_ms))
        if not summary.cwd:
            summary.cwd = project.path
        return ActivityEvent(
            projectId=project.id,
            projectName=humanize_name(project.id, project.path),
            sessionId=composer_id,
            timestamp=utc_now_iso(),
            source="cursor",
            **summary.model_dump(),
        )
