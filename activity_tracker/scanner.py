"""Discover sessions from every source and merge them into projects.

Claude Code projects are directories under ``~/.claude/projects`` whose names
encode the working directory lossily, so the real path is read back from the
first session that records a ``cwd``. Cursor workspaces record their folder in
``workspace.json``. A Cursor workspace joins a Claude project only when the two
paths are textually equal.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

from activity_tracker.date_utils import epoch_ms_to_datetime, file_mtime_datetime
from activity_tracker.db.composer_store import ComposerStore
from activity_tracker.db.connection import open_readonly
from activity_tracker.models import Project, SessionFile
from activity_tracker.parsers.composer import composer_created_at_ms
from activity_tracker.parsers.sessions import parse_session_metadata

logger = logging.getLogger("tracker.scanner")

SESSION_SUFFIX = ".jsonl"
UNRESOLVED_KEY_PREFIX = "claude:"
_REMOTE_FOLDER_PREFIX = "vscode-remote://"
_EPOCH = datetime.fromtimestamp(0, timezone.utc)


def humanize_name(project_id: str, path: str = "") -> str:
    """Human-readable project name.

    Prefers the basename of a known path; otherwise decodes the storage
    directory name (``-Users-me-Projects-my-app`` -> ``my-app``).
    """
    if path and not path.startswith(UNRESOLVED_KEY_PREFIX):
        name = PurePosixPath(path.replace("\\", "/").rstrip("/")).name
        # An unresolved project still points at its encoded storage directory
        if name and name != project_id:
            return name
    parts = project_id.split("-")
    for idx in range(len(parts) - 1, -1, -1):
        if parts[idx] == "Projects" and idx + 1 < len(parts):
            return "-".join(parts[idx + 1:])
    return "-".join(parts[-2:])


# ── Claude Code ────────────────────────────────────────────────────

def _list_session_files(project_dir: Path) -> list[SessionFile]:
    session_files: list[SessionFile] = []
    for entry in sorted(project_dir.iterdir(), key=lambda p: p.name):
        if entry.suffix != SESSION_SUFFIX or not entry.is_file():
            continue
        stats = entry.stat()
        session_files.append(
            SessionFile(
                id=entry.stem,
                path=str(entry),
                mtime=file_mtime_datetime(stats.st_mtime),
                size=stats.st_size,
                source="claude",
            )
        )
    return session_files


def _list_claude_projects(projects_dir: Path) -> list[Project]:
    if not projects_dir.is_dir():
        logger.info(f"Claude projects directory not found: {projects_dir}")
        return []

    projects: list[Project] = []
    for entry in sorted(projects_dir.iterdir(), key=lambda p: p.name):
        if not entry.is_dir():
            continue
        try:
            session_files = _list_session_files(entry)
        except OSError as e:
            logger.debug(f"Skipping unreadable project directory {entry}: {e}")
            continue
        if session_files:
            projects.append(
                Project(
                    id=entry.name,
                    path=str(entry),
                    source="claude",
                    sources=["claude"],
                    sessionFiles=session_files,
                )
            )
    return projects


async def scan_claude_projects(projects_dir: Path) -> list[Project]:
    try:
        return await asyncio.to_thread(_list_claude_projects, Path(projects_dir))
    except OSError as e:
        logger.warning(f"Failed to scan Claude projects in {projects_dir}: {e}")
        return []


async def resolve_project_path(project: Project) -> str:
    """First ``cwd`` recorded by any of the project's sessions, or ''."""
    for session_file in project.sessionFiles:
        meta = await parse_session_metadata(session_file.path)
        if meta.cwd:
            return meta.cwd
    return ""


# ── Cursor ─────────────────────────────────────────────────────────

def read_workspace_folder(workspace_json: Path) -> str:
    """Local folder a Cursor workspace points at; '' for remote or unreadable."""
    try:
        data = json.loads(workspace_json.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return ""
    folder = data.get("folder") if isinstance(data, dict) else None
    if not isinstance(folder, str) or not folder:
        return ""
    if folder.startswith(_REMOTE_FOLDER_PREFIX):
        return ""
    parsed = urlparse(folder)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    if parsed.scheme:
        return ""
    return folder


def _composer_mtime(raw_created_at: object) -> datetime:
    created_ms = composer_created_at_ms(raw_created_at)
    if created_ms is None:
        return _EPOCH
    return epoch_ms_to_datetime(created_ms)


async def _active_composer_ids(global_db_path: Path) -> set[str]:
    """Composers that have at least one bubble; unused composers are dropped."""
    if not await asyncio.to_thread(global_db_path.is_file):
        return set()
    try:
        async with open_readonly(global_db_path) as db:
            return await ComposerStore(db).composer_ids_with_bubbles()
    except sqlite3.Error as e:
        logger.warning(f"Failed to read Cursor global store {global_db_path}: {e}")
        return set()


def _workspace_folder(workspace_dir: Path) -> str:
    """Folder of a workspace that has a store; '' when either is missing."""
    if not (workspace_dir / "state.vscdb").is_file():
        return ""
    return read_workspace_folder(workspace_dir / "workspace.json")


async def _scan_workspace(workspace_dir: Path, active_composers: set[str]) -> Project | None:
    db_path = workspace_dir / "state.vscdb"
    folder = await asyncio.to_thread(_workspace_folder, workspace_dir)
    if not folder:
        return None

    try:
        async with open_readonly(db_path) as db:
            composers = await ComposerStore(db).list_composers()
    except sqlite3.Error as e:
        logger.debug(f"Skipping Cursor workspace {workspace_dir.name}: {e}")
        return None

    session_files = [
        SessionFile(
            id=composer["composerId"],
            path=str(db_path),
            mtime=_composer_mtime(composer.get("createdAt")),
            size=0,
            source="cursor",
        )
        for composer in composers
        if composer["composerId"] in active_composers
    ]
    if not session_files:
        return None

    return Project(
        id=f"cursor-{workspace_dir.name}",
        path=folder,
        source="cursor",
        sources=["cursor"],
        sessionFiles=session_files,
    )


async def scan_cursor_projects(storage_dir: Path, global_db_path: Path) -> list[Project]:
    storage_dir = Path(storage_dir)
    if not await asyncio.to_thread(storage_dir.is_dir):
        return []
    active_composers = await _active_composer_ids(Path(global_db_path))
    if not active_composers:
        return []
    try:
        dir_names = sorted(await asyncio.to_thread(os.listdir, storage_dir))
    except OSError as e:
        logger.warning(f"Failed to list Cursor workspaces in {storage_dir}: {e}")
        return []

    scanned = await asyncio.gather(
        *(_scan_workspace(storage_dir / name, active_composers) for name in dir_names)
    )
    return [project for project in scanned if project is not None]


# ── Merge ──────────────────────────────────────────────────────────

def _add_to(by_key: dict[str, Project], key: str, project: Project) -> None:
    existing = by_key.get(key)
    if existing is None:
        by_key[key] = project
        return
    existing.sessionFiles.extend(project.sessionFiles)
    for source in project.sources:
        if source not in existing.sources:
            existing.sources.append(source)


def merge_projects(
    claude_projects: list[Project],
    resolved_paths: list[str],
    cursor_projects: list[Project],
) -> list[Project]:
    """Merge by resolved path, Claude projects first.

    Unresolved Claude projects are keyed ``claude:<id>`` so they never merge.
    """
    by_key: dict[str, Project] = {}
    for project, resolved in zip(claude_projects, resolved_paths):
        if resolved:
            project.path = resolved
            _add_to(by_key, resolved, project)
        else:
            _add_to(by_key, f"{UNRESOLVED_KEY_PREFIX}{project.id}", project)

    for project in cursor_projects:
        _add_to(by_key, project.path, project)

    return list(by_key.values())


class ProjectScanner:
    """Stateless scan of all sources; safe to call on every request."""

    def __init__(
        self,
        claude_projects_dir: Path,
        cursor_storage_dir: Path,
        cursor_global_db_path: Path,
    ):
        self.claude_projects_dir = Path(claude_projects_dir)
        self.cursor_storage_dir = Path(cursor_storage_dir)
        self.cursor_global_db_path = Path(cursor_global_db_path)

    async def scan_claude(self) -> list[Project]:
        return await scan_claude_projects(self.claude_projects_dir)

    async def scan_cursor(self) -> list[Project]:
        return await scan_cursor_projects(self.cursor_storage_dir, self.cursor_global_db_path)

    async def scan_all(self) -> list[Project]:
        claude, cursor = await asyncio.gather(self.scan_claude(), self.scan_cursor())
        resolved = await asyncio.gather(*(resolve_project_path(p) for p in claude))
        merged = merge_projects(claude, list(resolved), cursor)
        logger.debug(
            f"Scanned {len(claude)} Claude and {len(cursor)} Cursor projects into {len(merged)}"
        )
        return merged
