"""Read-only REST routes over the tracker engine."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from activity_tracker.date_utils import format_datetime_utc
from activity_tracker.engine import TrackerEngine
from activity_tracker.models import (
    GlobalMetrics,
    ParsedSession,
    Project,
    ProjectMetrics,
    SessionMetrics,
)
from activity_tracker.scanner import humanize_name

logger = logging.getLogger("tracker.api")

projects_router = APIRouter(prefix="/api/projects", tags=["projects"])
sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])
metrics_router = APIRouter(prefix="/api/metrics", tags=["metrics"])
cache_router = APIRouter(prefix="/api/cache", tags=["cache"])


class ProjectSummary(BaseModel):
    id: str
    name: str
    path: str
    source: str
    sources: list[str]
    sessionCount: int
    lastActive: str = ""


def _get_engine(request: Request) -> TrackerEngine:
    engine = getattr(request.app.state, "engine", None)
    if not engine:
        raise HTTPException(status_code=503, detail="Tracker engine not initialized")
    return engine


def _summarize(project: Project) -> ProjectSummary:
    newest = max((sf.mtime for sf in project.sessionFiles), default=None)
    return ProjectSummary(
        id=project.id,
        name=humanize_name(project.id, project.path),
        path=project.path,
        source=project.source,
        sources=list(project.sources),
        sessionCount=len(project.sessionFiles),
        lastActive=format_datetime_utc(newest) if newest else "",
    )


async def _require_project(engine: TrackerEngine, project_id: str) -> Project:
    project = await engine.find_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return project


async def _require_session(engine: TrackerEngine, session_id: str) -> ParsedSession:
    session = await engine.find_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return session


# ── Projects ───────────────────────────────────────────────────────

@projects_router.get("", response_model=list[ProjectSummary])
async def list_projects(request: Request):
    """All projects, most recently active first."""
    engine = _get_engine(request)
    summaries = [_summarize(project) for project in await engine.scan_all_projects()]
    return sorted(summaries, key=lambda s: s.lastActive, reverse=True)


@projects_router.get("/{project_id}", response_model=Project)
async def get_project(project_id: str, request: Request):
    return await _require_project(_get_engine(request), project_id)


@projects_router.get("/{project_id}/sessions", response_model=list[ParsedSession])
async def list_project_sessions(project_id: str, request: Request):
    engine = _get_engine(request)
    project = await _require_project(engine, project_id)
    sessions = await engine.load_sessions(project)
    return sorted(sessions, key=lambda s: s.lastActive, reverse=True)


# ── Sessions ───────────────────────────────────────────────────────

@sessions_router.get("/{session_id}", response_model=ParsedSession)
async def get_session(session_id: str, request: Request):
    return await _require_session(_get_engine(request), session_id)


# ── Metrics ────────────────────────────────────────────────────────

@metrics_router.get("/global", response_model=GlobalMetrics)
async def get_global_metrics(request: Request):
    return await _get_engine(request).global_metrics()


@metrics_router.get("/project/{project_id}", response_model=ProjectMetrics)
async def get_project_metrics(project_id: str, request: Request):
    engine = _get_engine(request)
    project = await _require_project(engine, project_id)
    return engine.compute_project_metrics(await engine.load_sessions(project))


@metrics_router.get("/session/{session_id}", response_model=SessionMetrics)
async def get_session_metrics(session_id: str, request: Request):
    engine = _get_engine(request)
    return engine.compute_session_metrics(await _require_session(engine, session_id))


# ── Cache ──────────────────────────────────────────────────────────

@cache_router.post("/invalidate")
async def invalidate_cache(request: Request):
    engine = _get_engine(request)
    cleared = len(engine.cache)
    engine.invalidate_all()
    return {"status": "ok", "cleared": cleared}
