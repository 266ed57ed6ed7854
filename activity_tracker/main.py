"""Activity tracker FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from activity_tracker import config
from activity_tracker.engine import TrackerEngine
from activity_tracker.routers.api import cache_router, metrics_router, projects_router, sessions_router
from activity_tracker.routers.live import LiveHub, live_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("tracker")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Activity tracker starting up")

    engine = TrackerEngine()
    hub = LiveHub()
    app.state.engine = engine
    app.state.live_hub = hub

    if config.WATCHER_ENABLED:
        await engine.start_watcher(hub.broadcast)
    if config.COMPOSER_WATCHER_ENABLED:
        await engine.start_composer_watcher(hub.broadcast)

    yield

    logger.info("Activity tracker shutting down")
    await engine.stop_watcher()


app = FastAPI(
    title="Activity Tracker API",
    description="Unified activity and metrics for Claude Code and Cursor sessions",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(projects_router)
app.include_router(sessions_router)
app.include_router(metrics_router)
app.include_router(cache_router)
app.include_router(live_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    engine = getattr(app.state, "engine", None)
    return {
        "status": "ok",
        "watcher": "running" if engine is not None and engine.watcher_running else "stopped",
        "cachedSessions": len(engine.cache) if engine is not None else 0,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("activity_tracker.main:app", host=config.HOST, port=config.PORT)
