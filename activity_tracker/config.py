"""Activity tracker configuration."""
import os
import sys
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value or not value.strip():
        return default
    return Path(value.strip()).expanduser()


def _default_cursor_user_dir() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "Cursor" / "User"
    if sys.platform.startswith("win"):
        appdata = os.getenv("APPDATA")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / "Cursor" / "User"
    return home / ".config" / "Cursor" / "User"


# Claude Code keeps one directory per project, one JSONL log per session
CLAUDE_PROJECTS_DIR = _env_path("TRACKER_CLAUDE_PROJECTS_DIR", Path.home() / ".claude" / "projects")

# Cursor keeps composer metadata per workspace and bubbles in a global store
CURSOR_USER_DIR = _env_path("TRACKER_CURSOR_USER_DIR", _default_cursor_user_dir())
CURSOR_WORKSPACE_STORAGE_DIR = CURSOR_USER_DIR / "workspaceStorage"
CURSOR_GLOBAL_DB_PATH = CURSOR_USER_DIR / "globalStorage" / "state.vscdb"

# Live updates
WATCHER_ENABLED = _env_bool("TRACKER_WATCHER_ENABLED", True)
COMPOSER_WATCHER_ENABLED = _env_bool("TRACKER_COMPOSER_WATCHER_ENABLED", True)
WATCH_DEBOUNCE_MS = _env_int("TRACKER_WATCH_DEBOUNCE_MS", 500)

# Server settings
HOST = os.getenv("TRACKER_HOST", "0.0.0.0")
PORT = _env_int("TRACKER_PORT", 3001)

# CORS
FRONTEND_ORIGIN = os.getenv("TRACKER_FRONTEND_ORIGIN", "http://localhost:5173")
