"""Parse Claude Code JSONL session logs into ParsedSession models."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Union

from pydantic import BaseModel

from activity_tracker.models import (
    ConversationMessage,
    FileContribution,
    ParsedSession,
    TokenTotals,
    TokenUsage,
    ToolUseBlock,
)
from activity_tracker.parsers.events import (
    TURN_DURATION_SUBTYPE,
    AssistantEvent,
    SystemEvent,
    UserEvent,
    extract_text,
    iter_events,
    parse_event_line,
)

logger = logging.getLogger("tracker.parser")

FIRST_PROMPT_MAX_CHARS = 200
METADATA_LINE_LIMIT = 20

_SYNTHETIC_MODEL = "<synthetic>"


class SessionMetadata(BaseModel):
    cwd: str = ""
    firstPrompt: str = ""
    startedAt: str = ""


def count_lines(text: str) -> int:
    """Newline-delimited line count; empty text has no lines."""
    if not text:
        return 0
    return len(text.split("\n"))


def _add_file_lines(
    contributions: dict[str, FileContribution],
    file_path: str,
    added: int,
    removed: int,
) -> None:
    entry = contributions.get(file_path)
    if entry is None:
        entry = contributions[file_path] = FileContribution()
    entry.added += added
    entry.removed += removed


def _edit_line_delta(tool_input: dict[str, Any]) -> tuple[int, int]:
    """Return (added, removed) for an Edit-style tool input."""
    edits = tool_input.get("edits")
    if isinstance(edits, list):
        # MultiEdit carries a list of old/new pairs against one file
        added = removed = 0
        for edit in edits:
            if isinstance(edit, dict):
                added += count_lines(str(edit.get("new_string") or ""))
                removed += count_lines(str(edit.get("old_string") or ""))
        return added, removed
    new_lines = count_lines(str(tool_input.get("new_string") or ""))
    old_lines = count_lines(str(tool_input.get("old_string") or ""))
    return new_lines, old_lines


def _add_usage(totals: TokenTotals, usage: TokenUsage | None) -> None:
    if usage is None:
        return
    totals.input += usage.input_tokens or 0
    totals.output += usage.output_tokens or 0
    totals.cacheRead += usage.cache_read_input_tokens or 0
    totals.cacheCreation += usage.cache_creation_input_tokens or 0


def parse_session_lines(lines: Iterable[str], session_id: str, project_id: str) -> ParsedSession:
    """Fold raw JSONL lines into a ParsedSession.

    Streaming writes emit the same assistant turn several times under one
    ``message.id``; the last event for an id is the most complete and is the
    only one kept, so usage is counted once per logical message.
    """
    user_events: list[UserEvent] = []
    assistant_by_msg_id: dict[str, AssistantEvent] = {}
    assistant_no_id: list[AssistantEvent] = []
    duration_ms = 0.0
    cwd = ""
    started_at = ""
    last_active = ""

    for event in iter_events(lines):
        if not cwd and event.cwd:
            cwd = event.cwd

        ts = event.timestamp or ""
        if ts:
            if not started_at:
                started_at = ts
            last_active = ts

        if isinstance(event, SystemEvent):
            if event.subtype == TURN_DURATION_SUBTYPE and event.durationMs:
                duration_ms += event.durationMs
            continue

        message = event.message
        if message is None:
            continue

        if isinstance(event, UserEvent):
            if message.role == "user":
                user_events.append(event)
            continue

        if message.role == "assistant":
            if message.id:
                assistant_by_msg_id[message.id] = event
            else:
                assistant_no_id.append(event)

    # ISO-8601 timestamps in these logs are fixed width, so string order is time order
    ordered: list[Union[UserEvent, AssistantEvent]] = [
        *user_events,
        *assistant_by_msg_id.values(),
        *assistant_no_id,
    ]
    ordered.sort(key=lambda e: e.timestamp or "")

    messages: list[ConversationMessage] = []
    tool_usage: dict[str, int] = {}
    tokens = TokenTotals()
    lines_added = 0
    lines_removed = 0
    file_contributions: dict[str, FileContribution] = {}
    first_prompt = ""
    model = ""

    for event in ordered:
        message = event.message
        if message is None:
            continue
        ts = event.timestamp or ""
        content = message.content if message.content is not None else ""

        if isinstance(event, UserEvent):
            if not first_prompt:
                first_prompt = extract_text(content)
            messages.append(
                ConversationMessage(role="user", content=content, timestamp=ts, uuid=event.uuid or "")
            )
            continue

        messages.append(
            ConversationMessage(
                role="assistant",
                content=content,
                timestamp=ts,
                uuid=event.uuid or "",
                usage=message.usage,
            )
        )
        if not model and message.model and message.model != _SYNTHETIC_MODEL:
            model = message.model

        _add_usage(tokens, message.usage)

        if not isinstance(content, list):
            continue
        for block in content:
            if not isinstance(block, ToolUseBlock) or not block.name:
                continue
            tool_usage[block.name] = tool_usage.get(block.name, 0) + 1

            file_path = str(block.input.get("file_path") or "")
            if not file_path:
                continue
            if block.name == "Write" and block.input.get("content"):
                added = count_lines(str(block.input["content"]))
                lines_added += added
                _add_file_lines(file_contributions, file_path, added, 0)
            elif block.name in ("Edit", "MultiEdit"):
                added, removed = _edit_line_delta(block.input)
                lines_added += added
                lines_removed += removed
                _add_file_lines(file_contributions, file_path, added, removed)

    return ParsedSession(
        sessionId=session_id,
        projectId=project_id,
        cwd=cwd,
        messages=messages,
        toolUsage=tool_usage,
        totalTokens=tokens,
        durationMs=duration_ms,
        linesAdded=lines_added,
        linesRemoved=lines_removed,
        fileContributions=file_contributions,
        firstPrompt=first_prompt[:FIRST_PROMPT_MAX_CHARS],
        startedAt=started_at,
        lastActive=last_active,
        model=model,
        source="claude",
    )


def parse_session_text(raw: str, session_id: str, project_id: str) -> ParsedSession:
    return parse_session_lines(raw.split("\n"), session_id, project_id)


async def parse_session_file(file_path: str | Path, session_id: str, project_id: str) -> ParsedSession:
    """Read and parse one session log. Unreadable files yield an empty session."""
    path = Path(file_path)
    try:
        raw = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Could not read session log {path}: {e}")
        return ParsedSession(sessionId=session_id, projectId=project_id, source="claude")
    return parse_session_text(raw, session_id, project_id)


def _read_head_lines(path: Path, limit: int) -> list[str]:
    lines: list[str] = []
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for line in handle:
            lines.append(line)
            if len(lines) >= limit:
                break
    return lines


def metadata_from_lines(lines: Iterable[str]) -> SessionMetadata:
    meta = SessionMetadata()
    for line in lines:
        event = parse_event_line(line)
        if event is None:
            continue
        cwd = getattr(event, "cwd", None)
        timestamp = getattr(event, "timestamp", None)
        if not meta.cwd and cwd:
            meta.cwd = cwd
        if not meta.startedAt and timestamp:
            meta.startedAt = timestamp
        if (
            not meta.firstPrompt
            and isinstance(event, UserEvent)
            and event.message is not None
            and event.message.role == "user"
        ):
            meta.firstPrompt = extract_text(event.message.content)[:FIRST_PROMPT_MAX_CHARS]
        if meta.cwd and meta.firstPrompt and meta.startedAt:
            break
    return meta


async def parse_session_metadata(file_path: str | Path) -> SessionMetadata:
    """Cheap metadata read: only the first few lines of the log are looked at."""
    path = Path(file_path)
    try:
        lines = await asyncio.to_thread(_read_head_lines, path, METADATA_LINE_LIMIT)
    except OSError as e:
        logger.debug(f"Could not read session metadata from {path}: {e}")
        return SessionMetadata()
    return metadata_from_lines(lines)
