"""Parse Cursor composer sessions out of its SQLite stores.

Bubbles (messages) live in the global store; the composer creation time, used
as an anchor for relative bubble timings, lives in the workspace store.
"""
from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from activity_tracker.date_utils import epoch_ms_to_iso
from activity_tracker.db.composer_store import ComposerStore
from activity_tracker.db.connection import open_readonly
from activity_tracker.models import (
    ConversationMessage,
    FileContribution,
    ParsedSession,
    TextBlock,
    TokenTotals,
)
from activity_tracker.parsers.sessions import FIRST_PROMPT_MAX_CHARS, count_lines

logger = logging.getLogger("tracker.composer")

BUBBLE_USER = 1
BUBBLE_ASSISTANT = 2

# Cursor stores some times as absolute epoch-ms, some as
# epoch-seconds and most bubble timings as offsets from composer creation.
ABSOLUTE_EPOCH_MS_THRESHOLD = 1_000_000_000_000
EPOCH_SECONDS_THRESHOLD = 1_000_000_000

# Cursor tool names -> Claude Code tool names
TOOL_NAME_MAP: dict[str, str] = {
    "edit_file": "Edit",
    "create_file": "Write",
    "run_terminal_command": "Bash",
    "read_file": "Read",
    "list_directory": "Glob",
    "file_search": "Glob",
    "search_files": "Grep",
    "codebase_search": "Grep",
    "grep_search": "Grep",
}


class BubbleTiming(BaseModel):
    clientStartTime: Optional[float] = None
    clientEndTime: Optional[float] = None
    clientSettleTime: Optional[float] = None


class BubbleTokenCount(BaseModel):
    inputTokens: Optional[int] = None
    outputTokens: Optional[int] = None


class CodeBlockUri(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fsPath: Optional[str] = Field(default=None, alias="_fsPath")
    path: Optional[str] = None


class CodeBlock(BaseModel):
    content: Optional[str] = None
    languageId: Optional[str] = None
    uri: Optional[CodeBlockUri] = None

    @property
    def file_path(self) -> str:
        if self.uri is None:
            return ""
        return self.uri.fsPath or self.uri.path or ""


class ToolFormerData(BaseModel):
    name: Optional[str] = None


class Bubble(BaseModel):
    type: int = 0
    text: Optional[str] = None
    bubbleId: Optional[str] = None
    tokenCount: Optional[BubbleTokenCount] = None
    codeBlocks: Optional[list[CodeBlock]] = None
    timingInfo: Optional[BubbleTiming] = None
    toolFormerData: Optional[ToolFormerData] = None


def normalize_tool_name(name: str) -> str:
    return TOOL_NAME_MAP.get(name, name)


def composer_created_at_ms(raw: Any) -> int | None:
    """Normalize a composer ``createdAt`` to epoch-ms; None when unusable."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    if raw > ABSOLUTE_EPOCH_MS_THRESHOLD:
        return int(raw)
    if raw > EPOCH_SECONDS_THRESHOLD:
        return int(raw * 1000)
    return None


def resolve_bubble_time(raw: float | None, base_epoch_ms: int | None) -> float | None:
    """Absolute epoch-ms above the threshold, otherwise an offset from creation."""
    if raw is None or raw <= 0:
        return None
    if raw > ABSOLUTE_EPOCH_MS_THRESHOLD:
        return raw
    if base_epoch_ms:
        return base_epoch_ms + raw
    return None


def _bubble_start(bubble: Bubble, base_epoch_ms: int | None) -> float | None:
    timing = bubble.timingInfo
    return resolve_bubble_time(timing.clientStartTime if timing else None, base_epoch_ms)


def _bubble_end(bubble: Bubble, base_epoch_ms: int | None) -> float | None:
    timing = bubble.timingInfo
    if timing is None:
        return None
    raw_end = timing.clientEndTime if timing.clientEndTime is not None else timing.clientSettleTime
    return resolve_bubble_time(raw_end, base_epoch_ms)


def sort_bubbles(bubbles: list[Bubble], created_at_ms: int | None) -> list[Bubble]:
    """Ascending by resolved start time; bubbles without one sort first."""
    return sorted(bubbles, key=lambda b: _bubble_start(b, created_at_ms) or 0)


def validate_bubbles(payloads: list[dict]) -> list[Bubble]:
    bubbles: list[Bubble] = []
    for payload in payloads:
        try:
            bubbles.append(Bubble.model_validate(payload))
        except ValidationError as e:
            logger.debug(f"Skipping malformed bubble: {e.error_count()} validation errors")
    return bubbles


def build_parsed_session(
    bubbles: list[Bubble],
    session_id: str,
    project_id: str,
    created_at_ms: int | None,
) -> ParsedSession:
    created_iso = epoch_ms_to_iso(created_at_ms)
    ordered = sort_bubbles(bubbles, created_at_ms)

    messages: list[ConversationMessage] = []
    tool_usage: dict[str, int] = {}
    tokens = TokenTotals()
    lines_added = 0
    file_contributions: dict[str, FileContribution] = {}
    first_prompt = ""
    started_at = ""
    last_active = ""
    human_lines = human_words = human_chars = 0
    duration_ms = 0.0

    for bubble in ordered:
        start = _bubble_start(bubble, created_at_ms)
        end = _bubble_end(bubble, created_at_ms)
        ts = epoch_ms_to_iso(start) if start else created_iso
        if ts:
            if not started_at:
                started_at = ts
            last_active = ts

        text = bubble.text or ""
        uuid = bubble.bubbleId or f"cursor-{session_id}-{len(messages)}"
        content = [TextBlock(text=text)] if text else []
        counts = bubble.tokenCount

        if bubble.type == BUBBLE_USER:
            stripped = text.strip()
            if stripped:
                if not first_prompt:
                    first_prompt = stripped
                human_lines += count_lines(stripped)
                human_words += len(stripped.split())
                human_chars += len(stripped)
            # The store reports input tokens as cumulative-so-far
            if counts and counts.inputTokens:
                tokens.input = max(tokens.input, counts.inputTokens)
            messages.append(ConversationMessage(role="user", content=content, timestamp=ts, uuid=uuid))
            continue

        if bubble.type != BUBBLE_ASSISTANT:
            continue

        if counts:
            tokens.output += counts.outputTokens or 0
            if counts.inputTokens:
                tokens.input = max(tokens.input, counts.inputTokens)

        if start and end:
            duration_ms += end - start

        tool_name = bubble.toolFormerData.name if bubble.toolFormerData else None
        if tool_name:
            normalized = normalize_tool_name(tool_name)
            tool_usage[normalized] = tool_usage.get(normalized, 0) + 1

        for block in bubble.codeBlocks or []:
            file_path = block.file_path
            if not block.content or not file_path:
                continue
            added = count_lines(block.content)
            lines_added += added
            entry = file_contributions.setdefault(file_path, FileContribution())
            entry.added += added
            tool_usage["Edit"] = tool_usage.get("Edit", 0) + 1

        messages.append(ConversationMessage(role="assistant", content=content, timestamp=ts, uuid=uuid))

    return ParsedSession(
        sessionId=session_id,
        projectId=project_id,
        cwd="",
        messages=messages,
        toolUsage=tool_usage,
        totalTokens=tokens,
        durationMs=duration_ms,
        linesAdded=lines_added,
        linesRemoved=0,
        fileContributions=file_contributions,
        firstPrompt=first_prompt[:FIRST_PROMPT_MAX_CHARS],
        startedAt=started_at or created_iso,
        lastActive=last_active or created_iso,
        humanLines=human_lines,
        humanWords=human_words,
        humanChars=human_chars,
        source="cursor",
    )


class ComposerSessionParser:
    """Parser callable for composer sessions.

    Called like the log parser: ``await parser(workspace_db_path, composer_id,
    project_id)``. Store errors degrade to an empty session.
    """

    def __init__(self, global_db_path: Path):
        self.global_db_path = Path(global_db_path)

    async def load_bubbles(self, composer_id: str) -> list[Bubble]:
        if not self.global_db_path.exists():
            return []
        try:
            async with open_readonly(self.global_db_path) as db:
                payloads = await ComposerStore(db).list_bubble_payloads(composer_id)
        except sqlite3.Error as e:
            logger.warning(f"Failed to load bubbles for composer {composer_id}: {e}")
            return []
        return validate_bubbles(payloads)

    async def composer_created_at(self, workspace_db_path: str | Path, composer_id: str) -> int | None:
        try:
            async with open_readonly(workspace_db_path) as db:
                head = await ComposerStore(db).find_composer(composer_id)
        except sqlite3.Error as e:
            logger.debug(f"Failed to read composer data from {workspace_db_path}: {e}")
            return None
        if not head:
            return None
        return composer_created_at_ms(head.get("createdAt"))

    async def __call__(self, db_path: str | Path, session_id: str, project_id: str) -> ParsedSession:
        bubbles = await self.load_bubbles(session_id)
        created_at_ms = await self.composer_created_at(db_path, session_id)
        return build_parsed_session(bubbles, session_id, project_id, created_at_ms)
