"""Summaries of the latest action in a changed session log.

Runs on every debounced file change, so it never parses a whole large log:
files up to 32 KB are read in full, bigger ones only as an 8 KB head (stable
metadata) and an 8 KB tail (latest action). Counts and cost derived from a
head/tail sample are approximate.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Sequence

from pydantic import BaseModel

from activity_tracker.model_identity import estimate_cost
from activity_tracker.models import ParsedSession, TextBlock, TokenUsage, ToolResultBlock, ToolUseBlock
from activity_tracker.parsers.composer import BUBBLE_ASSISTANT, BUBBLE_USER, Bubble, normalize_tool_name
from activity_tracker.parsers.events import (
    TURN_DURATION_SUBTYPE,
    AssistantEvent,
    NoiseEvent,
    RawEvent,
    SystemEvent,
    UserEvent,
    collapse_whitespace,
    extract_text,
    parse_event_line,
)
from activity_tracker.parsers.sessions import FIRST_PROMPT_MAX_CHARS

logger = logging.getLogger("tracker.watcher")

SMALL_FILE_BYTES = 32 * 1024
HEAD_TAIL_BYTES = 8 * 1024
DETAIL_MAX_CHARS = 120
COMMAND_MAX_CHARS = 100
URL_MAX_CHARS = 80

DEFAULT_ACTION = "Activity detected"


class ExtractedAction(BaseModel):
    action: str = DEFAULT_ACTION
    detail: str = ""
    firstPrompt: str = ""
    cwd: str = ""
    model: str = ""
    costUsd: Optional[float] = None
    messageCount: int = 0
    toolUseCount: int = 0


def short_path(path: str) -> str:
    parts = path.split("/")
    if len(parts) <= 3:
        return path
    return ".../" + "/".join(parts[-2:])


def summarize_tool_input(name: str, tool_input: dict[str, Any] | None) -> str:
    if not tool_input:
        return ""
    if name in ("Read", "Write", "Edit", "MultiEdit"):
        return short_path(str(tool_input.get("file_path") or ""))
    if name == "Bash":
        return str(tool_input.get("command") or "")[:COMMAND_MAX_CHARS]
    if name == "Glob":
        return str(tool_input.get("pattern") or "")
    if name == "Grep":
        summary = f"/{tool_input.get('pattern') or ''}/"
        if tool_input.get("path"):
            summary += f" in {short_path(str(tool_input['path']))}"
        return summary
    if name in ("Agent", "Task"):
        return str(tool_input.get("description") or tool_input.get("prompt") or "")[:COMMAND_MAX_CHARS]
    if name == "WebSearch":
        return str(tool_input.get("query") or "")
    if name == "WebFetch":
        return str(tool_input.get("url") or "")[:URL_MAX_CHARS]
    return ""


def read_head_tail(path: Path) -> tuple[list[str], list[str], bool]:
    """Return (head lines, tail lines, whole file read)."""
    size = path.stat().st_size
    with path.open("rb") as handle:
        if size <= SMALL_FILE_BYTES:
            lines = handle.read().decode("utf-8", errors="replace").split("\n")
            return lines, lines, True
        head = handle.read(HEAD_TAIL_BYTES)
        handle.seek(max(0, size - HEAD_TAIL_BYTES))
        tail = handle.read(HEAD_TAIL_BYTES)
    # Cut lines at either edge fail to decode as JSON and are skipped
    return (
        head.decode("utf-8", errors="replace").split("\n"),
        tail.decode("utf-8", errors="replace").split("\n"),
        False,
    )


def _head_metadata(events: Sequence[RawEvent | None], meta: ExtractedAction) -> None:
    for event in events:
        if event is None or isinstance(event, NoiseEvent):
            continue
        if not meta.cwd and event.cwd:
            meta.cwd = event.cwd
        message = getattr(event, "message", None)
        if not meta.model and message is not None and message.model:
            meta.model = message.model
        if not meta.firstPrompt and isinstance(event, UserEvent) and message is not None:
            meta.firstPrompt = extract_text(message.content)[:FIRST_PROMPT_MAX_CHARS]
        if meta.firstPrompt and meta.cwd and meta.model:
            break


def _running_counts(events: Sequence[RawEvent | None], meta: ExtractedAction) -> None:
    user_count = 0
    assistant_by_id: dict[str, AssistantEvent] = {}
    assistant_no_id: list[AssistantEvent] = []
    for event in events:
        if isinstance(event, UserEvent):
            user_count += 1
        elif isinstance(event, AssistantEvent):
            msg_id = event.message.id if event.message else None
            if msg_id:
                assistant_by_id[msg_id] = event
            else:
                assistant_no_id.append(event)

    tool_uses = 0
    cost = 0.0
    for event in [*assistant_by_id.values(), *assistant_no_id]:
        message = event.message
        if message is None:
            continue
        if isinstance(message.content, list):
            tool_uses += sum(1 for block in message.content if isinstance(block, ToolUseBlock))
        usage: TokenUsage | None = message.usage
        if usage is not None:
            cost += estimate_cost(
                message.model or meta.model,
                usage.input_tokens or 0,
                usage.output_tokens or 0,
                usage.cache_read_input_tokens or 0,
            )

    meta.messageCount = user_count + len(assistant_by_id) + len(assistant_no_id)
    meta.toolUseCount = tool_uses
    meta.costUsd = cost or None


def _first_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, TextBlock):
                return block.text or ""
    return ""


def latest_action(tail_events: Sequence[RawEvent | None]) -> tuple[str, str] | None:
    """Walk backwards to the most recent meaningful event."""
    for event in reversed(tail_events):
        if event is None or isinstance(event, NoiseEvent):
            continue

        if isinstance(event, SystemEvent):
            if event.subtype == TURN_DURATION_SUBTYPE:
                seconds = int((event.durationMs or 0) / 1000 + 0.5)
                return "Turn completed", f"{seconds}s"
            return f"System: {event.subtype or 'event'}", ""

        message = event.message
        if message is None:
            continue
        content = message.content

        if isinstance(event, AssistantEvent):
            if isinstance(content, list):
                for block in reversed(content):
                    if isinstance(block, ToolUseBlock):
                        return f"Using {block.name}", summarize_tool_input(block.name, block.input)
                    if isinstance(block, TextBlock) and block.text and block.text.strip():
                        return "Responding", block.text.strip()[:DETAIL_MAX_CHARS]
            elif isinstance(content, str) and content.strip():
                return "Responding", content.strip()[:DETAIL_MAX_CHARS]
            continue

        if isinstance(content, list) and any(isinstance(b, ToolResultBlock) for b in content):
            return "Tool result received", ""
        text = _first_text(content).strip()
        if text:
            return "User message", collapse_whitespace(text)[:DETAIL_MAX_CHARS]
    return None


def extract_latest_action(path: str | Path) -> ExtractedAction:
    """Best-effort summary; unreadable files yield the default action."""
    try:
        head_lines, tail_lines, whole = read_head_tail(Path(path))
    except OSError as e:
        logger.debug(f"Could not read {path} for activity summary: {e}")
        return ExtractedAction()

    head_events = [parse_event_line(line) for line in head_lines]
    tail_events = head_events if whole else [parse_event_line(line) for line in tail_lines]

    meta = ExtractedAction()
    _head_metadata(head_events, meta)
    _running_counts(head_events if whole else [*head_events, *tail_events], meta)

    found = latest_action(tail_events)
    if found is not None:
        meta.action, meta.detail = found
    return meta


# ── Composer sessions ──────────────────────────────────────────────

def composer_latest_action(bubble: Bubble) -> tuple[str, str] | None:
    text = (bubble.text or "").strip()
    if bubble.type == BUBBLE_USER:
        return ("User message", collapse_whitespace(text)[:DETAIL_MAX_CHARS]) if text else None
    if bubble.type != BUBBLE_ASSISTANT:
        return None
    tool_name = bubble.toolFormerData.name if bubble.toolFormerData else None
    if tool_name:
        return f"Using {normalize_tool_name(tool_name)}", ""
    for block in reversed(bubble.codeBlocks or []):
        if block.file_path:
            return "Using Edit", short_path(block.file_path)
    if text:
        return "Responding", text[:DETAIL_MAX_CHARS]
    return None


def summarize_composer(session: ParsedSession, ordered_bubbles: Sequence[Bubble]) -> ExtractedAction:
    """Summary of a composer from its parsed session and time-ordered bubbles."""
    tokens = session.totalTokens
    meta = ExtractedAction(
        firstPrompt=session.firstPrompt,
        cwd=session.cwd,
        model=session.model,
        messageCount=len(session.messages),
        toolUseCount=sum(session.toolUsage.values()),
        costUsd=estimate_cost(session.model, tokens.input, tokens.output) or None,
    )
    for bubble in reversed(ordered_bubbles):
        found = composer_latest_action(bubble)
        if found is not None:
            meta.action, meta.detail = found
            break
    return meta
