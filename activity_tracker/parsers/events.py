"""Typed view of raw Claude Code JSONL events.

Each line of a session log is one event. Events are decoded into a tagged
union keyed on ``type``; kinds that carry no conversation content
(``progress``, ``queue-operation``, ``file-history-snapshot`` and anything we
do not recognise) decode to :class:`NoiseEvent` so callers can drop them with
a single ``isinstance`` check.
"""
from __future__ import annotations

import re
from typing import Annotated, Any, Iterable, Iterator, Literal, Optional, Union

from pydantic import BaseModel, Discriminator, Tag, TypeAdapter, ValidationError

from activity_tracker.models import ContentBlock, TextBlock, TokenUsage

NOISE_TYPES = frozenset({"progress", "queue-operation", "file-history-snapshot"})
TURN_DURATION_SUBTYPE = "turn_duration"

_WHITESPACE_PATTERN = re.compile(r"\s+")


class RawMessage(BaseModel):
    role: Optional[str] = None
    content: Union[str, list[ContentBlock], None] = None
    model: Optional[str] = None
    id: Optional[str] = None
    usage: Optional[TokenUsage] = None
    stop_reason: Optional[str] = None


class _EventBase(BaseModel):
    parentUuid: Optional[str] = None
    sessionId: Optional[str] = None
    cwd: Optional[str] = None
    version: Optional[str] = None
    gitBranch: Optional[str] = None
    uuid: Optional[str] = None
    timestamp: Optional[str] = None


class UserEvent(_EventBase):
    type: Literal["user"]
    message: Optional[RawMessage] = None


class AssistantEvent(_EventBase):
    type: Literal["assistant"]
    message: Optional[RawMessage] = None


class SystemEvent(_EventBase):
    type: Literal["system"]
    subtype: Optional[str] = None
    durationMs: Optional[float] = None


class NoiseEvent(BaseModel):
    type: Any = None


def _event_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    if kind in ("user", "assistant", "system"):
        return kind
    return "noise"


RawEvent = Annotated[
    Union[
        Annotated[UserEvent, Tag("user")],
        Annotated[AssistantEvent, Tag("assistant")],
        Annotated[SystemEvent, Tag("system")],
        Annotated[NoiseEvent, Tag("noise")],
    ],
    Discriminator(_event_tag),
]

_EVENT_ADAPTER: TypeAdapter[RawEvent] = TypeAdapter(RawEvent)


def parse_event_line(line: str) -> RawEvent | None:
    """Decode one JSONL line. Blank and malformed lines return None."""
    stripped = line.strip()
    if not stripped:
        return None
    try:
        return _EVENT_ADAPTER.validate_json(stripped)
    except ValidationError:
        return None


def iter_events(lines: Iterable[str]) -> Iterator[RawEvent]:
    """Yield decoded, non-noise events, skipping malformed lines."""
    for line in lines:
        event = parse_event_line(line)
        if event is None or isinstance(event, NoiseEvent):
            continue
        yield event


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def extract_text(content: Any) -> str:
    """Return the first text of a message content, whitespace-collapsed."""
    if isinstance(content, str):
        return collapse_whitespace(content)
    if isinstance(content, list):
        for block in content:
            if isinstance(block, TextBlock) and block.text:
                return collapse_whitespace(block.text)
    return ""
