"""Pydantic models shared by the parsers, metrics and live updates."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

DataSource = Literal["claude", "cursor"]


# ── Content blocks ─────────────────────────────────────────────────

class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: Optional[str] = None


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: Optional[str] = None
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: Optional[str] = None
    content: Union[str, list[dict[str, Any]], None] = None
    is_error: Optional[bool] = None


class ImageBlock(BaseModel):
    type: Literal["image"] = "image"
    source: dict[str, Any] = Field(default_factory=dict)


class OtherBlock(BaseModel):
    """Block kinds we carry through untouched (thinking, documents, ...)."""

    model_config = ConfigDict(extra="allow")

    type: str = ""


_BLOCK_TAGS = {"text", "tool_use", "tool_result", "image"}


def _block_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return kind if kind in _BLOCK_TAGS else "other"


ContentBlock = Annotated[
    Union[
        Annotated[TextBlock, Tag("text")],
        Annotated[ToolUseBlock, Tag("tool_use")],
        Annotated[ToolResultBlock, Tag("tool_result")],
        Annotated[ImageBlock, Tag("image")],
        Annotated[OtherBlock, Tag("other")],
    ],
    Discriminator(_block_tag),
]

MessageContent = Union[str, list[ContentBlock]]


class TokenUsage(BaseModel):
    """Usage breakdown exactly as recorded on an assistant message."""

    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cache_creation_input_tokens: Optional[int] = None
    cache_read_input_tokens: Optional[int] = None
    cache_creation: Optional[dict[str, Any]] = None


# ── Normalized session ─────────────────────────────────────────────

class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: MessageContent = ""
    timestamp: str = ""
    uuid: str = ""
    usage: Optional[TokenUsage] = None


class TokenTotals(BaseModel):
    input: int = 0
    output: int = 0
    cacheRead: int = 0
    cacheCreation: int = 0


class FileContribution(BaseModel):
    added: int = 0
    removed: int = 0


class ParsedSession(BaseModel):
    sessionId: str
    projectId: str
    cwd: str = ""
    messages: list[ConversationMessage] = Field(default_factory=list)
    toolUsage: dict[str, int] = Field(default_factory=dict)
    totalTokens: TokenTotals = Field(default_factory=TokenTotals)
    durationMs: float = 0
    linesAdded: int = 0
    linesRemoved: int = 0
    fileContributions: dict[str, FileContribution] = Field(default_factory=dict)
    firstPrompt: str = ""
    startedAt: str = ""
    lastActive: str = ""
    humanLines: int = 0
    humanWords: int = 0
    humanChars: int = 0
    model: str = ""
    source: DataSource = "claude"


# ── Scanner output ─────────────────────────────────────────────────

class SessionFile(BaseModel):
    id: str
    path: str
    mtime: datetime
    size: int = 0
    source: DataSource = "claude"


class Project(BaseModel):
    id: str
    path: str  # resolved working directory, or the storage dir when unresolved
    source: DataSource = "claude"  # primary source
    sources: list[DataSource] = Field(default_factory=list)
    sessionFiles: list[SessionFile] = Field(default_factory=list)


# ── Rollups ────────────────────────────────────────────────────────

class TimelineEntry(BaseModel):
    date: str
    sessions: int = 0
    messages: int = 0
    claudeSessions: int = 0
    claudeMessages: int = 0
    cursorSessions: int = 0
    cursorMessages: int = 0
    tokenInput: int = 0
    tokenOutput: int = 0


class SourceLines(BaseModel):
    added: int = 0
    removed: int = 0


class SessionMetrics(BaseModel):
    messageCount: int = 0
    userMessages: int = 0
    assistantMessages: int = 0
    toolUsage: dict[str, int] = Field(default_factory=dict)
    totalTokens: TokenTotals = Field(default_factory=TokenTotals)
    durationMs: float = 0
    linesAdded: int = 0
    linesRemoved: int = 0
    fileContributions: dict[str, FileContribution] = Field(default_factory=dict)
    humanLines: int = 0
    humanWords: int = 0
    humanChars: int = 0


class ProjectMetrics(BaseModel):
    totalSessions: int = 0
    totalMessages: int = 0
    totalTokens: TokenTotals = Field(default_factory=TokenTotals)
    toolUsage: dict[str, int] = Field(default_factory=dict)
    totalLinesAdded: int = 0
    totalLinesRemoved: int = 0
    linesBySource: dict[str, SourceLines] = Field(default_factory=dict)
    fileContributions: dict[str, FileContribution] = Field(default_factory=dict)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    humanLines: int = 0
    humanWords: int = 0
    humanChars: int = 0


class GlobalMetrics(ProjectMetrics):
    totalProjects: int = 0


# ── Live updates ───────────────────────────────────────────────────

class ActivityEvent(BaseModel):
    """Best-effort summary of the latest line of a changed session.

    Not authoritative: counts and cost come from a head/tail sample of
    large files.
    """

    type: str = "session:updated"
    projectId: str
    projectName: str = ""
    sessionId: str
    timestamp: str
    source: DataSource = "claude"
    action: str = "Activity detected"
    detail: str = ""
    firstPrompt: str = ""
    cwd: str = ""
    model: str = ""
    costUsd: Optional[float] = None
    messageCount: int = 0
    toolUseCount: int = 0
