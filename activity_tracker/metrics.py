"""Fold parsed sessions into per-session, per-project and global rollups."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from activity_tracker.date_utils import day_of
from activity_tracker.models import (
    FileContribution,
    GlobalMetrics,
    ParsedSession,
    ProjectMetrics,
    SessionMetrics,
    SourceLines,
    TimelineEntry,
    TokenTotals,
)

# Bucket for sessions that never recorded a timestamp
UNKNOWN_DAY = "unknown"


@dataclass
class Rollup:
    tokens: TokenTotals = field(default_factory=TokenTotals)
    tool_usage: dict[str, int] = field(default_factory=dict)
    total_messages: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    lines_by_source: dict[str, SourceLines] = field(default_factory=dict)
    file_contributions: dict[str, FileContribution] = field(default_factory=dict)
    human_lines: int = 0
    human_words: int = 0
    human_chars: int = 0
    timeline: list[TimelineEntry] = field(default_factory=list)


def compute_session_metrics(session: ParsedSession) -> SessionMetrics:
    user_messages = sum(1 for m in session.messages if m.role == "user")
    return SessionMetrics(
        messageCount=len(session.messages),
        userMessages=user_messages,
        assistantMessages=len(session.messages) - user_messages,
        toolUsage=dict(session.toolUsage),
        totalTokens=session.totalTokens.model_copy(),
        durationMs=session.durationMs,
        linesAdded=session.linesAdded,
        linesRemoved=session.linesRemoved,
        fileContributions={
            path: contribution.model_copy() for path, contribution in session.fileContributions.items()
        },
        humanLines=session.humanLines,
        humanWords=session.humanWords,
        humanChars=session.humanChars,
    )


def _bucket(day_map: dict[str, TimelineEntry], session: ParsedSession) -> None:
    day = day_of(session.startedAt) or UNKNOWN_DAY
    entry = day_map.get(day)
    if entry is None:
        entry = day_map[day] = TimelineEntry(date=day)
    message_count = len(session.messages)
    entry.sessions += 1
    entry.messages += message_count
    if session.source == "cursor":
        entry.cursorSessions += 1
        entry.cursorMessages += message_count
    else:
        entry.claudeSessions += 1
        entry.claudeMessages += message_count
    entry.tokenInput += session.totalTokens.input
    entry.tokenOutput += session.totalTokens.output


def aggregate_metrics(sessions: Iterable[ParsedSession]) -> Rollup:
    """Additive fold shared by the project and global rollups.

    Every session lands in exactly one timeline bucket, so bucket message
    counts always sum to ``total_messages``.
    """
    rollup = Rollup()
    day_map: dict[str, TimelineEntry] = {}

    for session in sessions:
        tokens = session.totalTokens
        rollup.tokens.input += tokens.input
        rollup.tokens.output += tokens.output
        rollup.tokens.cacheRead += tokens.cacheRead
        rollup.tokens.cacheCreation += tokens.cacheCreation

        for tool, count in session.toolUsage.items():
            rollup.tool_usage[tool] = rollup.tool_usage.get(tool, 0) + count

        rollup.total_messages += len(session.messages)
        rollup.lines_added += session.linesAdded
        rollup.lines_removed += session.linesRemoved
        rollup.human_lines += session.humanLines
        rollup.human_words += session.humanWords
        rollup.human_chars += session.humanChars

        by_source = rollup.lines_by_source.setdefault(session.source, SourceLines())
        by_source.added += session.linesAdded
        by_source.removed += session.linesRemoved

        for file_path, contribution in session.fileContributions.items():
            existing = rollup.file_contributions.setdefault(file_path, FileContribution())
            existing.added += contribution.added
            existing.removed += contribution.removed

        _bucket(day_map, session)

    rollup.timeline = sorted(day_map.values(), key=lambda entry: entry.date)
    return rollup


def _project_fields(rollup: Rollup) -> dict:
    return {
        "totalMessages": rollup.total_messages,
        "totalTokens": rollup.tokens,
        "toolUsage": rollup.tool_usage,
        "totalLinesAdded": rollup.lines_added,
        "totalLinesRemoved": rollup.lines_removed,
        "linesBySource": rollup.lines_by_source,
        "fileContributions": rollup.file_contributions,
        "timeline": rollup.timeline,
        "humanLines": rollup.human_lines,
        "humanWords": rollup.human_words,
        "humanChars": rollup.human_chars,
    }


def compute_project_metrics(sessions: list[ParsedSession]) -> ProjectMetrics:
    rollup = aggregate_metrics(sessions)
    return ProjectMetrics(totalSessions=len(sessions), **_project_fields(rollup))


def compute_global_metrics(
    project_count: int,
    session_count: int,
    sessions: list[ParsedSession],
) -> GlobalMetrics:
    rollup = aggregate_metrics(sessions)
    return GlobalMetrics(
        totalProjects=project_count,
        totalSessions=session_count,
        **_project_fields(rollup),
    )
