"""Pydantic models for the Claude Glance monitor.

This module defines the hook message envelope produced by the reporter
script, the per-session record owned by the session engine, and the
read-only snapshots published to the rendering layer.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import SessionTimings


TOOL_HISTORY_LIMIT = 10


# =============================================================================
# Enums
# =============================================================================


class SessionStatus(str, Enum):
    """Session state machine states.

    completed and error are soft-terminal: they expire on their own but a
    later event for the same key reopens the session.
    """

    IDLE = "idle"
    READING = "reading"
    THINKING = "thinking"
    WRITING = "writing"
    WAITING = "waiting"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_working(self) -> bool:
        return self in WORKING_STATUSES

    @property
    def is_finished(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR)


WORKING_STATUSES = frozenset(
    {SessionStatus.READING, SessionStatus.THINKING, SessionStatus.WRITING}
)


class ToolStatus(str, Enum):
    """Outcome of a single tool invocation."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class EventKind(str, Enum):
    """Hook events emitted by Claude Code."""

    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    NOTIFICATION = "Notification"
    STOP = "Stop"


class AlertKind(str, Enum):
    """Alert side effects fired on state entry."""

    ATTENTION = "attention"  # needs user input, or failed
    COMPLETION = "completion"  # turn finished


class ConnectionState(str, Enum):
    """Transport health states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ConnectionStatus(BaseModel):
    """Transport health as observed by the rendering layer."""

    model_config = ConfigDict(frozen=True)

    state: ConnectionState = ConnectionState.DISCONNECTED
    reason: Optional[str] = None

    @classmethod
    def disconnected(cls) -> "ConnectionStatus":
        return cls(state=ConnectionState.DISCONNECTED)

    @classmethod
    def connecting(cls) -> "ConnectionStatus":
        return cls(state=ConnectionState.CONNECTING)

    @classmethod
    def connected(cls) -> "ConnectionStatus":
        return cls(state=ConnectionState.CONNECTED)

    @classmethod
    def error(cls, reason: str) -> "ConnectionStatus":
        return cls(state=ConnectionState.ERROR, reason=reason)

    @property
    def is_healthy(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def __str__(self) -> str:
        if self.reason:
            return f"{self.state.value}({self.reason})"
        return self.state.value


# =============================================================================
# Hook message envelope
# =============================================================================

# Scalar tool_input value. bool is listed before int on purpose in
# coerce_tool_input_value since bool subclasses int.
ToolInputValue = Union[str, bool, int, float, None]


def coerce_tool_input_value(value: Any) -> ToolInputValue:
    """Keep JSON scalars, map anything else (objects, arrays) to None."""
    if isinstance(value, (str, bool, int, float)):
        return value
    return None


class HookData(BaseModel):
    """Payload Claude Code passes to the hook on stdin.

    Every field is optional. tool_input is an open map: unknown keys are kept,
    and values that are not JSON scalars decode as None instead of failing
    the whole message.
    """

    model_config = ConfigDict(extra="ignore")

    session_id: Optional[str] = None
    transcript_path: Optional[str] = None
    hook_event_name: Optional[str] = None

    # PreToolUse / PostToolUse
    tool_name: Optional[str] = None
    tool_input: Optional[dict[str, ToolInputValue]] = None

    # Notification / Stop
    message: Optional[str] = None
    notification_type: Optional[str] = None

    @field_validator(
        "session_id",
        "transcript_path",
        "hook_event_name",
        "tool_name",
        "message",
        "notification_type",
        mode="before",
    )
    @classmethod
    def _optional_string(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    @field_validator("tool_input", mode="before")
    @classmethod
    def _lenient_tool_input(cls, value: Any) -> Optional[dict[str, ToolInputValue]]:
        if not isinstance(value, dict):
            return None
        return {str(key): coerce_tool_input_value(item) for key, item in value.items()}

    def input_string(self, key: str) -> Optional[str]:
        """Return tool_input[key] only when it is a string."""
        if not self.tool_input:
            return None
        value = self.tool_input.get(key)
        return value if isinstance(value, str) else None


class HookMessage(BaseModel):
    """Envelope written by the reporter script, one per connection."""

    model_config = ConfigDict(extra="ignore")

    protocol_version: int = Field(default=1, description="Reporter protocol version")
    session_id: str = Field(description="Stable per-terminal identifier")
    terminal: str = Field(description="Terminal program name")
    project: str = Field(description="Project (directory basename)")
    cwd: str = Field(description="Working directory")
    timestamp: Optional[int] = Field(default=None, description="Producer clock, ms or s")
    event: str = Field(description="PreToolUse, PostToolUse, Notification or Stop")
    data: HookData = Field(description="Hook payload from Claude Code")

    # Optional fields never reject an otherwise valid message
    @field_validator("protocol_version", mode="before")
    @classmethod
    def _lenient_protocol_version(cls, value: Any) -> int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return 1

    @field_validator("timestamp", mode="before")
    @classmethod
    def _lenient_timestamp(cls, value: Any) -> Optional[int]:
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float) and math.isfinite(value):
            return int(value)
        return None

    @property
    def event_kind(self) -> Optional[EventKind]:
        try:
            return EventKind(self.event)
        except ValueError:
            return None


# =============================================================================
# Session state
# =============================================================================


class ToolEvent(BaseModel):
    """One finished tool call in a session's history."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    tool: str
    target: str = ""
    status: ToolStatus = ToolStatus.COMPLETED
    timestamp: datetime


class SessionRecord(BaseModel):
    """Mutable per-session state, owned exclusively by the session engine."""

    key: str = Field(description="Session identifier from the reporter")
    terminal: str = "Terminal"
    project: str = ""
    cwd: str = ""
    status: SessionStatus = SessionStatus.IDLE
    current_action: str = ""
    metadata: str = ""
    last_update: datetime
    tool_history: list[ToolEvent] = Field(default_factory=list)
    is_expanded: bool = False
    opacity: float = 1.0
    display_after: datetime
    stopped_at: Optional[datetime] = Field(
        default=None, description="Arms the post-Stop silent period"
    )

    def elapsed(self, now: datetime) -> float:
        return (now - self.last_update).total_seconds()

    def is_ready_to_display(self, now: datetime) -> bool:
        return now >= self.display_after

    def activity_window(self, timings: SessionTimings) -> float:
        """Seconds of inactivity this record stays visible in its status."""
        if self.status.is_finished:
            return timings.completed_timeout
        if self.status == SessionStatus.WAITING:
            return timings.waiting_timeout
        if self.status.is_working:
            return timings.active_timeout
        return timings.idle_timeout

    def is_active(self, now: datetime, timings: SessionTimings) -> bool:
        return self.elapsed(now) < self.activity_window(timings)

    def has_timed_out(self, now: datetime, timings: SessionTimings) -> bool:
        return (
            self.elapsed(now) > timings.long_operation_threshold
            and not self.status.is_finished
        )

    def is_still_thinking(self, now: datetime, timings: SessionTimings) -> bool:
        return self.status.is_working and self.has_timed_out(now, timings)

    def is_still_waiting(self, now: datetime, timings: SessionTimings) -> bool:
        return self.status == SessionStatus.WAITING and self.has_timed_out(now, timings)

    def waiting_seconds_remaining(self, now: datetime, timings: SessionTimings) -> Optional[int]:
        if self.status != SessionStatus.WAITING:
            return None
        remaining = timings.waiting_timeout - self.elapsed(now)
        return int(remaining) if remaining > 0 else 0

    def calculated_opacity(self, now: datetime, timings: SessionTimings) -> float:
        """Linear fade for finished sessions between fade_start and completed_timeout."""
        if not self.status.is_finished:
            return 1.0
        elapsed = self.elapsed(now)
        if elapsed <= timings.fade_start:
            return 1.0
        span = timings.completed_timeout - timings.fade_start
        if span <= 0 or elapsed >= timings.completed_timeout:
            return 0.0
        return round(1.0 - (elapsed - timings.fade_start) / span, 3)

    def append_tool_event(self, event: ToolEvent) -> None:
        """Append to history, evicting the oldest entries past the limit."""
        self.tool_history.append(event)
        overflow = len(self.tool_history) - TOOL_HISTORY_LIMIT
        if overflow > 0:
            del self.tool_history[:overflow]

    def to_snapshot(self, now: datetime, timings: SessionTimings) -> "SessionSnapshot":
        return SessionSnapshot(
            key=self.key,
            short_id=f"#{self.key[:4]}",
            terminal=self.terminal,
            project=self.project,
            cwd=self.cwd,
            status=self.status,
            current_action=self.current_action,
            metadata=self.metadata,
            last_update=self.last_update,
            tool_history=tuple(self.tool_history),
            is_expanded=self.is_expanded,
            opacity=self.opacity,
            is_still_thinking=self.is_still_thinking(now, timings),
            is_still_waiting=self.is_still_waiting(now, timings),
            waiting_seconds_remaining=self.waiting_seconds_remaining(now, timings),
        )


class SessionSnapshot(BaseModel):
    """Immutable view of a session for the rendering layer."""

    model_config = ConfigDict(frozen=True)

    key: str
    short_id: str
    terminal: str
    project: str
    cwd: str
    status: SessionStatus
    current_action: str
    metadata: str
    last_update: datetime
    tool_history: tuple[ToolEvent, ...] = ()
    is_expanded: bool = False
    opacity: float = 1.0
    is_still_thinking: bool = False
    is_still_waiting: bool = False
    waiting_seconds_remaining: Optional[int] = None


# =============================================================================
# Statistics and engine output
# =============================================================================


class TodayStats(BaseModel):
    """Per-day counters, reset on the first touch of a new calendar day."""

    tool_calls: int = Field(default=0, ge=0)
    sessions_count: int = Field(default=0, ge=0)
    last_reset: datetime


class StatsSnapshot(BaseModel):
    """Read-only copy of TodayStats."""

    model_config = ConfigDict(frozen=True)

    tool_calls: int
    sessions_count: int
    last_reset: datetime


class EngineUpdate(BaseModel):
    """Published on every recomputation of the active list."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(default="session_list", description="Event type for consumer routing")
    sessions: tuple[SessionSnapshot, ...] = ()
    stats: StatsSnapshot
    timestamp: int = Field(description="Unix timestamp in seconds")
