"""Pytest configuration and fixtures for Claude Glance tests."""

import socket
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator, Optional

import pytest

from claude_glance.config import ServerConfig, SessionTimings
from claude_glance.models import HookMessage
from claude_glance.session_engine import SessionEngine
from claude_glance.stats import DailyStatsTracker


class FakeClock:
    """Controllable timezone-aware clock."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def make_message(
    event: str,
    session_id: str = "abcd1234",
    tool_name: Optional[str] = None,
    tool_input: Optional[dict[str, Any]] = None,
    message: Optional[str] = None,
    notification_type: Optional[str] = None,
    terminal: str = "Ghostty",
    project: str = "nixos-config",
    cwd: str = "/home/user/nixos-config",
) -> HookMessage:
    """Build a HookMessage the way the reporter script would send it."""
    data: dict[str, Any] = {"session_id": session_id, "hook_event_name": event}
    if tool_name is not None:
        data["tool_name"] = tool_name
    if tool_input is not None:
        data["tool_input"] = tool_input
    if message is not None:
        data["message"] = message
    if notification_type is not None:
        data["notification_type"] = notification_type

    return HookMessage.model_validate(
        {
            "protocol_version": 1,
            "session_id": session_id,
            "terminal": terminal,
            "project": project,
            "cwd": cwd,
            "timestamp": 1760000000000,
            "event": event,
            "data": data,
        }
    )


def message_payload(event: str = "PreToolUse", **kwargs: Any) -> bytes:
    """JSON bytes for one hook message."""
    return make_message(event, **kwargs).model_dump_json().encode()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def alerts() -> list:
    """Collects (kind, snapshot) pairs passed to the alert sink."""
    return []


@pytest.fixture
def engine(clock: FakeClock, alerts: list) -> SessionEngine:
    """Session engine with default timings, in-memory stats and a fake clock."""
    return SessionEngine(
        timings=SessionTimings(),
        stats=DailyStatsTracker(clock=clock),
        clock=clock,
        alert_sink=lambda kind, snapshot: alerts.append((kind, snapshot)),
    )


@pytest.fixture
def socket_path() -> Generator[Path, None, None]:
    """Socket path in a short temp directory (AF_UNIX paths are length limited).

    Yields:
        Path to a not yet created socket file.
    """
    with tempfile.TemporaryDirectory(prefix="cg-") as tmpdir:
        yield Path(tmpdir) / "glance.sock"


@pytest.fixture
def server_config(socket_path: Path, free_port_block: int) -> ServerConfig:
    """Fast-reacting transport settings on free local ports."""
    return ServerConfig(
        socket_path=socket_path,
        port=free_port_block,
        port_range=3,
        bind_timeout_sec=1.0,
        health_interval_sec=60.0,
        reconnect_delay_sec=0.0,
        restart_delay_sec=0.0,
        read_timeout_sec=0.5,
    )


@pytest.fixture
def free_port_block() -> int:
    """First of three consecutive ports that are free right now."""
    for _ in range(50):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            base = sock.getsockname()[1]
        if base + 2 > 65535:
            continue
        if all(_port_is_free(port) for port in range(base, base + 3)):
            return base
    pytest.skip("no free consecutive ports")


def _port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


@pytest.fixture
def hook_message():
    """Factory fixture for HookMessage objects."""
    return make_message


@pytest.fixture
def hook_payload():
    """Factory fixture for encoded hook messages."""
    return message_payload


@pytest.fixture
def clock_factory():
    """Factory fixture for clocks starting at a given time."""
    return FakeClock
