"""Configuration for the Claude Glance monitor.

Defaults match the hook reporter protocol (socket path, HTTP port and status
path). Values can be overridden from the environment and then from the
command line.
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator


DEFAULT_SOCKET_PATH = Path("/tmp/claude-glance.sock")
DEFAULT_HTTP_PORT = 19847
DEFAULT_STATUS_PATH = "/api/status"


def default_state_file() -> Path:
    """Get the default stats file under XDG_STATE_HOME."""
    state_home = os.environ.get("XDG_STATE_HOME")
    base = Path(state_home) if state_home else Path.home() / ".local" / "state"
    return base / "claude-glance" / "stats.json"


class ServerConfig(BaseModel):
    """Transport listener settings."""

    socket_path: Path = Field(default=DEFAULT_SOCKET_PATH, description="Unix socket path")
    host: str = Field(default="127.0.0.1", description="HTTP bind address")
    port: int = Field(default=DEFAULT_HTTP_PORT, ge=1, le=65535, description="Primary HTTP port")
    port_range: int = Field(
        default=5, ge=1, le=100, description="Number of ports tried, primary included"
    )
    status_path: str = Field(default=DEFAULT_STATUS_PATH, description="Path the reporter posts to")
    bind_timeout_sec: float = Field(default=2.0, gt=0, description="Wait for a port to become ready")
    health_interval_sec: float = Field(default=10.0, gt=0, description="Health check period")
    reconnect_delay_sec: float = Field(default=1.0, ge=0, description="Delay before rebinding")
    restart_delay_sec: float = Field(default=0.5, ge=0, description="Delay between stop and start")
    read_buffer_size: int = Field(default=65536, gt=0, description="Max bytes per message")
    read_timeout_sec: float = Field(default=2.0, gt=0, description="Per-connection read timeout")

    @model_validator(mode="after")
    def _check_port_range(self) -> "ServerConfig":
        if self.port + self.port_range - 1 > 65535:
            raise ValueError("port range exceeds 65535")
        return self

    @property
    def candidate_ports(self) -> list[int]:
        """Primary port followed by its fallbacks."""
        return list(range(self.port, self.port + self.port_range))


class SessionTimings(BaseModel):
    """Time windows for the session state machine (seconds)."""

    silent_period: float = Field(default=10.0, ge=0, description="Debounce window after Stop")
    speculative_waiting: float = Field(
        default=1.0, ge=0, description="PreToolUse this soon after waiting is dropped"
    )
    completed_timeout: float = Field(default=5.0, gt=0, description="completed/error lifetime")
    fade_start: float = Field(default=3.0, ge=0, description="completed/error start fading")
    waiting_timeout: float = Field(default=90.0, gt=0, description="waiting lifetime")
    active_timeout: float = Field(
        default=60.0, gt=0, description="reading/writing/thinking before forced completion"
    )
    idle_timeout: float = Field(default=30.0, gt=0, description="idle lifetime")
    long_operation_threshold: float = Field(
        default=30.0, gt=0, description="Show still-thinking / still-waiting hints"
    )
    display_delay: float = Field(default=0.5, ge=0, description="Hide brand new sessions this long")
    sweep_interval: float = Field(default=10.0, gt=0, description="Expiry sweep period")
    fade_interval: float = Field(default=1.0, gt=0, description="Fade timer period")

    @model_validator(mode="after")
    def _check_fade(self) -> "SessionTimings":
        if self.fade_start > self.completed_timeout:
            raise ValueError("fade_start must not exceed completed_timeout")
        return self


class GlanceConfig(BaseModel):
    """Top-level service configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    timings: SessionTimings = Field(default_factory=SessionTimings)
    state_file: Optional[Path] = Field(
        default_factory=default_state_file, description="Stats persistence file (None disables)"
    )
    pipe_path: Optional[Path] = Field(default=None, description="Named pipe for NDJSON output")
    sound_enabled: bool = Field(default=True, description="Play alert sounds")
    notifications_enabled: bool = Field(default=False, description="Send desktop notifications")

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "GlanceConfig":
        """Build a config from CLAUDE_GLANCE_* environment variables.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value
        """
        env = os.environ if environ is None else environ
        server: dict = {}
        if "CLAUDE_GLANCE_SOCKET" in env:
            server["socket_path"] = env["CLAUDE_GLANCE_SOCKET"]
        if "CLAUDE_GLANCE_PORT" in env:
            server["port"] = env["CLAUDE_GLANCE_PORT"]
        if "CLAUDE_GLANCE_PORT_RANGE" in env:
            server["port_range"] = env["CLAUDE_GLANCE_PORT_RANGE"]

        data: dict = {"server": server}
        if "CLAUDE_GLANCE_STATE_FILE" in env:
            data["state_file"] = env["CLAUDE_GLANCE_STATE_FILE"] or None
        if "CLAUDE_GLANCE_SOUND" in env:
            data["sound_enabled"] = env["CLAUDE_GLANCE_SOUND"] != "0"
        return cls.model_validate(data)
