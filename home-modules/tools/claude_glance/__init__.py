"""Claude Glance session monitor.

This package receives lifecycle events from the Claude Code hook reporter
(one event per tool invocation, notification, or turn completion) and turns
them into a bounded list of active sessions for live display.

Architecture:
    - Unix socket and HTTP listeners accept one JSON envelope per connection
    - A single-writer session engine on the asyncio loop applies the
      per-session state machine, debounce, and expiry rules
    - Snapshots are published as NDJSON for the rendering layer

Modules:
    - models: Pydantic data models (SessionRecord, HookMessage, TodayStats)
    - decoder: JSON envelope validation
    - formatting: Tool labels and error keyword detection
    - stats: Daily counters with midnight rollover
    - session_engine: Session lifecycle state machine and timers
    - socket_listener / receiver / ipc_server: Transports and health checks
    - output: NDJSON bridge for the rendering layer
    - notifier: Sound and desktop notification alerts
"""

import logging

__version__ = "0.3.0"

__all__ = [
    "__version__",
    "configure_logging",
    "get_logger",
]


def configure_logging(
    level: str = "INFO",
    format_string: str | None = None,
) -> logging.Logger:
    """Configure package-level logging.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string. Defaults to timestamp, level,
            logger name, and message.

    Returns:
        Configured logger instance for the claude_glance package.

    Example:
        >>> from claude_glance import configure_logging
        >>> logger = configure_logging("DEBUG")
        >>> logger.debug("Starting monitor...")
    """
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logger = logging.getLogger("claude_glance")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    # Log to stderr, JSON output goes to stdout
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance for the claude_glance package.

    Args:
        name: Optional submodule name. If provided, returns
            logger named 'claude_glance.{name}'.

    Returns:
        Logger instance.
    """
    if name:
        return logging.getLogger(f"claude_glance.{name}")
    return logging.getLogger("claude_glance")
