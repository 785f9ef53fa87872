#!/usr/bin/env python3
"""CLI entry point for the Claude Glance monitor.

Starts the unix socket and HTTP listeners, the session engine, and the
NDJSON output stream.

Usage:
    python -m claude_glance [OPTIONS]
    claude-glance [OPTIONS]

Signals:
    SIGTERM / SIGINT   Shut down
    SIGHUP             Restart the listeners (e.g. after ports were exhausted)
    SIGUSR1            Toggle alert sounds
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from pydantic import ValidationError

from . import __version__, configure_logging, get_logger
from .config import GlanceConfig


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Unset options fall back to CLAUDE_GLANCE_* environment variables, then
    to built-in defaults.
    """
    parser = argparse.ArgumentParser(
        prog="claude-glance",
        description="Claude Glance - live view of active Claude Code sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start with default settings
    claude-glance

    # Custom port and NDJSON to a named pipe
    claude-glance --port 19900 --pipe $XDG_RUNTIME_DIR/claude-glance.pipe

Environment Variables:
    CLAUDE_GLANCE_SOCKET      Unix socket path (/tmp/claude-glance.sock)
    CLAUDE_GLANCE_PORT        Primary HTTP port (19847)
    CLAUDE_GLANCE_PORT_RANGE  Ports tried, primary included (5)
    CLAUDE_GLANCE_STATE_FILE  Stats file (empty disables persistence)
    CLAUDE_GLANCE_SOUND       Set to 0 to disable alert sounds
""",
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--socket", type=Path, default=None, help="Unix socket path")
    parser.add_argument("--port", type=int, default=None, help="Primary HTTP port")
    parser.add_argument(
        "--port-range", type=int, default=None, help="Number of ports to try, primary included"
    )
    parser.add_argument("--state-file", type=Path, default=None, help="Stats persistence file")
    parser.add_argument(
        "--no-state", action="store_true", help="Keep stats in memory only"
    )
    parser.add_argument(
        "--pipe", type=Path, default=None, help="Write JSON stream to named pipe (default: stdout)"
    )
    parser.add_argument("--no-sound", action="store_true", help="Disable alert sounds")
    parser.add_argument(
        "--notifications", action="store_true", help="Send desktop notifications on alerts"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> GlanceConfig:
    """Merge environment configuration with command-line overrides.

    Raises:
        pydantic.ValidationError: If the merged values are invalid
    """
    base = GlanceConfig.from_env()
    data = base.model_dump()

    server = data["server"]
    if args.socket is not None:
        server["socket_path"] = args.socket
    if args.port is not None:
        server["port"] = args.port
    if args.port_range is not None:
        server["port_range"] = args.port_range

    if args.state_file is not None:
        data["state_file"] = args.state_file
    if args.no_state:
        data["state_file"] = None
    if args.pipe is not None:
        data["pipe_path"] = args.pipe
    if args.no_sound:
        data["sound_enabled"] = False
    if args.notifications:
        data["notifications_enabled"] = True

    return GlanceConfig.model_validate(data)


async def main_async(config: GlanceConfig) -> int:
    """Async main entry point."""
    # Import here to speed up --help
    from .ipc_server import IPCServer, PortsExhaustedError
    from .notifier import AlertNotifier
    from .output import OutputWriter
    from .session_engine import SessionEngine
    from .stats import DailyStatsTracker, StatsStore

    logger = get_logger()
    logger.info(f"Starting Claude Glance v{__version__}")

    store = StatsStore(config.state_file) if config.state_file else None
    engine = SessionEngine(
        timings=config.timings,
        stats=DailyStatsTracker(store=store),
        alert_sink=AlertNotifier(notifications_enabled=config.notifications_enabled),
        sound_enabled=config.sound_enabled,
    )
    output = OutputWriter(pipe_path=config.pipe_path)
    engine.add_observer(output.publish)

    server = IPCServer(config.server, on_message=engine.handle_message)
    server.add_status_listener(output.publish_status)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()
    background: set[asyncio.Task] = set()

    def handle_shutdown(signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    async def restart_server() -> None:
        try:
            await server.restart()
        except PortsExhaustedError as e:
            logger.error(f"Restart failed: {e}")

    def handle_restart() -> None:
        task = loop.create_task(restart_server())
        background.add(task)
        task.add_done_callback(background.discard)

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))
    loop.add_signal_handler(signal.SIGHUP, handle_restart)
    loop.add_signal_handler(signal.SIGUSR1, engine.toggle_sound)

    try:
        await output.start()
        await engine.start()
        engine.refresh()

        try:
            await server.start()
        except PortsExhaustedError as e:
            # Keep running so the status stays visible; SIGHUP retries
            logger.error(f"Listener unavailable: {e} (send SIGHUP to retry)")
        else:
            logger.info("Service started successfully")

        await shutdown_event.wait()

    except Exception as e:
        logger.error(f"Service error: {e}", exc_info=True)
        return 1

    finally:
        logger.info("Shutting down...")
        for task in background:
            task.cancel()
        await server.stop()
        await engine.stop()
        await output.stop()

    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "INFO")

    try:
        config = build_config(args)
    except ValidationError as e:
        print(f"claude-glance: invalid configuration:\n{e}", file=sys.stderr)
        sys.exit(2)

    try:
        exit_code = asyncio.run(main_async(config))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
