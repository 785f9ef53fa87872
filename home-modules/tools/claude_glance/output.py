"""JSON stream output for the rendering layer.

Writes NDJSON (newline-delimited JSON) to stdout or a named pipe, and keeps
the latest session list in a JSON file for consumers that poll.

Output formats:
- session_list: Active sessions and today's stats, on every engine update
- connection_status: Transport health, on every status change
"""

import asyncio
import json
import logging
import os
import stat
import sys
from pathlib import Path
from typing import Optional, TextIO

from .models import ConnectionStatus, EngineUpdate

logger = logging.getLogger(__name__)


def get_runtime_dir() -> Path:
    return Path(os.environ.get("XDG_RUNTIME_DIR", "/tmp"))


class OutputWriter:
    """NDJSON writer observing the session engine and the IPC server.

    publish() and publish_status() are synchronous observer callbacks; the
    actual writes are scheduled on the loop and never block the caller.
    """

    def __init__(
        self, pipe_path: Optional[Path] = None, json_file_path: Optional[Path] = None
    ) -> None:
        """Initialize the output writer.

        Args:
            pipe_path: Path to named pipe (FIFO). If None, writes to stdout.
            json_file_path: Latest session list file. Defaults to
                $XDG_RUNTIME_DIR/claude-glance-sessions.json
        """
        self.pipe_path = pipe_path
        self.json_file_path = json_file_path or get_runtime_dir() / "claude-glance-sessions.json"
        self._output: Optional[TextIO] = None
        self._lock = asyncio.Lock()
        self._file_lock = asyncio.Lock()
        self._running = False
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Create the named pipe if requested, otherwise use stdout."""
        self._running = True

        if self.pipe_path:
            self._setup_pipe()
        else:
            self._output = sys.stdout
            logger.info("Output writer using stdout")

    async def stop(self) -> None:
        """Flush pending writes and close the pipe."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._running = False

        if self.pipe_path and self._output is not None and self._output is not sys.stdout:
            try:
                self._output.close()
            except OSError as e:
                logger.debug(f"Error closing pipe: {e}")
            self._output = None

        logger.info("Output writer stopped")

    # ------------------------------------------------------------------
    # Observer callbacks
    # ------------------------------------------------------------------

    def publish(self, update: EngineUpdate) -> None:
        self._schedule(self.write_session_list(update))

    def publish_status(self, status: ConnectionStatus) -> None:
        self._schedule(self.write_status(status))

    def _schedule(self, coro) -> None:
        if not self._running:
            coro.close()
            return
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    async def write_session_list(self, update: EngineUpdate) -> None:
        """Write to the stream and replace the JSON file."""
        data = update.model_dump(mode="json")
        await self._write_json(data)
        await self._write_json_file(data)

    async def write_status(self, status: ConnectionStatus) -> None:
        await self._write_json(
            {
                "type": "connection_status",
                "state": status.state.value,
                "reason": status.reason,
            }
        )

    def _setup_pipe(self) -> None:
        if not self.pipe_path:
            return

        self.pipe_path.parent.mkdir(parents=True, exist_ok=True)

        # Reuse an existing FIFO so current readers are not orphaned
        if self.pipe_path.exists():
            if stat.S_ISFIFO(self.pipe_path.stat().st_mode):
                logger.info(f"Reusing existing named pipe at {self.pipe_path}")
                return
            self.pipe_path.unlink()

        os.mkfifo(self.pipe_path)
        logger.info(f"Created named pipe at {self.pipe_path}")

    def _ensure_pipe_open(self) -> bool:
        """Open the pipe without blocking on a missing reader."""
        if not self.pipe_path:
            return self._output is not None

        if self._output is not None:
            return True

        try:
            # O_RDWR so open() does not wait for a reader
            fd = os.open(str(self.pipe_path), os.O_RDWR | os.O_NONBLOCK)
            self._output = os.fdopen(fd, "w")
            logger.info(f"Opened pipe for writing: {self.pipe_path}")
            return True
        except OSError as e:
            logger.warning(f"Error opening pipe: {e}")
            return False

    async def _write_json(self, data: dict) -> None:
        async with self._lock:
            if not self._running:
                return

            if self.pipe_path and not self._ensure_pipe_open():
                logger.debug("No pipe reader, dropping message")
                return

            if self._output is None:
                return

            try:
                line = json.dumps(data, separators=(",", ":")) + "\n"
                # Blocking writes run in a thread so a full pipe cannot stall the loop
                await asyncio.wait_for(asyncio.to_thread(self._sync_write, line), timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("Output write timed out, dropping message")
            except BrokenPipeError:
                logger.warning("Pipe reader disconnected")
                if self._output is not sys.stdout:
                    self._output = None
            except OSError as e:
                logger.error(f"Error writing output: {e}")

    def _sync_write(self, line: str) -> None:
        if self._output is not None:
            self._output.write(line)
            self._output.flush()

    async def _write_json_file(self, data: dict) -> None:
        async with self._file_lock:
            if not self._running:
                return
            try:
                content = json.dumps(data, separators=(",", ":"))
                await asyncio.to_thread(self._sync_write_file, content)
            except OSError as e:
                logger.error(f"Error writing JSON file: {e}")

    def _sync_write_file(self, content: str) -> None:
        """Write to a temp file then rename, so readers never see partial JSON."""
        temp_path = self.json_file_path.with_suffix(".tmp")
        try:
            temp_path.write_text(content)
            temp_path.rename(self.json_file_path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise
