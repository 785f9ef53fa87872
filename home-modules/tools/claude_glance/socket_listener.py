"""Unix stream socket listener.

The reporter writes one JSON envelope per connection and closes it, so a
message is everything read until EOF, the buffer limit, or the read timeout.
Nothing is written back.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

PayloadCallback = Callable[[bytes], None]


class UnixSocketListener:
    """Accepts connections on a filesystem socket and forwards raw payloads."""

    def __init__(
        self,
        path: Path,
        on_payload: PayloadCallback,
        read_buffer_size: int = 65536,
        read_timeout_sec: float = 2.0,
    ) -> None:
        self.path = path
        self.on_payload = on_payload
        self.read_buffer_size = read_buffer_size
        self.read_timeout_sec = read_timeout_sec
        self.server: Optional[asyncio.Server] = None
        self.clients: set[asyncio.StreamWriter] = set()

    @property
    def is_serving(self) -> bool:
        return self.server is not None and self.server.is_serving()

    async def start(self) -> None:
        """Bind the socket, replacing any stale file.

        Raises:
            OSError: If the socket cannot be created or bound
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Remove old socket if it exists
        self.path.unlink(missing_ok=True)

        self.server = await asyncio.start_unix_server(
            self._handle_client, path=str(self.path)
        )
        # Ensure socket is user-only accessible
        self.path.chmod(0o600)
        logger.info(f"Unix socket listening at {self.path}")

    async def stop(self) -> None:
        """Close the listener and connections, then delete the socket file.

        Safe to call when not serving; the file is only removed if this
        listener bound it.
        """
        server, self.server = self.server, None
        if server is not None:
            server.close()

        for writer in list(self.clients):
            writer.close()

        if server is not None:
            await server.wait_closed()
            self.path.unlink(missing_ok=True)

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Read one message and close the connection."""
        self.clients.add(writer)
        try:
            data = await self._read_message(reader)
            if data:
                logger.debug(f"Received {len(data)} bytes on unix socket")
                self.on_payload(data)
        except Exception as e:
            logger.error(f"Error handling unix socket client: {e}", exc_info=True)
        finally:
            self.clients.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, BrokenPipeError):
                pass

    async def _read_message(self, reader: asyncio.StreamReader) -> bytes:
        """Read until EOF, buffer full, or timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.read_timeout_sec
        buffer = bytearray()

        while len(buffer) < self.read_buffer_size:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                chunk = await asyncio.wait_for(
                    reader.read(self.read_buffer_size - len(buffer)), timeout=remaining
                )
            except asyncio.TimeoutError:
                logger.debug(f"Unix socket read timed out after {len(buffer)} bytes")
                break
            if not chunk:
                break
            buffer.extend(chunk)

        return bytes(buffer)
