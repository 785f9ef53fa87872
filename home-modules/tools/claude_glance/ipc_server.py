"""IPC server for hook messages.

Runs the unix socket and HTTP transports side by side, decodes every payload
and hands valid messages to a single callback on the event loop. A periodic
health check rebinds the unix socket if its file disappears or the listener
stops serving.

Connection status:
    disconnected → connecting → connected | error(reason)
"""

import asyncio
import logging
from typing import Callable, Optional

from .config import ServerConfig
from .decoder import try_decode_message
from .models import ConnectionStatus, HookMessage
from .receiver import HTTPReceiver, PortsExhaustedError
from .socket_listener import UnixSocketListener

logger = logging.getLogger(__name__)

MessageCallback = Callable[[HookMessage], None]
StatusListener = Callable[[ConnectionStatus], None]

__all__ = ["IPCServer", "PortsExhaustedError"]


class IPCServer:
    """Unix socket + HTTP listener with automatic reconnection."""

    def __init__(self, config: ServerConfig, on_message: MessageCallback) -> None:
        """Initialize the IPC server.

        Args:
            config: Transport settings
            on_message: Receives each decoded message, before any HTTP reply
        """
        self.config = config
        self.on_message = on_message
        self.socket_listener = UnixSocketListener(
            config.socket_path,
            self._handle_stream_payload,
            read_buffer_size=config.read_buffer_size,
            read_timeout_sec=config.read_timeout_sec,
        )
        self.http_receiver = HTTPReceiver(config, self._handle_http_body)
        self.is_running = False

        self._status = ConnectionStatus.disconnected()
        self._status_listeners: list[StatusListener] = []
        self._health_task: Optional[asyncio.Task] = None

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def current_port(self) -> Optional[int]:
        return self.http_receiver.current_port

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        logger.info(f"Connection status: {self._status} → {status}")
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start both transports and the health check.

        A unix socket failure only degrades the status (the health check keeps
        retrying). Running out of HTTP ports fails the whole start.

        Raises:
            PortsExhaustedError: If no HTTP port in the range is available
        """
        if self.is_running:
            logger.debug("IPC server already running")
            return

        self._set_status(ConnectionStatus.connecting())

        socket_error: Optional[str] = None
        try:
            await self.socket_listener.start()
        except OSError as e:
            socket_error = f"Socket bind failed: {e}"
            logger.error(f"Failed to start unix socket at {self.config.socket_path}: {e}")

        try:
            await self.http_receiver.start()
        except PortsExhaustedError as e:
            logger.error(str(e))
            await self.socket_listener.stop()
            self._set_status(ConnectionStatus.error(str(e)))
            raise

        self.is_running = True
        if socket_error:
            self._set_status(ConnectionStatus.error(socket_error))
        else:
            self._set_status(ConnectionStatus.connected())

        self._health_task = asyncio.create_task(self._health_loop())
        logger.info(
            f"IPC server started (socket={self.config.socket_path}, port={self.current_port})"
        )

    async def stop(self) -> None:
        """Stop both transports and delete the socket file. Idempotent."""
        task, self._health_task = self._health_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        await self.socket_listener.stop()
        await self.http_receiver.stop()

        if self.is_running:
            logger.info("IPC server stopped")
        self.is_running = False
        self._set_status(ConnectionStatus.disconnected())

    async def restart(self) -> None:
        """Stop, pause briefly, and start again.

        Raises:
            PortsExhaustedError: If the new start cannot bind any port
        """
        logger.info("Restarting IPC server")
        await self.stop()
        await asyncio.sleep(self.config.restart_delay_sec)
        await self.start()

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    async def check_health(self) -> bool:
        """Verify the socket file and listener; reconnect if either is gone.

        Returns:
            True if healthy before any reconnect attempt
        """
        socket_exists = self.config.socket_path.exists()
        serving = self.socket_listener.is_serving
        if socket_exists and serving:
            return True

        logger.warning(
            f"Socket health check failed (exists={socket_exists}, serving={serving}), "
            "attempting reconnect"
        )
        await self._reconnect()
        return False

    async def _reconnect(self) -> None:
        self._set_status(ConnectionStatus.connecting())
        await self.socket_listener.stop()
        await asyncio.sleep(self.config.reconnect_delay_sec)

        try:
            await self.socket_listener.start()
        except OSError as e:
            logger.error(f"Reconnect failed: {e}")
            self._set_status(ConnectionStatus.error(f"Failed to reconnect: {e}"))
            return

        logger.info("Reconnected successfully")
        self._set_status(ConnectionStatus.connected())

    async def _health_loop(self) -> None:
        """Periodically check transport health."""
        while self.is_running:
            try:
                await asyncio.sleep(self.config.health_interval_sec)
                await self.check_health()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Health check error: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Payload handling
    # ------------------------------------------------------------------

    def _handle_stream_payload(self, data: bytes) -> None:
        message = try_decode_message(data, source="unix socket")
        if message is not None:
            self._dispatch(message)

    def _handle_http_body(self, body: bytes) -> bool:
        message = try_decode_message(body, source="http")
        if message is None:
            return False
        self._dispatch(message)
        return True

    def _dispatch(self, message: HookMessage) -> None:
        try:
            self.on_message(message)
        except Exception as e:
            logger.error(f"Error processing {message.event} for {message.session_id}: {e}", exc_info=True)
