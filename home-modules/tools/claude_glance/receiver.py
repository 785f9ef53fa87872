"""HTTP receiver for hook messages.

Minimal aiohttp server the reporter falls back to when the unix socket is
unavailable. Every path accepts the same envelope:

- POST with a valid body    → 200 {"status": "ok"}
- POST with empty body      → 400
- POST with invalid body    → 400
- any other method          → 405

Connections are closed after one response. The listener tries the primary
port first and then the following ports in the configured range, adopting the
first one that becomes ready within the bind timeout.
"""

import asyncio
import contextlib
import logging
from typing import Callable, Optional

from aiohttp import web

from .config import ServerConfig

logger = logging.getLogger(__name__)

# Returns False when the body could not be decoded
BodyCallback = Callable[[bytes], bool]


class PortsExhaustedError(OSError):
    """No port in the configured range could be bound."""

    def __init__(self, ports: list[int], failures: list[str]) -> None:
        super().__init__(
            f"HTTP ports exhausted ({ports[0]}-{ports[-1]}): " + "; ".join(failures)
        )
        self.ports = ports
        self.failures = failures


class HTTPReceiver:
    """aiohttp listener with port fallback."""

    def __init__(self, config: ServerConfig, on_body: BodyCallback) -> None:
        """Initialize the HTTP receiver.

        Args:
            config: Host, port range, bind timeout and body size limit
            on_body: Called with each non-empty POST body
        """
        self.config = config
        self.on_body = on_body
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self.current_port: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self.site is not None

    def _make_app(self) -> web.Application:
        app = web.Application(client_max_size=self.config.read_buffer_size)
        app.router.add_route("*", "/{tail:.*}", self._handle_request)
        return app

    async def start(self) -> int:
        """Bind the first available port in the range.

        Returns:
            The adopted port

        Raises:
            PortsExhaustedError: If every candidate port fails
        """
        self.runner = web.AppRunner(self._make_app(), access_log=None)
        await self.runner.setup()

        ports = self.config.candidate_ports
        failures: list[str] = []
        for port in ports:
            site = web.TCPSite(self.runner, self.config.host, port)
            try:
                await asyncio.wait_for(site.start(), timeout=self.config.bind_timeout_sec)
            except asyncio.TimeoutError:
                failures.append(f"{port}: not ready after {self.config.bind_timeout_sec}s")
                logger.warning(f"HTTP port {port} not ready in time, trying next")
                await self._discard_site(site)
                continue
            except OSError as e:
                failures.append(f"{port}: {e.strerror or e}")
                logger.warning(f"HTTP port {port} unavailable ({e.strerror or e}), trying next")
                await self._discard_site(site)
                continue

            self.site = site
            self.current_port = port
            if port != ports[0]:
                logger.info(f"HTTP server using fallback port {port} (primary {ports[0]} busy)")
            logger.info(
                f"HTTP server listening on http://{self.config.host}:{port}{self.config.status_path}"
            )
            return port

        await self.runner.cleanup()
        self.runner = None
        raise PortsExhaustedError(ports, failures)

    async def stop(self) -> None:
        """Stop the HTTP server. Safe to call when not running."""
        runner, self.runner = self.runner, None
        self.site = None
        self.current_port = None
        if runner is not None:
            await runner.cleanup()
            logger.info("HTTP server stopped")

    async def _discard_site(self, site: web.TCPSite) -> None:
        # A site that failed to bind is still registered with the runner
        with contextlib.suppress(RuntimeError):
            await site.stop()

    async def _handle_request(self, request: web.Request) -> web.Response:
        if request.method != "POST":
            return self._respond(405, "Method Not Allowed", headers={"Allow": "POST"})

        body = await request.read()
        if not body.strip():
            return self._respond(400, "Empty body")

        if not self.on_body(body):
            return self._respond(400, "Invalid request")

        return self._respond(200)

    def _respond(
        self, status: int, error: Optional[str] = None, headers: Optional[dict] = None
    ) -> web.Response:
        payload = {"status": "ok"} if error is None else {"status": "error", "error": error}
        response = web.json_response(payload, status=status, headers=headers)
        response.force_close()
        return response
