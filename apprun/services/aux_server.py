"""Auxiliary HTTP server running next to the application.

The server is best effort: it is started as a background task once the
application has registered its routes, a failure to bind or serve is logged
and otherwise ignored, and it is stopped after the application returns.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Iterator

import uvicorn
from fastapi import APIRouter, FastAPI

from apprun.errors import AuxServerError
from apprun.infrastructure.observability import StructuredLogger

HTTP_ADDR_ENV = "APP_HTTP_SERVER_ADDR"
DEFAULT_HTTP_ADDR = ":9000"
DEFAULT_SHUTDOWN_TIMEOUT = 5.0


def parse_listen_addr(addr: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address.

    ``:9000`` listens on all interfaces, ``[::1]:9000`` is an IPv6 host.

    Raises:
        ValueError: The address has no port or the port is not a number in
            the 0-65535 range.
    """
    host, sep, port_text = addr.strip().rpartition(":")
    if not sep:
        raise ValueError(f"invalid listen address {addr!r}: missing port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid listen address {addr!r}: bad port") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"invalid listen address {addr!r}: port out of range")
    return host or "0.0.0.0", port


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the runner."""

    def install_signal_handlers(self) -> None:  # uvicorn < 0.29
        return None

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:  # uvicorn >= 0.29
        yield


class AuxServer:
    """Serve a route set with uvicorn on a background asyncio task."""

    def __init__(
        self,
        addr: str,
        router: APIRouter,
        logger: StructuredLogger,
        *,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> None:
        self.addr = addr
        self.host, self.port = parse_listen_addr(addr)
        self.shutdown_timeout = shutdown_timeout
        self.error: AuxServerError | None = None
        self._router = router
        self._logger = logger
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def serving(self) -> bool:
        """True once the listener is bound and accepting connections."""
        return bool(
            self._server is not None
            and self._server.started
            and self._task is not None
            and not self._task.done()
        )

    @property
    def bound_address(self) -> tuple[str, int] | None:
        """Actual ``(host, port)`` of the listener, useful with port 0."""
        if not self.serving or self._server is None:
            return None
        for server in getattr(self._server, "servers", []):
            for sock in server.sockets:
                host, port = sock.getsockname()[:2]
                return host, port
        return None

    def build_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
        app.include_router(self._router)
        return app

    def start(self) -> None:
        """Start serving on a background task; never raises on bind errors."""
        if self._task is not None:
            raise RuntimeError("http server is already started")
        config = uvicorn.Config(
            self.build_app(),
            host=self.host,
            port=self.port,
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._serve(), name="apprun-http-server")

    async def stop(self) -> None:
        """Ask the server to exit and wait for it, bounded by the timeout."""
        if self._task is None or self._server is None:
            return

        self._logger.info("http server is shutting down")
        self._server.should_exit = True
        done, _ = await asyncio.wait({self._task}, timeout=self.shutdown_timeout)
        if done:
            return

        self._server.force_exit = True
        self._task.cancel()
        await asyncio.wait({self._task}, timeout=1.0)
        self.error = AuxServerError(
            f"http server did not stop within {self.shutdown_timeout}s"
        )
        self._logger.error(
            "http server shutdown failed", extra={"fields": {"error": str(self.error)}}
        )

    async def _serve(self) -> None:
        assert self._server is not None
        self._logger.info("http server is starting", extra={"fields": {"addr": self.addr}})
        try:
            await self._server.serve()
        except SystemExit:
            # uvicorn exits the process when it cannot bind
            self._fail(AuxServerError(f"cannot listen on {self.addr}"))
            return
        except Exception as exc:
            failure = AuxServerError(str(exc))
            failure.__cause__ = exc
            self._fail(failure)
            return

        # uvicorn skips its shutdown when asked to exit during startup
        for listener in getattr(self._server, "servers", []):
            listener.close()

        if not self._server.started and not self._server.should_exit:
            self._fail(AuxServerError(f"cannot listen on {self.addr}"))
            return
        self._logger.info("http server closed")

    def _fail(self, error: AuxServerError) -> None:
        self.error = error
        self._logger.error(
            "http server serve failed",
            extra={"fields": {"addr": self.addr, "error": str(error)}},
        )
