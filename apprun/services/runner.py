"""Application runner.

:class:`Runner` bootstraps one application per process invocation::

    class Worker:
        def __init__(self, cfg: RunnerConfig[Settings], rt: Runtime) -> None:
            self._log = rt.logger

        async def run(self, ctx: RunContext) -> None:
            while not await ctx.sleep(1):
                self._log.info("tick")

    raise SystemExit(Runner(Worker, Settings()).with_default_http_server().run())

The lifecycle is fixed: resolve configuration, arm signal handling, build
the application, start the optional HTTP server, run the application, stop
the HTTP server. A configuration, construction or run failure is logged once
and turns into exit code 1.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Generic, Protocol, TypeVar

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from apprun.app.config import ConfigResolver
from apprun.errors import (
    ConfigError,
    ConfigLoadError,
    ExecutionError,
    FactoryError,
    RunnerError,
)
from apprun.infrastructure.observability import (
    StructuredLogger,
    build_log_handler,
    build_logger,
    format_prometheus,
    log_exception,
    resolve_level,
    set_app_info,
)
from apprun.services.aux_server import (
    DEFAULT_HTTP_ADDR,
    HTTP_ADDR_ENV,
    AuxServer,
    parse_listen_addr,
)
from apprun.services.cancellation import CancellationController, RunContext

APP_NAME_ENV = "APP_NAME"
APP_VERSION_ENV = "APP_VERSION"
METRICS_PATH = "/metrics"

EXIT_OK = 0
EXIT_FAILURE = 1

C = TypeVar("C")


class Runnable(Protocol):
    """Anything with an async ``run(context)``; raising means failure."""

    async def run(self, context: RunContext) -> None: ...


R = TypeVar("R", bound=Runnable)


@dataclass(frozen=True)
class RunnerConfig(Generic[C]):
    """Fully resolved startup parameters handed to the application factory."""

    app_name: str
    app_version: str
    log_level: int
    log_handlers: tuple[logging.Handler, ...]
    app: C


@dataclass
class Runtime:
    """Runner-owned services the application may use for its lifetime."""

    app_name: str
    app_version: str
    logger: StructuredLogger
    router: APIRouter | None = None


AppFactory = Callable[[RunnerConfig[C], Runtime], R]
ServerFactory = Callable[..., AuxServer]


class Runner(Generic[R, C]):
    """Run a single application instance with config, logging and signals."""

    def __init__(
        self,
        factory: AppFactory[C, R],
        config: C,
        *,
        app_name: str = "",
        app_version: str = "",
        environ: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
        log_stream: IO[Any] | None = None,
        args: Sequence[str] | None = None,
    ) -> None:
        self._factory = factory
        self._base_config = config
        self._environ = os.environ if environ is None else environ
        self._cwd = cwd
        self._args = tuple(sys.argv[1:] if args is None else args)

        self.app_name = app_name or self._environ.get(APP_NAME_ENV, "")
        self.app_version = app_version or self._environ.get(APP_VERSION_ENV, "")
        self.log_level = resolve_level(self._environ)

        self._log_handlers: list[logging.Handler] = [build_log_handler(log_stream)]
        self.logger = build_logger(
            self.app_name,
            self.app_version,
            level=self.log_level,
            handlers=self._log_handlers,
        )
        self.runtime = Runtime(
            app_name=self.app_name,
            app_version=self.app_version,
            logger=self.logger,
        )

        self._server_factory: ServerFactory | None = None
        self._server_addr: str | None = None
        self._server: AuxServer | None = None
        self.config: RunnerConfig[C] | None = None
        self.controller: CancellationController | None = None

    # ------------------------------------------------------------------
    # Builder methods
    # ------------------------------------------------------------------

    def with_log_handler(self, handler: logging.Handler) -> "Runner[R, C]":
        """Send log records to an additional destination."""
        self._log_handlers.append(handler)
        self.logger.logger.addHandler(handler)
        return self

    def with_http_server(
        self, addr: str, *, server_cls: ServerFactory = AuxServer
    ) -> "Runner[R, C]":
        """Serve ``Runtime.router`` on ``addr`` while the application runs."""
        if self._server_factory is not None:
            raise RuntimeError("http server is already set")
        # A bad address is a programming error, not a run failure
        parse_listen_addr(addr)
        self.runtime.router = APIRouter()
        self._server_factory = server_cls
        self._server_addr = addr
        return self

    def with_default_http_server(self) -> "Runner[R, C]":
        """Serve on ``APP_HTTP_SERVER_ADDR`` or ``:9000``."""
        addr = self._environ.get(HTTP_ADDR_ENV, "") or DEFAULT_HTTP_ADDR
        return self.with_http_server(addr)

    def with_metrics_handler(self) -> "Runner[R, C]":
        """Expose the metric registry at ``/metrics``."""
        if self.runtime.router is None:
            raise RuntimeError("http server is not set")

        set_app_info(self.app_name, self.app_version)

        async def metrics() -> PlainTextResponse:
            return PlainTextResponse(
                format_prometheus(),
                media_type="text/plain; version=0.0.4; charset=utf-8",
            )

        self.runtime.router.add_api_route(METRICS_PATH, metrics, methods=["GET"])
        return self

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def server(self) -> AuxServer | None:
        """The auxiliary server of the current run, once started."""
        return self._server

    def run(self) -> int:
        """Run the application to completion and return the exit code."""
        return asyncio.run(self.run_async())

    async def run_async(self) -> int:
        """Coroutine form of :meth:`run` for callers that own a loop."""
        try:
            app_config = self._resolve_config()
        except ConfigError as exc:
            self._report(exc)
            return EXIT_FAILURE

        self.config = RunnerConfig(
            app_name=self.app_name,
            app_version=self.app_version,
            log_level=self.log_level,
            log_handlers=tuple(self._log_handlers),
            app=app_config,
        )

        controller = CancellationController(self.logger, args=self._args)
        self.controller = controller
        controller.arm()
        try:
            return await self._run_app(controller.context)
        finally:
            controller.disarm()

    def _resolve_config(self) -> C:
        resolver: ConfigResolver[C] = ConfigResolver(
            self.app_name,
            environ=self._environ,
            cwd=self._cwd,
            logger=self.logger,
        )
        return resolver.resolve(self._base_config)

    async def _run_app(self, context: RunContext) -> int:
        assert self.config is not None
        try:
            app = self._factory(self.config, self.runtime)
        except Exception as exc:
            failure = FactoryError(str(exc))
            failure.__cause__ = exc
            self._report(failure)
            return EXIT_FAILURE

        self._start_server()
        try:
            await app.run(context)
        except Exception as exc:
            failure = ExecutionError(str(exc))
            failure.__cause__ = exc
            self._report(failure)
            return EXIT_FAILURE
        finally:
            await self._stop_server()

        self.logger.debug("app run finished")
        return EXIT_OK

    def _start_server(self) -> None:
        if self._server_factory is None or self._server_addr is None:
            return
        assert self.runtime.router is not None
        try:
            server = self._server_factory(
                self._server_addr, self.runtime.router, self.logger
            )
            server.start()
        except Exception as exc:
            log_exception(self.logger, "http server start failed", exc, phase="http")
            return
        self._server = server

    async def _stop_server(self) -> None:
        if self._server is None:
            return
        try:
            await self._server.stop()
        except Exception as exc:
            log_exception(self.logger, "http server shutdown failed", exc, phase="http")

    def _report(self, error: RunnerError) -> None:
        fields: dict[str, Any] = {"phase": error.phase}
        if isinstance(error, ConfigLoadError):
            if error.variable is not None:
                message = "load config from env vars failed"
                fields["var"] = error.variable
            else:
                message = "config file load failed"
            if error.path is not None:
                fields["path"] = error.path
        elif isinstance(error, FactoryError):
            message = "app init failed"
        elif isinstance(error, ExecutionError):
            message = "app run failed"
        else:
            message = "app failed"
        log_exception(self.logger, message, error, **fields)


def run_app(factory: AppFactory[C, R], config: C, **kwargs: Any) -> int:
    """Build a :class:`Runner` and run it; returns the exit code."""
    return Runner(factory, config, **kwargs).run()


__all__ = [
    "AppFactory",
    "EXIT_FAILURE",
    "EXIT_OK",
    "METRICS_PATH",
    "Runnable",
    "Runner",
    "RunnerConfig",
    "Runtime",
    "run_app",
]
