"""Service layer modules for apprun."""

from .aux_server import AuxServer, parse_listen_addr  # noqa: F401
from .cancellation import (  # noqa: F401
    CancellationController,
    CancellationState,
    RunContext,
)
from .runner import Runnable, Runner, RunnerConfig, Runtime, run_app  # noqa: F401

__all__ = [
    "AuxServer",
    "CancellationController",
    "CancellationState",
    "RunContext",
    "Runnable",
    "Runner",
    "RunnerConfig",
    "Runtime",
    "parse_listen_addr",
    "run_app",
]
