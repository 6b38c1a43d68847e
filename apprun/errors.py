"""Exception hierarchy used by the runner lifecycle.

Only the runner translates these into log records and exit codes; the
components that raise them never log and exit on their own.
"""

from __future__ import annotations


class RunnerError(Exception):
    """Base class for failures raised while bootstrapping an application."""

    phase: str = "runner"


class ConfigError(RunnerError):
    """Base class for configuration resolution problems."""

    phase = "config"


class ConfigFileMissing(ConfigError):
    """Raised when a configuration file does not exist.

    Convention-based sources absorb this; an explicit path does not.
    """

    def __init__(self, path: str) -> None:
        super().__init__(f"config file not found: {path}")
        self.path = path


class ConfigLoadError(ConfigError):
    """Raised when a configuration source exists but cannot be applied."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        variable: str | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.variable = variable


class FactoryError(RunnerError):
    """Raised when the application factory fails to build the application."""

    phase = "init"


class ExecutionError(RunnerError):
    """Raised when the application's run coroutine fails."""

    phase = "run"


class AuxServerError(RunnerError):
    """Raised when the auxiliary HTTP server cannot serve or shut down."""

    phase = "http"


__all__ = [
    "AuxServerError",
    "ConfigError",
    "ConfigFileMissing",
    "ConfigLoadError",
    "ExecutionError",
    "FactoryError",
    "RunnerError",
]
