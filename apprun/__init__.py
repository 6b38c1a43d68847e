"""
apprun package initializer.

apprun bootstraps a single asyncio application per process: it resolves a
typed configuration from files and environment variables, builds a
field-tagged logger, wires SIGINT/SIGTERM to a cancellable run context and
optionally serves an auxiliary HTTP endpoint (metrics) next to the app.

The package exposes a ``__version__`` attribute read from the installed
distribution metadata.
"""

from importlib.metadata import PackageNotFoundError, version

from apprun.services.cancellation import RunContext
from apprun.services.runner import Runnable, Runner, RunnerConfig, Runtime, run_app

try:
    __version__ = version("apprun")
except PackageNotFoundError:
    # Package is not installed (running from source without pip install -e .)
    __version__ = "0.0.0.dev"

__all__: list[str] = [
    "RunContext",
    "Runnable",
    "Runner",
    "RunnerConfig",
    "Runtime",
    "__version__",
    "run_app",
]
