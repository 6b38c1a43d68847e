import io
import json
import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import apprun.infrastructure.observability.logging as log_module  # noqa: E402
from apprun.infrastructure.observability import get_registry  # noqa: E402


@pytest.fixture(autouse=True)
def plain_log_output(monkeypatch):
    """Keep log output machine-readable even when pytest runs in a terminal."""
    monkeypatch.setattr(log_module, "is_terminal", lambda stream=None: False)


@pytest.fixture(autouse=True)
def clean_app_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("APP_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def metric_registry():
    registry = get_registry()
    registry.clear()
    yield registry
    registry.clear()


@pytest.fixture
def log_stream():
    return io.StringIO()


@pytest.fixture
def log_records(log_stream):
    """Parse the JSON lines written by the non-terminal log handler."""

    def read() -> list[dict]:
        return [
            json.loads(line)
            for line in log_stream.getvalue().splitlines()
            if line.strip()
        ]

    return read
