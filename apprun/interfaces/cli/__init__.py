"""CLI interface for apprun.

This package is the home of all Click commands; ``python -m
apprun.interfaces.cli`` and the ``apprun`` console script both invoke the
top-level group.
"""

from .__main__ import cli
from .config import show_config
from .run import run

__all__ = ["cli", "run", "show_config"]
