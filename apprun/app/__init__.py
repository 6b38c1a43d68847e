"""Application orchestration layer.

Holds configuration resolution shared by the runner and the CLI.
"""

from . import config

__all__ = ["config"]
