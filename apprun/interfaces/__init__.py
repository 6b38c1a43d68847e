"""Interface layer for apprun.

Packages under ``apprun.interfaces`` expose boundary adapters such as the
``apprun`` command line.
"""

from . import cli

__all__ = ["cli"]
