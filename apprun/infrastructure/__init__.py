"""Infrastructure layer for apprun.

Holds the observability adapters (logging sinks and the metrics registry)
that the runner wires up for every application.
"""

from . import observability

__all__ = ["observability"]
