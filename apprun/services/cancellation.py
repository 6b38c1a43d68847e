"""Signal-driven cancellation for a single run.

The controller owns one :class:`RunContext` and cancels it the first time the
process receives SIGINT or SIGTERM. Cancellation is cooperative: nothing is
interrupted, the application observes ``context.cancelled`` or awaits
``context.wait()`` and returns on its own.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Sequence
from enum import Enum
from types import FrameType
from typing import Any

from apprun.infrastructure.observability import StructuredLogger

HANDLED_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class CancellationState(str, Enum):
    ACTIVE = "active"
    CANCEL_REQUESTED = "cancel_requested"
    DONE = "done"


class RunContext:
    """One-shot, monotonic cancellation signal shared by a run.

    Only the :class:`CancellationController` is expected to call
    :meth:`cancel`; applications read it.
    """

    def __init__(self, args: Sequence[str] = ()) -> None:
        self.args: tuple[str, ...] = tuple(args)
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Name of whatever cancelled the run (e.g. ``SIGTERM``)."""
        return self._reason

    async def wait(self) -> str | None:
        """Block until the run is cancelled and return the reason."""
        await self._event.wait()
        return self._reason

    async def sleep(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds unless cancelled first.

        Returns:
            True if the run was cancelled before the delay elapsed.
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the run; only the first call has an effect."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        return True


class CancellationController:
    """Owns the run context and the SIGINT/SIGTERM handlers that cancel it."""

    def __init__(
        self,
        logger: StructuredLogger,
        *,
        args: Sequence[str] = (),
        signals: Sequence[signal.Signals] = HANDLED_SIGNALS,
    ) -> None:
        self.context = RunContext(args)
        self._logger = logger
        self._signals = tuple(signals)
        self._state = CancellationState.ACTIVE
        self._loop: asyncio.AbstractEventLoop | None = None
        self._installed: list[signal.Signals] = []
        self._previous: dict[signal.Signals, Any] = {}

    @property
    def state(self) -> CancellationState:
        return self._state

    @property
    def armed(self) -> bool:
        return bool(self._installed)

    def arm(self) -> None:
        """Install the signal handlers on the running event loop.

        Must be called before the application starts so that no signal
        delivered after this point is lost.
        """
        if self._loop is not None:
            raise RuntimeError("cancellation controller is already armed")
        loop = asyncio.get_running_loop()
        self._loop = loop

        for sig in self._signals:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except NotImplementedError:
                # Event loops without signal support (Windows)
                self._previous[sig] = signal.signal(sig, self._threadsafe_handler)
            self._installed.append(sig)

        self._logger.debug(
            "signal handlers armed",
            extra={"fields": {"signals": ",".join(s.name for s in self._signals)}},
        )

    def disarm(self) -> None:
        """Restore the previous handlers and mark the run as done."""
        for sig in self._installed:
            if sig in self._previous:
                signal.signal(sig, self._previous.pop(sig))
            elif self._loop is not None and not self._loop.is_closed():
                self._loop.remove_signal_handler(sig)
        self._installed.clear()
        self._state = CancellationState.DONE

    def cancel(self, reason: str) -> bool:
        """Request cancellation; returns False if it was already requested."""
        if not self.context.cancel(reason):
            return False
        if self._state is CancellationState.ACTIVE:
            self._state = CancellationState.CANCEL_REQUESTED
        return True

    def _threadsafe_handler(self, signum: int, frame: FrameType | None) -> None:
        assert self._loop is not None
        self._loop.call_soon_threadsafe(self._on_signal, signal.Signals(signum))

    def _on_signal(self, sig: signal.Signals) -> None:
        if self.cancel(sig.name):
            self._logger.info("signal received", extra={"fields": {"signal": sig.name}})
        else:
            self._logger.debug(
                "signal ignored, run already cancelled",
                extra={"fields": {"signal": sig.name}},
            )
