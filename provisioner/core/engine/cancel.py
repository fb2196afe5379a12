"""
Cancellation token — honored by the engine between steps only.

A signal that arrives while a step is applying is queued here and
acted on at the next step boundary. Running collaborator commands
live in their own session, so the terminal's Ctrl+C does not reach
a half-finished package install.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class CancelToken:
    """Thread-safe one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason


@contextmanager
def cancel_on_signals(
    token: CancelToken,
    signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[CancelToken]:
    """Route termination signals to ``token`` for the duration of the block."""
    previous = {}

    def _handler(signum: int, _frame: object) -> None:
        name = signal.Signals(signum).name
        if token.cancelled:
            logger.warning("%s received again, still waiting for the current step", name)
            return
        logger.warning("%s received, stopping after the current step", name)
        token.cancel(f"interrupted by {name}")

    for sig in signals:
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
