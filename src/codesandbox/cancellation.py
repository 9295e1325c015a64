"""Cooperative cancellation of running code.

A stop request never interrupts an interpreter directly.  It sets a flag
which interpreter plugins poll at safe points (each traced line, each I/O
call) and which the terminal consults when it is waiting for input.
"""

from __future__ import annotations

import logging
from typing import Callable, List

logger = logging.getLogger("codesandbox.cancellation")


class CancellationToken:
    """Stop flag shared between a session and the code it is running.

    ``should_stop(consume=True)`` returns whether a stop was requested and
    clears the flag, so one request cancels exactly one run.
    ``should_stop(consume=False)`` only reads the flag; plugins use it to poll
    repeatedly without losing a pending request.

    The orchestrator consumes the flag when a run finishes, and calls
    :meth:`reset` when the next run starts so that a stop requested while
    idle is discarded.
    """

    def __init__(self) -> None:
        self._stop_requested = False
        self._listeners: List[Callable[[], None]] = []

    def request_stop(self) -> None:
        self._stop_requested = True
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Stop listener %r failed", listener)

    def should_stop(self, consume: bool = False) -> bool:
        if not consume:
            return self._stop_requested
        if self._stop_requested:
            self._stop_requested = False
            return True
        return False

    def reset(self) -> None:
        self._stop_requested = False

    def on_stop(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register ``listener`` to be called on every stop request.

        Returns a function that unregisters the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def __call__(self, consume: bool = False) -> bool:
        return self.should_stop(consume)
