"""Append-only log of the output and error events produced by one run."""

from __future__ import annotations

from typing import List

from .models import IOEvent, IOType


class IOEventLog:
    """Buffer of :class:`IOEvent` records scoped to a single run.

    The orchestrator appends while a run is in progress, reads the events
    when recording the run's snapshot and then clears the whole buffer.
    Insertion order is the only meaningful order; timestamps are advisory.
    """

    def __init__(self) -> None:
        self._events: List[IOEvent] = []

    def add_line(self, text: str, type: IOType) -> IOEvent:
        event = IOEvent(text=text, type=type)
        self._events.append(event)
        return event

    def get_io_events(self) -> List[IOEvent]:
        return list(self._events)

    def clear_events(self) -> None:
        self._events = []

    def __len__(self) -> int:
        return len(self._events)
