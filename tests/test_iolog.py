"""Tests for the per-run IO event log and the logging terminal."""

from __future__ import annotations

from codesandbox.iolog import IOEventLog
from codesandbox.models import IOType
from codesandbox.terminal import BufferedTerminal, LoggedTerminal


def test_events_keep_insertion_order():
    log = IOEventLog()
    log.add_line("first", IOType.OUTPUT)
    log.add_line("boom", IOType.ERROR)
    log.add_line("second", IOType.OUTPUT)
    events = log.get_io_events()
    assert [(event.text, event.type) for event in events] == [
        ("first", IOType.OUTPUT),
        ("boom", IOType.ERROR),
        ("second", IOType.OUTPUT),
    ]
    assert len(log) == 3


def test_get_returns_a_copy():
    log = IOEventLog()
    log.add_line("x", IOType.OUTPUT)
    events = log.get_io_events()
    log.clear_events()
    assert len(events) == 1
    assert log.get_io_events() == []


def test_logged_terminal_records_output_only():
    terminal = BufferedTerminal(inputs=["typed"])
    log = IOEventLog()
    logged = LoggedTerminal(terminal, log)
    logged.output("hello\n")
    assert logged.input() == "typed"
    logged.clear()
    assert terminal.clear_count == 1
    assert [event.text for event in log.get_io_events()] == ["hello\n"]
    assert log.get_io_events()[0].type is IOType.OUTPUT
