"""Terminal surfaces the orchestrator writes to and reads from.

The orchestrator only needs three capabilities from a terminal:

* ``output(text)`` – append text (ANSI escapes allowed),
* ``input()`` – return a line typed by the learner, either directly or as an
  awaitable,
* ``clear()`` – wipe the visible output.

Several implementations are provided: an in-memory buffer, the local
console, a remote terminal driven over a message channel, and a decorator
that records output into the run's :class:`~codesandbox.iolog.IOEventLog`.
"""

from __future__ import annotations

import asyncio
import sys
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Protocol, Union

from .iolog import IOEventLog
from .models import IOType


class Terminal(Protocol):
    def output(self, text: str) -> None:
        ...

    def input(self) -> Union[str, Awaitable[str]]:
        ...

    def clear(self) -> None:
        ...


class BufferedTerminal:
    """Terminal that keeps output in memory and answers input from a script."""

    def __init__(self, inputs: Optional[Iterable[str]] = None) -> None:
        self.chunks: List[str] = []
        self.inputs: Deque[str] = deque(inputs or [])
        self.clear_count = 0
        self.input_requests = 0

    def output(self, text: str) -> None:
        self.chunks.append(text)

    def input(self) -> str:
        self.input_requests += 1
        return self.inputs.popleft() if self.inputs else ""

    def clear(self) -> None:
        self.chunks = []
        self.clear_count += 1

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class ConsoleTerminal:
    """Terminal bound to the process's standard streams."""

    def __init__(self, stream=None, stdin=None) -> None:
        self.stream = stream or sys.stdout
        self.stdin = stdin or sys.stdin

    def output(self, text: str) -> None:
        self.stream.write(text.replace("\r\n", "\n"))
        self.stream.flush()

    async def input(self) -> str:
        line = await asyncio.to_thread(self.stdin.readline)
        return line.rstrip("\n")

    def clear(self) -> None:
        if self.stream.isatty():
            self.stream.write("\x1b[2J\x1b[H")
            self.stream.flush()


class RemoteTerminal:
    """Terminal whose peer is reached through a message sender.

    ``send`` must be non-blocking (typically it enqueues a frame for a
    WebSocket writer task).  Input requests are answered by calling
    :meth:`provide_input`; :meth:`interrupt` releases a pending request with
    an empty line so a stop request can unblock a program waiting for input.
    """

    def __init__(self, send: Callable[[Dict[str, Any]], None]) -> None:
        self._send = send
        self._pending: Optional[asyncio.Future] = None

    def output(self, text: str) -> None:
        self._send({"type": "output", "text": text})

    async def input(self) -> str:
        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        self._send({"type": "input_request"})
        try:
            return await self._pending
        finally:
            self._pending = None

    def clear(self) -> None:
        self._send({"type": "clear"})

    @property
    def waiting_for_input(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def provide_input(self, text: str) -> bool:
        if not self.waiting_for_input:
            return False
        self._pending.set_result(text)
        return True

    def interrupt(self) -> None:
        if self.waiting_for_input:
            self._pending.set_result("")


class LoggedTerminal:
    """Decorator recording everything written to ``terminal`` as IO events."""

    def __init__(self, terminal: Terminal, io_log: IOEventLog) -> None:
        self.terminal = terminal
        self.io_log = io_log

    def output(self, text: str) -> None:
        self.io_log.add_line(text, IOType.OUTPUT)
        self.terminal.output(text)

    def input(self) -> Union[str, Awaitable[str]]:
        return self.terminal.input()

    def clear(self) -> None:
        self.terminal.clear()


def noop_output(text: str) -> None:
    """Output sink used while the learner's output is suppressed."""
