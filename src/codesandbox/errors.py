"""Error kinds raised while running learner code.

Three kinds of failure are distinguished because each is reported
differently:

* ``ContentError`` – the author supplied setup code is broken.  This is never
  the learner's fault, so the host is told via a ``setup_fail`` message and
  the learner's code is not executed.
* ``TestError`` – raised by the test harness or by a plugin's test phase.
  Line numbers are stripped from the message because they refer to bundled
  source the learner never sees.
* ``ExecutionError`` – anything else: exceptions raised by the learner's own
  code or faults inside an interpreter plugin.

:func:`classify_error` maps an arbitrary exception onto one of these kinds.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass

UNDEFINED_ERROR_MESSAGE = (
    "Undefined error (sorry, this particular code snippet may be broken)"
)

_LINE_NUMBER_RE = re.compile(r" on line \d+")


class SandboxError(Exception):
    """Base class for all errors produced while running a sandbox."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ContentError(SandboxError):
    """The content author's setup code failed."""


class TestError(SandboxError):
    """A hidden test failed."""

    # Keep pytest from collecting this class.
    __test__ = False


class ExecutionError(SandboxError):
    """The learner's code (or the interpreter running it) failed."""


class ExecutionStopped(ExecutionError):
    """Execution was cancelled by a stop request."""

    def __init__(self, message: str = "Execution stopped") -> None:
        super().__init__(message)


class ExecutionTimeout(ExecutionError):
    """Execution ran past the configured wall-clock limit."""

    def __init__(self, limit_ms: int) -> None:
        seconds = limit_ms / 1000
        super().__init__(f"Execution timed out after {seconds:g} seconds")
        self.limit_ms = limit_ms


class ErrorKind(str, enum.Enum):
    CONTENT = "content"
    TEST = "test"
    RUNTIME = "runtime"


@dataclass(frozen=True)
class ErrorReport:
    """Classified error ready to be logged and shown to the learner."""

    kind: ErrorKind
    message: str

    @property
    def is_test_error(self) -> bool:
        return self.kind is ErrorKind.TEST

    @property
    def is_content_error(self) -> bool:
        return self.kind is ErrorKind.CONTENT

    def display_message(self) -> str:
        """Message as shown in the terminal."""
        if self.kind is ErrorKind.TEST:
            return _LINE_NUMBER_RE.sub("", self.message, count=1)
        return self.message


def classify_error(exc: BaseException) -> ErrorReport:
    """Classify ``exc`` into a :class:`ErrorReport`."""
    if isinstance(exc, ContentError):
        kind = ErrorKind.CONTENT
    elif isinstance(exc, TestError):
        kind = ErrorKind.TEST
    else:
        kind = ErrorKind.RUNTIME
    message = str(exc) or UNDEFINED_ERROR_MESSAGE
    return ErrorReport(kind=kind, message=message)
