"""Per-sandbox session state.

Everything one embedded sandbox needs while it is alive lives on a
:class:`SandboxSession`: the predefined code sent by the host, the run
state, the IO event log, the cancellation token, the change and snapshot
logs and the channels to the host and the learner's editor.  Sessions are
independent, so any number of sandboxes can be served by one process.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from .cancellation import CancellationToken
from .iolog import IOEventLog
from .models import EditorChange, EditorSnapshot, Feedback, PredefinedCode, QueryOutput, RunState, WireModel
from .terminal import BufferedTerminal, Terminal

logger = logging.getLogger("codesandbox.session")

EditorSender = Callable[[Dict[str, Any]], None]


class HostChannel(Protocol):
    """Outgoing half of the host messaging channel."""

    async def send(self, message: Dict[str, Any]) -> None:
        ...


class RecordingHostChannel:
    """Host channel that logs and keeps every message it is given."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    async def send(self, message: Dict[str, Any]) -> None:
        logger.info("Host message: %s", message)
        self.sent.append(message)

    def of_type(self, type_: str) -> List[Dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == type_]


def format_feedback(feedback: Feedback) -> str:
    """Render a feedback line with ANSI colours for the terminal."""
    colour = "32" if feedback.succeeded else "31"
    prefix = "> " if feedback.is_test else ""
    tick = " ✔" if feedback.succeeded and feedback.is_test else ""
    return f"\x1b[{colour};1m{prefix}{feedback.message}{tick}\x1b[0m\r\n"


class SandboxSession:
    """State of one embedded sandbox.

    Parameters
    ----------
    session_id: str
        Identifier the host addresses the sandbox by.
    terminal: Terminal, optional
        Output/input surface for the learner.  Defaults to an in-memory
        :class:`~codesandbox.terminal.BufferedTerminal`.
    host: HostChannel, optional
        Channel used to notify the host page.  Messages are dropped (and
        logged) while no host is attached.
    loaded: bool, optional
        Whether runs are accepted before the host sends ``initialise``.
    """

    def __init__(
        self,
        session_id: str,
        terminal: Optional[Terminal] = None,
        host: Optional[HostChannel] = None,
        predefined_code: Optional[PredefinedCode] = None,
        loaded: bool = False,
    ) -> None:
        self.session_id = session_id
        self.terminal: Terminal = terminal or BufferedTerminal()
        self.host = host
        self.editor: Optional[EditorSender] = None
        self.predefined_code = predefined_code or PredefinedCode(language="python", code="# Loading...")
        self.loaded = loaded

        self.run_state = RunState.STOPPED
        self.io_log = IOEventLog()
        self.token = CancellationToken()

        self.record_logs = False
        self.change_log: List[EditorChange] = []
        self.snapshot_log: List[EditorSnapshot] = []

        self.run_disabled = False
        self.read_only_code = False
        self.fullscreen = False
        self.query_output = QueryOutput()

    # -- state --------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.run_state is not RunState.STOPPED

    def set_state(self, state: RunState) -> None:
        if state is not self.run_state:
            logger.debug("Session %s: %s -> %s", self.session_id, self.run_state.value, state.value)
        self.run_state = state
        self.notify_editor({"type": "state", "state": state.value})

    def stop_execution(self) -> None:
        """Ask the code currently running (or the next run) to stop."""
        logger.info("Session %s: stop requested", self.session_id)
        self.token.request_stop()

    # -- logs ---------------------------------------------------------------

    def append_change(self, change: EditorChange) -> None:
        if self.record_logs:
            self.change_log.append(change)

    def append_snapshot(self, snapshot: EditorSnapshot) -> None:
        if self.record_logs:
            self.snapshot_log.append(snapshot)

    def take_logs(self) -> tuple[List[EditorChange], List[EditorSnapshot]]:
        """Return the change and snapshot logs and start new ones."""
        changes, snapshots = self.change_log, self.snapshot_log
        self.change_log, self.snapshot_log = [], []
        return changes, snapshots

    # -- output -------------------------------------------------------------

    def print_feedback(self, feedback: Feedback) -> None:
        self.terminal.output(format_feedback(feedback))

    def show_query_output(self, output: QueryOutput) -> None:
        self.query_output = output
        self.notify_editor({"type": "table", **output.to_wire()})

    # -- peers --------------------------------------------------------------

    async def notify_host(self, message: WireModel) -> None:
        payload = message.to_wire()
        if self.host is None:
            logger.info("Session %s: no host attached, dropping %s", self.session_id, payload.get("type"))
            return
        await self.host.send(payload)

    def notify_editor(self, frame: Dict[str, Any]) -> None:
        if self.editor is not None:
            self.editor(frame)

    def editor_config(self) -> Dict[str, Any]:
        """Frame describing the exercise for the learner's editor."""
        code = self.predefined_code
        return {
            "type": "code",
            **code.to_wire(),
            "readOnlyCode": self.read_only_code,
            "disableRun": self.run_disabled,
            "fullscreen": self.fullscreen,
            "showCheckButton": bool(code.test),
        }
