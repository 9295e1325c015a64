"""Host messaging bridge.

Receives messages from the embedding host page, applies them to a
:class:`~codesandbox.session.SandboxSession` and answers where the protocol
requires it.  Notifications that originate in the orchestrator (checker
results, setup failures, run completion) are sent through the session's host
channel directly.

Example ``initialise`` message::

    {
        "type": "initialise",
        "language": "python",
        "code": "# Calculate the area of a circle below!\\ndef circleArea(radius):",
        "setup": "pi = 3.142",
        "test": "checkerResult = str([circleArea(2), circleArea(8)])"
    }
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict

from pydantic import ValidationError

from .models import (
    ConfirmInitialisedMessage,
    Feedback,
    FeedbackMessage,
    InitialiseMessage,
    LogsRequestMessage,
    LogsResponseMessage,
    PingMessage,
    QueryOutput,
    ResizeMessage,
    ToggleReadOnlyCodeMessage,
    ToggleRunMessage,
    host_message_adapter,
)
from .session import SandboxSession

logger = logging.getLogger("codesandbox.bridge")


def now_ms() -> int:
    return int(time.time() * 1000)


class HostBridge:
    """Dispatches host messages for one session."""

    def __init__(self, session: SandboxSession) -> None:
        self.session = session

    async def receive(self, raw: Dict[str, Any]) -> None:
        """Handle one decoded host message; invalid messages are ignored."""
        try:
            message = host_message_adapter.validate_python(raw)
        except ValidationError as exc:
            logger.warning(
                "Session %s: ignoring invalid host message %r: %s",
                self.session.session_id,
                raw.get("type") if isinstance(raw, dict) else raw,
                exc.errors(include_url=False),
            )
            return

        logger.debug("Session %s: host message %s", self.session.session_id, message.type)
        if isinstance(message, InitialiseMessage):
            await self.initialise(message)
        elif isinstance(message, FeedbackMessage):
            self.session.print_feedback(Feedback(succeeded=message.succeeded, message=message.message))
        elif isinstance(message, PingMessage):
            await self.session.notify_host(PingMessage(timestamp=now_ms()))
        elif isinstance(message, LogsRequestMessage):
            await self.send_logs()
        elif isinstance(message, ToggleRunMessage):
            self.session.run_disabled = message.disable_run
            self.session.notify_editor(self.session.editor_config())
        elif isinstance(message, ToggleReadOnlyCodeMessage):
            self.session.read_only_code = message.read_only_code
            self.session.notify_editor(self.session.editor_config())

    async def initialise(self, message: InitialiseMessage) -> None:
        session = self.session
        if session.is_running:
            session.stop_execution()

        session.predefined_code = message.predefined_code()
        session.record_logs = bool(message.log_changes)
        session.fullscreen = bool(message.fullscreen)
        session.loaded = True
        session.change_log = []
        session.snapshot_log = []

        session.terminal.clear()
        session.show_query_output(QueryOutput())
        session.notify_editor(session.editor_config())

        logger.info(
            "Session %s: initialised (%s, logging=%s)",
            session.session_id,
            session.predefined_code.language,
            session.record_logs,
        )
        await session.notify_host(ConfirmInitialisedMessage())

    async def send_logs(self) -> None:
        changes, snapshots = self.session.take_logs()
        await self.session.notify_host(LogsResponseMessage(changes=changes, snapshots=snapshots))

    async def send_resize(self, height: int) -> None:
        await self.session.notify_host(ResizeMessage(height=height))
