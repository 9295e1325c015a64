"""Pydantic models for the sandbox data model and message protocols.

Host messages keep the camelCase field names used by the embedding page
(``wrapCodeInMain``, ``dataUrl`` ...) through aliases, while Python code uses
snake_case attributes.  Every host message carries a ``type`` discriminator.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IOType(str, enum.Enum):
    OUTPUT = "output"
    ERROR = "error"


class RunState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    CHECKING = "checking"


class WireModel(BaseModel):
    """Base model serialising by alias and accepting either naming."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class IOEvent(WireModel):
    """A single line of output or error captured during a run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str
    type: IOType
    time: datetime = Field(default_factory=utcnow)


class Feedback(WireModel):
    """Outcome line shown to the learner."""

    succeeded: bool
    message: str
    is_test: Optional[bool] = Field(default=None, alias="isTest")


class EditorSnapshot(WireModel):
    """Immutable record of one run attempt."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    snapshot: str
    compiled: bool
    timestamp: datetime = Field(default_factory=utcnow)
    io: List[IOEvent] = Field(default_factory=list)


class EditorChange(WireModel):
    """An editor change forwarded by the learner's editor."""

    timestamp: datetime = Field(default_factory=utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)


class PredefinedCode(WireModel):
    """Code supplied by the host for the current exercise."""

    language: str = "python"
    code: str = ""
    setup: Optional[str] = None
    test: Optional[str] = None
    wrap_code_in_main: Optional[bool] = Field(default=None, alias="wrapCodeInMain")
    data_url: Optional[str] = Field(default=None, alias="dataUrl")


class QueryOutput(WireModel):
    """Result table of a SQL run."""

    rows: List[List[Any]] = Field(default_factory=list)
    column_names: List[str] = Field(default_factory=list, alias="columnNames")
    message: Optional[str] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Host -> core messages


class InitialiseMessage(WireModel):
    type: Literal["initialise"] = "initialise"
    code: Optional[str] = None
    setup: Optional[str] = None
    test: Optional[str] = None
    wrap_code_in_main: Optional[bool] = Field(default=None, alias="wrapCodeInMain")
    data_url: Optional[str] = Field(default=None, alias="dataUrl")
    language: str = "python"
    log_changes: Optional[bool] = Field(default=None, alias="logChanges")
    fullscreen: Optional[bool] = None

    def predefined_code(self) -> PredefinedCode:
        return PredefinedCode(
            language=self.language,
            code=self.code or "",
            setup=self.setup or "",
            test=self.test,
            wrap_code_in_main=self.wrap_code_in_main or None,
            data_url=self.data_url,
        )


class FeedbackMessage(WireModel):
    type: Literal["feedback"] = "feedback"
    succeeded: bool
    message: str


class PingMessage(WireModel):
    type: Literal["ping"] = "ping"
    timestamp: Optional[int] = None


class LogsRequestMessage(WireModel):
    type: Literal["logs"] = "logs"


class ToggleRunMessage(WireModel):
    type: Literal["toggle_run"] = "toggle_run"
    disable_run: bool = Field(default=False, alias="disableRun")


class ToggleReadOnlyCodeMessage(WireModel):
    type: Literal["toggle_read_only_code"] = "toggle_read_only_code"
    read_only_code: bool = Field(default=False, alias="readOnlyCode")


HostMessage = Annotated[
    Union[
        InitialiseMessage,
        FeedbackMessage,
        PingMessage,
        LogsRequestMessage,
        ToggleRunMessage,
        ToggleReadOnlyCodeMessage,
    ],
    Field(discriminator="type"),
]

host_message_adapter: TypeAdapter[HostMessage] = TypeAdapter(HostMessage)


# ---------------------------------------------------------------------------
# Core -> host messages


class ConfirmInitialisedMessage(WireModel):
    type: Literal["confirm_initialised"] = "confirm_initialised"


class LogsResponseMessage(WireModel):
    type: Literal["logs"] = "logs"
    changes: List[EditorChange] = Field(default_factory=list)
    snapshots: List[EditorSnapshot] = Field(default_factory=list)


class ResizeMessage(WireModel):
    type: Literal["resize"] = "resize"
    height: int


class CheckerMessage(WireModel):
    type: Literal["checker"] = "checker"
    result: str


class SetupFailMessage(WireModel):
    type: Literal["setup_fail"] = "setup_fail"
    message: str


class RunFinishedMessage(WireModel):
    """Bare ``toggle_run`` sent to the host when a run finishes."""

    type: Literal["toggle_run"] = "toggle_run"


# ---------------------------------------------------------------------------
# Editor -> core messages


class RunRequest(WireModel):
    type: Literal["run"] = "run"
    code: str = ""


class CheckRequest(WireModel):
    type: Literal["check"] = "check"
    code: str = ""


class StopRequest(WireModel):
    type: Literal["stop"] = "stop"


class InputReply(WireModel):
    type: Literal["input"] = "input"
    text: str = ""


class ChangeNotice(WireModel):
    type: Literal["change"] = "change"
    data: Dict[str, Any] = Field(default_factory=dict)


class ResizeNotice(WireModel):
    type: Literal["resize"] = "resize"
    height: int


EditorMessage = Annotated[
    Union[RunRequest, CheckRequest, StopRequest, InputReply, ChangeNotice, ResizeNotice],
    Field(discriminator="type"),
]

editor_message_adapter: TypeAdapter[EditorMessage] = TypeAdapter(EditorMessage)


# ---------------------------------------------------------------------------
# Dataset management


class DatasetUploadResponse(BaseModel):
    """Response after uploading datasets."""

    paths: List[str] = Field(..., description="Dataset paths stored by the backend.")


class DatasetList(BaseModel):
    files: List[str] = Field(default_factory=list)
