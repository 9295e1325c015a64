"""Interactive code sandbox service.

This package runs learner code for an embedded code sandbox: it sequences
the setup, run and test phases of pluggable language backends, feeds
synthetic input to test runs, classifies failures, supports cooperative
cancellation and exchanges a structured message protocol with the embedding
host page.

The top-level modules include:

* ``config`` – configuration handling for environment variables.
* ``models`` – Pydantic models for the data model and message protocols.
* ``plugins`` – interpreter plugins for Python and JavaScript.
* ``orchestrator`` – phase sequencing, error routing and snapshots.
* ``harness`` – synthetic test input and output assertions.
* ``cancellation`` – the cooperative stop flag.
* ``iolog`` – per-run output/error event log.
* ``bridge`` – host messaging protocol.
* ``session`` – per-sandbox state.
* ``sql`` and ``storage`` – SQL exercises and their datasets.
* ``api`` – FastAPI application exposing the WebSocket endpoints.
* ``cli`` – console runner.

Importing the package does not start the service; import
``codesandbox.api`` for the application object.
"""

from .cancellation import CancellationToken
from .errors import ContentError, ExecutionError, SandboxError, TestError
from .harness import TestSession
from .iolog import IOEventLog
from .orchestrator import Orchestrator
from .session import SandboxSession

__all__ = [
    "CancellationToken",
    "ContentError",
    "ExecutionError",
    "IOEventLog",
    "Orchestrator",
    "SandboxError",
    "SandboxSession",
    "TestError",
    "TestSession",
]
