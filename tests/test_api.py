"""
Basic API tests for the sandbox service.

These tests exercise the HTTP and WebSocket endpoints using FastAPI's
TestClient.  They verify the host handshake, a full check run driven from
the learner's editor, interactive input, dataset management, API key
enforcement and that the health check is operational.
"""

from __future__ import annotations

import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from codesandbox.api.main import app, config, sessions, storage


# Use the same API key as in the config for tests
API_KEY_HEADER = {"x-api-key": config.api_key or ""}


@pytest.fixture(autouse=True)
def isolate_storage(tmp_path, monkeypatch):
    """Provide a temporary directory for local storage during tests."""
    # If using local storage backend, point it to a tmpdir
    if hasattr(storage, "base_dir"):
        monkeypatch.setattr(storage, "base_dir", Path(tmp_path))
    yield


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def new_session_id() -> str:
    return uuid.uuid4().hex


def receive_until(websocket, predicate: Callable[[Dict[str, Any]], bool], limit: int = 50) -> Dict[str, Any]:
    """Read frames until one satisfies ``predicate``."""
    for _ in range(limit):
        frame = websocket.receive_json()
        if predicate(frame):
            return frame
    raise AssertionError("expected frame not received")


def test_health(client):
    response = client.get("/health", headers=API_KEY_HEADER)
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_host_handshake_and_ping(client):
    session_id = new_session_id()
    with client.websocket_connect(f"/v1/sessions/{session_id}/host", headers=API_KEY_HEADER) as host:
        host.send_json({"type": "initialise", "language": "python", "code": "print('hi')"})
        assert host.receive_json() == {"type": "confirm_initialised"}

        host.send_json({"type": "ping"})
        reply = host.receive_json()
        assert reply["type"] == "ping"
        assert reply["timestamp"] > 0

        # Invalid messages are ignored; the connection stays usable.
        host.send_json({"type": "bogus"})
        host.send_text("not json")
        host.send_json({"type": "logs"})
        assert host.receive_json() == {"type": "logs", "changes": [], "snapshots": []}


def test_check_from_editor_reports_to_host(client):
    session_id = new_session_id()
    with client.websocket_connect(f"/v1/sessions/{session_id}/host", headers=API_KEY_HEADER) as host:
        host.send_json(
            {
                "type": "initialise",
                "language": "python",
                "code": "x = 1",
                "setup": "",
                "test": "checkerResult = str(x)",
                "logChanges": True,
            }
        )
        assert host.receive_json() == {"type": "confirm_initialised"}

        with client.websocket_connect(f"/v1/sessions/{session_id}/editor", headers=API_KEY_HEADER) as editor:
            code_frame = editor.receive_json()
            assert code_frame["type"] == "code"
            assert code_frame["showCheckButton"] is True

            editor.send_json({"type": "change", "data": {"insert": "x = 1"}})
            editor.send_json({"type": "check", "code": "x = 1"})
            assert host.receive_json() == {"type": "checker", "result": "1"}
            assert host.receive_json() == {"type": "toggle_run"}
            receive_until(editor, lambda frame: frame == {"type": "state", "state": "stopped"})

            host.send_json({"type": "logs"})
            logs = host.receive_json()
            assert logs["changes"][0]["data"] == {"insert": "x = 1"}
            [snapshot] = logs["snapshots"]
            assert snapshot["snapshot"] == "x = 1"
            assert snapshot["compiled"] is True


def test_setup_failure_is_reported(client):
    session_id = new_session_id()
    with client.websocket_connect(f"/v1/sessions/{session_id}/host", headers=API_KEY_HEADER) as host:
        host.send_json({"type": "initialise", "language": "python", "code": "", "setup": "raise ValueError('bad')"})
        assert host.receive_json() == {"type": "confirm_initialised"}
        with client.websocket_connect(f"/v1/sessions/{session_id}/editor", headers=API_KEY_HEADER) as editor:
            editor.receive_json()
            editor.send_json({"type": "run", "code": "print('never')"})
            failure = host.receive_json()
            assert failure["type"] == "setup_fail"
            assert failure["message"].startswith("ValueError: bad")
            assert host.receive_json() == {"type": "toggle_run"}


def test_interactive_input(client):
    session_id = new_session_id()
    with client.websocket_connect(f"/v1/sessions/{session_id}/host", headers=API_KEY_HEADER) as host:
        host.send_json({"type": "initialise", "language": "python", "code": ""})
        assert host.receive_json() == {"type": "confirm_initialised"}
        with client.websocket_connect(f"/v1/sessions/{session_id}/editor", headers=API_KEY_HEADER) as editor:
            editor.receive_json()
            editor.send_json({"type": "run", "code": "name = input()\nprint('Hi ' + name)"})
            receive_until(editor, lambda frame: frame["type"] == "input_request")
            editor.send_json({"type": "input", "text": "Ada"})
            output = receive_until(editor, lambda frame: frame["type"] == "output")
            assert output["text"] == "Hi Ada\n"
            assert host.receive_json() == {"type": "toggle_run"}


def test_stop_while_waiting_for_input(client):
    session_id = new_session_id()
    with client.websocket_connect(f"/v1/sessions/{session_id}/host", headers=API_KEY_HEADER) as host:
        host.send_json({"type": "initialise", "language": "python", "code": ""})
        assert host.receive_json() == {"type": "confirm_initialised"}
        with client.websocket_connect(f"/v1/sessions/{session_id}/editor", headers=API_KEY_HEADER) as editor:
            editor.receive_json()
            editor.send_json({"type": "run", "code": "input()\nprint('unreachable')"})
            receive_until(editor, lambda frame: frame["type"] == "input_request")
            editor.send_json({"type": "stop"})
            error = receive_until(editor, lambda frame: frame["type"] == "output" and "stopped" in frame["text"])
            assert "Execution stopped" in error["text"]
            assert host.receive_json() == {"type": "toggle_run"}


def test_session_released_after_run_outlives_both_peers(client):
    session_id = new_session_id()
    host_connection = client.websocket_connect(f"/v1/sessions/{session_id}/host", headers=API_KEY_HEADER)
    host = host_connection.__enter__()
    host.send_json({"type": "initialise", "language": "python", "code": ""})
    assert host.receive_json() == {"type": "confirm_initialised"}

    with client.websocket_connect(f"/v1/sessions/{session_id}/editor", headers=API_KEY_HEADER) as editor:
        editor.receive_json()
        editor.send_json({"type": "run", "code": "n = 0\nwhile True:\n    n += 1"})
        receive_until(editor, lambda frame: frame == {"type": "state", "state": "running"})
        # The host leaves first, then the editor while the program still runs.
        host_connection.__exit__(None, None, None)

    for _ in range(100):
        if sessions.get(session_id) is None:
            break
        time.sleep(0.05)
    assert sessions.get(session_id) is None


def test_resize_is_forwarded_to_host(client):
    session_id = new_session_id()
    with client.websocket_connect(f"/v1/sessions/{session_id}/host", headers=API_KEY_HEADER) as host:
        with client.websocket_connect(f"/v1/sessions/{session_id}/editor", headers=API_KEY_HEADER) as editor:
            editor.receive_json()
            editor.send_json({"type": "resize", "height": 320})
            assert host.receive_json() == {"type": "resize", "height": 320}


def test_dataset_lifecycle(client):
    res = client.post(
        "/v1/datasets",
        files=[("files", ("members.db", b"SQLite format 3\x00", "application/octet-stream"))],
        headers=API_KEY_HEADER,
    )
    assert res.status_code == 200
    assert res.json() == {"paths": ["members.db"]}

    res = client.get("/v1/datasets", headers=API_KEY_HEADER)
    assert res.json() == {"files": ["members.db"]}

    res = client.delete("/v1/datasets/members.db", headers=API_KEY_HEADER)
    assert res.status_code == 200
    assert res.json()["detail"] == "Dataset deleted"

    res = client.delete("/v1/datasets/members.db", headers=API_KEY_HEADER)
    assert res.status_code == 404


def test_api_key_is_enforced(client, monkeypatch):
    monkeypatch.setattr(config, "api_key", "secret")
    assert client.get("/health").status_code == 401
    assert client.get("/health", headers={"x-api-key": "secret"}).status_code == 200

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/v1/sessions/{new_session_id()}/host"):
            pass
    with client.websocket_connect(f"/v1/sessions/{new_session_id()}/host?api_key=secret") as host:
        host.send_json({"type": "ping"})
        assert host.receive_json()["type"] == "ping"
