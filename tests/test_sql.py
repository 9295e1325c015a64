"""Tests for SQL exercises and the local dataset backend."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path

import pytest

from codesandbox.models import PredefinedCode
from codesandbox.orchestrator import Orchestrator
from codesandbox.session import RecordingHostChannel, SandboxSession
from codesandbox.sql import execute_sql, run_query, split_statements
from codesandbox.storage import LocalStorageBackend


@pytest.fixture
def storage(tmp_path) -> LocalStorageBackend:
    """A local backend holding ``members.db`` with two rows."""
    backend = LocalStorageBackend(tmp_path / "datasets")
    db_path = tmp_path / "members.db"
    connection = sqlite3.connect(db_path)
    connection.execute("CREATE TABLE members (id INTEGER PRIMARY KEY, name TEXT)")
    connection.executemany("INSERT INTO members (name) VALUES (?)", [("Ada",), ("Grace",)])
    connection.commit()
    connection.close()
    backend.save("courses/members.db", Path(db_path).read_bytes())
    return backend


def test_split_statements():
    script = "SELECT 1; SELECT ';' AS semi;\nSELECT 2"
    assert split_statements(script) == ["SELECT 1;", "SELECT ';' AS semi;", "SELECT 2"]


def test_select_returns_table(storage):
    output = run_query("SELECT name FROM members ORDER BY id", "courses/members.db", storage)
    assert output.column_names == ["name"]
    assert output.rows == [["Ada"], ["Grace"]]
    assert output.message == "Query returned 2 rows"


def test_last_statement_wins(storage):
    output = run_query(
        "INSERT INTO members (name) VALUES ('Linus'); SELECT COUNT(*) AS n FROM members;",
        "courses/members.db",
        storage,
    )
    assert output.rows == [[3]]


def test_changes_do_not_persist(storage):
    run_query("DELETE FROM members", "courses/members.db", storage)
    output = run_query("SELECT COUNT(*) FROM members", "courses/members.db", storage)
    assert output.rows == [[2]]


def test_update_reports_affected_rows(storage):
    output = run_query("UPDATE members SET name = 'X' WHERE id = 1", "courses/members.db", storage)
    assert output.rows == []
    assert output.message == "Query succeeded, 1 row affected"


def test_in_memory_without_dataset():
    output = run_query("SELECT 1 AS one", None, None)
    assert output.rows == [[1]]


def test_errors_are_reported_in_result(storage):
    output = asyncio.run(execute_sql("SELECT * FROM missing", "courses/members.db", storage))
    assert "no such table" in output.error
    missing = asyncio.run(execute_sql("SELECT 1", "nope.db", storage))
    assert missing.error


def test_dataset_paths_cannot_escape(storage):
    with pytest.raises(ValueError):
        storage.save("../escape.db", b"")
    assert storage.list() == ["courses/members.db"]


def test_sql_session_shows_table(storage):
    session = SandboxSession(
        "sql-test",
        host=RecordingHostChannel(),
        predefined_code=PredefinedCode(language="sql", data_url="courses/members.db"),
        loaded=True,
    )
    frames = []
    session.editor = frames.append
    asyncio.run(Orchestrator({}, storage=storage).handle_run(session, "SELECT id, name FROM members"))

    assert session.query_output.rows == [[1, "Ada"], [2, "Grace"]]
    [table] = [frame for frame in frames if frame["type"] == "table"]
    assert table["columnNames"] == ["id", "name"]
    # SQL runs do not notify the host.
    assert session.host.sent == []
