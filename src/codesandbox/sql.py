"""SQL query runner.

SQL exercises are answered with SQLite.  The dataset named by the
exercise's ``dataUrl`` is copied out of the storage backend into a
temporary file for every run, so learner queries can modify it freely
without affecting later runs.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import tempfile
from pathlib import Path
from typing import Any, List, Optional

from .models import QueryOutput
from .storage import StorageBackend

logger = logging.getLogger("codesandbox.sql")


def split_statements(script: str) -> List[str]:
    """Split ``script`` into complete SQL statements."""
    statements: List[str] = []
    buffer = ""
    for char in script:
        buffer += char
        if char == ";" and sqlite3.complete_statement(buffer):
            if buffer.strip() != ";":
                statements.append(buffer.strip())
            buffer = ""
    if buffer.strip():
        statements.append(buffer.strip())
    return statements


def _cell(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def summarise(rows: List[List[Any]], changes: int) -> str:
    if not rows:
        return f"Query succeeded, {changes} row{_plural(changes)} affected"
    return f"Query returned {len(rows)} row{_plural(len(rows))}"


def run_query(code: str, data_url: Optional[str], storage: Optional[StorageBackend]) -> QueryOutput:
    """Run ``code`` against the dataset at ``data_url``.

    Raises
    ------
    sqlite3.Error
        If a statement fails.
    FileNotFoundError
        If the dataset does not exist.
    """
    with tempfile.TemporaryDirectory(prefix="codesandbox-sql-") as tmpdir:
        database = ":memory:"
        if data_url:
            if storage is None:
                raise RuntimeError("No dataset storage configured")
            db_path = Path(tmpdir) / "dataset.db"
            db_path.write_bytes(storage.open(storage.resolve(data_url)))
            database = str(db_path)

        connection = sqlite3.connect(database)
        try:
            rows: List[List[Any]] = []
            column_names: List[str] = []
            for statement in split_statements(code):
                cursor = connection.execute(statement)
                if cursor.description is not None:
                    column_names = [column[0] for column in cursor.description]
                    rows = [[_cell(value) for value in row] for row in cursor.fetchall()]
                else:
                    rows, column_names = [], []
            changes = connection.total_changes
        finally:
            connection.close()

    return QueryOutput(rows=rows, column_names=column_names, message=summarise(rows, changes))


async def execute_sql(code: str, data_url: Optional[str], storage: Optional[StorageBackend]) -> QueryOutput:
    """Run a query off the event loop, reporting failures in the result."""
    try:
        return await asyncio.to_thread(run_query, code, data_url, storage)
    except (sqlite3.Error, OSError, ValueError, RuntimeError) as exc:
        logger.info("SQL query failed: %s", exc)
        return QueryOutput(error=str(exc))
