"""Tests for the ``codesandbox-run`` console runner."""

from __future__ import annotations

import sqlite3

from codesandbox.cli import main


def test_run_prints_output(tmp_path, capsys):
    code = tmp_path / "solution.py"
    code.write_text("print('hi')\n")
    assert main([str(code)]) == 0
    assert capsys.readouterr().out == "hi\n"


def test_check_prints_checker_result(tmp_path, capsys):
    code = tmp_path / "solution.py"
    code.write_text("x = 6 * 7\n")
    test = tmp_path / "test.py"
    test.write_text("checkerResult = str(x)\n")
    assert main([str(code), "--test", str(test), "--check"]) == 0
    captured = capsys.readouterr()
    assert "Running tests..." in captured.out
    assert "checker result: 42" in captured.err


def test_exit_codes(tmp_path):
    code = tmp_path / "solution.py"
    code.write_text("1 / 0\n")
    assert main([str(code)]) == 1

    setup = tmp_path / "setup.py"
    setup.write_text("def (\n")
    assert main([str(code), "--setup", str(setup)]) == 2


def test_sql_table(tmp_path, capsys):
    connection = sqlite3.connect(tmp_path / "data.db")
    connection.execute("CREATE TABLE t (n INTEGER)")
    connection.execute("INSERT INTO t VALUES (1)")
    connection.commit()
    connection.close()
    query = tmp_path / "query.sql"
    query.write_text("SELECT n FROM t;")

    assert main([str(query), "--data-url", "data.db", "--data-dir", str(tmp_path)]) == 0
    assert capsys.readouterr().out == "n\n1\nQuery returned 1 row\n"


def test_unknown_suffix(tmp_path):
    code = tmp_path / "solution.txt"
    code.write_text("")
    assert main([str(code)]) == 2
