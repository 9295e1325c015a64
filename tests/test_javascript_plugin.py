"""Tests for the Node.js plugin.  Skipped when ``node`` is not installed."""

from __future__ import annotations

import asyncio
import shutil
from typing import List

import pytest

from codesandbox.errors import ExecutionError, ExecutionStopped, ExecutionTimeout
from codesandbox.harness import OUTPUT_LOOKS_GOOD
from codesandbox.models import PredefinedCode
from codesandbox.orchestrator import FAILED_TEST_MESSAGE, Orchestrator
from codesandbox.plugins import JavaScriptPlugin, RunConfig, build_languages
from codesandbox.cancellation import CancellationToken
from codesandbox.session import RecordingHostChannel, SandboxSession

pytestmark = pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")


def never_stop(consume: bool = False) -> bool:
    return False


def check(code: str, **predefined) -> SandboxSession:
    session = SandboxSession(
        "javascript-plugin-test",
        host=RecordingHostChannel(),
        predefined_code=PredefinedCode(language="javascript", code=code, **predefined),
        loaded=True,
    )
    asyncio.run(Orchestrator(build_languages(exec_limit=10000)).handle_run(session, code, do_checks=True))
    return session


def test_console_output_and_input():
    chunks: List[str] = []
    answers = ["Ada"]
    code = 'const name = input("Name? ");\nconsole.log("Hi", name, [1, 2]);'
    final_output = asyncio.run(
        JavaScriptPlugin().run_code(code, chunks.append, lambda: answers.pop(0), never_stop, RunConfig())
    )
    assert final_output == "Name? Hi Ada [ 1, 2 ]\n"
    assert "".join(chunks) == final_output


def test_runtime_error_reports_line():
    with pytest.raises(ExecutionError) as excinfo:
        asyncio.run(JavaScriptPlugin().run_code("let a = 1;\nnull.x;", print, lambda: "", never_stop, RunConfig()))
    assert str(excinfo.value).startswith("TypeError: ")
    assert str(excinfo.value).endswith(" on line 2")


def test_timeout_kills_node():
    with pytest.raises(ExecutionTimeout):
        asyncio.run(
            JavaScriptPlugin().run_code("while (true) {}", print, lambda: "", never_stop, RunConfig(exec_limit=500))
        )


def test_stop_kills_node():
    token = CancellationToken()

    async def scenario():
        asyncio.get_running_loop().call_later(0.3, token.request_stop)
        await JavaScriptPlugin().run_code("while (true) {}", print, lambda: "", token.should_stop, RunConfig())

    with pytest.raises(ExecutionStopped):
        asyncio.run(scenario())


def test_missing_node_binary():
    plugin = JavaScriptPlugin(node_binary="definitely-not-node")
    with pytest.raises(ExecutionError, match="not available"):
        asyncio.run(plugin.run_code("1", print, lambda: "", never_stop, RunConfig()))


def test_wrap_in_main():
    assert JavaScriptPlugin().wrap_in_main("function main() {}", is_check=True).endswith("var mainResult = main();\n")


def test_check_sends_checker_result():
    session = check("var x = 1;", setup="", test="var checkerResult = String(x);")
    assert session.host.of_type("checker") == [{"type": "checker", "result": "1"}]


def test_check_with_inputs_and_regex():
    code = "function main() {\n    console.log(Number(input()) * 2);\n}"
    session = check(
        code,
        setup='setTestInputs(["21"]);\nsetTestRegex(/^42\\s*$/);',
        test="runCurrentTest(finalOutput);\nvar checkerResult = 'done';",
        wrap_code_in_main=True,
    )
    assert OUTPUT_LOOKS_GOOD in session.terminal.text
    assert session.host.of_type("checker") == [{"type": "checker", "result": "done"}]


def test_failed_test_strips_line_number():
    session = check(
        "console.log('nope');",
        setup="setTestRegex(/^42$/);",
        test="runCurrentTest(finalOutput, false, undefined, 'Expected 42');",
    )
    text = session.terminal.text
    assert "> TestError: Expected 42" in text
    assert "on line" not in text
    assert FAILED_TEST_MESSAGE in text
    assert session.host.of_type("checker") == []


def test_plain_run_with_test_setup_reads_terminal():
    code = "function main() {\n    console.log(Number(input()) * 2);\n}"
    session = SandboxSession(
        "javascript-plugin-run",
        host=RecordingHostChannel(),
        predefined_code=PredefinedCode(
            language="javascript",
            code=code,
            setup='setTestInputs(["21"]);\nsetTestRegex(/^42$/);',
            wrap_code_in_main=True,
        ),
        loaded=True,
    )
    session.terminal.inputs.append("21")
    report = asyncio.run(Orchestrator(build_languages(exec_limit=10000)).handle_run(session, code))
    assert report is None
    assert "42\n" in session.terminal.text
    assert session.terminal.input_requests == 1
