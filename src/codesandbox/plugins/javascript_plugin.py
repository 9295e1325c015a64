"""
Plugin running JavaScript code with Node.js.

Node cannot share state between separate invocations, so this plugin
requires bundled code: setup, main and test code arrive as one source file.
The bundle is written to a temporary directory together with a small runner
script, and ``node`` is started on the runner as a child process.

The child talks to the plugin over a line-delimited JSON protocol.  Control
lines on stdout start with an ASCII record separator (``\\x1e``)::

    {"op": "output", "text": "..."}
    {"op": "input"}                            -> {"ok": true, "value": "..."}
    {"op": "call", "name": "...", "args": []}  -> {"ok": true, "value": ...}
    {"op": "done", "checkerResult": "..."}
    {"op": "error", "message": "...", "isTestError": false}

Replies are written to the child's stdin and read with a blocking
``fs.readSync`` so ``input()`` is synchronous inside the sandbox.  The child
is killed when a stop is requested or the wall-clock limit elapses.
"""

from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import ContentError, ExecutionError, ExecutionStopped, ExecutionTimeout, SandboxError, TestError
from .base import (
    InputCallback,
    InterpreterPlugin,
    OutputCallback,
    RunConfig,
    StopCheck,
    TestCallbacks,
    resolve,
)

logger = logging.getLogger("codesandbox.plugins.javascript")

CONTROL_PREFIX = "\x1e"
STOP_POLL_INTERVAL = 0.05
STREAM_LIMIT = 1024 * 1024
TESTING_CALLS = frozenset({"set_test_inputs", "set_test_regex", "run_current_test"})

JAVASCRIPT_TESTING_LIBRARY = """\
class TestError extends Error {
    constructor(message) {
        super(message);
        this.name = "TestError";
        this.isTestError = true;
    }
}
function setTestInputs(inputs) {
    __sandbox.call("set_test_inputs", [inputs === undefined ? null : inputs.map(String)]);
}
function setTestRegex(re) {
    __sandbox.call("set_test_regex", [re === undefined || re === null ? null : (re instanceof RegExp ? re.source : String(re))]);
}
function runCurrentTest(currentOutput, allInputsMustBeUsed, successMessage, failMessage) {
    const error = __sandbox.call("run_current_test", [
        String(currentOutput), !!allInputsMustBeUsed, successMessage ?? null, failMessage ?? null,
    ]);
    if (error !== null && error !== undefined) {
        throw new TestError(error);
    }
}
"""

NODE_RUNNER = r"""
"use strict";
const fs = require("fs");
const util = require("util");
const vm = require("vm");

const PREFIX = "\x1e";
const FILENAME = "sandbox.js";
let pending = Buffer.alloc(0);

function send(message) {
    fs.writeSync(1, PREFIX + JSON.stringify(message) + "\n");
}

function readReply() {
    const chunk = Buffer.alloc(4096);
    for (;;) {
        const newline = pending.indexOf(10);
        if (newline >= 0) {
            const line = pending.subarray(0, newline).toString("utf8");
            pending = pending.subarray(newline + 1);
            return JSON.parse(line);
        }
        let read;
        try {
            read = fs.readSync(0, chunk, 0, chunk.length, null);
        } catch (e) {
            if (e.code === "EAGAIN") continue;
            throw e;
        }
        if (read === 0) throw new Error("Sandbox host closed the input channel");
        pending = Buffer.concat([pending, chunk.subarray(0, read)]);
    }
}

function failure(reply) {
    const error = new Error(reply.error);
    error.isTestError = !!reply.isTestError;
    return error;
}

const sandbox = {
    outputText: "",
    write(text) {
        sandbox.outputText += text;
        send({op: "output", text: text});
    },
    call(name, args) {
        send({op: "call", name: name, args: args});
        const reply = readReply();
        if (!reply.ok) throw failure(reply);
        return reply.value;
    },
    input(prompt) {
        if (prompt !== undefined && prompt !== null && prompt !== "") sandbox.write(String(prompt));
        send({op: "input"});
        const reply = readReply();
        if (!reply.ok) throw failure(reply);
        return reply.value;
    },
};

function format(value) {
    return typeof value === "string" ? value : util.inspect(value);
}

function describe(error) {
    if (error === null || error === undefined) return "";
    if (!(error instanceof Error)) return String(error);
    let message = error.name + ": " + error.message;
    const match = /sandbox\.js:(\d+)/.exec(error.stack || "");
    if (match) message += " on line " + match[1];
    return message;
}

Object.defineProperty(globalThis, "__sandbox", {value: sandbox});
Object.defineProperty(globalThis, "finalOutput", {get: () => sandbox.outputText});
globalThis.input = (prompt) => sandbox.input(prompt);
globalThis.prompt = globalThis.input;
console.log = (...args) => sandbox.write(args.map(format).join(" ") + "\n");
console.info = console.log;
console.warn = console.log;
console.error = console.log;

const source = fs.readFileSync(process.argv[2], "utf8");
try {
    vm.runInThisContext(source, {filename: FILENAME});
    const value = vm.runInThisContext("typeof checkerResult === 'undefined' ? null : checkerResult");
    send({op: "done", checkerResult: value === null || value === undefined ? null : String(value)});
} catch (error) {
    send({op: "error", message: describe(error), isTestError: !!(error && error.isTestError)});
}
process.exit(0);
"""


@dataclass
class NodeOutcome:
    """What a finished node process reported."""

    output: str
    checker_result: Optional[str]


class _Conversation:
    """Drives the control protocol with one node process."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        output: Optional[OutputCallback],
        input: InputCallback,
        test_callbacks: Optional[TestCallbacks],
    ) -> None:
        self.process = process
        self.output = output
        self.input = input
        self.test_callbacks = test_callbacks
        self.captured = []

    async def run(self) -> NodeOutcome:
        assert self.process.stdout is not None
        while True:
            raw = await self.process.stdout.readline()
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace")
            if not line.startswith(CONTROL_PREFIX):
                await self._emit(line)
                continue
            message = json.loads(line[len(CONTROL_PREFIX):])
            op = message.get("op")
            if op == "output":
                await self._emit(message.get("text", ""))
            elif op == "input":
                await self._reply(await self._answer_input())
            elif op == "call":
                await self._reply(await self._answer_call(message.get("name"), message.get("args") or []))
            elif op == "done":
                return NodeOutcome("".join(self.captured), message.get("checkerResult"))
            elif op == "error":
                text = message.get("message") or ""
                if message.get("isTestError"):
                    raise TestError(text)
                raise ExecutionError(text)
            else:
                logger.warning("Ignoring unknown control message from node: %r", message)
        raise ExecutionError("")

    async def _emit(self, text: str) -> None:
        self.captured.append(text)
        if self.output is not None:
            await resolve(self.output(text))

    async def _answer_input(self) -> Dict[str, Any]:
        try:
            value = await resolve(self.input())
        except SandboxError as exc:
            return {"ok": False, "error": str(exc), "isTestError": isinstance(exc, TestError)}
        return {"ok": True, "value": "" if value is None else str(value)}

    async def _answer_call(self, name: str, args: list) -> Dict[str, Any]:
        if name not in TESTING_CALLS:
            return {"ok": False, "error": f"Unknown sandbox call: {name}"}
        if self.test_callbacks is None:
            # Setup code in a plain run still calls the testing library.
            return {"ok": True, "value": None}
        result = getattr(self.test_callbacks, name)(*args)
        if isinstance(result, TestError):
            result = str(result)
        return {"ok": True, "value": result}

    async def _reply(self, reply: Dict[str, Any]) -> None:
        assert self.process.stdin is not None
        self.process.stdin.write((json.dumps(reply) + "\n").encode("utf-8"))
        await self.process.stdin.drain()


class JavaScriptPlugin(InterpreterPlugin):
    """Execute bundled JavaScript with a ``node`` child process."""

    name = "javascript"
    requires_bundled_code = True
    sync_test_input_handler = True
    testing_library = JAVASCRIPT_TESTING_LIBRARY

    def __init__(self, exec_limit: int = 30000, node_binary: str = "node") -> None:
        super().__init__(exec_limit)
        self.node_binary = node_binary

    async def run_setup_code(
        self,
        output: OutputCallback,
        input: InputCallback,
        code: str,
        test_callbacks: TestCallbacks,
    ) -> None:
        try:
            await self._run_bundle(code, output, input, _never_stop, test_callbacks, self.exec_limit)
        except SandboxError as exc:
            logger.warning("JavaScript setup code failed: %s", exc)
            raise ContentError(str(exc)) from exc

    async def run_code(
        self,
        code: str,
        output: OutputCallback,
        input: InputCallback,
        should_stop: StopCheck,
        config: RunConfig,
    ) -> str:
        outcome = await self._run_bundle(code, output, input, should_stop, None, config.exec_limit)
        return outcome.output

    async def run_tests(
        self,
        final_output: str,
        input: InputCallback,
        should_stop: StopCheck,
        test_code: str,
        test_callbacks: TestCallbacks,
    ) -> str:
        outcome = await self._run_bundle(test_code, None, input, should_stop, test_callbacks, self.exec_limit)
        return outcome.checker_result or ""

    def wrap_in_main(self, code: str, is_check: bool = False) -> str:
        call = "var mainResult = main();" if is_check else "main();"
        return f"{code}\n\n{call}\n"

    async def _run_bundle(
        self,
        source: str,
        output: Optional[OutputCallback],
        input: InputCallback,
        should_stop: StopCheck,
        test_callbacks: Optional[TestCallbacks],
        exec_limit: int,
    ) -> NodeOutcome:
        with tempfile.TemporaryDirectory(prefix="codesandbox-js-") as tmpdir:
            workdir = Path(tmpdir)
            runner_path = workdir / "runner.js"
            runner_path.write_text(NODE_RUNNER, encoding="utf-8")
            script_path = workdir / "sandbox.js"
            script_path.write_text(source, encoding="utf-8")
            try:
                process = await asyncio.create_subprocess_exec(
                    self.node_binary,
                    str(runner_path),
                    str(script_path),
                    cwd=str(workdir),
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    limit=STREAM_LIMIT,
                )
            except FileNotFoundError as exc:
                raise ExecutionError(f"JavaScript runtime not available: {self.node_binary}") from exc

            conversation = asyncio.ensure_future(
                _Conversation(process, output, input, test_callbacks).run()
            )
            watcher = asyncio.ensure_future(_wait_for_stop(should_stop))
            stderr_reader = asyncio.ensure_future(process.stderr.read())
            try:
                done, _ = await asyncio.wait(
                    {conversation, watcher},
                    timeout=exec_limit / 1000,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                watcher.cancel()
                if process.returncode is None:
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                await process.wait()
                if not conversation.done():
                    conversation.cancel()
                    await asyncio.gather(conversation, return_exceptions=True)
                stderr = (await stderr_reader).decode("utf-8", errors="replace")

            if conversation in done:
                try:
                    return conversation.result()
                except ExecutionError as exc:
                    if not str(exc):
                        raise ExecutionError(stderr.strip()) from exc
                    raise
            if watcher in done:
                logger.info("JavaScript execution stopped on request")
                raise ExecutionStopped()
            raise ExecutionTimeout(exec_limit)


def _never_stop(consume: bool = False) -> bool:
    return False


async def _wait_for_stop(should_stop: StopCheck) -> None:
    while not should_stop(False):
        await asyncio.sleep(STOP_POLL_INTERVAL)
