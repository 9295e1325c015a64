"""
Plugin running Python code in-process.

Learner code is compiled and executed with :func:`exec` on a worker thread
so the event loop stays responsive while it runs.  The execution namespace
is kept between the setup, main and test phases of a run, which lets author
setup code define helpers and lets test code inspect the learner's
variables.

``print`` and ``input`` are rebound inside the namespace.  Every call they
make back into the orchestrator (terminal output, terminal input, test
harness callbacks) is marshalled onto the event loop, so session state is
only ever touched from the loop thread.

A per-thread trace hook polls the cancellation flag and the wall-clock limit
on every line of sandboxed code.  Code stuck inside a single long-running
builtin call cannot be interrupted until that call returns.
"""

from __future__ import annotations

import asyncio
import io
import logging
import sys
import time
import traceback
from typing import Any, Callable, Dict, Optional

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

logger = logging.getLogger("codesandbox.plugins.python")

SANDBOX_FILENAME = "<sandbox>"
CALLBACKS_NAME = "__test_callbacks__"

PYTHON_TESTING_LIBRARY = f'''\
def setTestInputs(inputs):
    {CALLBACKS_NAME}.set_test_inputs(inputs)


def setTestRegex(pattern):
    {CALLBACKS_NAME}.set_test_regex(pattern)


def runCurrentTest(currentOutput, allInputsMustBeUsed=False, successMessage=None, failMessage=None):
    error = {CALLBACKS_NAME}.run_current_test(currentOutput, allInputsMustBeUsed, successMessage, failMessage)
    if error is not None:
        raise error
'''


class _Interrupt(BaseException):
    """Raised from the trace hook; not catchable by ``except Exception``."""


class _StopInterrupt(_Interrupt):
    pass


class _TimeoutInterrupt(_Interrupt):
    pass


class _Tracer:
    def __init__(self, should_stop: StopCheck, deadline: float) -> None:
        self.should_stop = should_stop
        self.deadline = deadline

    def global_trace(self, frame, event, arg):
        if frame.f_code.co_filename == SANDBOX_FILENAME:
            self.check()
            return self.local_trace
        return None

    def local_trace(self, frame, event, arg):
        if event == "line":
            self.check()
        return self.local_trace

    def check(self) -> None:
        if self.should_stop(False):
            raise _StopInterrupt()
        if time.monotonic() > self.deadline:
            raise _TimeoutInterrupt()


class _LoopBridge:
    """Calls callbacks on the event loop from the worker thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    def call(self, func: Callable[..., Any], *args: Any) -> Any:
        async def invoke() -> Any:
            return await resolve(func(*args))

        return asyncio.run_coroutine_threadsafe(invoke(), self.loop).result()


class _ThreadSafeCallbacks:
    """Proxy exposing the test callbacks to sandboxed code."""

    def __init__(self, callbacks: TestCallbacks, bridge: _LoopBridge) -> None:
        self._callbacks = callbacks
        self._bridge = bridge

    def set_test_inputs(self, inputs):
        if inputs is not None:
            inputs = [str(value) for value in inputs]
        return self._bridge.call(self._callbacks.set_test_inputs, inputs)

    def set_test_regex(self, pattern):
        return self._bridge.call(self._callbacks.set_test_regex, pattern)

    def run_current_test(self, current_output, all_inputs_must_be_used=False, success_message=None, fail_message=None):
        return self._bridge.call(
            self._callbacks.run_current_test,
            str(current_output),
            bool(all_inputs_must_be_used),
            success_message,
            fail_message,
        )


def format_exception(exc: BaseException) -> str:
    """Render ``exc`` as ``"<Type>: <message> on line <n>"``."""
    if isinstance(exc, SyntaxError):
        message = f"{type(exc).__name__}: {exc.msg}"
        lineno = exc.lineno
    else:
        text = str(exc)
        message = f"{type(exc).__name__}: {text}" if text else type(exc).__name__
        lineno = None
        for frame in traceback.extract_tb(exc.__traceback__):
            if frame.filename == SANDBOX_FILENAME:
                lineno = frame.lineno
    if lineno:
        message += f" on line {lineno}"
    return message


class PythonPlugin(InterpreterPlugin):
    """Execute Python code in a namespace retained for the whole run."""

    name = "python"
    requires_bundled_code = False
    sync_test_input_handler = True
    testing_library = PYTHON_TESTING_LIBRARY

    def __init__(self, exec_limit: int = 30000) -> None:
        super().__init__(exec_limit)
        self.namespace: Dict[str, Any] = self._fresh_namespace()

    @staticmethod
    def _fresh_namespace() -> Dict[str, Any]:
        return {"__name__": "__main__", "__builtins__": __builtins__}

    async def run_setup_code(
        self,
        output: OutputCallback,
        input: InputCallback,
        code: str,
        test_callbacks: TestCallbacks,
    ) -> None:
        self.namespace = self._fresh_namespace()
        try:
            await self._execute(
                code,
                output=output,
                input=input,
                should_stop=lambda consume=False: False,
                exec_limit=self.exec_limit,
                test_callbacks=test_callbacks,
            )
        except SandboxError as exc:
            logger.warning("Python setup code failed: %s", exc)
            raise ContentError(str(exc)) from exc

    async def run_code(
        self,
        code: str,
        output: OutputCallback,
        input: InputCallback,
        should_stop: StopCheck,
        config: RunConfig,
    ) -> str:
        if not config.retain_globals:
            self.namespace = self._fresh_namespace()
        return await self._execute(
            code,
            output=output,
            input=input,
            should_stop=should_stop,
            exec_limit=config.exec_limit,
        )

    async def run_tests(
        self,
        final_output: str,
        input: InputCallback,
        should_stop: StopCheck,
        test_code: str,
        test_callbacks: TestCallbacks,
    ) -> str:
        self.namespace["finalOutput"] = final_output
        self.namespace.pop("checkerResult", None)
        try:
            await self._execute(
                test_code or "",
                output=None,
                input=input,
                should_stop=should_stop,
                exec_limit=self.exec_limit,
                test_callbacks=test_callbacks,
            )
        except (ExecutionStopped, ExecutionTimeout, TestError):
            raise
        except ExecutionError as exc:
            raise TestError(str(exc)) from exc
        result = self.namespace.get("checkerResult")
        return "" if result is None else str(result)

    def wrap_in_main(self, code: str, is_check: bool = False) -> str:
        call = "mainResult = main()" if is_check else "main()"
        return f"{code}\n\n{call}\n"

    async def _execute(
        self,
        code: str,
        output: Optional[OutputCallback],
        input: InputCallback,
        should_stop: StopCheck,
        exec_limit: int,
        test_callbacks: Optional[TestCallbacks] = None,
    ) -> str:
        loop = asyncio.get_running_loop()
        bridge = _LoopBridge(loop)
        captured = io.StringIO()

        def sandbox_print(*args: Any, sep: Optional[str] = " ", end: Optional[str] = "\n", file=None, flush: bool = False) -> None:
            text = (" " if sep is None else sep).join(str(arg) for arg in args)
            text += "\n" if end is None else end
            captured.write(text)
            if output is not None:
                bridge.call(output, text)

        def sandbox_input(prompt: Any = "") -> str:
            if prompt:
                sandbox_print(prompt, end="")
            value = bridge.call(input)
            if should_stop(False):
                raise _StopInterrupt()
            return "" if value is None else str(value)

        self.namespace["print"] = sandbox_print
        self.namespace["input"] = sandbox_input
        if test_callbacks is not None:
            self.namespace[CALLBACKS_NAME] = _ThreadSafeCallbacks(test_callbacks, bridge)

        deadline = time.monotonic() + exec_limit / 1000
        tracer = _Tracer(should_stop, deadline)

        def target() -> None:
            compiled = compile(code, SANDBOX_FILENAME, "exec")
            sys.settrace(tracer.global_trace)
            try:
                exec(compiled, self.namespace)
            finally:
                sys.settrace(None)

        try:
            await asyncio.to_thread(target)
        except _StopInterrupt:
            raise ExecutionStopped()
        except _TimeoutInterrupt:
            raise ExecutionTimeout(exec_limit)
        except SandboxError:
            raise
        except Exception as exc:
            raise ExecutionError(format_exception(exc)) from exc
        return captured.getvalue()
