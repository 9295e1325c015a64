"""
Base interfaces and dataclasses for interpreter plugins.

All concrete plugins should inherit from :class:`InterpreterPlugin` and
implement its four operations.  A plugin runs author setup code, the
learner's code and hidden test code for one language.  The orchestrator
only depends on this contract and never on a concrete interpreter.

Two capability flags tell the orchestrator how to drive a plugin:

``requires_bundled_code``
    The interpreter can only be fed one compilation unit, so setup, main and
    test code are concatenated before execution.  Otherwise the phases run as
    separate sequential calls sharing interpreter state.

``sync_test_input_handler``
    The plugin calls its input callback synchronously and needs it to return
    (or raise) immediately.  Otherwise it may receive a suspending callback.

Wall-clock limits are enforced by the plugin itself.  Cancellation is
cooperative: plugins poll ``should_stop(False)`` at safe points.
"""

from __future__ import annotations

import abc
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Union

from ..errors import TestError

OutputCallback = Callable[[str], Any]
InputCallback = Callable[[], Union[str, Awaitable[str]]]
StopCheck = Callable[[bool], bool]

DEFAULT_EXEC_LIMIT_MS = 30000


@dataclass(frozen=True)
class RunConfig:
    """Options for a single :meth:`InterpreterPlugin.run_code` call.

    Attributes
    ----------
    retain_globals: bool
        Keep the interpreter state left by earlier phases of the same run.
    exec_limit: int
        Wall-clock limit in milliseconds.
    """

    retain_globals: bool = True
    exec_limit: int = DEFAULT_EXEC_LIMIT_MS


class TestCallbacks(Protocol):
    """Hooks author test code uses to drive the test harness."""

    def set_test_inputs(self, inputs: Optional[Iterable[str]]) -> None:
        ...

    def set_test_regex(self, pattern: Optional[str]) -> None:
        ...

    def run_current_test(
        self,
        current_output: str,
        all_inputs_must_be_used: bool = False,
        success_message: Optional[str] = None,
        fail_message: Optional[str] = None,
    ) -> Optional[TestError]:
        ...


async def resolve(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


class InterpreterPlugin(abc.ABC):
    """
    Abstract base class defining the interface for interpreter plugins.

    A plugin instance lives for a single run, so state retained between the
    setup, main and test phases never leaks into another run.
    """

    name: str = ""
    requires_bundled_code: bool = False
    sync_test_input_handler: bool = True
    testing_library: str = ""

    def __init__(self, exec_limit: int = DEFAULT_EXEC_LIMIT_MS) -> None:
        """
        Parameters
        ----------
        exec_limit: int, optional
            Default wall-clock limit (in milliseconds) for phases that do not
            receive a :class:`RunConfig`.
        """
        self.exec_limit = exec_limit

    @abc.abstractmethod
    async def run_setup_code(
        self,
        output: OutputCallback,
        input: InputCallback,
        code: str,
        test_callbacks: TestCallbacks,
    ) -> None:
        """Run the testing library and the author's setup code.

        Raises
        ------
        ContentError
            If the setup code itself is broken.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def run_code(
        self,
        code: str,
        output: OutputCallback,
        input: InputCallback,
        should_stop: StopCheck,
        config: RunConfig,
    ) -> str:
        """Run the learner's code and return everything it printed.

        Raises
        ------
        ExecutionError
            If the code raised, was stopped or exceeded ``config.exec_limit``.
        TestError
            If the code read more test input than was provided.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def run_tests(
        self,
        final_output: str,
        input: InputCallback,
        should_stop: StopCheck,
        test_code: str,
        test_callbacks: TestCallbacks,
    ) -> str:
        """Run hidden test code and return the checker result string.

        Raises
        ------
        TestError
            If a test failed.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def wrap_in_main(self, code: str, is_check: bool = False) -> str:
        """Return ``code`` arranged so that its ``main`` function runs."""
        raise NotImplementedError
