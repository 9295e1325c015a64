"""Test harness used while checking learner code.

A :class:`TestSession` is created for every check run and discarded when the
run ends.  Author test code talks to it through the three test callbacks
(``set_test_inputs``, ``set_test_regex`` and ``run_current_test``), and the
learner's program reads its synthetic input from it instead of the terminal.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from typing import Awaitable, Callable, Deque, Iterable, Optional, Pattern, Union

from .errors import TestError
from .models import Feedback

logger = logging.getLogger("codesandbox.harness")

NO_INPUT_EXPECTED = (
    "Your program asked for input when none was expected, "
    "so we couldn't give it a valid input..."
)
UNEXPECTED_OUTPUT = "Your program produced unexpected output..."
OUTPUT_LOOKS_GOOD = "The output of your program looks good"
NOT_ENOUGH_INPUTS = "Your program didn't call input() enough times..."
TOO_MANY_INPUTS = "Your program called input() too many times..."
CORRECT_INPUT_COUNT = "Your program accepted the correct number of inputs"
TEST_PASSED = "Test passed"

FeedbackPrinter = Callable[[Feedback], None]
InputHandler = Callable[[], Union[str, Awaitable[str]]]


class TestSession:
    """Synthetic input queue and output assertions for one check run.

    Parameters
    ----------
    print_feedback: callable
        Receives a :class:`~codesandbox.models.Feedback` for every passing
        check.  Failures are returned (not printed) so the orchestrator can
        report them once.
    """

    __test__ = False

    def __init__(self, print_feedback: FeedbackPrinter) -> None:
        self._print_feedback = print_feedback
        self._inputs: Deque[str] = deque()
        self.input_count = 0
        self.output_regex: Optional[Pattern[str]] = None

    # -- test callbacks ---------------------------------------------------

    def set_test_inputs(self, inputs: Optional[Iterable[str]]) -> None:
        self._inputs = deque(str(value) for value in (inputs or []))
        self.input_count = len(self._inputs)

    def set_test_regex(self, pattern: Optional[str]) -> None:
        self.output_regex = re.compile(pattern) if pattern else None

    def run_current_test(
        self,
        current_output: str,
        all_inputs_must_be_used: bool = False,
        success_message: Optional[str] = None,
        fail_message: Optional[str] = None,
    ) -> Optional[TestError]:
        """Check the program's output and input usage.

        Returns a :class:`TestError` describing the first failed check, or
        ``None`` when every configured check passed.
        """
        if self.output_regex is not None:
            if not self.output_regex.search(current_output):
                return TestError(fail_message or UNEXPECTED_OUTPUT)
            if success_message is None:
                self._passed(OUTPUT_LOOKS_GOOD)

        if all_inputs_must_be_used:
            if self.input_count > 0:
                return TestError(fail_message or NOT_ENOUGH_INPUTS)
            if self.input_count < 0:
                return TestError(fail_message or TOO_MANY_INPUTS)
            if success_message is None:
                self._passed(CORRECT_INPUT_COUNT)

        if success_message:
            self._passed(success_message)
        elif not all_inputs_must_be_used and self.output_regex is None:
            # Passes even when the program printed nothing useful.
            self._passed(TEST_PASSED)
        return None

    # -- input ------------------------------------------------------------

    def sync_input(self) -> str:
        self.input_count -= 1
        if not self._inputs:
            raise TestError(NO_INPUT_EXPECTED)
        return self._inputs.popleft()

    async def async_input(self) -> str:
        return self.sync_input()

    def input_handler(self, sync: bool) -> InputHandler:
        """Input callback in the calling convention a plugin requires."""
        return self.sync_input if sync else self.async_input

    @property
    def remaining_inputs(self) -> int:
        return len(self._inputs)

    def _passed(self, message: str) -> None:
        logger.debug("Test check passed: %s", message)
        self._print_feedback(Feedback(succeeded=True, message=message, is_test=True))
