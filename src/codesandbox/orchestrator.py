"""Execution orchestrator.

The orchestrator takes the learner's code through the setup, main and test
phases of the session's language plugin, classifies whatever goes wrong,
records exactly one snapshot per run attempt and reports results to the
terminal and the host.

Phases run as a linear sequence.  Each phase is awaited through
:func:`attempt`, which turns its outcome into a :class:`PhaseResult`; the
next step is chosen from that result.  :meth:`Orchestrator.handle_run`
never raises, so the session always returns to the ``stopped`` state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional

from .errors import ErrorKind, ErrorReport, classify_error
from .harness import TestSession
from .models import (
    CheckerMessage,
    EditorSnapshot,
    Feedback,
    IOType,
    RunFinishedMessage,
    RunState,
    SetupFailMessage,
)
from .plugins import InterpreterPlugin, PluginFactory, RunConfig
from .session import SandboxSession
from .sql import execute_sql
from .storage import StorageBackend
from .terminal import LoggedTerminal, noop_output

logger = logging.getLogger("codesandbox.orchestrator")

RUNNING_TESTS_BANNER = "\x1b[1mRunning tests...\r\n"
FAILED_TEST_MESSAGE = "Your code failed at least one test!"
UNKNOWN_LANGUAGE_MESSAGE = "Unknown programming language - unable to run code!"


@dataclass
class PhaseResult:
    """Tagged outcome of one phase."""

    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


async def attempt(phase: Awaitable[Any]) -> PhaseResult:
    try:
        return PhaseResult(ok=True, value=await phase)
    except Exception as exc:
        return PhaseResult(ok=False, error=exc)


class Orchestrator:
    """Runs learner code for sandbox sessions.

    Parameters
    ----------
    languages: dict
        Plugin factories keyed by language name.  A new plugin instance is
        created for every run.
    storage: StorageBackend, optional
        Dataset storage used by SQL exercises.
    exec_limit: int, optional
        Wall-clock limit in milliseconds handed to plugins.
    """

    def __init__(
        self,
        languages: Dict[str, PluginFactory],
        storage: Optional[StorageBackend] = None,
        exec_limit: int = 30000,
    ) -> None:
        self.languages = languages
        self.storage = storage
        self.exec_limit = exec_limit

    async def handle_run(self, session: SandboxSession, code: str, do_checks: bool = False) -> Optional[ErrorReport]:
        """Run (or, with ``do_checks``, check) ``code`` in ``session``.

        Starting a run while another is active is a stop request for the
        active run; no second run begins.  Returns the error reported to the
        learner, if any.
        """
        if not session.loaded:
            logger.info("Session %s: ignoring run before initialisation", session.session_id)
            return None
        if session.is_running:
            session.stop_execution()
            return None
        if session.run_disabled and not do_checks:
            logger.info("Session %s: run is disabled by the host", session.session_id)
            return None

        session.token.reset()
        session.io_log.clear_events()
        language = session.predefined_code.language

        if language == "sql":
            await self._run_query(session, code)
            return None

        factory = self.languages.get(language)
        if factory is None:
            logger.warning("Session %s: unknown language %r", session.session_id, language)
            await session.notify_host(SetupFailMessage(message=UNKNOWN_LANGUAGE_MESSAGE))
            return ErrorReport(ErrorKind.CONTENT, UNKNOWN_LANGUAGE_MESSAGE)

        session.set_state(RunState.CHECKING if do_checks else RunState.RUNNING)
        logger.info(
            "Session %s: %s %s code",
            session.session_id,
            "checking" if do_checks else "running",
            language,
        )
        try:
            return await self._run(session, factory(), code, do_checks)
        except Exception as exc:
            logger.exception("Session %s: run failed unexpectedly", session.session_id)
            session.io_log.clear_events()
            return classify_error(exc)
        finally:
            # A stop request ends exactly this run.
            session.token.should_stop(consume=True)
            session.set_state(RunState.STOPPED)
            await session.notify_host(RunFinishedMessage())

    async def _run(self, session: SandboxSession, plugin: InterpreterPlugin, code: str, do_checks: bool) -> Optional[ErrorReport]:
        predefined = session.predefined_code
        terminal = session.terminal
        logged = LoggedTerminal(terminal, session.io_log)
        harness = TestSession(session.print_feedback)
        should_stop = session.token.should_stop
        test_input = harness.input_handler(plugin.sync_test_input_handler)
        config = RunConfig(retain_globals=True, exec_limit=self.exec_limit)

        terminal.clear()
        if do_checks:
            terminal.output(RUNNING_TESTS_BANNER)

        bundled_setup = plugin.testing_library + "\n" + (predefined.setup or "")
        learner_code = plugin.wrap_in_main(code, do_checks) if predefined.wrap_code_in_main else code

        if plugin.requires_bundled_code:
            bundle = bundled_setup + "\n" + learner_code
            if do_checks:
                tests = await attempt(
                    plugin.run_tests("", test_input, should_stop, bundle + "\n" + (predefined.test or ""), harness)
                )
                if not tests.ok:
                    return await self._fail(session, code, tests.error)
                self._record_snapshot(session, code, compiled=True)
                await self._send_checker_result(session, tests.value)
            else:
                main = await attempt(plugin.run_code(bundle, logged.output, logged.input, should_stop, config))
                if not main.ok:
                    return await self._fail(session, code, main.error)
                self._record_snapshot(session, code, compiled=True)
            return None

        setup = await attempt(plugin.run_setup_code(logged.output, logged.input, bundled_setup, harness))
        if not setup.ok:
            return await self._fail(session, code, setup.error)

        main = await attempt(
            plugin.run_code(
                learner_code,
                noop_output if do_checks else logged.output,
                test_input if do_checks else logged.input,
                should_stop,
                config,
            )
        )
        if not main.ok:
            return await self._fail(session, code, main.error)
        self._record_snapshot(session, code, compiled=True)

        if do_checks:
            tests = await attempt(plugin.run_tests(main.value, test_input, should_stop, predefined.test or "", harness))
            if not tests.ok:
                # The snapshot for this attempt is already recorded.
                report = classify_error(tests.error)
                await self._report(session, report)
                return report
            await self._send_checker_result(session, tests.value)
        return None

    async def _run_query(self, session: SandboxSession, code: str) -> None:
        session.set_state(RunState.RUNNING)
        try:
            output = await execute_sql(code, session.predefined_code.data_url, self.storage)
            session.show_query_output(output)
        finally:
            session.set_state(RunState.STOPPED)

    def _record_snapshot(self, session: SandboxSession, code: str, compiled: bool) -> EditorSnapshot:
        snapshot = EditorSnapshot(snapshot=code, compiled=compiled, io=session.io_log.get_io_events())
        session.append_snapshot(snapshot)
        session.io_log.clear_events()
        return snapshot

    async def _fail(self, session: SandboxSession, code: str, error: BaseException) -> ErrorReport:
        report = classify_error(error)
        session.io_log.add_line(report.message, IOType.ERROR)
        self._record_snapshot(session, code, compiled=False)
        await self._report(session, report)
        return report

    async def _report(self, session: SandboxSession, report: ErrorReport) -> None:
        logger.info("Session %s: %s error: %s", session.session_id, report.kind.value, report.message)
        session.print_feedback(
            Feedback(
                succeeded=False,
                message=report.display_message(),
                is_test=True if report.is_test_error else None,
            )
        )
        if report.is_test_error:
            session.print_feedback(Feedback(succeeded=False, message=FAILED_TEST_MESSAGE))
        elif report.is_content_error:
            await session.notify_host(SetupFailMessage(message=report.message))

    async def _send_checker_result(self, session: SandboxSession, result: Any) -> None:
        await session.notify_host(CheckerMessage(result="" if result is None else str(result)))
