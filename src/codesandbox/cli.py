"""Console runner for sandbox exercises.

Runs a learner file through the same orchestrator the service uses, with the
console as the terminal.  Host notifications (checker results, setup
failures) are printed to stderr.

Example::

    codesandbox-run solution.py --setup setup.py --test test.py --check
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import SUPPORTED_LANGS, Config
from .errors import ErrorKind
from .models import PredefinedCode
from .orchestrator import Orchestrator
from .plugins import build_languages
from .session import RecordingHostChannel, SandboxSession
from .storage import LocalStorageBackend
from .terminal import ConsoleTerminal

_SUFFIX_LANGUAGES = {".py": "python", ".js": "javascript", ".mjs": "javascript", ".sql": "sql"}


def _read(path: Optional[str]) -> Optional[str]:
    if path is None:
        return None
    return Path(path).read_text(encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codesandbox-run",
        description="Run (or check) a sandbox exercise in the console.",
    )
    parser.add_argument("code", help="File containing the learner's code")
    parser.add_argument("--language", choices=SUPPORTED_LANGS, help="Language (default: from file suffix)")
    parser.add_argument("--setup", help="File containing the author's setup code")
    parser.add_argument("--test", help="File containing the hidden test code")
    parser.add_argument("--check", action="store_true", help="Run the hidden tests")
    parser.add_argument("--wrap-main", action="store_true", help="Call main() after the learner's code")
    parser.add_argument("--data-url", help="SQLite dataset for SQL exercises")
    parser.add_argument("--data-dir", default=".", help="Directory --data-url is relative to (default: .)")
    parser.add_argument("--exec-limit-ms", type=int, help="Wall-clock limit per run in milliseconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


async def run_exercise(args: argparse.Namespace, config: Config) -> int:
    language = args.language or _SUFFIX_LANGUAGES.get(Path(args.code).suffix.lower())
    if language is None:
        print(f"Cannot infer language of {args.code}; pass --language", file=sys.stderr)
        return 2

    predefined = PredefinedCode(
        language=language,
        code=_read(args.code) or "",
        setup=_read(args.setup) or "",
        test=_read(args.test),
        wrap_code_in_main=args.wrap_main or None,
        data_url=args.data_url,
    )
    host = RecordingHostChannel()
    session = SandboxSession("console", terminal=ConsoleTerminal(), host=host, predefined_code=predefined, loaded=True)
    exec_limit = args.exec_limit_ms or config.exec_limit_ms
    orchestrator = Orchestrator(
        build_languages(exec_limit=exec_limit, node_binary=config.node_binary),
        storage=LocalStorageBackend(args.data_dir),
        exec_limit=exec_limit,
    )

    report = await orchestrator.handle_run(session, predefined.code, do_checks=args.check)

    if language == "sql":
        output = session.query_output
        if output.error:
            print(output.error, file=sys.stderr)
            return 1
        if output.column_names:
            print("\t".join(output.column_names))
        for row in output.rows:
            print("\t".join("NULL" if value is None else str(value) for value in row))
        print(output.message)
        return 0

    for message in host.of_type("checker"):
        print(f"checker result: {message['result']}", file=sys.stderr)
    if report is None:
        return 0
    return 2 if report.kind is ErrorKind.CONTENT else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[codesandbox] %(levelname)s - %(message)s",
    )
    config = Config.from_env()
    return asyncio.run(run_exercise(args, config))


if __name__ == "__main__":
    sys.exit(main())
