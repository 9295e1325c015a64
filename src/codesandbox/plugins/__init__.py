"""
Interpreter plugins for the sandbox.

This package exposes concrete plugins for supported languages.  When a run
starts, the orchestrator looks up the session's language in a registry built
by :func:`build_languages` and creates a fresh plugin instance for that run.
Additional languages can be added by implementing the
``InterpreterPlugin`` interface from ``base.py``.

SQL is not an interpreter plugin: queries are answered by
:mod:`codesandbox.sql` and rendered as a table.
"""

from __future__ import annotations

import functools
from typing import Callable, Dict, Iterable

from .base import InterpreterPlugin, RunConfig, TestCallbacks, resolve
from .javascript_plugin import JavaScriptPlugin
from .python_plugin import PythonPlugin

PluginFactory = Callable[[], InterpreterPlugin]


def build_languages(
    exec_limit: int = 30000,
    node_binary: str = "node",
    allowed: Iterable[str] | None = None,
) -> Dict[str, PluginFactory]:
    """Return the plugin factories for the allowed languages."""
    factories: Dict[str, PluginFactory] = {
        "python": functools.partial(PythonPlugin, exec_limit=exec_limit),
        "javascript": functools.partial(JavaScriptPlugin, exec_limit=exec_limit, node_binary=node_binary),
    }
    if allowed is not None:
        allowed_set = set(allowed)
        factories = {name: factory for name, factory in factories.items() if name in allowed_set}
    return factories


__all__ = [
    "InterpreterPlugin",
    "JavaScriptPlugin",
    "PluginFactory",
    "PythonPlugin",
    "RunConfig",
    "TestCallbacks",
    "build_languages",
    "resolve",
]
