"""Configuration loader.

The sandbox service reads its configuration from environment variables so
the same container image can be embedded behind different host pages.
Reasonable defaults are provided so that local development works out of the
box.

Environment variables:

``CODESANDBOX_API_KEY``
    Shared secret expected in the ``x-api-key`` header (or the ``api_key``
    query parameter for WebSocket connections).  Authentication is skipped
    when empty.

``CODESANDBOX_ALLOWED_LANGS``
    Comma-separated list of languages the service accepts.  Defaults to
    ``python,javascript,sql``.

``CODESANDBOX_EXEC_LIMIT_MS``
    Wall-clock limit (in milliseconds) handed to interpreter plugins for a
    single run of learner code.  Default is 30000.

``CODESANDBOX_NODE_BINARY``
    Executable used by the JavaScript plugin.  Defaults to ``node``.

``CODESANDBOX_STORAGE_BACKEND``
    Where SQL datasets referenced by ``dataUrl`` are loaded from.  Supported
    values are ``local`` and ``gcs``.  Defaults to ``local``.

``CODESANDBOX_STORAGE_PATH``
    Base directory of the ``local`` dataset backend.  Defaults to
    ``/tmp/codesandbox``.

``CODESANDBOX_GCS_BUCKET``
    Bucket used when ``CODESANDBOX_STORAGE_BACKEND`` is ``gcs``.  Required
    for that backend.

``CODESANDBOX_LOG_LEVEL``
    Level of the ``codesandbox`` logger.  Defaults to ``INFO``.

``PORT``
    The port on which the API server listens.  Defaults to 8080.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List

SUPPORTED_LANGS = ("python", "javascript", "sql")


@dataclass
class Config:
    """Centralised configuration object."""

    api_key: str = ""
    allowed_langs: List[str] = field(default_factory=lambda: list(SUPPORTED_LANGS))
    exec_limit_ms: int = 30000
    node_binary: str = "node"
    storage_backend: str = "local"
    storage_path: str = "/tmp/codesandbox"
    gcs_bucket: str | None = None
    log_level: str = "INFO"
    port: int = 8080

    @classmethod
    def load(cls) -> "Config":
        api_key = os.getenv("CODESANDBOX_API_KEY", "")

        allowed_langs_env = os.getenv("CODESANDBOX_ALLOWED_LANGS", ",".join(SUPPORTED_LANGS))
        allowed_langs = [lang.strip().lower() for lang in allowed_langs_env.split(",") if lang.strip()]
        unknown = [lang for lang in allowed_langs if lang not in SUPPORTED_LANGS]
        if unknown:
            raise ValueError(
                f"Invalid CODESANDBOX_ALLOWED_LANGS: {', '.join(unknown)}. "
                f"Supported: {', '.join(SUPPORTED_LANGS)}."
            )

        storage_backend = os.getenv("CODESANDBOX_STORAGE_BACKEND", "local").lower()
        if storage_backend not in {"local", "gcs"}:
            raise ValueError(
                f"Invalid CODESANDBOX_STORAGE_BACKEND: {storage_backend}. Use 'local' or 'gcs'."
            )
        storage_path = os.getenv("CODESANDBOX_STORAGE_PATH", "/tmp/codesandbox")
        gcs_bucket = os.getenv("CODESANDBOX_GCS_BUCKET")
        if storage_backend == "gcs" and not gcs_bucket:
            raise RuntimeError(
                "CODESANDBOX_GCS_BUCKET must be set when using the GCS storage backend"
            )

        def _int_var(name: str, default: int) -> int:
            val = os.getenv(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                raise ValueError(f"Invalid integer for {name}: {val}")

        exec_limit_ms = _int_var("CODESANDBOX_EXEC_LIMIT_MS", 30000)
        if exec_limit_ms <= 0:
            raise ValueError(f"CODESANDBOX_EXEC_LIMIT_MS must be positive, got {exec_limit_ms}")

        log_level = os.getenv("CODESANDBOX_LOG_LEVEL", "INFO").upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValueError(f"Invalid CODESANDBOX_LOG_LEVEL: {log_level}")

        return cls(
            api_key=api_key,
            allowed_langs=allowed_langs,
            exec_limit_ms=exec_limit_ms,
            node_binary=os.getenv("CODESANDBOX_NODE_BINARY", "node"),
            storage_backend=storage_backend,
            storage_path=storage_path,
            gcs_bucket=gcs_bucket,
            log_level=log_level,
            port=_int_var("PORT", 8080),
        )

    @classmethod
    def from_env(cls) -> "Config":
        """
        Alternate constructor used by the API to load configuration.

        This wrapper calls :meth:`load` to construct the configuration.
        """
        return cls.load()
