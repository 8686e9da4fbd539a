"""JSON log formatter and root-logger configuration.

A host process runs many tenants side by side, so log lines carry the
tenant they concern whenever the call site passes one through
``extra={"tenant": ...}``.  Aggregators can then filter a single
tenant's lifecycle out of the shared stream.

One JSON object per line (NDJSON) is the default; ``format="text"``
gives a human-readable line for local runs.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from bothost._settings import LoggingSettings

_MB = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("uvicorn.access", "websockets", "aiosqlite")


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Fields: ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``,
    ``message``, ``service``, plus ``version`` when non-empty,
    ``tenant`` when the record carries one, and ``exception`` /
    ``stack_info`` when present.

    Args:
        service: Application name included in every log line.
        version: Application version string.  Omitted when empty.
    """

    def __init__(
        self,
        *,
        service: str = "",
        version: str = "",
    ) -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }

        if self._version:
            entry["version"] = self._version

        tenant = getattr(record, "tenant", None)
        if tenant is not None:
            entry["tenant"] = tenant

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        # Tracebacks are escaped by json.dumps: one record, one line.
        return json.dumps(entry, default=str)


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Replace the root logger's handlers according to *settings*.

    A stderr handler is always installed.  When ``settings.file`` is
    set, a :class:`~logging.handlers.RotatingFileHandler` is added with
    ``max_file_size_mb`` per file and ``backup_count`` generations.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    if settings.format == "json":
        formatter: logging.Formatter = JsonFormatter(service=service, version=version)
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if settings.file is not None:
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_file_size_mb * _MB,
            backupCount=settings.backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(settings.level)
    if settings.level != "DEBUG":
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
