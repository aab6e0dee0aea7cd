"""
ScanCore Logging
================

:class:`ScanLogger` routes drmscan diagnostics to a Rich console handler
on stderr and, when configured, to a rotating log file in plain text or
JSON lines.

The parsing core does not import this module.  It reports through a bare
``Callable[[str], None]`` sink, and the engine passes :meth:`ScanLogger.debug`.

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich logging handler. https://rich.readthedocs.io/en/latest/logging.html
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Generator

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

_LOG_THEME = Theme(
    {
        "log.level.debug": "dim cyan",
        "log.level.info": "bold bright_blue",
        "log.level.warning": "bold yellow",
        "log.level.error": "bold red",
    }
)

_PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Keyword arguments the stdlib logging call understands itself.
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel"})


class _JsonLinesFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp``, ``level``, ``logger``, ``message``, ``tool_name``,
    and when present ``operation``, ``extra`` and ``exc_info``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "tool_name": getattr(record, "tool_name", None),
        }
        operation = getattr(record, "operation", None)
        if operation:
            entry["operation"] = operation
        fields = getattr(record, "scan_extra", None)
        if fields:
            entry["extra"] = fields
        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _console_handler(level: int) -> logging.Handler:
    handler = RichHandler(
        console=Console(theme=_LOG_THEME, stderr=True),
        level=level,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    return handler


def _file_handler(
    log_file: str | Path,
    level: int,
    json_logs: bool,
    max_bytes: int,
    backup_count: int,
) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    if json_logs:
        handler.setFormatter(_JsonLinesFormatter())
    else:
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    return handler


class ScanLogger:
    """Logger bound to one drmscan component.

    Keyword arguments that ``logging`` does not know are collected into the
    record's ``extra`` field of the JSON output::

        log = ScanLogger("engine", log_file="drmscan.log", json_logs=True)
        with log.operation("inspect"):
            log.info("Parsed %s", path, sections=4)

    Args:
        tool_name:       Component name; records go to ``drmscan.<tool_name>``.
        log_level:       Minimum level name, e.g. ``"DEBUG"``.
        log_file:        Rotating log file, or ``None`` for no file output.
        json_logs:       Write JSON lines instead of plain text to the file.
        max_bytes:       Rotation size of the log file.
        backup_count:    Rotated files to keep.
        console_output:  Attach the Rich handler on stderr.
    """

    def __init__(
        self,
        tool_name: str,
        *,
        log_level: str = "INFO",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
        console_output: bool = True,
    ) -> None:
        self._tool_name = tool_name
        self._operation: str | None = None

        level = getattr(logging, log_level.upper(), logging.INFO)
        self._logger = logging.getLogger(f"drmscan.{tool_name}")
        self._logger.setLevel(level)
        self._logger.propagate = False
        self._logger.handlers.clear()

        if console_output:
            self._logger.addHandler(_console_handler(level))
        if log_file is not None:
            self._logger.addHandler(
                _file_handler(log_file, level, json_logs, max_bytes, backup_count)
            )

    @contextmanager
    def operation(self, name: str) -> Generator[ScanLogger, None, None]:
        """Tag every record logged inside the block with *name*."""
        previous, self._operation = self._operation, name
        try:
            yield self
        finally:
            self._operation = previous

    @contextmanager
    def timed(self, label: str) -> Generator[None, None, None]:
        """Log how long the block took, at DEBUG level."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.debug("%s took %.3f sec", label, time.perf_counter() - start)

    def _log(self, level: int, msg: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        fields = {k: kwargs.pop(k) for k in list(kwargs) if k not in _LOGGING_KWARGS}
        kwargs["extra"] = {
            "tool_name": self._tool_name,
            "operation": self._operation,
            "scan_extra": fields,
        }
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, args, kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, args, kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """ERROR with the active traceback attached."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, args, kwargs)
