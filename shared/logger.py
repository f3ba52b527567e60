"""
dynpatch Logging
=================

:class:`ToolLogger` wraps a stdlib logger named ``dynpatch.<component>``.
Records go to standard error through Rich and, when a log file is
configured, to a size-rotated file as plain text or JSON lines.

Every record carries the component name and, inside an
:meth:`ToolLogger.operation` block, the name of the pipeline step that
emitted it (``locate``, ``commit`` ...).

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich library. https://github.com/Textualize/rich
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

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

_ROTATE_BYTES: int = 5 * 1024 * 1024
_ROTATE_BACKUPS: int = 3
_TEXT_FORMAT: str = "%(asctime)s %(levelname)-8s %(name)s [%(operation)s] %(message)s"


class _JSONLinesFormatter(logging.Formatter):
    """One JSON object per record: time, level, logger, component, step, message."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "component": getattr(record, "component", None),
            "operation": getattr(record, "operation", None),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.WARNING)


class ToolLogger:
    """Logger bound to one dynpatch component.

    Usage::

        log = ToolLogger("engine", log_level="DEBUG", log_file="dynpatch.log")
        with log.operation("commit"), log.timed("commit"):
            log.debug("Writing string table at 0x%x", offset)

    Args:
        component:      Suffix of the stdlib logger name.
        log_level:      Minimum level name for every handler.
        log_file:       Rotating log file; ``None`` disables file output.
        json_logs:      Write the log file as JSON lines.
        console_output: Attach the Rich handler on standard error.
    """

    def __init__(
        self,
        component: str,
        *,
        log_level: str = "WARNING",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        console_output: bool = True,
    ) -> None:
        self._component = component
        self._operation: str = "-"
        level = _level(log_level)

        self._logger = logging.getLogger(f"dynpatch.{component}")
        self._logger.setLevel(level)
        self._logger.propagate = False
        self._logger.handlers.clear()

        if console_output:
            self._logger.addHandler(
                RichHandler(
                    level=level,
                    console=Console(theme=_LOG_THEME, stderr=True),
                    show_path=False,
                    markup=False,
                    rich_tracebacks=True,
                )
            )

        if log_file is not None:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                path,
                maxBytes=_ROTATE_BYTES,
                backupCount=_ROTATE_BACKUPS,
                encoding="utf-8",
            )
            handler.setLevel(level)
            handler.setFormatter(
                _JSONLinesFormatter() if json_logs else logging.Formatter(_TEXT_FORMAT)
            )
            self._logger.addHandler(handler)

    # ------------------------------------------------------------------ #
    #  Scopes
    # ------------------------------------------------------------------ #

    class _Operation:
        def __init__(self, owner: ToolLogger, name: str) -> None:
            self._owner = owner
            self._name = name
            self._outer = "-"

        def __enter__(self) -> ToolLogger:
            self._outer = self._owner._operation
            self._owner._operation = self._name
            return self._owner

        def __exit__(self, *exc: Any) -> None:
            self._owner._operation = self._outer

    def operation(self, name: str) -> _Operation:
        """Stamp records emitted inside the block with ``operation=name``."""
        return self._Operation(self, name)

    class _Timer:
        def __init__(self, owner: ToolLogger, label: str) -> None:
            self._owner = owner
            self._label = label
            self._start = 0.0

        def __enter__(self) -> None:
            self._start = time.perf_counter()

        def __exit__(self, *exc: Any) -> None:
            self._owner.debug(
                "%s took %.3f s", self._label, time.perf_counter() - self._start
            )

    def timed(self, label: str) -> _Timer:
        """Log the duration of the block at debug level."""
        return self._Timer(self, label)

    # ------------------------------------------------------------------ #
    #  Emitters
    # ------------------------------------------------------------------ #

    def _log(self, level: int, msg: str, args: tuple[Any, ...], exc_info: bool = False) -> None:
        self._logger.log(
            level,
            msg,
            *args,
            exc_info=exc_info,
            extra={"component": self._component, "operation": self._operation},
        )

    def debug(self, msg: str, *args: Any) -> None:
        self._log(logging.DEBUG, msg, args)

    def info(self, msg: str, *args: Any) -> None:
        self._log(logging.INFO, msg, args)

    def warning(self, msg: str, *args: Any) -> None:
        self._log(logging.WARNING, msg, args)

    def exception(self, msg: str, *args: Any) -> None:
        """Log at error level with the active exception's traceback."""
        self._log(logging.ERROR, msg, args, exc_info=True)
