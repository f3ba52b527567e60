"""
dynpatch Console
=================

:class:`ToolConsole` is the single place where dynpatch writes to the
terminal.  Status lines carry a severity prefix, tables share one border
palette, and :meth:`ToolConsole.line` prints raw values for shell
pipelines.  Every user-supplied string is escaped before it reaches Rich
markup.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from typing import Any, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

_THEME = Theme(
    {
        "tool.success": "bold green",
        "tool.warning": "bold yellow",
        "tool.error": "bold red",
        "tool.info": "bold bright_blue",
    }
)


class ToolConsole:
    """Themed Rich console writing to standard output.

    Usage::

        con = ToolConsole()
        con.info("Processing file: ./libfoo.so.1")
        con.success("Written: ./libfoo.so.1")
    """

    def __init__(self) -> None:
        self._console = Console(theme=_THEME, highlight=False)

    @property
    def rich(self) -> Console:
        """The wrapped Rich console, for renderables such as panels."""
        return self._console

    # ------------------------------------------------------------------ #
    #  Status lines
    # ------------------------------------------------------------------ #

    def _status(self, style: str, label: str, message: str) -> None:
        self._console.print(f"[{style}]{label}:[/{style}] {escape(message)}")

    def success(self, message: str) -> None:
        self._status("tool.success", "[✔] SUCCESS", message)

    def warning(self, message: str) -> None:
        self._status("tool.warning", "[⚠] WARNING", message)

    def error(self, message: str) -> None:
        self._status("tool.error", "[✘] ERROR", message)

    def info(self, message: str) -> None:
        self._status("tool.info", "[ℹ] INFO", message)

    # ------------------------------------------------------------------ #
    #  Tables and raw output
    # ------------------------------------------------------------------ #

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        styles: Sequence[str] = (),
    ) -> None:
        """Print *rows* under *columns*; cells are stringified and escaped."""
        tbl = Table(
            title=title or None,
            border_style="bright_cyan",
            header_style="bold bright_magenta",
            padding=(0, 1),
        )
        for index, name in enumerate(columns):
            tbl.add_column(name, style=styles[index] if index < len(styles) else "")
        for row in rows:
            tbl.add_row(*(escape(str(cell)) for cell in row))
        self._console.print(tbl)

    def print(self, *args: Any, **kwargs: Any) -> None:
        self._console.print(*args, **kwargs)

    def line(self, text: str) -> None:
        """Print *text* verbatim, without markup or wrapping."""
        self._console.print(text, markup=False, highlight=False, soft_wrap=True)
