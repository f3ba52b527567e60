"""
dynpatch Console Output
========================

Rich-powered terminal display for edit reports, the informational dump
of a file's dynamic table, and query results.

Uses the ToolConsole abstraction for consistent styling.
"""

from __future__ import annotations

from rich.markup import escape
from rich.panel import Panel

from shared.console import ToolConsole
from shared.models import Severity

from dynpatch.core.models import (
    DynamicInfo,
    PatchReport,
    QueryResult,
    QuerySelector,
    ResultCode,
)


_STATUS_COLOURS: dict[ResultCode, str] = {
    ResultCode.SUCCESS: "bright_green",
    ResultCode.WARNING: "yellow",
    ResultCode.STRUCTURE_ERROR: "bright_red",
    ResultCode.COMMIT_ERROR: "bright_red",
}


class DynpatchConsoleOutput:
    """Rich terminal display for dynpatch results.

    Usage::

        output = DynpatchConsoleOutput()
        output.display_report(report)
    """

    def __init__(self, console: ToolConsole | None = None) -> None:
        """Initialise the output renderer.

        Args:
            console: Optional ToolConsole instance.  A new one is
                     created if not provided.
        """
        self._console: ToolConsole = console or ToolConsole()

    def display_report(self, report: PatchReport) -> None:
        """Display every notice of *report* followed by a one-line status."""
        self._console.info(f"Processing file: {report.path}")
        for notice in report.notices:
            if notice.severity is Severity.INFO:
                self._console.info(notice.message)
            elif notice.severity is Severity.WARNING:
                self._console.warning(notice.message)
            else:
                self._console.error(notice.message)

        if report.committed:
            self._console.success(f"Written: {report.output_path}")
        colour = _STATUS_COLOURS[report.status]
        self._console.print(f"[{colour}]Status: {report.status.value}[/{colour}]")

    def display_info(self, info: DynamicInfo) -> None:
        """Display the dynamic table summary panel and its entries.

        Args:
            info: DynamicInfo model from :meth:`DynamicEditor.inspect`.
        """
        lines: list[str] = [
            f"[bold]File:[/bold]    {escape(info.path)}",
            f"[bold]Class:[/bold]   ELF{info.bits} ({info.endian}-endian)",
            f"[bold]Unused:[/bold]  {info.unused_entries} DT_DEBUG entries",
        ]
        self._console.rich.print(
            Panel(
                "\n".join(lines),
                title="[bold bright_cyan]ELF dynamic table information[/bold bright_cyan]",
                border_style="bright_cyan",
                padding=(0, 2),
            )
        )

        rows: list[tuple[str, str]] = [("NEEDED", name) for name in info.needed]
        if info.soname is not None:
            rows.append(("SONAME", info.soname))
        rows.extend(("RPATH", value) for value in info.rpath)
        rows.extend(("RUNPATH", value) for value in info.runpath)
        if rows:
            self._console.table("", ["Tag", "Value"], rows, styles=["bold", ""])
        else:
            self._console.warning("No NEEDED, SONAME or run-time path entries.")

    def display_query(self, result: QueryResult) -> None:
        """Print one value per line, as expected by shell pipelines."""
        if not result.values and result.selector is QuerySelector.SUGGEST:
            self._console.warning(f"No replacement found for {result.library}.")
        for value in result.values:
            self._console.line(value)

