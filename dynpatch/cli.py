"""
dynpatch CLI -- ELF Dynamic Section Editor
===========================================

Click-based command-line interface for dynpatch.  Without a modification
option it prints the file's dynamic-linking information; with one it
edits the file in place, or writes a modified copy with ``--output``.

Usage::

    # Show NEEDED, SONAME and run-time path
    dynpatch ./libfoo.so.1

    # Drop the version suffix from a dependency
    dynpatch ./app -n libbar.so.2 libbar.so

    # Remove the soname, write the result elsewhere
    dynpatch ./libfoo.so.1 --remove-soname -o ./libfoo.so

    # Turn RPATH into RUNPATH
    dynpatch ./app --priority-low

    # List dependencies the system cannot find
    dynpatch ./app --query missing

Exit codes:
    0 success (or no effect), 1 invalid request, 3 unreadable or
    malformed input, 4 write failure, 5 no effect with
    ``fail_on_no_effect``, 130 interrupted.

References:
    - Click documentation: https://click.palletsprojects.com/
"""

from __future__ import annotations

import os
import sys

import click
from pydantic import ValidationError

from shared.config import DynpatchConfig
from shared.console import ToolConsole
from shared.logger import ToolLogger

from dynpatch.core.engine import DynamicEditor
from dynpatch.core.errors import DynpatchError
from dynpatch.core.models import (
    PatchRequest,
    Priority,
    QuerySelector,
    ResultCode,
)
from dynpatch.output.console import DynpatchConsoleOutput


EXIT_OK: int = 0
EXIT_BAD_REQUEST: int = 1
EXIT_STRUCTURE: int = 3
EXIT_COMMIT: int = 4
EXIT_NO_EFFECT: int = 5
EXIT_INTERRUPTED: int = 130


# ---------------------------------------------------------------------------
# CLI command
# ---------------------------------------------------------------------------

@click.command("dynpatch")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option(
    "--replace", "-n",
    nargs=2,
    type=str,
    default=None,
    metavar="OLD NEW",
    help="Replace the needed dependency OLD by NEW.",
)
@click.option("--soname", "-s", default=None, help="Replace the soname.")
@click.option(
    "--remove-soname",
    is_flag=True,
    default=False,
    help="Remove the soname.",
)
@click.option("--rpath", "-r", default=None, help="Replace the run-time path.")
@click.option(
    "--remove-rpath",
    is_flag=True,
    default=False,
    help="Remove the run-time path.",
)
@click.option(
    "--priority-low",
    "priority",
    flag_value=Priority.RUNPATH.value,
    help="Store the run-time path as RUNPATH: system libraries come first.",
)
@click.option(
    "--priority-high",
    "priority",
    flag_value=Priority.RPATH.value,
    help="Store the run-time path as RPATH: it comes before system libraries.",
)
@click.option(
    "--output", "-o",
    "output_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the modified file here instead of editing in place.",
)
@click.option(
    "--query", "-q",
    type=click.Choice([s.value for s in QuerySelector], case_sensitive=False),
    default=None,
    help="Print one property and exit without modifying the file.",
)
@click.option(
    "--library",
    default=None,
    help="Library name for --query suggest.",
)
@click.option(
    "--cache",
    "cache_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Shared-library cache (default: /etc/ld.so.cache).",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="TOML configuration file.",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable verbose/debug output.",
)
@click.option(
    "--json", "json_output",
    is_flag=True,
    default=False,
    help="Output results as JSON to stdout.",
)
def dynpatch_cli(
    path: str,
    replace: tuple[str, str] | None,
    soname: str | None,
    remove_soname: bool,
    rpath: str | None,
    remove_rpath: bool,
    priority: str | None,
    output_path: str | None,
    query: str | None,
    library: str | None,
    cache_path: str | None,
    config_path: str | None,
    verbose: bool,
    json_output: bool,
) -> None:
    """dynpatch -- edit NEEDED, SONAME and RPATH/RUNPATH of an ELF file.

    PATH is the executable or shared object to inspect or modify.  The
    file never grows: new strings must fit in the space of the strings
    they replace.
    """
    console = ToolConsole()
    config = DynpatchConfig.load(config_path)
    if cache_path is not None:
        config.dynpatch.cache_path = cache_path

    log_level = "DEBUG" if verbose else config.global_settings.log_level
    logger = ToolLogger(
        "cli",
        log_level=log_level,
        log_file=config.global_settings.log_file,
        json_logs=config.global_settings.log_json,
    )
    editor = DynamicEditor(config=config, logger=logger)

    # The editor expects a path with a directory part
    if os.sep not in path:
        path = os.path.join(os.curdir, path)

    mutating = bool(
        replace or soname or remove_soname or rpath or remove_rpath or priority
    )
    if query is not None and mutating:
        console.error("--query cannot be combined with modification options.")
        sys.exit(EXIT_BAD_REQUEST)

    try:
        if query is not None:
            _run_query(console, editor, path, QuerySelector(query.lower()), library, json_output)
        elif not mutating:
            info = editor.inspect(path)
            if json_output:
                click.echo(info.model_dump_json(indent=2))
            else:
                DynpatchConsoleOutput(console).display_info(info)
        else:
            request = PatchRequest(
                needed_old=replace[0] if replace else None,
                needed_new=replace[1] if replace else None,
                soname=soname,
                remove_soname=remove_soname,
                rpath=rpath,
                remove_rpath=remove_rpath,
                priority=Priority(priority) if priority else Priority.UNCHANGED,
                output=output_path,
            )
            report = editor.process(path, request)
            if json_output:
                click.echo(report.model_dump_json(indent=2))
            else:
                DynpatchConsoleOutput(console).display_report(report)
            sys.exit(_exit_code(report.status, config.dynpatch.fail_on_no_effect))
    except KeyboardInterrupt:
        console.warning("Interrupted by user.")
        sys.exit(EXIT_INTERRUPTED)
    except ValidationError as exc:
        for error in exc.errors():
            console.error(str(error["msg"]))
        sys.exit(EXIT_BAD_REQUEST)
    except ValueError as exc:
        console.error(str(exc))
        sys.exit(EXIT_BAD_REQUEST)
    except (DynpatchError, OSError) as exc:
        console.error(str(exc))
        sys.exit(EXIT_STRUCTURE)


def _run_query(
    console: ToolConsole,
    editor: DynamicEditor,
    path: str,
    selector: QuerySelector,
    library: str | None,
    json_output: bool,
) -> None:
    result = editor.query(path, selector, library)
    if json_output:
        click.echo(result.model_dump_json(indent=2))
    else:
        DynpatchConsoleOutput(console).display_query(result)


def _exit_code(status: ResultCode, fail_on_no_effect: bool) -> int:
    if status is ResultCode.STRUCTURE_ERROR:
        return EXIT_STRUCTURE
    if status is ResultCode.COMMIT_ERROR:
        return EXIT_COMMIT
    if status is ResultCode.WARNING and fail_on_no_effect:
        return EXIT_NO_EFFECT
    return EXIT_OK


# ---------------------------------------------------------------------------
# Module entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Entry point for ``python -m dynpatch.cli``."""
    dynpatch_cli()


if __name__ == "__main__":
    main()
