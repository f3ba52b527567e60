"""Tests for the shared notice model and logger."""

from __future__ import annotations

import json

from shared.logger import ToolLogger
from shared.models import Notice, Severity

from dynpatch.core.models import PatchReport


def test_notice_keeps_message_whitespace():
    notice = Notice(severity=Severity.WARNING, message="  lib with spaces.so ", kind="cache_miss")

    assert notice.message == "  lib with spaces.so "


def test_report_warning_keeps_library_name():
    report = PatchReport(path="libfoo.so")

    report.warn(" libpadded.so  ", kind="cache_miss")

    assert [notice.message for notice in report.warnings] == [" libpadded.so  "]


def test_json_log_records_carry_component_and_operation(tmp_path):
    path = tmp_path / "logs" / "dynpatch.log"
    log = ToolLogger("records", log_level="DEBUG", log_file=path, json_logs=True, console_output=False)

    with log.operation("commit"):
        log.info("wrote %d bytes", 12)
    log.warning("outside")

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert lines[0]["component"] == "records"
    assert lines[0]["operation"] == "commit"
    assert lines[0]["message"] == "wrote 12 bytes"
    assert lines[1]["operation"] == "-"
    assert lines[1]["level"] == "WARNING"
