"""
dynpatch Shared Data Models
============================

Pydantic v2 models shared by the editor, the CLI and the console output:
a severity scale and the :class:`Notice` line every mutation attempt
produces.

References:
    - Pydantic v2 documentation. https://docs.pydantic.dev/latest/
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Severity of a report line.

    Attributes:
        INFO:    A mutation was applied.
        WARNING: A requested mutation was skipped (no target, no room).
        ERROR:   The run was aborted.
    """

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class Notice(BaseModel):
    """A single human-readable line reported back to the caller.

    ``message`` is kept exactly as built, since it may quote paths or
    library names with significant whitespace.
    """

    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    severity: Severity = Field(default=Severity.INFO)
    message: str = Field(..., min_length=1, description="Human-readable text")
    kind: str = Field(
        default="",
        description="Machine-readable reason: string_too_large, target_not_found, cache_miss ...",
    )
