"""
dynpatch Data Models
=====================

Pydantic-based models for the requests the dynamic-section editor accepts
and the reports and query results it produces.

A :class:`PatchRequest` is validated once, up front: mutually exclusive
options are rejected before any file is opened, so the editor can assume
a consistent request.

References:
    - TIS Committee. (1995). Executable and Linkable Format (ELF) Specification.
    - Pydantic v2 documentation. https://docs.pydantic.dev/latest/
"""

from __future__ import annotations

import enum
import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shared.models import Notice, Severity


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Priority(str, enum.Enum):
    """Requested kind for an existing run-time search path entry.

    ``RUNPATH`` lets ``LD_LIBRARY_PATH`` and system libraries win;
    ``RPATH`` takes precedence over them.
    """
    UNCHANGED = "unchanged"
    RUNPATH = "runpath"
    RPATH = "rpath"


class ResultCode(str, enum.Enum):
    """Outcome of one editor invocation."""
    SUCCESS = "success"
    WARNING = "warning"
    STRUCTURE_ERROR = "structure_error"
    COMMIT_ERROR = "commit_error"


class QuerySelector(str, enum.Enum):
    """Property reported by a read-only query."""
    NEEDED = "needed"
    SONAME = "soname"
    RPATH = "rpath"
    MISSING = "missing"
    SUGGEST = "suggest"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class PatchRequest(BaseModel):
    """A validated set of mutations for one ELF file.

    Attributes:
        needed_old: NEEDED name to replace.
        needed_new: Replacement NEEDED name.
        soname: New SONAME.
        remove_soname: Turn the SONAME entry into an unused entry.
        rpath: New RPATH/RUNPATH string.
        remove_rpath: Turn the RPATH/RUNPATH entry into an unused entry.
        priority: Convert RPATH and RUNPATH entries to this kind.
        output: Write a modified copy here instead of editing in place.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    needed_old: Optional[str] = Field(default=None, min_length=1)
    needed_new: Optional[str] = Field(default=None, min_length=1)
    soname: Optional[str] = Field(default=None, min_length=1)
    remove_soname: bool = False
    rpath: Optional[str] = Field(default=None, min_length=1)
    remove_rpath: bool = False
    priority: Priority = Priority.UNCHANGED
    output: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _check_exclusive(self) -> PatchRequest:
        """Reject half-specified or contradictory options."""
        if (self.needed_old is None) != (self.needed_new is None):
            raise ValueError("replacing a needed library requires two names")
        if self.soname is not None and self.remove_soname:
            raise ValueError("cannot both set and remove the soname")
        if self.rpath is not None and self.remove_rpath:
            raise ValueError("cannot both set and remove the run-time path")
        return self

    @property
    def has_mutation(self) -> bool:
        """``True`` when at least one change to the file was requested."""
        return (
            self.needed_old is not None
            or self.wants_soname
            or self.wants_rpath
            or self.priority is not Priority.UNCHANGED
        )

    @property
    def wants_soname(self) -> bool:
        return self.soname is not None or self.remove_soname

    @property
    def wants_rpath(self) -> bool:
        return self.rpath is not None or self.remove_rpath

    def check_output(self, input_path: str) -> None:
        """Raise ``ValueError`` when *output* names the input file."""
        if self.output is None:
            return
        if os.path.abspath(self.output) == os.path.abspath(input_path):
            raise ValueError("the input and the output can't be the same")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class PatchReport(BaseModel):
    """Outcome of :meth:`DynamicEditor.process`.

    Attributes:
        path: Input file.
        status: Overall result code.
        notices: Progress and warning lines, in the order they occurred.
        committed: Whether anything was written.
        output_path: File that received the changes (input when in place).
        strtab_modified: The string table changed.
        dynamic_modified: At least one dynamic tag changed.
    """

    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    path: str
    status: ResultCode = ResultCode.SUCCESS
    notices: list[Notice] = Field(default_factory=list)
    committed: bool = False
    output_path: Optional[str] = None
    strtab_modified: bool = False
    dynamic_modified: bool = False

    def info(self, message: str, kind: str = "") -> None:
        self.notices.append(Notice(severity=Severity.INFO, message=message, kind=kind))

    def warn(self, message: str, kind: str = "") -> None:
        self.notices.append(Notice(severity=Severity.WARNING, message=message, kind=kind))

    def fail(self, status: ResultCode, message: str) -> None:
        self.status = status
        self.notices.append(Notice(severity=Severity.ERROR, message=message, kind=status.value))

    @property
    def warnings(self) -> list[Notice]:
        return [n for n in self.notices if n.severity is Severity.WARNING]

    @property
    def ok(self) -> bool:
        return self.status in (ResultCode.SUCCESS, ResultCode.WARNING)


class DynamicInfo(BaseModel):
    """Everything the informational dump shows for one file."""

    path: str
    bits: int = 64
    endian: str = "little"
    needed: list[str] = Field(default_factory=list)
    soname: Optional[str] = None
    rpath: list[str] = Field(default_factory=list)
    runpath: list[str] = Field(default_factory=list)
    unused_entries: int = 0


class QueryResult(BaseModel):
    """Values returned by a read-only query.

    ``values`` is empty when the property is absent (no SONAME, every
    needed library found, no replacement candidate).
    """

    path: str
    selector: QuerySelector
    library: Optional[str] = None
    values: list[str] = Field(default_factory=list)
