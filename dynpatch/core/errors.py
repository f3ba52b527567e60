"""
dynpatch Error Hierarchy
=========================

Every failure the editor can report is a :class:`DynpatchError`.

Structural and I/O failures (:class:`StructureError`, :class:`CommitError`)
abort the whole run.  Content-level failures (:class:`StringTooLarge`,
:class:`TargetNotFound`) concern a single entry; the editor turns them
into warnings and the remaining mutations still run.
"""

from __future__ import annotations


class DynpatchError(Exception):
    """Base class for all dynpatch errors."""

    pass


# ========================== Fatal: structure ===============================


class StructureError(DynpatchError):
    """The input file cannot be read as an ELF image with a dynamic table."""

    pass


class NotAnElfFile(StructureError):
    """Magic number, class, data encoding or version is not recognised."""

    pass


class MalformedHeader(StructureError):
    """The header passed identification but declares inconsistent sizes."""

    pass


class SegmentNotFound(StructureError):
    """No program header of the requested type exists."""

    pass


class SectionNotFound(StructureError):
    """No section header of the requested type exists."""

    pass


class ZeroLengthRegion(StructureError):
    """The requested segment or section exists but has no file content."""

    pass


class TruncatedRegion(StructureError):
    """A header points past the end of the file."""

    pass


class InvalidCacheFormat(DynpatchError):
    """The shared-library cache is unreadable or has an unknown layout."""

    pass


# ========================== Fatal: commit ==================================


class CommitError(DynpatchError):
    """Writing the modified tables back to disk failed."""

    pass


# ========================== Per-entry (non-fatal) ==========================


class StringTooLarge(DynpatchError):
    """A replacement string does not fit in the available span.

    Attributes:
        text:      The string that was to be written.
        required:  Encoded length of *text*.
        available: Bytes usable at the target offset.
    """

    def __init__(self, text: str, required: int, available: int) -> None:
        super().__init__(
            f"'{text}' needs {required} bytes but only {available} are available"
        )
        self.text = text
        self.required = required
        self.available = available


class TargetNotFound(DynpatchError):
    """A requested property had no dynamic entry to attach to."""

    pass
