"""
In-Memory Dynamic and String Tables
====================================

:class:`DynamicTable` mirrors the PT_DYNAMIC segment byte for byte and
:class:`StringTable` mirrors the string-table section.  Both are mutated
in place; neither ever changes length, so a modified buffer can always
be written back over the region it was read from.

The *available span* of a string is the number of bytes that can be
rewritten at its offset without touching the next unrelated string:
scanning forward from the offset, the span ends one byte before the
first non-NUL byte that follows a NUL, so the NUL just past the span
still separates the rewritten string from the next one.  A string with
no following string in the table has a span of zero, which keeps slots
at the very end of the table out of reach.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Iterator

from dynpatch.core.errors import StringTooLarge
from dynpatch.parsers.elf_image import ElfImage

# A NUL immediately followed by the first byte of the next string
_STRING_BOUNDARY = re.compile(rb"\x00[^\x00]")


# ---------------------------------------------------------------------------
# String table
# ---------------------------------------------------------------------------

class StringTable:
    """Fixed-size buffer of NUL-terminated strings addressed by offset."""

    def __init__(self, data: bytes) -> None:
        self._data = bytearray(data)
        self._modified = False

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, offset: int) -> bool:
        return 0 <= offset < len(self._data)

    @property
    def raw(self) -> bytes:
        return bytes(self._data)

    @property
    def modified(self) -> bool:
        """``True`` once any write has changed a byte."""
        return self._modified

    def read(self, offset: int) -> str:
        """Return the string starting at *offset* (``""`` when out of range)."""
        if offset not in self:
            return ""
        end = self._data.find(b"\x00", offset)
        if end == -1:
            end = len(self._data)
        return os.fsdecode(bytes(self._data[offset:end]))

    def available_span(self, offset: int) -> int:
        """Bytes usable for a string at *offset* before the next string.

        ``b"foo\\0\\0\\0bar\\0"`` gives 5 for offset 0.  Returns 0 when no
        other string follows, or when *offset* is out of range.
        """
        if offset not in self:
            return 0
        match = _STRING_BOUNDARY.search(self._data, offset)
        if match is None:
            return 0
        return match.start() - offset

    def write(self, offset: int, text: str, span: int | None = None) -> None:
        """Write *text* at *offset* and NUL-pad the rest of the span.

        Args:
            offset: Start of the string to overwrite.
            text:   Replacement string.
            span:   Usable bytes; computed with :meth:`available_span`
                    when omitted.

        Raises:
            StringTooLarge: *text* does not fit in the span.
        """
        if span is None:
            span = self.available_span(offset)
        encoded = os.fsencode(text)
        if len(encoded) > span:
            raise StringTooLarge(text, len(encoded), span)

        replacement = encoded + b"\x00" * (span - len(encoded))
        if self._data[offset:offset + span] != replacement:
            self._data[offset:offset + span] = replacement
            self._modified = True


# ---------------------------------------------------------------------------
# Dynamic table
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class DynamicEntry:
    """One decoded tag/value pair and its position in the segment."""

    index: int
    offset: int
    tag: int
    value: int


class DynamicTable:
    """The PT_DYNAMIC segment as a mutable buffer of tag/value pairs.

    Iteration covers every complete pair in the segment, including the
    padding entries after ``DT_NULL``.
    """

    def __init__(self, image: ElfImage, data: bytes) -> None:
        self._image = image
        self._data = bytearray(data)
        self._modified = False

    def __len__(self) -> int:
        return len(self._data) // self._image.dyn_entry_size

    def __iter__(self) -> Iterator[DynamicEntry]:
        step = self._image.dyn_entry_size
        for index in range(len(self)):
            offset = index * step
            tag, value = self._image.unpack_dyn(self._data, offset)
            yield DynamicEntry(index, offset, tag, value)

    def __getitem__(self, index: int) -> DynamicEntry:
        if not 0 <= index < len(self):
            raise IndexError(index)
        offset = index * self._image.dyn_entry_size
        tag, value = self._image.unpack_dyn(self._data, offset)
        return DynamicEntry(index, offset, tag, value)

    @property
    def raw(self) -> bytes:
        return bytes(self._data)

    @property
    def modified(self) -> bool:
        """``True`` once any tag has been rewritten."""
        return self._modified

    def set_tag(self, entry: DynamicEntry, tag: int) -> DynamicEntry:
        """Rewrite the tag of *entry*, leaving its value untouched."""
        if entry.tag != tag:
            self._image.pack_dyn_tag(self._data, entry.offset, tag)
            self._modified = True
        return DynamicEntry(entry.index, entry.offset, tag, entry.value)
