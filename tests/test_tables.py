"""Tests for the in-memory string and dynamic tables."""

from __future__ import annotations

import pytest

from dynpatch.core.errors import StringTooLarge
from dynpatch.core.tables import DynamicTable, StringTable
from dynpatch.parsers.elf_image import (
    DT_DEBUG,
    DT_NEEDED,
    DT_NULL,
    DT_SONAME,
    PT_DYNAMIC,
    ElfImage,
)

from conftest import make_strtab


class TestStringTable:

    def test_span_stops_before_next_string(self):
        table = StringTable(b"foo\x00\x00\x00bar\x00")
        assert table.available_span(0) == 5

    def test_span_is_zero_without_following_string(self):
        table = StringTable(b"\x00foo\x00bar\x00\x00\x00")
        assert table.available_span(5) == 0

    def test_span_out_of_range(self):
        table = StringTable(b"foo\x00bar\x00")
        assert table.available_span(64) == 0
        assert 64 not in table

    def test_read(self):
        table = StringTable(b"\x00libc.so.6\x00libm.so.6\x00")
        assert table.read(1) == "libc.so.6"
        assert table.read(11) == "libm.so.6"
        assert table.read(0) == ""
        assert table.read(500) == ""

    def test_write_pads_with_nul(self):
        table = StringTable(b"libold.so.1\x00\x00\x00\x00\x00\x00next\x00")
        table.write(0, "libnew")

        assert table.modified
        assert table.raw == b"libnew" + b"\x00" * 11 + b"next\x00"
        assert table.read(0) == "libnew"
        assert table.read(17) == "next"

    def test_write_exact_fit_keeps_separator(self):
        table = StringTable(b"ab\x00\x00cd\x00")
        table.write(0, "wxy")
        assert table.raw == b"wxy\x00cd\x00"

    def test_write_too_large(self):
        table = StringTable(b"ab\x00cd\x00")

        with pytest.raises(StringTooLarge) as excinfo:
            table.write(0, "abcd")

        assert excinfo.value.required == 4
        assert excinfo.value.available == 2
        assert not table.modified
        assert table.raw == b"ab\x00cd\x00"

    def test_identical_write_is_not_a_change(self):
        table = StringTable(b"ab\x00\x00cd\x00")
        table.write(0, "ab")
        assert not table.modified

    def test_explicit_span_overrides_scan(self):
        table = StringTable(b"\x00old\x00\x00\x00\x00x\x00")
        with pytest.raises(StringTooLarge):
            table.write(1, "long", span=3)


class TestDynamicTable:

    @pytest.fixture
    def image(self, make_elf):
        strtab, offsets = make_strtab(["libc.so.6", "libfoo.so.1"])
        dynamic = [
            (DT_NEEDED, offsets["libc.so.6"]),
            (DT_SONAME, offsets["libfoo.so.1"]),
            (DT_NULL, 0),
            (DT_NULL, 0),
        ]
        with ElfImage.open(make_elf(dynamic, strtab, little=False)) as image:
            yield image

    def _table(self, image):
        segment = image.find_program_segment(PT_DYNAMIC)
        return DynamicTable(image, image.read_region(segment.p_offset, segment.p_filesz))

    def test_iterates_whole_segment(self, image):
        table = self._table(image)
        tags = [entry.tag for entry in table]

        assert len(table) == 4
        assert tags == [DT_NEEDED, DT_SONAME, DT_NULL, DT_NULL]
        assert [entry.index for entry in table] == [0, 1, 2, 3]
        assert table[1].offset == image.dyn_entry_size

    def test_set_tag_keeps_value_and_length(self, image):
        table = self._table(image)
        before = table.raw
        soname = table[1]

        retagged = table.set_tag(soname, DT_DEBUG)

        assert table.modified
        assert retagged.tag == DT_DEBUG
        assert table[1].tag == DT_DEBUG
        assert table[1].value == soname.value
        assert len(table.raw) == len(before)

    def test_set_same_tag_is_not_a_change(self, image):
        table = self._table(image)
        table.set_tag(table[0], DT_NEEDED)
        assert not table.modified

    def test_index_out_of_range(self, image):
        with pytest.raises(IndexError):
            self._table(image)[4]
