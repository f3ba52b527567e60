"""
Shared fixtures: synthetic ELF images and ld.so.cache files.

The ELF builder lays a file out as::

    Ehdr | Phdr[PT_LOAD, PT_DYNAMIC] | string table | dynamic | Shdr[NULL, STRTAB] | trailer

(string table and dynamic segment swap places with ``dyn_first=True``).
"""

from __future__ import annotations

import struct
from dataclasses import astuple
from pathlib import Path
from typing import Callable, Iterable, Sequence

import pytest

from shared.logger import ToolLogger

from dynpatch.core.engine import DynamicEditor
from dynpatch.parsers.elf_image import (
    ELF_MAGIC,
    ELFCLASS32,
    ELFCLASS64,
    ELFDATA2LSB,
    ELFDATA2MSB,
    EV_CURRENT,
    PT_DYNAMIC,
    PT_LOAD,
    SHT_NULL,
    SHT_PROGBITS,
    SHT_STRTAB,
    Header32,
    Header64,
    ProgramHeader32,
    ProgramHeader64,
    SectionHeader32,
    SectionHeader64,
)
from dynpatch.parsers.ldcache import (
    CACHE_ENTRY,
    CACHE_HEADER,
    CACHE_MAGIC,
    FLAG_ELF,
    CacheIndex,
)

PT_NOTE = 4
TRAILER = b"--trailing bytes copied verbatim--"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_strtab(strings: Sequence[str], pad: int = 4) -> tuple[bytes, dict[str, int]]:
    """Build a string table with *pad* spare NULs after every string.

    A trailing ``"zz"`` string bounds the last entry, so every string in
    *strings* has an available span of ``len(text) + pad``.
    """
    data = bytearray(b"\x00")
    offsets: dict[str, int] = {}
    for text in strings:
        offsets[text] = len(data)
        data += text.encode() + b"\x00" * (1 + pad)
    data += b"zz\x00"
    return bytes(data), offsets


def build_elf(
    dynamic: Iterable[tuple[int, int]],
    strtab: bytes,
    *,
    is64: bool = True,
    little: bool = True,
    dyn_first: bool = False,
    with_dynamic: bool = True,
    with_strtab: bool = True,
    phentsize: int | None = None,
) -> bytes:
    bo = "<" if little else ">"
    if is64:
        ehdr_cls, phdr_cls, shdr_cls, dyn_fmt = Header64, ProgramHeader64, SectionHeader64, "qQ"
    else:
        ehdr_cls, phdr_cls, shdr_cls, dyn_fmt = Header32, ProgramHeader32, SectionHeader32, "iI"

    dyn_bytes = b"".join(struct.pack(bo + dyn_fmt, tag, value) for tag, value in dynamic)

    ehsize = 16 + ehdr_cls.size()
    phoff = ehsize
    body = phoff + 2 * phdr_cls.size()
    if dyn_first:
        dyn_off = body
        str_off = dyn_off + len(dyn_bytes)
        shoff = str_off + len(strtab)
    else:
        str_off = body
        dyn_off = str_off + len(strtab)
        shoff = dyn_off + len(dyn_bytes)
    total = shoff + 2 * shdr_cls.size() + len(TRAILER)

    ident = (
        ELF_MAGIC
        + bytes([ELFCLASS64 if is64 else ELFCLASS32,
                 ELFDATA2LSB if little else ELFDATA2MSB,
                 EV_CURRENT])
        + b"\x00" * 9
    )
    header = ehdr_cls(
        e_type=3,
        e_machine=62 if is64 else 3,
        e_version=EV_CURRENT,
        e_entry=0,
        e_phoff=phoff,
        e_shoff=shoff,
        e_flags=0,
        e_ehsize=ehsize,
        e_phentsize=phdr_cls.size() if phentsize is None else phentsize,
        e_phnum=2,
        e_shentsize=shdr_cls.size(),
        e_shnum=2,
        e_shstrndx=0,
    )
    load = phdr_cls(
        p_type=PT_LOAD, p_flags=5, p_offset=0, p_vaddr=0, p_paddr=0,
        p_filesz=total, p_memsz=total, p_align=0x1000,
    )
    dyn = phdr_cls(
        p_type=PT_DYNAMIC if with_dynamic else PT_NOTE, p_flags=6,
        p_offset=dyn_off, p_vaddr=dyn_off, p_paddr=dyn_off,
        p_filesz=len(dyn_bytes), p_memsz=len(dyn_bytes), p_align=8,
    )
    null_section = shdr_cls(*([0] * 10))
    str_section = shdr_cls(
        sh_name=0, sh_type=SHT_STRTAB if with_strtab else SHT_PROGBITS,
        sh_flags=2, sh_addr=str_off, sh_offset=str_off, sh_size=len(strtab),
        sh_link=0, sh_info=0, sh_addralign=1, sh_entsize=0,
    )
    assert null_section.sh_type == SHT_NULL

    def pack(record) -> bytes:
        return struct.pack(bo + record.FORMAT, *astuple(record))

    regions = [(str_off, strtab), (dyn_off, dyn_bytes)]
    regions.sort(key=lambda region: region[0])
    out = ident + pack(header) + pack(load) + pack(dyn)
    for _, data in regions:
        out += data
    out += pack(null_section) + pack(str_section) + TRAILER
    assert len(out) == total
    return out


def build_cache(
    entries: Sequence[tuple[str, str] | tuple[str, str, int]],
    *,
    nlibs: int | None = None,
) -> bytes:
    """Build an ``ld.so.cache`` holding *entries* (flags default to ELF)."""
    base = CACHE_HEADER.size + CACHE_ENTRY.size * len(entries)
    pool = bytearray()
    records = bytearray()
    for item in entries:
        name, path = item[0], item[1]
        flags = item[2] if len(item) == 3 else FLAG_ELF
        key = base + len(pool)
        pool += name.encode() + b"\x00"
        value = base + len(pool)
        pool += path.encode() + b"\x00"
        records += CACHE_ENTRY.pack(flags, key, value, 0, 0)
    count = len(entries) if nlibs is None else nlibs
    return CACHE_HEADER.pack(CACHE_MAGIC, count, 0, 0, 0, 0, 0, 0) + bytes(records) + bytes(pool)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_elf(tmp_path: Path) -> Callable[..., Path]:
    """Write a synthetic ELF file and return its path."""

    def _make(
        dynamic: Iterable[tuple[int, int]],
        strtab: bytes,
        *,
        name: str = "libtest.so",
        mode: int = 0o755,
        **kwargs,
    ) -> Path:
        path = tmp_path / name
        path.write_bytes(build_elf(dynamic, strtab, **kwargs))
        path.chmod(mode)
        return path

    return _make


@pytest.fixture
def make_cache(tmp_path: Path) -> Callable[..., Path]:
    def _make(entries, *, name: str = "ld.so.cache", **kwargs) -> Path:
        path = tmp_path / name
        path.write_bytes(build_cache(entries, **kwargs))
        return path

    return _make


@pytest.fixture
def quiet_logger() -> ToolLogger:
    return ToolLogger("test", log_level="CRITICAL", console_output=False)


@pytest.fixture
def empty_cache() -> CacheIndex:
    return CacheIndex(system_dirs=())


@pytest.fixture
def editor(quiet_logger: ToolLogger, empty_cache: CacheIndex) -> DynamicEditor:
    """Editor with an injected empty cache, so /etc/ld.so.cache is never read."""
    return DynamicEditor(logger=quiet_logger, cache=empty_cache)
