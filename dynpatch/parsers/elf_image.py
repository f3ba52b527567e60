"""
ELF Image Accessor
===================

Width- and byte-order-agnostic access to the parts of an Executable and
Linkable Format (ELF) file the dynamic-section editor needs: the file
header, the program-header table, the section-header table and the raw
tag/value pairs of the dynamic segment.

An :class:`ElfImage` decides once, when the file is opened, whether the
file is 32- or 64-bit and whether its byte order differs from the host.
Both flags are frozen for the lifetime of the image and every field read
or write goes through them; no other module reasons about width or
endianness.

Header, program-header and section-header records are tagged variants
(``Header32 | Header64`` and so on) sharing the same field names, so
callers read ``hdr.p_offset`` without caring which variant they hold.

References:
    - TIS Committee. (1995). Tool Interface Standard (TIS) Executable and
      Linkable Format (ELF) Specification, Version 1.2.
    - System V Application Binary Interface, Edition 4.1.
    - Linux man page: elf(5).
"""

from __future__ import annotations

import os
import struct
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, ClassVar, Union

from dynpatch.core.errors import (
    MalformedHeader,
    NotAnElfFile,
    SectionNotFound,
    SegmentNotFound,
    TruncatedRegion,
    ZeroLengthRegion,
)


# ---------------------------------------------------------------------------
# ELF Constants
# ---------------------------------------------------------------------------

ELF_MAGIC: bytes = b"\x7fELF"
EI_NIDENT: int = 16
EI_CLASS: int = 4
EI_DATA: int = 5
EI_VERSION: int = 6

# ELF Class (32-bit vs 64-bit)
ELFCLASS32: int = 1
ELFCLASS64: int = 2

# Data encoding (endianness)
ELFDATA2LSB: int = 1  # Little-endian
ELFDATA2MSB: int = 2  # Big-endian

EV_CURRENT: int = 1

# Program header types
PT_LOAD: int = 1
PT_DYNAMIC: int = 2

# Section header types
SHT_NULL: int = 0
SHT_PROGBITS: int = 1
SHT_STRTAB: int = 3

# Dynamic tags
DT_NULL: int = 0
DT_NEEDED: int = 1
DT_SONAME: int = 14
DT_RPATH: int = 15
DT_DEBUG: int = 21
DT_RUNPATH: int = 29


# ---------------------------------------------------------------------------
# Dual-width records
# ---------------------------------------------------------------------------

class _Record:
    """Mixin giving a dataclass a fixed ``struct`` layout.

    Subclasses declare ``FORMAT`` without a byte-order prefix; field
    declaration order must match the on-disk order.
    """

    __slots__ = ()
    FORMAT: ClassVar[str] = ""

    @classmethod
    def size(cls) -> int:
        return struct.calcsize("<" + cls.FORMAT)

    @classmethod
    def unpack(cls, raw: bytes, byte_order: str):
        return cls(*struct.unpack(byte_order + cls.FORMAT, raw))


@dataclass(frozen=True, slots=True)
class Header32(_Record):
    """Elf32_Ehdr fields following ``e_ident``."""

    FORMAT: ClassVar[str] = "HHIIIIIHHHHHH"

    e_type: int
    e_machine: int
    e_version: int
    e_entry: int
    e_phoff: int
    e_shoff: int
    e_flags: int
    e_ehsize: int
    e_phentsize: int
    e_phnum: int
    e_shentsize: int
    e_shnum: int
    e_shstrndx: int


@dataclass(frozen=True, slots=True)
class Header64(_Record):
    """Elf64_Ehdr fields following ``e_ident``."""

    FORMAT: ClassVar[str] = "HHIQQQIHHHHHH"

    e_type: int
    e_machine: int
    e_version: int
    e_entry: int
    e_phoff: int
    e_shoff: int
    e_flags: int
    e_ehsize: int
    e_phentsize: int
    e_phnum: int
    e_shentsize: int
    e_shnum: int
    e_shstrndx: int


@dataclass(frozen=True, slots=True)
class ProgramHeader32(_Record):
    """Elf32_Phdr (note ``p_flags`` sits after ``p_memsz``)."""

    FORMAT: ClassVar[str] = "IIIIIIII"

    p_type: int
    p_offset: int
    p_vaddr: int
    p_paddr: int
    p_filesz: int
    p_memsz: int
    p_flags: int
    p_align: int


@dataclass(frozen=True, slots=True)
class ProgramHeader64(_Record):
    """Elf64_Phdr (``p_flags`` follows ``p_type``)."""

    FORMAT: ClassVar[str] = "IIQQQQQQ"

    p_type: int
    p_flags: int
    p_offset: int
    p_vaddr: int
    p_paddr: int
    p_filesz: int
    p_memsz: int
    p_align: int


@dataclass(frozen=True, slots=True)
class SectionHeader32(_Record):
    FORMAT: ClassVar[str] = "IIIIIIIIII"

    sh_name: int
    sh_type: int
    sh_flags: int
    sh_addr: int
    sh_offset: int
    sh_size: int
    sh_link: int
    sh_info: int
    sh_addralign: int
    sh_entsize: int


@dataclass(frozen=True, slots=True)
class SectionHeader64(_Record):
    FORMAT: ClassVar[str] = "IIQQQQIIQQ"

    sh_name: int
    sh_type: int
    sh_flags: int
    sh_addr: int
    sh_offset: int
    sh_size: int
    sh_link: int
    sh_info: int
    sh_addralign: int
    sh_entsize: int


ElfHeader = Union[Header32, Header64]
ProgramHeader = Union[ProgramHeader32, ProgramHeader64]
SectionHeader = Union[SectionHeader32, SectionHeader64]

# Dynamic entries: signed tag, unsigned value
_DYN_FORMAT_32: str = "iI"
_DYN_FORMAT_64: str = "qQ"


# ---------------------------------------------------------------------------
# ElfImage
# ---------------------------------------------------------------------------

class ElfImage:
    """An open ELF file plus the width/byte-order flags fixed at open time.

    Usage::

        with ElfImage.open("/usr/lib/libfoo.so.1") as image:
            dynamic = image.find_program_segment(PT_DYNAMIC)
            raw = image.read_region(dynamic.p_offset, dynamic.p_filesz)
            for offset in range(0, len(raw), image.dyn_entry_size):
                tag, value = image.unpack_dyn(raw, offset)
    """

    def __init__(
        self,
        path: str | Path,
        stream: BinaryIO,
        ident: bytes,
        header: ElfHeader,
    ) -> None:
        self._path = str(path)
        self._stream = stream
        self._ident = ident
        self._header = header
        self._is64: bool = ident[EI_CLASS] == ELFCLASS64
        file_little = ident[EI_DATA] == ELFDATA2LSB
        self._swap_endian: bool = file_little != (sys.byteorder == "little")
        self._byte_order: str = "<" if file_little else ">"

        if self._is64:
            self._phdr_cls: type = ProgramHeader64
            self._shdr_cls: type = SectionHeader64
            self._dyn_format = self._byte_order + _DYN_FORMAT_64
        else:
            self._phdr_cls = ProgramHeader32
            self._shdr_cls = SectionHeader32
            self._dyn_format = self._byte_order + _DYN_FORMAT_32
        self._dyn_struct = struct.Struct(self._dyn_format)
        self._tag_struct = struct.Struct(self._dyn_format[:2])

    # ------------------------------------------------------------------ #
    #  Opening
    # ------------------------------------------------------------------ #

    @classmethod
    def open(cls, path: str | Path, mode: str = "rb") -> ElfImage:
        """Open *path* and validate its identification and header.

        Args:
            path: ELF file to open.
            mode: ``"rb"`` for read-only access or ``"r+b"`` to allow
                  in-place writes.

        Raises:
            NotAnElfFile: Bad magic, class, encoding or version, or the
                file is shorter than its header.
            MalformedHeader: ``e_phentsize`` does not match the class.
            OSError: The file cannot be opened.
        """
        stream = open(path, mode)
        try:
            ident = stream.read(EI_NIDENT)
            if (
                len(ident) != EI_NIDENT
                or ident[:4] != ELF_MAGIC
                or ident[EI_CLASS] not in (ELFCLASS32, ELFCLASS64)
                or ident[EI_DATA] not in (ELFDATA2LSB, ELFDATA2MSB)
                or ident[EI_VERSION] != EV_CURRENT
            ):
                raise NotAnElfFile(f"{path} probably isn't an ELF file")

            is64 = ident[EI_CLASS] == ELFCLASS64
            byte_order = "<" if ident[EI_DATA] == ELFDATA2LSB else ">"
            header_cls: type = Header64 if is64 else Header32
            raw = stream.read(header_cls.size())
            if len(raw) != header_cls.size():
                raise NotAnElfFile(f"{path}: truncated ELF header")
            header = header_cls.unpack(raw, byte_order)

            expected = (ProgramHeader64 if is64 else ProgramHeader32).size()
            if header.e_phentsize != expected:
                raise MalformedHeader(
                    f"{path}: program header size was read as "
                    f"{header.e_phentsize}, not {expected}"
                )
        except BaseException:
            stream.close()
            raise

        return cls(path, stream, ident, header)

    def close(self) -> None:
        """Close the underlying file."""
        self._stream.close()

    def __enter__(self) -> ElfImage:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    #  Properties
    # ------------------------------------------------------------------ #

    @property
    def path(self) -> str:
        return self._path

    @property
    def is64(self) -> bool:
        """``True`` for ELFCLASS64 files."""
        return self._is64

    @property
    def swap_endian(self) -> bool:
        """``True`` when the file byte order differs from the host's."""
        return self._swap_endian

    @property
    def byte_order(self) -> str:
        """``struct`` byte-order prefix of the file (``"<"`` or ``">"``)."""
        return self._byte_order

    @property
    def header(self) -> ElfHeader:
        return self._header

    @property
    def stream(self) -> BinaryIO:
        """The open file object (positioned arbitrarily)."""
        return self._stream

    @property
    def dyn_entry_size(self) -> int:
        """Size of one dynamic tag/value pair: 8 (ELF32) or 16 (ELF64)."""
        return self._dyn_struct.size

    def stat(self) -> os.stat_result:
        return os.fstat(self._stream.fileno())

    # ------------------------------------------------------------------ #
    #  Header table scans
    # ------------------------------------------------------------------ #

    def find_program_segment(self, p_type: int) -> ProgramHeader:
        """Return the first program header whose ``p_type`` matches.

        Raises:
            SegmentNotFound: No program header has this type.
            ZeroLengthRegion: The first match has ``p_filesz == 0``.
        """
        entry_size = self._phdr_cls.size()
        for index in range(self._header.e_phnum):
            raw = self.read_region(
                self._header.e_phoff + index * entry_size, entry_size
            )
            phdr = self._phdr_cls.unpack(raw, self._byte_order)
            if phdr.p_type == p_type:
                break
        else:
            raise SegmentNotFound(
                f"{self._path}: no program header of type {p_type}"
            )

        if phdr.p_filesz == 0:
            raise ZeroLengthRegion(
                f"{self._path}: program header of type {p_type} is empty"
            )
        return phdr

    def find_section(self, sh_type: int) -> SectionHeader:
        """Return the first section header whose ``sh_type`` matches.

        Raises:
            SectionNotFound: No section header has this type.
            ZeroLengthRegion: The first match has ``sh_size == 0``.
        """
        entry_size = self._shdr_cls.size()
        for index in range(self._header.e_shnum):
            raw = self.read_region(
                self._header.e_shoff + index * entry_size, entry_size
            )
            shdr = self._shdr_cls.unpack(raw, self._byte_order)
            if shdr.sh_type == sh_type:
                break
        else:
            raise SectionNotFound(
                f"{self._path}: no section header of type {sh_type}"
            )

        if shdr.sh_size == 0:
            raise ZeroLengthRegion(
                f"{self._path}: section of type {sh_type} is empty"
            )
        return shdr

    # ------------------------------------------------------------------ #
    #  Raw region I/O
    # ------------------------------------------------------------------ #

    def read_region(self, offset: int, size: int) -> bytes:
        """Read exactly *size* bytes at *offset*.

        Raises:
            TruncatedRegion: The file ends before ``offset + size``.
        """
        self._stream.seek(offset)
        data = self._stream.read(size)
        if len(data) != size:
            raise TruncatedRegion(
                f"{self._path}: expected {size} bytes at 0x{offset:x}, "
                f"got {len(data)}"
            )
        return data

    def write_region(self, offset: int, data: bytes) -> None:
        """Overwrite the file at *offset* with *data* (``r+b`` images only)."""
        self._stream.seek(offset)
        self._stream.write(data)

    # ------------------------------------------------------------------ #
    #  Dynamic entry encoding
    # ------------------------------------------------------------------ #

    def unpack_dyn(self, buffer: bytes | bytearray, offset: int) -> tuple[int, int]:
        """Decode the ``(d_tag, d_val)`` pair stored at *offset* in *buffer*."""
        return self._dyn_struct.unpack_from(buffer, offset)

    def pack_dyn_tag(self, buffer: bytearray, offset: int, tag: int) -> None:
        """Overwrite only the ``d_tag`` word of the pair at *offset*."""
        self._tag_struct.pack_into(buffer, offset, tag)
