"""
Shared-Library Cache Reader
============================

Parses the binary ``ld.so.cache`` maintained by ``ldconfig(8)`` into an
in-memory :class:`CacheIndex` and answers advisory questions about
library names: does a library exist, where does the cache say it lives,
and which cached library looks like another version of a given one.

Cache layout (host byte order)::

    +---------------------------+  0
    | "glibc-ld.so.cache1.1"    |  20 bytes magic
    | nlibs : u32               |
    | reserved : u32[6]         |  header is 48 bytes in total
    +---------------------------+
    | entry[nlibs]              |  24 bytes each:
    |   flags   : i32           |    flags & FLAG_ELF marks ELF entries
    |   key     : u32           |    offset of the library name
    |   value   : u32           |    offset of the resolved path
    |   osver   : u32           |
    |   hwcap   : u64           |
    +---------------------------+
    | string pool               |  NUL-terminated strings
    +---------------------------+

String offsets are relative to the start of the file.

References:
    - glibc ``elf/cache.c`` and ``sysdeps/generic/dl-cache.h``.
    - Linux man page: ldconfig(8), ld.so(8).
"""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Optional, Sequence

from dynpatch.core.errors import InvalidCacheFormat
from shared.logger import ToolLogger


# ---------------------------------------------------------------------------
# Cache format constants
# ---------------------------------------------------------------------------

CACHE_MAGIC: bytes = b"glibc-ld.so.cache1.1"
FLAG_ELF: int = 0x01
PATH_MAX: int = 4096

CACHE_HEADER = struct.Struct(f"={len(CACHE_MAGIC)}sI6I")
CACHE_ENTRY = struct.Struct("=iIIIQ")

DEFAULT_SYSTEM_DIRS: tuple[str, ...] = (
    "/lib",
    "/lib64",
    "/usr/lib",
    "/usr/lib64",
    "/usr/local/lib",
)
ORIGIN_TOKEN: str = "$ORIGIN"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A library name and the path the cache resolves it to."""

    name: str
    path: str


# ---------------------------------------------------------------------------
# CacheIndex
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class CacheIndex:
    """Read-only index of ELF libraries known to the dynamic linker.

    Besides the cache entries the index carries a list of extra search
    directories, typically expanded from a file's RPATH/RUNPATH with
    :meth:`register_search_path`.

    Attributes:
        entries:     ELF entries in cache order.
        search_dirs: Extra directories searched by :meth:`exists`.
        system_dirs: Trusted library directories searched first.
    """

    entries: list[CacheEntry] = field(default_factory=list)
    search_dirs: list[str] = field(default_factory=list)
    system_dirs: Sequence[str] = DEFAULT_SYSTEM_DIRS
    origin_token: str = ORIGIN_TOKEN

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def names(self) -> list[str]:
        return [entry.name for entry in self.entries]

    # ------------------------------------------------------------------ #
    #  Lookups
    # ------------------------------------------------------------------ #

    def lookup(self, name: str) -> Optional[str]:
        """Return the cached path of *name*, or ``None``."""
        for entry in self.entries:
            if entry.name == name:
                return entry.path
        return None

    def exists(self, name: str) -> bool:
        """Whether a library called *name* can be found.

        The filesystem is checked before the cache, which may be stale:
        first the system directories, then the registered search
        directories, then the cache entries.
        """
        for directory in self.system_dirs:
            if os.path.exists(os.path.join(directory, name)):
                return True
        for directory in self.search_dirs:
            if os.path.exists(os.path.join(directory, name)):
                return True
        return self.lookup(name) is not None

    def suggest_replacement(self, name: str) -> Optional[str]:
        """Return another cached version of the library *name*, if any.

        ``libfoo.so.1`` matches the first cached entry other than itself
        whose text before the first ``.`` is ``libfoo``.  No attempt is
        made to rank candidates by version.
        """
        base = name.split(".", 1)[0]
        for entry in self.entries:
            if entry.name == name:
                continue
            if entry.name.split(".", 1)[0] == base:
                return entry.name
        return None

    # ------------------------------------------------------------------ #
    #  Search paths
    # ------------------------------------------------------------------ #

    def expand_search_path(self, raw_path: str, elf_path: str) -> list[str]:
        """Split a colon-separated search path into concrete directories.

        The placeholder token is replaced with the directory part of
        *elf_path* (everything before its last ``/``).  Empty segments
        are dropped.
        """
        origin = elf_path[:elf_path.rfind("/")] if "/" in elf_path else "."
        return [
            segment.replace(self.origin_token, origin)
            for segment in raw_path.split(":")
            if segment
        ]

    def with_search_paths(self, search_dirs: Iterable[str] = ()) -> CacheIndex:
        """A copy sharing the cache entries but with its own *search_dirs*.

        Each file gets its own copy, so one file's RPATH/RUNPATH never
        answers lookups made for another.
        """
        return replace(self, search_dirs=list(search_dirs))

    def register_search_path(self, raw_path: str, elf_path: str) -> list[str]:
        """Expand *raw_path* and append new directories to :attr:`search_dirs`."""
        added: list[str] = []
        for directory in self.expand_search_path(raw_path, elf_path):
            if directory not in self.search_dirs:
                self.search_dirs.append(directory)
                added.append(directory)
        return added


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _read_cstring(data: bytes, offset: int) -> str:
    """Read a NUL-terminated string, cut at :data:`PATH_MAX` bytes."""
    if offset >= len(data):
        return ""
    limit = min(len(data), offset + PATH_MAX)
    end = data.find(b"\x00", offset, limit)
    if end == -1:
        end = limit
    return os.fsdecode(data[offset:end])


def parse_cache(
    path: str | Path,
    *,
    system_dirs: Iterable[str] = DEFAULT_SYSTEM_DIRS,
    origin_token: str = ORIGIN_TOKEN,
    logger: ToolLogger | None = None,
) -> CacheIndex:
    """Parse the shared-library cache at *path*.

    Args:
        path:         Cache file, usually ``/etc/ld.so.cache``.
        system_dirs:  Trusted directories for :meth:`CacheIndex.exists`.
        origin_token: Placeholder replaced during search-path expansion.
        logger:       Optional logger for truncated-entry diagnostics.

    Returns:
        A :class:`CacheIndex` holding every entry flagged as ELF.

    Raises:
        InvalidCacheFormat: The file cannot be read, has the wrong magic
            or is shorter than its header.
    """
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise InvalidCacheFormat(f"Failed to open cache file {path}: {exc}") from exc

    if not data.startswith(CACHE_MAGIC):
        raise InvalidCacheFormat(f"{path}: the cache's magic number doesn't match")
    if len(data) < CACHE_HEADER.size:
        raise InvalidCacheFormat(f"{path}: truncated cache header")

    _, lib_count, *_reserved = CACHE_HEADER.unpack_from(data, 0)

    index = CacheIndex(system_dirs=tuple(system_dirs), origin_token=origin_token)
    offset = CACHE_HEADER.size
    for number in range(lib_count):
        if offset + CACHE_ENTRY.size > len(data):
            if logger is not None:
                logger.warning(
                    "Cache %s is truncated after %d of %d entries",
                    path, number, lib_count,
                )
            break
        flags, key, value, _osver, _hwcap = CACHE_ENTRY.unpack_from(data, offset)
        offset += CACHE_ENTRY.size

        if not flags & FLAG_ELF:
            continue
        index.entries.append(
            CacheEntry(_read_cstring(data, key), _read_cstring(data, value))
        )

    if logger is not None:
        logger.debug("Indexed %d ELF entries from %s", len(index), path)
    return index
