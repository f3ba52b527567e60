"""
dynpatch Parsers
=================

Binary readers: ELF headers and regions, and the dynamic linker's
shared-library cache.
"""

from dynpatch.parsers.elf_image import ElfImage
from dynpatch.parsers.ldcache import CacheIndex, parse_cache

__all__ = [
    "CacheIndex",
    "ElfImage",
    "parse_cache",
]
