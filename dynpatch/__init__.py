"""
dynpatch -- ELF Dynamic Section Editor
=======================================

Edits the dynamic-linking metadata of ELF executables and shared
objects without relinking them: the NEEDED dependency list, the SONAME
and the RPATH/RUNPATH search path.  The file size never changes; new
strings are written over the space of the strings they replace.

Modules:
    - dynpatch.core.engine: Edit pipeline and read-only queries
    - dynpatch.core.tables: In-memory string and dynamic tables
    - dynpatch.core.models: Pydantic requests, reports and query results
    - dynpatch.parsers.elf_image: ELF header and region access
    - dynpatch.parsers.ldcache: ld.so.cache reader
    - dynpatch.output: Console output
    - dynpatch.cli: Click-based command-line interface

References:
    - TIS Committee. (1995). ELF Specification.
    - Linux man pages: ld.so(8), ldconfig(8).
"""

__version__ = "1.0.0"
__tool_name__ = "dynpatch"
