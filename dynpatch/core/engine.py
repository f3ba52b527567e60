"""
dynpatch Dynamic Section Editor
================================

Orchestrates one edit of an ELF file's dynamic-linking metadata: the
NEEDED list, the SONAME and the RPATH/RUNPATH search path.

The file never grows.  Every string change must fit in the slack the
string table already has at that offset, and "removed" entries are not
deleted but retagged as ``DT_DEBUG``, which the dynamic linker ignores
for lookups.  Such retagged entries keep pointing at their old string
and are reused later when a SONAME or search path has to be added to a
file that has none.

Edit Pipeline:
    1. Locate PT_DYNAMIC and the first SHT_STRTAB, load both into memory
    2. Survey DT_DEBUG entries usable as spare slots (first two found)
    3. Walk every entry: replace NEEDED, set/remove SONAME, retag or
       rewrite RPATH/RUNPATH
    4. Promote the largest spare slot for a SONAME or search path that
       found no entry in step 3
    5. Commit: overwrite the two regions in place, or stream a copy of
       the file with the regions substituted
    6. Report every request that found no target

Structural problems stop the run immediately.  A string that does not
fit, or a request with nothing to attach to, only produces a warning.

References:
    - TIS Committee. (1995). ELF Specification, Book III: Dynamic Linking.
    - Linux man page: ld.so(8).
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional

from shared.config import DynpatchConfig
from shared.logger import ToolLogger

from dynpatch.core.errors import (
    CommitError,
    InvalidCacheFormat,
    StringTooLarge,
    StructureError,
    TargetNotFound,
)
from dynpatch.core.models import (
    DynamicInfo,
    PatchReport,
    PatchRequest,
    Priority,
    QueryResult,
    QuerySelector,
    ResultCode,
)
from dynpatch.core.tables import DynamicEntry, DynamicTable, StringTable
from dynpatch.parsers.elf_image import (
    DT_DEBUG,
    DT_NEEDED,
    DT_RPATH,
    DT_RUNPATH,
    DT_SONAME,
    PT_DYNAMIC,
    SHT_STRTAB,
    ElfImage,
    ProgramHeader,
    SectionHeader,
)
from dynpatch.parsers.ldcache import CacheIndex, parse_cache


# At most this many DT_DEBUG entries are kept as spare slots
_MAX_SLOTS: int = 2


# ---------------------------------------------------------------------------
# Per-invocation state
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class _Slot:
    """A DT_DEBUG entry whose string can carry a promoted property."""

    entry: DynamicEntry
    span: int


@dataclass(slots=True)
class _Loaded:
    """The two regions of interest, read into memory."""

    segment: ProgramHeader
    section: SectionHeader
    dynamic: DynamicTable
    strings: StringTable


@dataclass(slots=True)
class _Session:
    image: ElfImage
    loaded: _Loaded
    request: PatchRequest
    report: PatchReport
    cache: Optional[CacheIndex] = None
    slots: list[_Slot] = field(default_factory=list)
    needed_hit: bool = False
    soname_hit: bool = False
    rpath_hit: bool = False
    priority_hit: bool = False


# ---------------------------------------------------------------------------
# DynamicEditor
# ---------------------------------------------------------------------------

class DynamicEditor:
    """Edits and queries the dynamic section of ELF files.

    Usage::

        editor = DynamicEditor()
        report = editor.process(
            "./libfoo.so.1",
            PatchRequest(needed_old="libbar.so.2", needed_new="libbar.so"),
        )
        if report.status is ResultCode.SUCCESS:
            ...

        info = editor.inspect("./libfoo.so.1")
        print(info.needed, info.soname)

    One editor may process several files; the library cache is parsed
    lazily on first use and shared between them.  Directories taken from a
    file's RPATH/RUNPATH only apply to lookups made for that file.
    """

    def __init__(
        self,
        config: DynpatchConfig | None = None,
        logger: ToolLogger | None = None,
        cache: CacheIndex | None = None,
    ) -> None:
        """Initialise the editor.

        Args:
            config: dynpatch configuration.  Defaults are used if not provided.
            logger: Logger instance.  A new one is created if not provided.
            cache:  Pre-parsed library cache.  Parsed from
                    ``config.dynpatch.cache_path`` when first needed otherwise.
        """
        self._config: DynpatchConfig = config or DynpatchConfig()
        self._logger: ToolLogger = logger or ToolLogger("engine")
        self._cache: CacheIndex | None = cache

    # ------------------------------------------------------------------ #
    #  Mutation entry point
    # ------------------------------------------------------------------ #

    def process(self, path: str | Path, request: PatchRequest) -> PatchReport:
        """Apply *request* to the ELF file at *path*.

        Args:
            path: ELF executable or shared object.
            request: Validated mutations; ``request.output`` selects copy mode.

        Returns:
            A :class:`PatchReport`.  Structural and write failures are
            reported through ``status`` rather than raised.

        Raises:
            ValueError: ``request.output`` is the input file itself.
        """
        path = str(path)
        request.check_output(path)
        report = PatchReport(path=path)

        if not request.has_mutation:
            report.status = ResultCode.WARNING
            report.warn("No modification was requested.", kind="no_request")
            return report

        mode = "r+b" if request.output is None else "rb"
        self._logger.info(f"Processing file: {path}")

        try:
            with self._logger.operation("process"), ElfImage.open(path, mode) as image:
                session = _Session(
                    image=image,
                    loaded=self._load(image),
                    request=request,
                    report=report,
                )
                self._survey_slots(session)
                if request.needed_new is not None:
                    shared_cache = self._advisory_cache()
                    if shared_cache is not None:
                        session.cache = shared_cache.with_search_paths()
                        self._register_run_paths(session, session.cache)
                self._apply(session)
                self._promote_slots(session)

                loaded = session.loaded
                report.strtab_modified = loaded.strings.modified
                report.dynamic_modified = loaded.dynamic.modified
                if loaded.strings.modified or loaded.dynamic.modified:
                    self._commit(session)
                self._report_unmet(session)
        except CommitError as exc:
            self._logger.exception(f"Commit failed: {exc}")
            report.fail(ResultCode.COMMIT_ERROR, str(exc))
            return report
        except (StructureError, OSError) as exc:
            self._logger.exception(f"Cannot process {path}: {exc}")
            report.fail(ResultCode.STRUCTURE_ERROR, str(exc))
            return report

        if not report.committed:
            report.status = ResultCode.WARNING
            if request.output is not None:
                report.warn(
                    f"Nothing changed; {request.output} was not written.",
                    kind="no_output",
                )
        return report

    # ------------------------------------------------------------------ #
    #  Read-only entry points
    # ------------------------------------------------------------------ #

    def inspect(self, path: str | Path) -> DynamicInfo:
        """Collect NEEDED, SONAME and RPATH/RUNPATH values of *path*.

        Raises:
            StructureError: The file is not an ELF image with a dynamic
                segment and a string table.
        """
        path = str(path)
        with ElfImage.open(path, "rb") as image:
            loaded = self._load(image)

        info = DynamicInfo(
            path=path,
            bits=64 if image.is64 else 32,
            endian="little" if image.byte_order == "<" else "big",
        )
        strings = loaded.strings
        for entry in loaded.dynamic:
            if entry.tag == DT_NEEDED:
                info.needed.append(strings.read(entry.value))
            elif entry.tag == DT_SONAME:
                info.soname = strings.read(entry.value)
            elif entry.tag == DT_RPATH:
                info.rpath.append(strings.read(entry.value))
            elif entry.tag == DT_RUNPATH:
                info.runpath.append(strings.read(entry.value))
            elif entry.tag == DT_DEBUG:
                info.unused_entries += 1
        return info

    def query(
        self,
        path: str | Path,
        selector: QuerySelector,
        library: str | None = None,
    ) -> QueryResult:
        """Report one property of *path* without modifying it.

        ``MISSING`` lists NEEDED libraries that cannot be found in the
        system directories, the file's own search path or the cache.
        ``SUGGEST`` proposes another cached version of *library*.

        Raises:
            StructureError: The file cannot be read.
            InvalidCacheFormat: ``MISSING``/``SUGGEST`` without a usable cache.
            ValueError: ``SUGGEST`` without *library*.
        """
        info = self.inspect(path)
        result = QueryResult(path=info.path, selector=selector, library=library)

        if selector is QuerySelector.NEEDED:
            result.values = list(info.needed)
        elif selector is QuerySelector.SONAME:
            result.values = [info.soname] if info.soname is not None else []
        elif selector is QuerySelector.RPATH:
            result.values = info.rpath + info.runpath
        elif selector is QuerySelector.MISSING:
            cache = self._load_cache().with_search_paths()
            for raw_path in info.rpath + info.runpath:
                cache.register_search_path(raw_path, info.path)
            result.values = [name for name in info.needed if not cache.exists(name)]
        elif selector is QuerySelector.SUGGEST:
            if library is None:
                raise ValueError("a library name is required for a suggestion")
            suggestion = self._load_cache().suggest_replacement(library)
            result.values = [suggestion] if suggestion is not None else []
        return result

    # ------------------------------------------------------------------ #
    #  Cache handling
    # ------------------------------------------------------------------ #

    def _load_cache(self) -> CacheIndex:
        if self._cache is None:
            cfg = self._config.dynpatch
            self._cache = parse_cache(
                cfg.cache_path,
                system_dirs=cfg.system_lib_dirs,
                origin_token=cfg.origin_token,
                logger=self._logger,
            )
        return self._cache

    def _advisory_cache(self) -> CacheIndex | None:
        """The cache, or ``None`` when it cannot be parsed."""
        try:
            return self._load_cache()
        except InvalidCacheFormat as exc:
            self._logger.warning(f"Library cache unavailable, skipping lookups: {exc}")
            return None

    def _register_run_paths(self, session: _Session, cache: CacheIndex) -> None:
        """Add the file's own RPATH/RUNPATH directories to *cache*."""
        strings = session.loaded.strings
        for entry in session.loaded.dynamic:
            if entry.tag in (DT_RPATH, DT_RUNPATH):
                cache.register_search_path(
                    strings.read(entry.value), session.image.path
                )

    # ------------------------------------------------------------------ #
    #  Step 1: locate and load
    # ------------------------------------------------------------------ #

    def _load(self, image: ElfImage) -> _Loaded:
        with self._logger.operation("locate"):
            segment = image.find_program_segment(PT_DYNAMIC)
            dynamic = DynamicTable(
                image, image.read_region(segment.p_offset, segment.p_filesz)
            )
            section = image.find_section(SHT_STRTAB)
            strings = StringTable(image.read_region(section.sh_offset, section.sh_size))
            self._logger.debug(
                f"Dynamic segment at 0x{segment.p_offset:x} ({len(dynamic)} entries), "
                f"string table at 0x{section.sh_offset:x} ({len(strings)} bytes)"
            )
        return _Loaded(segment, section, dynamic, strings)

    # ------------------------------------------------------------------ #
    #  Step 2: spare slots
    # ------------------------------------------------------------------ #

    def _survey_slots(self, session: _Session) -> None:
        """Keep the first two DT_DEBUG entries that point into the table."""
        strings = session.loaded.strings
        for entry in session.loaded.dynamic:
            if len(session.slots) == _MAX_SLOTS:
                break
            if entry.tag != DT_DEBUG or entry.value not in strings:
                continue
            session.slots.append(_Slot(entry, strings.available_span(entry.value)))
        self._logger.debug(
            "Spare slots: "
            + (", ".join(f"#{s.entry.index} ({s.span} bytes)" for s in session.slots) or "none")
        )

    # ------------------------------------------------------------------ #
    #  Step 3: classify and mutate
    # ------------------------------------------------------------------ #

    def _apply(self, session: _Session) -> None:
        for entry in session.loaded.dynamic:
            if entry.tag == DT_NEEDED:
                self._apply_needed(session, entry)
            elif entry.tag == DT_SONAME:
                self._apply_soname(session, entry)
            elif entry.tag in (DT_RPATH, DT_RUNPATH):
                self._apply_run_path(session, entry)

    def _apply_needed(self, session: _Session, entry: DynamicEntry) -> None:
        request, report = session.request, session.report
        if request.needed_old is None:
            return
        strings = session.loaded.strings
        if strings.read(entry.value) != request.needed_old:
            return

        session.needed_hit = True
        new = request.needed_new
        if not self._fits(session, entry.value, new, "new name"):
            return

        report.info(f"Replacing needed: {request.needed_old} => {new}")
        self._logger.info(f"Replacing needed: {request.needed_old} => {new}")
        if session.cache is not None and not session.cache.exists(new):
            message = (
                f"The library name {new} is not found in the cache! "
                "You may want to run `ldconfig`."
            )
            report.warn(message, kind="cache_miss")
            self._logger.warning(message)
        strings.write(entry.value, new)

    def _apply_soname(self, session: _Session, entry: DynamicEntry) -> None:
        request, report = session.request, session.report
        if not request.wants_soname:
            return
        session.soname_hit = True

        if request.remove_soname:
            report.info("Removing soname entry")
            self._logger.info("Removing soname entry")
            session.loaded.dynamic.set_tag(entry, DT_DEBUG)
            return

        if self._fits(session, entry.value, request.soname, "new soname"):
            report.info(f"Setting soname: {request.soname}")
            self._logger.info(f"Setting soname: {request.soname}")
            session.loaded.strings.write(entry.value, request.soname)

    def _apply_run_path(self, session: _Session, entry: DynamicEntry) -> None:
        """Shared handler for DT_RPATH and DT_RUNPATH entries."""
        request, report = session.request, session.report
        dynamic = session.loaded.dynamic
        session.priority_hit = True

        if request.priority is Priority.RUNPATH and entry.tag == DT_RPATH:
            report.info("Changing run-time priority to low (RUNPATH)")
            self._logger.info("Changing run-time priority to low (RUNPATH)")
            entry = dynamic.set_tag(entry, DT_RUNPATH)
        elif request.priority is Priority.RPATH and entry.tag == DT_RUNPATH:
            report.info("Changing run-time priority to high (RPATH)")
            self._logger.info("Changing run-time priority to high (RPATH)")
            entry = dynamic.set_tag(entry, DT_RPATH)

        if not request.wants_rpath:
            return
        session.rpath_hit = True

        if request.remove_rpath:
            report.info("Removing run-time path entry")
            self._logger.info("Removing run-time path entry")
            dynamic.set_tag(entry, DT_DEBUG)
            return

        if self._fits(session, entry.value, request.rpath, "new run-time path"):
            report.info(f"Setting run-time path: {request.rpath}")
            self._logger.info(f"Setting run-time path: {request.rpath}")
            session.loaded.strings.write(entry.value, request.rpath)

    def _fits(self, session: _Session, offset: int, text: str, label: str) -> bool:
        """Check *text* against the span at *offset*, warning when it does not fit."""
        span = session.loaded.strings.available_span(offset)
        needed = len(os.fsencode(text))
        if needed <= span:
            return True
        message = (
            f"The {label} '{text}' is too big to fit "
            f"({needed} bytes, {span} available)!"
        )
        session.report.warn(message, kind="string_too_large")
        self._logger.warning(message)
        return False

    # ------------------------------------------------------------------ #
    #  Step 4: slot promotion
    # ------------------------------------------------------------------ #

    def _promote_slots(self, session: _Session) -> None:
        """Turn spare DT_DEBUG slots into entries for unmet additions."""
        request = session.request
        pending: list[tuple[int, str, str]] = []
        if request.soname is not None and not session.soname_hit:
            pending.append((DT_SONAME, request.soname, "soname"))
        if request.rpath is not None and not session.rpath_hit:
            tag = DT_RUNPATH if request.priority is Priority.RUNPATH else DT_RPATH
            pending.append((tag, request.rpath, "run-time path"))

        for tag, text, label in pending:
            if not session.slots:
                break
            slot = max(session.slots, key=lambda candidate: candidate.span)
            if tag == DT_SONAME:
                session.soname_hit = True
            else:
                session.rpath_hit = True
                session.priority_hit = True

            try:
                session.loaded.strings.write(slot.entry.value, text, slot.span)
            except StringTooLarge as exc:
                message = f"The new {label} does not fit in any unused entry: {exc}"
                session.report.warn(message, kind="string_too_large")
                self._logger.warning(message)
                continue

            session.slots.remove(slot)
            session.loaded.dynamic.set_tag(slot.entry, tag)
            session.report.info(f"Adding {label}: {text}")
            self._logger.info(f"Adding {label}: {text} (entry #{slot.entry.index})")

    # ------------------------------------------------------------------ #
    #  Step 5: commit
    # ------------------------------------------------------------------ #

    def _commit(self, session: _Session) -> None:
        output = session.request.output
        with self._logger.operation("commit"), self._logger.timed("commit"):
            try:
                if output is None:
                    self._commit_in_place(session)
                else:
                    self._commit_copy(session, output)
            except OSError as exc:
                raise CommitError(f"Failed to write {output or session.image.path}: {exc}") from exc

        session.report.committed = True
        session.report.output_path = output or session.image.path

    def _commit_in_place(self, session: _Session) -> None:
        """Overwrite the string table, then the dynamic segment if retagged.

        Not crash-atomic: an interruption between the two writes leaves
        the new strings with the old tags.
        """
        image, loaded = session.image, session.loaded
        image.write_region(loaded.section.sh_offset, loaded.strings.raw)
        if loaded.dynamic.modified:
            image.write_region(loaded.segment.p_offset, loaded.dynamic.raw)
        image.stream.flush()
        self._logger.debug(f"Updated {image.path} in place")

    def _commit_copy(self, session: _Session, output: str) -> None:
        """Stream the input to *output*, substituting the modified regions."""
        image, loaded = session.image, session.loaded
        regions = [(loaded.section.sh_offset, loaded.strings.raw)]
        if loaded.dynamic.modified:
            regions.append((loaded.segment.p_offset, loaded.dynamic.raw))
        regions.sort(key=lambda region: region[0])
        for (first, data), (second, _) in zip(regions, regions[1:]):
            if first + len(data) > second:
                raise CommitError(
                    f"{image.path}: string table and dynamic segment overlap"
                )

        mode = stat.S_IMODE(image.stat().st_mode)
        chunk_size = self._config.dynpatch.copy_chunk_size
        source = image.stream
        source.seek(0)
        position = 0
        with open(output, "wb") as target:
            os.fchmod(target.fileno(), mode)
            for offset, data in regions:
                self._copy_bytes(source, target, offset - position, chunk_size)
                target.write(data)
                source.seek(len(data), os.SEEK_CUR)
                position = offset + len(data)
            self._copy_bytes(source, target, None, chunk_size)
        self._logger.debug(f"Wrote {output} (mode {mode:o})")

    @staticmethod
    def _copy_bytes(
        source: BinaryIO,
        target: BinaryIO,
        length: int | None,
        chunk_size: int,
    ) -> None:
        """Copy *length* bytes (or everything up to EOF when ``None``)."""
        remaining = length
        while remaining is None or remaining > 0:
            size = chunk_size if remaining is None else min(chunk_size, remaining)
            chunk = source.read(size)
            if not chunk:
                if remaining is None:
                    return
                raise CommitError("Input file ended before the copy was complete")
            target.write(chunk)
            if remaining is not None:
                remaining -= len(chunk)

    # ------------------------------------------------------------------ #
    #  Step 6: unmet requests
    # ------------------------------------------------------------------ #

    def _report_unmet(self, session: _Session) -> None:
        request, report = session.request, session.report
        unmet: list[TargetNotFound] = []
        if request.needed_old is not None and not session.needed_hit:
            unmet.append(TargetNotFound(f"No needed library with name {request.needed_old} was found."))
        if request.wants_soname and not session.soname_hit:
            unmet.append(TargetNotFound("No available entry was found to modify the soname."))
        if request.wants_rpath and not session.rpath_hit:
            unmet.append(TargetNotFound("No available entry was found to modify the run-time path."))
        if request.priority is not Priority.UNCHANGED and not session.priority_hit:
            unmet.append(TargetNotFound("No run-time path entry was found to change its priority."))

        for error in unmet:
            report.warn(str(error), kind="target_not_found")
            self._logger.warning(str(error))
