"""Tests for the shared-library cache reader."""

from __future__ import annotations

import pytest

from dynpatch.core.errors import InvalidCacheFormat
from dynpatch.parsers.ldcache import (
    CACHE_HEADER,
    CacheEntry,
    CacheIndex,
    parse_cache,
)


def test_only_elf_entries_are_indexed(make_cache):
    path = make_cache([
        ("libc.so.6", "/lib/x86_64-linux-gnu/libc.so.6"),
        ("libfoo.so.1", "/usr/lib/libfoo.so.1"),
        ("libold.so.0", "/usr/lib/libold.so.0", 0),
        ("libbar.so.2", "/opt/lib/libbar.so.2", 0x0303),
    ])

    index = parse_cache(path, system_dirs=())

    assert len(index) == 3
    assert index.names == ["libc.so.6", "libfoo.so.1", "libbar.so.2"]
    assert index.lookup("libfoo.so.1") == "/usr/lib/libfoo.so.1"
    assert index.lookup("libold.so.0") is None


def test_exists_checks_cache_names(make_cache):
    index = parse_cache(make_cache([("libfoo.so.1", "/usr/lib/libfoo.so.1")]), system_dirs=())

    assert index.exists("libfoo.so.1")
    assert not index.exists("libmissing.so.9")


def test_exists_prefers_filesystem(tmp_path):
    system = tmp_path / "lib"
    system.mkdir()
    (system / "libonly-on-disk.so").write_bytes(b"")
    index = CacheIndex(system_dirs=(str(system),))

    assert index.exists("libonly-on-disk.so")
    assert not index.exists("libother.so")


def test_registered_search_path_is_searched(tmp_path):
    libdir = tmp_path / "app" / "lib"
    libdir.mkdir(parents=True)
    (libdir / "libprivate.so").write_bytes(b"")
    index = CacheIndex(system_dirs=())
    elf_path = str(tmp_path / "app" / "run")

    assert not index.exists("libprivate.so")
    added = index.register_search_path("/nonexistent:$ORIGIN/lib", elf_path)

    assert added == ["/nonexistent", str(libdir)]
    assert index.exists("libprivate.so")
    assert index.register_search_path("$ORIGIN/lib", elf_path) == []


def test_search_path_copies_are_independent(tmp_path):
    libdir = tmp_path / "lib"
    libdir.mkdir()
    (libdir / "libprivate.so").write_bytes(b"")
    index = CacheIndex(entries=[CacheEntry("libfoo.so.1", "/usr/lib/libfoo.so.1")], system_dirs=())

    scoped = index.with_search_paths()
    scoped.register_search_path(str(libdir), str(tmp_path / "run"))

    assert scoped.exists("libprivate.so")
    assert scoped.entries is index.entries
    assert index.search_dirs == []
    assert not index.exists("libprivate.so")
    assert index.with_search_paths().search_dirs == []


def test_expand_search_path():
    index = CacheIndex(system_dirs=())

    assert index.expand_search_path("$ORIGIN/../lib::/opt/lib", "/srv/app/bin/tool") == [
        "/srv/app/bin/../lib",
        "/opt/lib",
    ]
    assert index.expand_search_path("$ORIGIN", "tool") == ["."]


def test_custom_origin_token():
    index = CacheIndex(system_dirs=(), origin_token="@BASE")
    assert index.expand_search_path("@BASE/lib:$ORIGIN", "./bin/x") == ["./bin/lib", "$ORIGIN"]


def test_suggest_replacement():
    index = CacheIndex(
        entries=[
            CacheEntry("libfoo.so.1", "/lib/libfoo.so.1"),
            CacheEntry("libfoo.so.2", "/lib/libfoo.so.2"),
            CacheEntry("libbar.so.0", "/lib/libbar.so.0"),
        ],
        system_dirs=(),
    )

    assert index.suggest_replacement("libfoo.so.1") == "libfoo.so.2"
    assert index.suggest_replacement("libfoo.so.3") == "libfoo.so.1"
    assert index.suggest_replacement("libbar.so.0") is None
    assert index.suggest_replacement("libfoobar.so.1") is None


def test_bad_magic(tmp_path):
    path = tmp_path / "ld.so.cache"
    path.write_bytes(b"ld.so-1.7.0" + b"\x00" * 64)

    with pytest.raises(InvalidCacheFormat):
        parse_cache(path)


def test_truncated_header(make_cache, tmp_path):
    data = make_cache([]).read_bytes()
    path = tmp_path / "short.cache"
    path.write_bytes(data[:CACHE_HEADER.size - 4])

    with pytest.raises(InvalidCacheFormat):
        parse_cache(path)


def test_missing_file(tmp_path):
    with pytest.raises(InvalidCacheFormat):
        parse_cache(tmp_path / "absent.cache")


def test_truncated_entries_stop_indexing(make_cache, quiet_logger):
    path = make_cache([("libfoo.so.1", "/lib/libfoo.so.1")], nlibs=5)

    index = parse_cache(path, system_dirs=(), logger=quiet_logger)

    assert index.names == ["libfoo.so.1"]
