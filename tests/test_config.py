"""Tests for TOML configuration loading and request validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from shared.config import DynpatchConfig, get_config

from dynpatch.core.models import PatchRequest, Priority


def test_defaults():
    config = DynpatchConfig()

    assert config.dynpatch.cache_path == "/etc/ld.so.cache"
    assert "/usr/lib" in config.dynpatch.system_lib_dirs
    assert config.dynpatch.origin_token == "$ORIGIN"
    assert config.dynpatch.fail_on_no_effect is False
    assert config.global_settings.log_level == "WARNING"


def test_partial_file_keeps_defaults(tmp_path):
    path = tmp_path / "dynpatch.toml"
    path.write_text(
        '[global]\nlog_level = "DEBUG"\nfuture_option = 1\n'
        '[dynpatch]\ncache_path = "/tmp/test.cache"\ncopy_chunk_size = 4096\n'
    )

    config = DynpatchConfig.load(path)

    assert config.global_settings.log_level == "DEBUG"
    assert config.dynpatch.cache_path == "/tmp/test.cache"
    assert config.dynpatch.copy_chunk_size == 4096
    assert config.dynpatch.origin_token == "$ORIGIN"
    assert config.to_dict()["dynpatch"]["cache_path"] == "/tmp/test.cache"


def test_explicit_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        DynpatchConfig.load(tmp_path / "absent.toml")


def test_get_config_is_cached(tmp_path):
    path = tmp_path / "dynpatch.toml"
    path.write_text('[dynpatch]\nfail_on_no_effect = true\n')

    first = get_config(path)

    assert first.dynpatch.fail_on_no_effect is True
    assert get_config() is first


class TestPatchRequest:

    def test_replace_needs_both_names(self):
        with pytest.raises(ValidationError):
            PatchRequest(needed_old="libfoo.so.1")

    def test_set_and_remove_conflict(self):
        with pytest.raises(ValidationError):
            PatchRequest(soname="libfoo.so", remove_soname=True)
        with pytest.raises(ValidationError):
            PatchRequest(rpath="/lib", remove_rpath=True)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            PatchRequest(interpreter="/lib/ld.so")

    def test_has_mutation(self):
        assert not PatchRequest().has_mutation
        assert not PatchRequest(output="out.so").has_mutation
        assert PatchRequest(priority=Priority.RUNPATH).has_mutation
        assert PatchRequest(remove_rpath=True).has_mutation

    def test_output_must_differ(self, tmp_path):
        request = PatchRequest(remove_soname=True, output=str(tmp_path / "lib.so"))

        request.check_output(str(tmp_path / "other.so"))
        with pytest.raises(ValueError):
            request.check_output(str(tmp_path / "lib.so"))
