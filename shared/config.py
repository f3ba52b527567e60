"""
dynpatch Configuration Management
==================================

Centralized configuration for the dynpatch tool using Python dataclasses
and TOML-based persistence.

Configuration is kept apart from code so that the cache location, the
trusted library directories and logging behaviour can be changed per
host without touching the editor.

References:
    - PEP 681 -- Data Class Transforms (2022).
    - TOML v1.0.0 Specification. https://toml.io/en/v1.0.0
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[no-redef]


# ---------------------------------------------------------------------------
# Default configuration file path relative to the project root
# ---------------------------------------------------------------------------
_DEFAULT_CONFIG_PATH: Path = Path(__file__).resolve().parent.parent / "dynpatch.toml"


# ========================== Tool-Specific Configs ==========================


@dataclass(frozen=False, slots=True)
class EditorConfig:
    """Configuration for the dynamic-section editor and cache resolver.

    Controls where the shared-library cache is read from, which
    directories count as authoritative library locations, the search-path
    placeholder token and the copy buffer used when writing to a new
    output file.
    """

    cache_path: str = "/etc/ld.so.cache"
    system_lib_dirs: list[str] = field(
        default_factory=lambda: [
            "/lib",
            "/lib64",
            "/usr/lib",
            "/usr/lib64",
            "/usr/local/lib",
        ]
    )
    origin_token: str = "$ORIGIN"
    copy_chunk_size: int = 65_536
    fail_on_no_effect: bool = False


# =========================== Global Settings ===============================


@dataclass(frozen=False, slots=True)
class GlobalConfig:
    """Global settings: logging verbosity and log-file destination."""

    log_level: str = "WARNING"
    log_file: str | None = None
    log_json: bool = False


# =========================== Master Config =================================


@dataclass(frozen=False, slots=True)
class DynpatchConfig:
    """Master configuration aggregating global and editor settings.

    Usage:
        >>> config = DynpatchConfig.load()                  # from default path
        >>> config = DynpatchConfig.load("custom.toml")     # from custom path
        >>> print(config.dynpatch.cache_path)
        '/etc/ld.so.cache'
    """

    global_settings: GlobalConfig = field(default_factory=GlobalConfig)
    dynpatch: EditorConfig = field(default_factory=EditorConfig)

    # ------------------------------------------------------------------ #
    #  TOML Loading
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, path: str | Path | None = None) -> DynpatchConfig:
        """Load configuration from a TOML file.

        If *path* is ``None`` the loader looks for ``dynpatch.toml`` in the
        project root.  Missing keys gracefully fall back to dataclass
        defaults -- no ``KeyError`` is raised.

        Args:
            path: Filesystem path to a TOML configuration file.
                  Defaults to ``<project_root>/dynpatch.toml``.

        Returns:
            A fully-populated :class:`DynpatchConfig` instance.

        Raises:
            FileNotFoundError: If the specified path does not exist
                *and* was explicitly provided by the caller.
        """
        config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH

        if not config_path.exists():
            if path is not None:
                raise FileNotFoundError(
                    f"Configuration file not found: {config_path}"
                )
            return cls()

        with open(config_path, "rb") as fh:
            raw: dict[str, Any] = tomllib.load(fh)

        return cls(
            global_settings=cls._build_section(GlobalConfig, raw.get("global", {})),
            dynpatch=cls._build_section(EditorConfig, raw.get("dynpatch", {})),
        )

    # ------------------------------------------------------------------ #
    #  Serialisation helpers
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        """Serialise the entire configuration tree to a plain dictionary."""
        return asdict(self)

    # ------------------------------------------------------------------ #
    #  Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _build_section(cls: type, data: dict[str, Any]) -> Any:
        """Instantiate a dataclass *cls* using only the keys it declares.

        Unknown keys in the TOML source are silently ignored so that
        forward-compatible config files do not break older code.
        """
        valid_keys = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        return cls(**filtered)


# ========================= Module-level convenience ========================

def get_config(path: str | Path | None = None) -> DynpatchConfig:
    """Module-level convenience wrapper around :meth:`DynpatchConfig.load`.

    Caches the result so that repeated imports share one instance.
    """
    if not hasattr(get_config, "_cached") or path is not None:
        get_config._cached = DynpatchConfig.load(path)  # type: ignore[attr-defined]
    return get_config._cached  # type: ignore[attr-defined]
