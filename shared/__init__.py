"""
dynpatch Shared Module
======================

Common utilities, models, and configuration management used by the
dynpatch engine and its command-line entry point.
"""

from shared.config import DynpatchConfig, get_config

__all__ = ["DynpatchConfig", "get_config"]
