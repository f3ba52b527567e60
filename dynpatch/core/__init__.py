"""
dynpatch Core Module
=====================

Contains the editor engine, the in-memory tables it edits, the data
models and the error hierarchy.  Import the engine from
:mod:`dynpatch.core.engine`.
"""

from dynpatch.core.errors import (
    CommitError,
    DynpatchError,
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

__all__ = [
    "CommitError",
    "DynamicInfo",
    "DynpatchError",
    "InvalidCacheFormat",
    "PatchReport",
    "PatchRequest",
    "Priority",
    "QueryResult",
    "QuerySelector",
    "ResultCode",
    "StringTooLarge",
    "StructureError",
    "TargetNotFound",
]
