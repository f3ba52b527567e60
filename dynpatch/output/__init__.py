"""
dynpatch Output Module
=======================

Console display of edit reports, dynamic table dumps and query results.
"""

from dynpatch.output.console import DynpatchConsoleOutput

__all__ = [
    "DynpatchConsoleOutput",
]
