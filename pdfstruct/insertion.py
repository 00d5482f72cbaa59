"""
Host insertion helper.

The engine only produces a fragment; this applies the host's insertion mode
to existing document content.
"""

from __future__ import annotations

from enum import Enum

APPEND_SEPARATOR = "<br>"


class InsertMode(str, Enum):
    REPLACE = "replace"
    APPEND = "append"


def insert_fragment(existing: str, fragment: str, mode: InsertMode) -> str:
    """Combine existing content and a converted fragment."""
    if InsertMode(mode) == InsertMode.REPLACE:
        return fragment
    return (existing or "") + APPEND_SEPARATOR + fragment
