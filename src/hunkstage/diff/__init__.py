"""Unified diff model, parser and partial-patch synthesis."""

from .parser import DiffParser, compute_snapshot, parse_diff
from .schema import DiffHunk, DiffLine, FileDiff, FileStatus, LineType, Selection
from .synthesis import (
    PatchDirection,
    SelectionError,
    build_forward_patch,
    build_partial_patch,
    build_reverse_patch,
    validate_selection,
)

__all__ = [
    "DiffHunk",
    "DiffLine",
    "DiffParser",
    "FileDiff",
    "FileStatus",
    "LineType",
    "PatchDirection",
    "Selection",
    "SelectionError",
    "build_forward_patch",
    "build_partial_patch",
    "build_reverse_patch",
    "compute_snapshot",
    "parse_diff",
    "validate_selection",
]
