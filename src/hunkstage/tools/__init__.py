"""Integrations with the external ``git`` tool."""

from .patch import ApplyMode, PatchError, PatchResult, PatchTelemetry, apply_patch, validate_hunks
from .vcs import GitError, GitRepository, StatusEntry

__all__ = [
    "ApplyMode",
    "GitError",
    "GitRepository",
    "PatchError",
    "PatchResult",
    "PatchTelemetry",
    "StatusEntry",
    "apply_patch",
    "validate_hunks",
]
