"""Stage, unstage and discard changes by file, hunk or individual line.

Every function takes an explicit :class:`RepositoryContext` and never raises:
failures come back as a :class:`StagingResult` tagged with a
:class:`StagingErrorKind`.  Diffs are re-read from git on every call so a
selection is always resolved against the current state of the working copy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import Field

from .diff.schema import FileDiff, FileStatus, RecordModel, Selection
from .diff.synthesis import PatchDirection, SelectionError, build_partial_patch
from .repository import RepositoryContext
from .tools.patch import ApplyMode, PatchError, apply_patch
from .tools.vcs import GitError

LOGGER = logging.getLogger(__name__)

GENERIC_APPLY_FAILURE = "Failed to apply patch"


class StagingErrorKind(str, Enum):
    """Why a staging operation did not complete."""

    INVALID_SELECTION = "invalid_selection"
    APPLY_FAILURE = "apply_failure"
    NO_DIFF_FOUND = "no_diff_found"
    GIT_FAILURE = "git_failure"


@dataclass(slots=True)
class StagingResult:
    """Outcome of a staging operation."""

    success: bool
    message: str
    error: StagingErrorKind | None = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str) -> "StagingResult":
        return cls(success=True, message=message)

    @classmethod
    def failure(
        cls,
        error: StagingErrorKind,
        message: str,
        *,
        details: Dict[str, Any] | None = None,
    ) -> "StagingResult":
        return cls(success=False, message=message, error=error, details=dict(details or {}))


class StagingAction(str, Enum):
    """The three hunk/line operations."""

    STAGE = "stage"
    UNSTAGE = "unstage"
    DISCARD = "discard"

    @property
    def reads_staged_diff(self) -> bool:
        return self is StagingAction.UNSTAGE

    @property
    def apply_mode(self) -> ApplyMode:
        if self is StagingAction.STAGE:
            return ApplyMode.INDEX
        if self is StagingAction.UNSTAGE:
            return ApplyMode.INDEX_REVERSE
        if self is StagingAction.DISCARD:
            return ApplyMode.WORKTREE_REVERSE
        raise ValueError(f"Unknown staging action: {self!r}")

    @property
    def direction(self) -> PatchDirection:
        if self is StagingAction.STAGE:
            return PatchDirection.FORWARD
        if self is StagingAction.UNSTAGE or self is StagingAction.DISCARD:
            return PatchDirection.REVERSE
        raise ValueError(f"Unknown staging action: {self!r}")

    @property
    def past_tense(self) -> str:
        return {"stage": "Staged", "unstage": "Unstaged", "discard": "Discarded"}[self.value]


class ChangedFile(RecordModel):
    """A path with pending changes on one side of the index."""

    path: str
    status: FileStatus
    staged: bool


class WorkingStatus(RecordModel):
    """Summary of the pending changes in a working copy."""

    has_changes: bool
    files: List[ChangedFile] = Field(default_factory=list)
    staged_count: int = 0
    unstaged_count: int = 0
    additions: int = 0
    deletions: int = 0


# ---------------------------------------------------------------- diff reads
def _load_diff(ctx: RepositoryContext, file_path: str, *, staged: bool) -> FileDiff | None:
    diff_text = ctx.repo.diff(file_path, cached=staged, context_lines=ctx.context_lines)
    if diff_text.strip():
        return ctx.parser.parse(diff_text, file_path)
    if staged or not ctx.repo.is_untracked(file_path):
        return None

    payload = ctx.repo.read_bytes(file_path)
    try:
        content = payload.decode("utf-8")
    except UnicodeDecodeError:
        return ctx.parser.binary_untracked(file_path, payload)
    return ctx.parser.from_untracked_content(file_path, content)


def get_file_diff(ctx: RepositoryContext, file_path: str, staged: bool = False) -> FileDiff | None:
    """Return the parsed staged or unstaged diff for ``file_path``.

    Untracked files are described as one hunk adding every line.  ``None``
    means there is nothing pending for the file on the requested side.
    """

    try:
        return _load_diff(ctx, file_path, staged=staged)
    except GitError as error:
        LOGGER.error("Error getting file diff for %s: %s", file_path, error)
        return None


# -------------------------------------------------------- hunk/line operations
def _run(
    ctx: RepositoryContext,
    action: StagingAction,
    file_path: str,
    hunk_index: int,
    line_indices: Optional[Iterable[int]] = None,
    *,
    snapshot: str | None = None,
) -> StagingResult:
    try:
        file_diff = _load_diff(ctx, file_path, staged=action.reads_staged_diff)
    except GitError as error:
        return StagingResult.failure(StagingErrorKind.GIT_FAILURE, str(error))

    if file_diff is None:
        side = "staged" if action.reads_staged_diff else "unstaged"
        return StagingResult.failure(
            StagingErrorKind.NO_DIFF_FOUND,
            f"No {side} changes found for {file_path}",
        )

    if snapshot is not None and snapshot != file_diff.snapshot:
        LOGGER.warning("Stale selection for %s: diff changed since it was read", file_path)
        return StagingResult.failure(
            StagingErrorKind.INVALID_SELECTION,
            f"The diff for {file_path} changed since the selection was made; refresh and try again",
        )

    if hunk_index < 0 or hunk_index >= len(file_diff.hunks):
        return StagingResult.failure(
            StagingErrorKind.INVALID_SELECTION,
            f"Hunk {hunk_index} not found in {file_path} ({len(file_diff.hunks)} hunk(s))",
        )
    hunk = file_diff.hunks[hunk_index]

    if line_indices is None:
        patch = hunk.raw_patch
        subject = f"hunk {hunk_index}"
    else:
        selected = frozenset(line_indices)
        try:
            patch = build_partial_patch(
                hunk,
                selected,
                file_header=file_diff.file_header,
                file_path=file_path,
                direction=action.direction,
            )
        except SelectionError as error:
            return StagingResult.failure(StagingErrorKind.INVALID_SELECTION, str(error))
        subject = f"{len(selected)} line(s)"

    try:
        apply_patch(
            patch,
            repo_root=ctx.root,
            mode=action.apply_mode,
            check=ctx.check_patches,
            unidiff_zero=ctx.context_lines == 0,
        )
    except PatchError as error:
        message = str(error).strip() or GENERIC_APPLY_FAILURE
        LOGGER.warning("Failed to %s %s in %s: %s", action.value, subject, file_path, message)
        return StagingResult.failure(StagingErrorKind.APPLY_FAILURE, message, details=error.details)

    return StagingResult.ok(f"{action.past_tense} {subject} in {file_path}")


def stage_hunk(ctx: RepositoryContext, file_path: str, hunk_index: int) -> StagingResult:
    """Apply one hunk of the unstaged diff to the index."""
    return _run(ctx, StagingAction.STAGE, file_path, hunk_index)


def unstage_hunk(ctx: RepositoryContext, file_path: str, hunk_index: int) -> StagingResult:
    """Reverse-apply one hunk of the staged diff to the index."""
    return _run(ctx, StagingAction.UNSTAGE, file_path, hunk_index)


def discard_hunk(ctx: RepositoryContext, file_path: str, hunk_index: int) -> StagingResult:
    """Reverse-apply one hunk of the unstaged diff to the working tree."""
    return _run(ctx, StagingAction.DISCARD, file_path, hunk_index)


def stage_lines(
    ctx: RepositoryContext,
    file_path: str,
    hunk_index: int,
    line_indices: Iterable[int],
    *,
    snapshot: str | None = None,
) -> StagingResult:
    """Stage only the selected lines of one unstaged hunk."""
    return _run(ctx, StagingAction.STAGE, file_path, hunk_index, line_indices, snapshot=snapshot)


def unstage_lines(
    ctx: RepositoryContext,
    file_path: str,
    hunk_index: int,
    line_indices: Iterable[int],
    *,
    snapshot: str | None = None,
) -> StagingResult:
    """Move only the selected lines of one staged hunk back out of the index."""
    return _run(ctx, StagingAction.UNSTAGE, file_path, hunk_index, line_indices, snapshot=snapshot)


def discard_lines(
    ctx: RepositoryContext,
    file_path: str,
    hunk_index: int,
    line_indices: Iterable[int],
    *,
    snapshot: str | None = None,
) -> StagingResult:
    """Drop only the selected lines of one unstaged hunk from the working tree."""
    return _run(ctx, StagingAction.DISCARD, file_path, hunk_index, line_indices, snapshot=snapshot)


def apply_selection(ctx: RepositoryContext, action: StagingAction, selection: Selection) -> StagingResult:
    """Run ``action`` for a :class:`Selection` built from a freshly read diff."""
    return _run(
        ctx,
        action,
        selection.file_path,
        selection.hunk_index,
        selection.line_indices,
        snapshot=selection.snapshot,
    )


# ---------------------------------------------------------- file operations
def _git_call(success_message: str, call: Any, *args: Any, **kwargs: Any) -> StagingResult:
    try:
        call(*args, **kwargs)
    except GitError as error:
        return StagingResult.failure(StagingErrorKind.GIT_FAILURE, str(error))
    return StagingResult.ok(success_message)


def stage_file(ctx: RepositoryContext, file_path: str) -> StagingResult:
    return _git_call(f"Staged {file_path}", ctx.repo.add, file_path)


def unstage_file(ctx: RepositoryContext, file_path: str) -> StagingResult:
    if not ctx.repo.has_head():
        return _git_call(f"Unstaged {file_path}", ctx.repo.reset_paths, file_path)
    return _git_call(f"Unstaged {file_path}", ctx.repo.restore, file_path, staged=True)


def stage_all(ctx: RepositoryContext) -> StagingResult:
    return _git_call("Staged all changes", ctx.repo.add)


def unstage_all(ctx: RepositoryContext) -> StagingResult:
    if not ctx.repo.has_head():
        return _git_call("Unstaged all changes", ctx.repo.reset_paths)
    return _git_call("Unstaged all changes", ctx.repo.restore, staged=True)


def discard_file_changes(ctx: RepositoryContext, file_path: str) -> StagingResult:
    """Revert the working-tree copy of ``file_path`` to the index."""
    return _git_call(f"Discarded changes in {file_path}", ctx.repo.restore, file_path)


def _index_status(code: str) -> FileStatus:
    if code == "A":
        return FileStatus.ADDED
    if code == "D":
        return FileStatus.DELETED
    if code in {"R", "C"}:
        return FileStatus.RENAMED
    return FileStatus.MODIFIED


def list_changed_files(ctx: RepositoryContext) -> List[ChangedFile]:
    """Return one entry per path and side (staged/unstaged) with pending changes."""

    try:
        entries = ctx.repo.status_entries()
    except GitError as error:
        LOGGER.error("Error getting uncommitted files: %s", error)
        return []

    files: List[ChangedFile] = []
    for entry in entries:
        path = entry.path.as_posix()
        if entry.is_untracked:
            files.append(ChangedFile(path=path, status=FileStatus.UNTRACKED, staged=False))
            continue
        if entry.index not in {" ", "?"}:
            files.append(ChangedFile(path=path, status=_index_status(entry.index), staged=True))
        if entry.worktree != " ":
            files.append(ChangedFile(path=path, status=_index_status(entry.worktree), staged=False))
    return files


def get_working_status(ctx: RepositoryContext) -> WorkingStatus:
    """Summarise pending changes and their line totals across both sides."""

    files = list_changed_files(ctx)
    additions = 0
    deletions = 0
    try:
        for cached in (False, True):
            added, removed = ctx.repo.diff_totals(cached=cached)
            additions += added
            deletions += removed
    except GitError as error:
        LOGGER.warning("Unable to compute diff totals: %s", error)

    return WorkingStatus(
        has_changes=bool(files),
        files=files,
        staged_count=sum(1 for item in files if item.staged),
        unstaged_count=sum(1 for item in files if not item.staged),
        additions=additions,
        deletions=deletions,
    )


__all__ = [
    "ChangedFile",
    "StagingAction",
    "StagingErrorKind",
    "StagingResult",
    "WorkingStatus",
    "apply_selection",
    "discard_file_changes",
    "discard_hunk",
    "discard_lines",
    "get_file_diff",
    "get_working_status",
    "list_changed_files",
    "stage_all",
    "stage_file",
    "stage_hunk",
    "stage_lines",
    "unstage_all",
    "unstage_file",
    "unstage_hunk",
    "unstage_lines",
]
