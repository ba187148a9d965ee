"""Minimal git helpers
The helpers below provide just enough structure to read diffs and status
entries from a working copy and to move whole files between the working tree
and the index.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

import shutil
import subprocess

from ..diff.schema import PATCH_ENCODING_ERRORS


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """One ``git status --porcelain`` record.

    ``index`` and ``worktree`` are the two status columns (``X`` and ``Y``);
    untracked files report ``?`` in both.
    """

    index: str
    worktree: str
    path: Path
    original_path: Path | None = None

    @property
    def code(self) -> str:
        return f"{self.index}{self.worktree}"

    @property
    def is_untracked(self) -> bool:
        return self.code == "??"


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise GitError(f"Unable to locate a git repository from {path}")

    @classmethod
    def initialise(cls, root: Path | str) -> "GitRepository":
        """Initialise a new git repository at ``root`` with an initial commit."""

        path = Path(root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        git_dir = path / ".git"
        if git_dir.exists():
            shutil.rmtree(git_dir)

        _run(["init"], cwd=path)

        def _ensure_config(key: str, value: str) -> None:
            configured = _run(["config", "--get", key], cwd=path, check=False)
            if configured.returncode != 0 or not configured.stdout.strip():
                _run(["config", key, value], cwd=path)

        _ensure_config("user.email", "hunkstage@example.com")
        _ensure_config("user.name", "hunkstage")

        _run(["add", "."], cwd=path)
        _run(["commit", "--allow-empty", "-m", "Initial commit"], cwd=path)

        return cls(path)

    # ------------------------------------------------------------------ git IO
    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return _run(list(args), cwd=self.root, check=check)

    # ----------------------------------------------------------- diff helpers
    def diff(self, *paths: str, cached: bool = False, context_lines: int | None = None) -> str:
        """Return the unified diff for ``paths`` (defaults to the whole repo).

        ``cached`` compares the index with ``HEAD`` instead of the working tree
        with the index.
        """

        args: List[str] = ["diff", "--no-color", "--no-ext-diff", "--src-prefix=a/", "--dst-prefix=b/"]
        if cached:
            args.append("--cached")
        if context_lines is not None:
            args.append(f"-U{context_lines}")
        if paths:
            args.extend(["--", *paths])
        result = _run(args, cwd=self.root, check=True, errors=PATCH_ENCODING_ERRORS)
        return result.stdout

    def diff_totals(self, *, cached: bool = False) -> tuple[int, int]:
        """Return ``(insertions, deletions)`` across all text changes."""

        args: List[str] = ["diff", "--numstat", "--no-color", "--no-ext-diff"]
        if cached:
            args.append("--cached")
        result = _run(args, cwd=self.root, check=True)
        insertions = 0
        deletions = 0
        for line in result.stdout.splitlines():
            added, removed, _ = (line.split("\t", 2) + ["", ""])[:3]
            # Binary files report "-" for both columns.
            if added.isdigit():
                insertions += int(added)
            if removed.isdigit():
                deletions += int(removed)
        return insertions, deletions

    # ------------------------------------------------------------- repo status
    def status_entries(self) -> List[StatusEntry]:
        """Return parsed ``git status --porcelain`` records."""

        result = _run(
            ["status", "--porcelain", "-z", "--untracked-files=all"],
            cwd=self.root,
            check=True,
        )
        records = [record for record in result.stdout.split("\0") if record]
        entries: List[StatusEntry] = []
        index = 0
        while index < len(records):
            record = records[index]
            index += 1
            if len(record) < 4:
                continue
            code, raw_path = record[:2], record[3:]
            original: Path | None = None
            if code[0] in {"R", "C"} and index < len(records):
                original = Path(records[index])
                index += 1
            entries.append(StatusEntry(code[0], code[1], Path(raw_path), original))
        return entries

    def untracked_files(self) -> List[Path]:
        """Return the list of untracked files."""

        return [entry.path for entry in self.status_entries() if entry.is_untracked]

    def is_untracked(self, path: str) -> bool:
        """Return ``True`` when ``path`` is an untracked, non-ignored file."""

        result = _run(
            ["ls-files", "--others", "--exclude-standard", "-z", "--", path],
            cwd=self.root,
            check=True,
        )
        target = Path(path).as_posix()
        return any(entry == target for entry in result.stdout.split("\0") if entry)

    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = _run(["rev-parse", "--abbrev-ref", "HEAD"], cwd=self.root, check=False)
        if result.returncode != 0:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def has_head(self) -> bool:
        result = _run(["rev-parse", "--verify", "HEAD"], cwd=self.root, check=False)
        return result.returncode == 0

    # --------------------------------------------------------------- files
    def read_bytes(self, path: str) -> bytes:
        """Return the raw working-tree content of ``path``."""

        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise GitError(f"Path escapes the repository: {path}")
        try:
            return target.read_bytes()
        except OSError as error:
            raise GitError(f"Unable to read {path}: {error}") from error

    def add(self, *paths: str) -> None:
        """Stage ``paths`` (``-A`` when none are given)."""

        args: List[str] = ["add"]
        args.extend(["--", *paths] if paths else ["-A"])
        _run(args, cwd=self.root, check=True)

    def restore(self, *paths: str, staged: bool = False) -> None:
        """Restore ``paths`` in the working tree, or in the index when ``staged``."""

        args: List[str] = ["restore"]
        if staged:
            args.append("--staged")
        args.extend(["--", *(paths or (".",))])
        _run(args, cwd=self.root, check=True)

    def reset_paths(self, *paths: str) -> None:
        """Drop ``paths`` from the index on a repository without commits."""

        args: List[str] = ["rm", "--cached", "-r", "--quiet"]
        args.extend(["--", *(paths or (".",))])
        _run(args, cwd=self.root, check=True)


def _run(
    args: Sequence[str],
    *,
    cwd: Path,
    check: bool = True,
    errors: str = "replace",
) -> subprocess.CompletedProcess[str]:
    """Run a git command and optionally raise :class:`GitError` on failure.

    ``errors`` is the decode handler for the output; diff payloads use
    ``surrogateescape`` so non-UTF-8 bytes survive a round trip into a patch.
    """
    command = ["git", *args]
    try:
        process = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=False,
            check=False,
        )
    except OSError as error:
        raise GitError(f"Unable to run git: {error}") from error
    stdout = process.stdout.decode("utf-8", errors=errors) if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


__all__ = ["GitError", "GitRepository", "StatusEntry"]
