"""Typed records describing a parsed unified diff for a single file."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

NO_NEWLINE_MARKER = "\\ No newline at end of file"
# Diff text is decoded with this handler so non-UTF-8 bytes round-trip into patches.
PATCH_ENCODING_ERRORS = "surrogateescape"


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class LineType(str, Enum):
    """Kinds of lines that may appear inside a hunk body."""

    CONTEXT = "context"
    ADD = "add"
    DELETE = "delete"


class FileStatus(str, Enum):
    """Change classification for a file diff."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    UNTRACKED = "untracked"


def line_marker(line_type: LineType) -> str:
    """Return the unified-diff prefix character for ``line_type``."""
    if line_type is LineType.CONTEXT:
        return " "
    if line_type is LineType.ADD:
        return "+"
    if line_type is LineType.DELETE:
        return "-"
    raise ValueError(f"Unknown line type: {line_type!r}")


class DiffLine(RecordModel):
    """Single line of a hunk body with its position in both file versions."""

    type: LineType
    content: str
    old_line_number: Optional[int] = None
    new_line_number: Optional[int] = None
    line_index: int
    no_newline_at_eof: bool = False

    @property
    def marker(self) -> str:
        return line_marker(self.type)

    @property
    def is_change(self) -> bool:
        return self.type is not LineType.CONTEXT

    def render(self, line_type: LineType | None = None) -> List[str]:
        """Return the patch lines for this entry, optionally re-typed."""
        rendered = [f"{line_marker(line_type or self.type)}{self.content}"]
        if self.no_newline_at_eof:
            rendered.append(NO_NEWLINE_MARKER)
        return rendered


class DiffHunk(RecordModel):
    """Contiguous block of changes plus surrounding context."""

    header: str
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: List[DiffLine] = Field(default_factory=list)
    raw_patch: str = ""

    def render(self) -> str:
        """Return the hunk header followed by its body, newline terminated."""
        rendered = [self.header]
        for line in self.lines:
            rendered.extend(line.render())
        return "\n".join(rendered) + "\n"

    def line(self, index: int) -> DiffLine:
        if index < 0 or index >= len(self.lines):
            raise IndexError(f"line index {index} out of range for hunk with {len(self.lines)} line(s)")
        return self.lines[index]

    def changed_line_indices(self) -> List[int]:
        """Return the ``line_index`` of every add/delete line."""
        return [line.line_index for line in self.lines if line.is_change]

    @property
    def additions(self) -> int:
        return sum(1 for line in self.lines if line.type is LineType.ADD)

    @property
    def deletions(self) -> int:
        return sum(1 for line in self.lines if line.type is LineType.DELETE)


class FileDiff(RecordModel):
    """Structured diff of one file, consumed by presentation layers."""

    file_path: str
    old_path: Optional[str] = None
    status: FileStatus = FileStatus.MODIFIED
    hunks: List[DiffHunk] = Field(default_factory=list)
    is_binary: bool = False
    additions: int = 0
    deletions: int = 0
    file_header: List[str] = Field(default_factory=list)
    snapshot: str = ""

    @classmethod
    def empty(cls, file_path: str, *, snapshot: str = "") -> "FileDiff":
        return cls(file_path=file_path, snapshot=snapshot)

    def hunk(self, index: int) -> DiffHunk:
        if index < 0 or index >= len(self.hunks):
            raise IndexError(f"hunk index {index} out of range for {self.file_path} ({len(self.hunks)} hunk(s))")
        return self.hunks[index]


@dataclass(frozen=True, slots=True)
class Selection:
    """Ephemeral set of line indices scoped to one hunk of one file.

    Built right before an operation and thrown away afterwards.  ``snapshot``
    ties the selection to the diff it was made against; when present, the
    orchestrator refuses to act on a diff whose snapshot differs.
    """

    file_path: str
    hunk_index: int
    line_indices: FrozenSet[int]
    snapshot: str | None = None

    @classmethod
    def of(
        cls,
        file_path: str,
        hunk_index: int,
        line_indices: Iterable[int],
        *,
        snapshot: str | None = None,
    ) -> "Selection":
        return cls(
            file_path=file_path,
            hunk_index=hunk_index,
            line_indices=frozenset(int(index) for index in line_indices),
            snapshot=snapshot,
        )

    def __bool__(self) -> bool:
        return bool(self.line_indices)


__all__ = [
    "DiffHunk",
    "DiffLine",
    "FileDiff",
    "FileStatus",
    "LineType",
    "NO_NEWLINE_MARKER",
    "PATCH_ENCODING_ERRORS",
    "RecordModel",
    "Selection",
    "line_marker",
]
