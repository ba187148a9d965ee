"""Build standalone patches from a subset of the lines of one hunk.

Two directions are supported and they are not mirror images:

* forward patches are applied on top of a target that does not yet contain
  the hunk's additions (staging into the index), so unselected additions are
  dropped entirely;
* reverse patches are reverse-applied to a target that already contains every
  addition (unstaging, discarding), so unselected additions must be present as
  context for git to match them.
"""

from __future__ import annotations

from enum import Enum
from typing import AbstractSet, Iterable, List, Sequence

from .schema import DiffHunk, LineType

DEV_NULL = "/dev/null"


class SelectionError(ValueError):
    """Raised when a line selection cannot produce a meaningful patch."""


class PatchDirection(str, Enum):
    """How the synthesised patch will be handed to ``git apply``."""

    FORWARD = "forward"
    REVERSE = "reverse"


def validate_selection(hunk: DiffHunk, selected: Iterable[int]) -> frozenset[int]:
    """Return ``selected`` as a frozenset after checking it against ``hunk``."""

    chosen = frozenset(selected)
    if not chosen:
        raise SelectionError("No lines selected.")
    out_of_range = sorted(index for index in chosen if index < 0 or index >= len(hunk.lines))
    if out_of_range:
        raise SelectionError(
            f"Line index {out_of_range[0]} is out of range for a hunk with {len(hunk.lines)} line(s)."
        )
    if not any(hunk.lines[index].is_change for index in chosen):
        raise SelectionError("Selection contains no added or deleted lines.")
    return chosen


def _emitted_type(line_type: LineType, selected: bool, direction: PatchDirection) -> LineType | None:
    if line_type is LineType.CONTEXT:
        return LineType.CONTEXT
    if line_type is LineType.DELETE:
        return LineType.DELETE if selected else LineType.CONTEXT
    if line_type is LineType.ADD:
        if selected:
            return LineType.ADD
        if direction is PatchDirection.FORWARD:
            return None
        if direction is PatchDirection.REVERSE:
            return LineType.CONTEXT
        raise ValueError(f"Unknown patch direction: {direction!r}")
    raise ValueError(f"Unknown line type: {line_type!r}")


def _range_start(start: int, source_count: int, emitted_count: int) -> int:
    # A zero-length side names the line *before* the change.
    if source_count == 0 and emitted_count > 0:
        return start + 1
    if source_count > 0 and emitted_count == 0:
        return max(start - 1, 0)
    return start


def _file_header(
    file_header: Sequence[str],
    file_path: str,
    old_count: int,
    new_count: int,
) -> List[str]:
    """Rebuild the file header for a synthesised patch.

    ``/dev/null`` sides and their ``new file mode`` / ``deleted file mode``
    lines survive only while that side of the patch stays empty; ``index``
    and mode-change lines are dropped since they describe the whole file.
    """

    diff_line = f"diff --git a/{file_path} b/{file_path}"
    creation: str | None = None
    deletion: str | None = None
    old_marker = f"--- a/{file_path}"
    new_marker = f"+++ b/{file_path}"
    for line in file_header:
        if line.startswith("diff --git "):
            diff_line = line
        elif line.startswith("new file mode"):
            creation = line
        elif line.startswith("deleted file mode"):
            deletion = line
        elif line.startswith("--- "):
            old_marker = line
        elif line.startswith("+++ "):
            new_marker = line

    header = [diff_line]
    if old_marker == f"--- {DEV_NULL}" and old_count > 0:
        old_marker = f"--- a/{file_path}"
        creation = None
    if new_marker == f"+++ {DEV_NULL}" and new_count > 0:
        new_marker = f"+++ b/{file_path}"
        deletion = None
    if creation and old_marker == f"--- {DEV_NULL}":
        header.append(creation)
    if deletion and new_marker == f"+++ {DEV_NULL}":
        header.append(deletion)
    header.extend([old_marker, new_marker])
    return header


def build_partial_patch(
    hunk: DiffHunk,
    selected: AbstractSet[int] | Iterable[int],
    *,
    file_header: Sequence[str],
    file_path: str,
    direction: PatchDirection,
) -> str:
    """Return a standalone patch containing only the selected changes of ``hunk``."""

    chosen = validate_selection(hunk, selected)

    body: List[str] = []
    old_count = 0
    new_count = 0
    for line in hunk.lines:
        emitted = _emitted_type(line.type, line.line_index in chosen, direction)
        if emitted is None:
            continue
        if emitted is not LineType.ADD:
            old_count += 1
        if emitted is not LineType.DELETE:
            new_count += 1
        body.extend(line.render(emitted))

    old_start = _range_start(hunk.old_start, hunk.old_lines, old_count)
    new_start = _range_start(hunk.new_start, hunk.new_lines, new_count)
    patch_lines = [
        *_file_header(file_header, file_path, old_count, new_count),
        f"@@ -{old_start},{old_count} +{new_start},{new_count} @@",
        *body,
    ]
    return "\n".join(patch_lines) + "\n"


def build_forward_patch(
    hunk: DiffHunk,
    selected: Iterable[int],
    *,
    file_header: Sequence[str],
    file_path: str,
) -> str:
    """Patch for applying the selected lines toward the index or working tree."""
    return build_partial_patch(
        hunk,
        selected,
        file_header=file_header,
        file_path=file_path,
        direction=PatchDirection.FORWARD,
    )


def build_reverse_patch(
    hunk: DiffHunk,
    selected: Iterable[int],
    *,
    file_header: Sequence[str],
    file_path: str,
) -> str:
    """Patch for reverse-applying (undoing) the selected lines."""
    return build_partial_patch(
        hunk,
        selected,
        file_header=file_header,
        file_path=file_path,
        direction=PatchDirection.REVERSE,
    )


__all__ = [
    "PatchDirection",
    "SelectionError",
    "build_forward_patch",
    "build_partial_patch",
    "build_reverse_patch",
    "validate_selection",
]
