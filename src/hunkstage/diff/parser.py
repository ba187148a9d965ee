"""Unified diff parser producing :class:`FileDiff` records for one file."""

from __future__ import annotations

import hashlib
import logging
import re
from typing import List, Sequence, Tuple

from .schema import PATCH_ENCODING_ERRORS, DiffHunk, DiffLine, FileDiff, FileStatus, LineType

LOGGER = logging.getLogger(__name__)

HUNK_HEADER = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@(?P<section>.*)$"
)
_RENAME_FROM = "rename from "


def compute_snapshot(text: str) -> str:
    """Return the freshness token for a diff (or file) payload."""
    return hashlib.sha256(text.encode("utf-8", errors=PATCH_ENCODING_ERRORS)).hexdigest()


def default_file_header(file_path: str) -> List[str]:
    """Minimal ``diff --git`` / ``---`` / ``+++`` triplet for ``file_path``."""
    return [
        f"diff --git a/{file_path} b/{file_path}",
        f"--- a/{file_path}",
        f"+++ b/{file_path}",
    ]


def default_count(value: str | None) -> int:
    """Return the number of lines represented in a hunk header."""
    return int(value) if value is not None else 1


def _format_range(start: int, original_count: str | None, actual: int) -> str:
    """Format an ``@@`` range using actual line counts."""
    if original_count is None and actual == 1:
        return str(start)
    return f"{start},{actual}"


def _has_file_markers(header: Sequence[str]) -> bool:
    return any(line.startswith("--- ") for line in header) and any(line.startswith("+++ ") for line in header)


class DiffParser:
    """Parse ``git diff`` output for a single file.

    Parsing never raises: empty or unrecognisable input yields a
    :class:`FileDiff` with no hunks, which callers treat as "nothing to show".
    """

    def parse(self, diff_text: str | None, file_path: str) -> FileDiff:
        text = diff_text or ""
        snapshot = compute_snapshot(text)
        if not text.strip():
            return FileDiff.empty(file_path, snapshot=snapshot)

        if text.endswith("\n"):
            text = text[:-1]
        lines = text.split("\n")

        status = FileStatus.MODIFIED
        old_path: str | None = None
        is_binary = False
        preamble: List[str] = []
        hunks: List[DiffHunk] = []

        index = 0
        while index < len(lines):
            line = lines[index]
            match = HUNK_HEADER.match(line)
            if match and not is_binary:
                if not hunks and not _has_file_markers(preamble):
                    preamble = default_file_header(file_path)
                hunk, index = self._read_hunk(lines, index, match, preamble)
                hunks.append(hunk)
                continue

            if not hunks:
                if line.startswith("Binary files") or line.startswith("GIT binary patch"):
                    is_binary = True
                elif line.startswith("new file mode"):
                    status = FileStatus.ADDED
                elif line.startswith("deleted file mode"):
                    status = FileStatus.DELETED
                elif line.startswith(_RENAME_FROM):
                    old_path = line[len(_RENAME_FROM):]
                    status = FileStatus.RENAMED
                if line:
                    preamble.append(line)
            index += 1

        if not hunks and not is_binary:
            LOGGER.debug("No hunks found in diff for %s", file_path)

        return FileDiff(
            file_path=file_path,
            old_path=old_path,
            status=status,
            hunks=[] if is_binary else hunks,
            is_binary=is_binary,
            additions=0 if is_binary else sum(hunk.additions for hunk in hunks),
            deletions=0 if is_binary else sum(hunk.deletions for hunk in hunks),
            file_header=preamble,
            snapshot=snapshot,
        )

    def _read_hunk(
        self,
        lines: Sequence[str],
        start: int,
        match: re.Match[str],
        file_header: Sequence[str],
    ) -> Tuple[DiffHunk, int]:
        """Consume one hunk starting at ``start`` and return it with the next index."""

        old_start = int(match.group("old_start"))
        new_start = int(match.group("new_start"))
        declared_old = default_count(match.group("old_count"))
        declared_new = default_count(match.group("new_count"))

        old_cursor, new_cursor = old_start, new_start
        old_remaining, new_remaining = declared_old, declared_new
        body: List[DiffLine] = []

        index = start + 1
        while index < len(lines):
            text = lines[index]
            if text.startswith("\\"):
                if body:
                    body[-1].no_newline_at_eof = True
                index += 1
                continue
            if text.startswith("diff --git ") or HUNK_HEADER.match(text):
                break

            expecting = old_remaining > 0 or new_remaining > 0
            prefix = text[:1]
            if prefix == "+" and (expecting or not text.startswith("+++")):
                body.append(
                    DiffLine(
                        type=LineType.ADD,
                        content=text[1:],
                        new_line_number=new_cursor,
                        line_index=len(body),
                    )
                )
                new_cursor += 1
                new_remaining -= 1
            elif prefix == "-" and (expecting or not text.startswith("---")):
                body.append(
                    DiffLine(
                        type=LineType.DELETE,
                        content=text[1:],
                        old_line_number=old_cursor,
                        line_index=len(body),
                    )
                )
                old_cursor += 1
                old_remaining -= 1
            elif prefix == " " or (not text and old_remaining > 0 and new_remaining > 0):
                body.append(
                    DiffLine(
                        type=LineType.CONTEXT,
                        content=text[1:],
                        old_line_number=old_cursor,
                        new_line_number=new_cursor,
                        line_index=len(body),
                    )
                )
                old_cursor += 1
                new_cursor += 1
                old_remaining -= 1
                new_remaining -= 1
            else:
                break
            index += 1

        header = match.group(0)
        seen_old = sum(1 for line in body if line.type is not LineType.ADD)
        seen_new = sum(1 for line in body if line.type is not LineType.DELETE)
        if seen_old != declared_old or seen_new != declared_new:
            LOGGER.warning(
                "Adjusted hunk counts for %s (-%d/+%d -> -%d/+%d)",
                header,
                declared_old,
                declared_new,
                seen_old,
                seen_new,
            )
            header = (
                f"@@ -{_format_range(old_start, match.group('old_count'), seen_old)} "
                f"+{_format_range(new_start, match.group('new_count'), seen_new)} @@"
                f"{match.group('section')}"
            )

        hunk = DiffHunk(
            header=header,
            old_start=old_start,
            old_lines=seen_old,
            new_start=new_start,
            new_lines=seen_new,
            lines=body,
        )
        hunk.raw_patch = "\n".join(file_header) + "\n" + hunk.render()
        return hunk, index

    def from_untracked_content(self, file_path: str, content: str) -> FileDiff:
        """Describe an untracked file as a single all-addition hunk."""

        snapshot = compute_snapshot(content)
        if not content:
            return FileDiff(file_path=file_path, status=FileStatus.UNTRACKED, snapshot=snapshot)

        missing_newline = not content.endswith("\n")
        texts = (content if missing_newline else content[:-1]).split("\n")
        body = [
            DiffLine(
                type=LineType.ADD,
                content=text,
                new_line_number=position + 1,
                line_index=position,
            )
            for position, text in enumerate(texts)
        ]
        if missing_newline:
            body[-1].no_newline_at_eof = True

        file_header = [
            f"diff --git a/{file_path} b/{file_path}",
            "new file mode 100644",
            "--- /dev/null",
            f"+++ b/{file_path}",
        ]
        hunk = DiffHunk(
            header=f"@@ -0,0 +1,{len(body)} @@",
            old_start=0,
            old_lines=0,
            new_start=1,
            new_lines=len(body),
            lines=body,
        )
        hunk.raw_patch = "\n".join(file_header) + "\n" + hunk.render()
        return FileDiff(
            file_path=file_path,
            status=FileStatus.UNTRACKED,
            hunks=[hunk],
            additions=len(body),
            deletions=0,
            file_header=file_header,
            snapshot=snapshot,
        )

    def binary_untracked(self, file_path: str, payload: bytes) -> FileDiff:
        """Describe an untracked file whose content is not text."""
        return FileDiff(
            file_path=file_path,
            status=FileStatus.UNTRACKED,
            is_binary=True,
            snapshot=hashlib.sha256(payload).hexdigest(),
        )


_DEFAULT_PARSER = DiffParser()


def parse_diff(diff_text: str | None, file_path: str) -> FileDiff:
    """Parse ``diff_text`` for ``file_path`` with the shared parser."""
    return _DEFAULT_PARSER.parse(diff_text, file_path)


__all__ = [
    "DiffParser",
    "HUNK_HEADER",
    "compute_snapshot",
    "default_count",
    "default_file_header",
    "parse_diff",
]
