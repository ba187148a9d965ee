"""``git apply`` wrapper with dry-run validation and structured telemetry."""

from __future__ import annotations

import json
import logging
import re
import subprocess
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, List, Mapping, Sequence, Tuple

from ..diff.parser import HUNK_HEADER, default_count
from ..diff.schema import PATCH_ENCODING_ERRORS


class PatchError(RuntimeError):
    """Raised when a patch fails validation or application."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ApplyMode(str, Enum):
    """Targets understood by ``git apply`` and the flags each one needs."""

    WORKTREE = "worktree"
    INDEX = "index"
    INDEX_REVERSE = "index-reverse"
    WORKTREE_REVERSE = "worktree-reverse"

    @property
    def flags(self) -> Tuple[str, ...]:
        if self is ApplyMode.WORKTREE:
            return ()
        if self is ApplyMode.INDEX:
            return ("--cached",)
        if self is ApplyMode.INDEX_REVERSE:
            return ("--cached", "--reverse")
        if self is ApplyMode.WORKTREE_REVERSE:
            return ("--reverse",)
        raise ValueError(f"Unknown apply mode: {self!r}")

    @classmethod
    def from_flags(cls, *, cached: bool, reverse: bool) -> "ApplyMode":
        if cached:
            return cls.INDEX_REVERSE if reverse else cls.INDEX
        return cls.WORKTREE_REVERSE if reverse else cls.WORKTREE


@dataclass(slots=True)
class PatchTelemetry:
    """Structured telemetry for patch validation and application."""

    mode: ApplyMode = ApplyMode.WORKTREE
    patch_path: Path | None = None
    patch_bytes: int = 0
    patch_lines: int = 0
    check_returncode: int | None = None
    check_stdout: str = ""
    check_stderr: str = ""
    failing_hunks: Tuple[Mapping[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "patch_path": self.patch_path.as_posix() if self.patch_path else None,
            "patch_bytes": self.patch_bytes,
            "patch_lines": self.patch_lines,
            "check": {
                "returncode": self.check_returncode,
                "stdout": self.check_stdout,
                "stderr": self.check_stderr,
            },
            "failing_hunks": [dict(item) for item in self.failing_hunks],
        }


@dataclass(slots=True)
class PatchResult:
    """Outcome of applying a patch to the repository."""

    command: Tuple[str, ...]
    stdout: str
    stderr: str
    telemetry: PatchTelemetry | None = None


TELEMETRY_LOGGER = logging.getLogger("hunkstage.telemetry")

_PATCH_FAILED_RE = re.compile(r"error: patch failed: (?P<path>.+?)(?::(?P<line>\d+))?$")
_PATCH_DOES_NOT_APPLY_RE = re.compile(r"error: (?P<path>.+?): patch does not apply")
_HUNK_FAILED_RE = re.compile(r"error: (?P<path>.+?): hunk #(?P<hunk>\d+) failed at (?P<line>-?\d+)")


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def _emit_patch_event(event: str, **fields: Any) -> None:
    """Log structured telemetry events when applying patches."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    message = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    TELEMETRY_LOGGER.info(message)


def _parse_git_apply_failures(output: str) -> Tuple[Mapping[str, Any], ...]:
    """Parse git apply stderr for failing hunk metadata."""
    if not output:
        return ()
    entries: list[dict[str, Any]] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _HUNK_FAILED_RE.match(line)
        if match:
            entries.append(
                {
                    "path": match.group("path"),
                    "hunk": int(match.group("hunk")),
                    "line": int(match.group("line")),
                    "reason": "hunk_failed",
                }
            )
            continue
        match = _PATCH_FAILED_RE.match(line)
        if match:
            line_text = match.group("line")
            entries.append(
                {
                    "path": match.group("path"),
                    "line": int(line_text) if line_text is not None else None,
                    "reason": "patch_failed",
                }
            )
            continue
        match = _PATCH_DOES_NOT_APPLY_RE.match(line)
        if match:
            entries.append(
                {
                    "path": match.group("path"),
                    "reason": "does_not_apply",
                }
            )
            continue
    return tuple(entries)


def validate_hunks(patch: str) -> None:
    """Ensure each hunk in the patch reports accurate line counts."""
    lines = patch[:-1].split("\n") if patch.endswith("\n") else patch.split("\n")
    index = 0
    seen_hunk = False

    while index < len(lines):
        line = lines[index]
        if not line.startswith("@@ "):
            index += 1
            continue

        match = HUNK_HEADER.match(line)
        if not match:
            raise PatchError(f"Malformed hunk header: {line}")
        seen_hunk = True

        expected_removed = default_count(match.group("old_count"))
        expected_added = default_count(match.group("new_count"))
        seen_removed = 0
        seen_added = 0

        index += 1
        while index < len(lines):
            candidate = lines[index]
            if candidate.startswith("diff --git ") or candidate.startswith("@@ "):
                break
            if candidate.startswith("\\"):
                index += 1
                continue

            prefix = candidate[:1]
            if prefix == "+":
                seen_added += 1
            elif prefix == "-":
                seen_removed += 1
            else:
                seen_added += 1
                seen_removed += 1
            index += 1

        if seen_removed != expected_removed or seen_added != expected_added:
            raise PatchError(
                "Patch hunk line count mismatch: "
                f"expected -{expected_removed}/+{expected_added} "
                f"but saw -{seen_removed}/+{seen_added}."
            )

    if not seen_hunk:
        raise PatchError("Patch contains no hunks.")


def has_zero_context_hunk(patch: str) -> bool:
    """Return ``True`` when some hunk carries no context lines at all.

    ``git apply`` only accepts such hunks (``git diff -U0`` output) with
    ``--unidiff-zero``.
    """
    in_hunk = False
    hunk_has_context = True
    for line in patch.split("\n"):
        if line.startswith("@@ ") or line.startswith("diff --git "):
            if in_hunk and not hunk_has_context:
                return True
            in_hunk = line.startswith("@@ ")
            hunk_has_context = False
            continue
        if in_hunk and line.startswith(" "):
            hunk_has_context = True
    return in_hunk and not hunk_has_context


def _run_git_apply(args: Sequence[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(
            list(args),
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as error:
        raise PatchError(f"Unable to run git apply: {error}") from error


def apply_patch(
    patch: str,
    *,
    repo_root: Path | str = ".",
    mode: ApplyMode = ApplyMode.WORKTREE,
    check: bool = True,
    unidiff_zero: bool = False,
) -> PatchResult:
    """Apply a unified diff ``patch`` to ``repo_root`` using ``mode``.

    ``git apply`` is all-or-nothing per invocation: on failure neither the
    index nor the working tree is modified.  The message from git is carried
    verbatim by the raised :class:`PatchError`.  ``--unidiff-zero`` is added
    when ``unidiff_zero`` is set or when a hunk has no context lines.
    """

    repo_root_path = Path(repo_root).resolve()
    validate_hunks(patch)

    telemetry = PatchTelemetry(
        mode=mode,
        patch_bytes=len(patch.encode("utf-8", errors=PATCH_ENCODING_ERRORS)),
        patch_lines=patch.count("\n"),
    )
    flags: List[str] = list(mode.flags)
    if unidiff_zero or has_zero_context_hunk(patch):
        flags.append("--unidiff-zero")
    command: Tuple[str, ...] = ("git", "apply", *flags)

    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        errors=PATCH_ENCODING_ERRORS,
        newline="",
        suffix=".patch",
        delete=False,
    ) as handle:
        handle.write(patch)
        handle.flush()
        temp_path = Path(handle.name)

    telemetry.patch_path = temp_path

    try:
        if check:
            dry_run = _run_git_apply([*command, "--check", str(temp_path)], cwd=repo_root_path)
            telemetry.check_returncode = dry_run.returncode
            telemetry.check_stdout = dry_run.stdout.strip()
            telemetry.check_stderr = dry_run.stderr.strip()
            combined_output = "\n".join(
                part for part in (dry_run.stderr, dry_run.stdout) if part
            )
            telemetry.failing_hunks = _parse_git_apply_failures(combined_output)

            if dry_run.returncode != 0:
                message = telemetry.check_stderr or telemetry.check_stdout
                payload = telemetry.to_dict()
                _emit_patch_event(
                    "patch_validation_failed",
                    stage="git-apply-check",
                    telemetry=payload,
                )
                raise PatchError(message, details={"telemetry": payload})

            _emit_patch_event(
                "patch_validation_passed",
                telemetry=telemetry.to_dict(),
            )

        result = _run_git_apply([*command, str(temp_path)], cwd=repo_root_path)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip()
            telemetry.failing_hunks = _parse_git_apply_failures(result.stderr)
            payload = telemetry.to_dict()
            _emit_patch_event(
                "patch_apply_failed",
                telemetry=payload,
            )
            raise PatchError(message, details={"telemetry": payload})

        _emit_patch_event(
            "patch_apply_succeeded",
            telemetry=telemetry.to_dict(),
        )

        return PatchResult(
            command=command,
            stdout=result.stdout,
            stderr=result.stderr,
            telemetry=telemetry,
        )
    finally:
        temp_path.unlink(missing_ok=True)


__all__ = [
    "ApplyMode",
    "PatchError",
    "PatchResult",
    "PatchTelemetry",
    "apply_patch",
    "has_zero_context_hunk",
    "validate_hunks",
]
