from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import List, Sequence

import pytest

from hunkstage.diff.schema import FileStatus, LineType, Selection
from hunkstage.repository import RepositoryContext
from hunkstage.staging import (
    GENERIC_APPLY_FAILURE,
    StagingAction,
    StagingErrorKind,
    apply_selection,
    discard_file_changes,
    discard_hunk,
    discard_lines,
    get_file_diff,
    get_working_status,
    list_changed_files,
    stage_all,
    stage_file,
    stage_hunk,
    stage_lines,
    unstage_all,
    unstage_file,
    unstage_hunk,
    unstage_lines,
)
from hunkstage.tools.patch import PatchError
from hunkstage.tools.vcs import GitRepository


def _numbered() -> List[str]:
    return [f"line {number}" for number in range(1, 31)]


def _content(lines: Sequence[str]) -> str:
    return "".join(f"{line}\n" for line in lines)


def _indices(hunk, contents: Sequence[str]) -> List[int]:
    return [line.line_index for line in hunk.lines if line.is_change and line.content in contents]


def _two_hunk_edit(working_copy) -> None:
    edited = _numbered()
    edited[1] = "line two"
    edited[24] = "line twenty-five"
    working_copy.write("notes.txt", _content(edited))


def test_stage_hunk_moves_only_that_hunk_into_the_index(working_copy) -> None:
    _two_hunk_edit(working_copy)
    file_diff = get_file_diff(working_copy.ctx, "notes.txt")
    assert file_diff is not None
    assert len(file_diff.hunks) == 2

    result = stage_hunk(working_copy.ctx, "notes.txt", 1)

    assert result.success, result.message
    assert result.message == "Staged hunk 1 in notes.txt"
    index_lines = working_copy.index_content("notes.txt").splitlines()
    assert index_lines[1] == "line 2"
    assert index_lines[24] == "line twenty-five"

    remaining = get_file_diff(working_copy.ctx, "notes.txt")
    assert remaining is not None
    assert len(remaining.hunks) == 1
    assert "+line two" in remaining.hunks[0].raw_patch


def test_unstage_hunk_reverts_only_that_hunk_in_the_index(working_copy) -> None:
    _two_hunk_edit(working_copy)
    assert stage_file(working_copy.ctx, "notes.txt").success

    result = unstage_hunk(working_copy.ctx, "notes.txt", 0)

    assert result.success, result.message
    assert result.message == "Unstaged hunk 0 in notes.txt"
    index_lines = working_copy.index_content("notes.txt").splitlines()
    assert index_lines[1] == "line 2"
    assert index_lines[24] == "line twenty-five"
    worktree_lines = working_copy.read("notes.txt").splitlines()
    assert worktree_lines[1] == "line two"


def test_discard_hunk_restores_the_working_tree_for_that_hunk(working_copy) -> None:
    _two_hunk_edit(working_copy)

    result = discard_hunk(working_copy.ctx, "notes.txt", 0)

    assert result.success, result.message
    worktree_lines = working_copy.read("notes.txt").splitlines()
    assert worktree_lines[1] == "line 2"
    assert worktree_lines[24] == "line twenty-five"
    assert working_copy.staged_diff("notes.txt") == ""


@pytest.mark.parametrize(
    ("selected", "expected"),
    [
        (["A"], _numbered()[:4] + ["A"] + _numbered()[4:]),
        (["B"], _numbered()[:4] + ["B"] + _numbered()[4:]),
        (["line 4"], _numbered()[:3] + _numbered()[4:]),
        (["line 4", "A"], _numbered()[:3] + ["A"] + _numbered()[4:]),
        (["line 4", "A", "B"], _numbered()[:3] + ["A", "B"] + _numbered()[4:]),
    ],
)
def test_stage_then_unstage_lines_round_trips_the_index(working_copy, selected, expected) -> None:
    edited = _numbered()
    edited[3:4] = ["A", "B"]
    working_copy.write("notes.txt", _content(edited))
    hunk = get_file_diff(working_copy.ctx, "notes.txt").hunks[0]

    staged = stage_lines(working_copy.ctx, "notes.txt", 0, _indices(hunk, selected))

    assert staged.success, staged.message
    assert working_copy.index_content("notes.txt") == _content(expected)
    assert working_copy.read("notes.txt") == _content(edited)

    staged_hunk = get_file_diff(working_copy.ctx, "notes.txt", staged=True).hunks[0]
    unstaged = unstage_lines(working_copy.ctx, "notes.txt", 0, staged_hunk.changed_line_indices())

    assert unstaged.success, unstaged.message
    assert working_copy.staged_diff("notes.txt") == ""
    assert working_copy.index_content("notes.txt") == _content(_numbered())
    assert working_copy.read("notes.txt") == _content(edited)


def test_unstage_single_line_keeps_the_rest_staged(working_copy) -> None:
    edited = _numbered()
    edited[3:3] = ["A", "B"]
    working_copy.write("notes.txt", _content(edited))
    assert stage_file(working_copy.ctx, "notes.txt").success
    hunk = get_file_diff(working_copy.ctx, "notes.txt", staged=True).hunks[0]

    result = unstage_lines(working_copy.ctx, "notes.txt", 0, _indices(hunk, ["A"]))

    assert result.success, result.message
    assert result.message == "Unstaged 1 line(s) in notes.txt"
    assert working_copy.index_content("notes.txt") == _content(_numbered()[:3] + ["B"] + _numbered()[3:])
    assert working_copy.read("notes.txt") == _content(edited)


def test_discard_lines_restores_only_selected_deletions(working_copy) -> None:
    edited = _numbered()
    edited[3:4] = ["A"]
    working_copy.write("notes.txt", _content(edited))
    hunk = get_file_diff(working_copy.ctx, "notes.txt").hunks[0]

    result = discard_lines(working_copy.ctx, "notes.txt", 0, _indices(hunk, ["line 4"]))

    assert result.success, result.message
    assert working_copy.read("notes.txt") == _content(_numbered()[:4] + ["A"] + _numbered()[4:])
    assert working_copy.staged_diff("notes.txt") == ""


def test_discard_lines_drops_only_selected_additions(working_copy) -> None:
    edited = _numbered()
    edited[3:3] = ["A", "B"]
    working_copy.write("notes.txt", _content(edited))
    hunk = get_file_diff(working_copy.ctx, "notes.txt").hunks[0]

    result = discard_lines(working_copy.ctx, "notes.txt", 0, _indices(hunk, ["A"]))

    assert result.success, result.message
    assert working_copy.read("notes.txt") == _content(_numbered()[:3] + ["B"] + _numbered()[3:])


def test_selecting_every_change_matches_stage_hunk(working_copy) -> None:
    edited = _numbered()
    edited[3:4] = ["A", "B"]
    working_copy.write("notes.txt", _content(edited))
    hunk = get_file_diff(working_copy.ctx, "notes.txt").hunks[0]

    result = stage_lines(working_copy.ctx, "notes.txt", 0, hunk.changed_line_indices())

    assert result.success, result.message
    assert working_copy.index_content("notes.txt") == _content(edited)
    assert working_copy.unstaged_diff("notes.txt") == ""


def test_untracked_file_is_described_as_one_added_hunk(working_copy) -> None:
    working_copy.write("draft.txt", "a\nb\nc\n")

    file_diff = get_file_diff(working_copy.ctx, "draft.txt")

    assert file_diff is not None
    assert file_diff.status is FileStatus.UNTRACKED
    assert len(file_diff.hunks) == 1
    assert [line.content for line in file_diff.hunks[0].lines] == ["a", "b", "c"]
    assert get_file_diff(working_copy.ctx, "draft.txt", staged=True) is None


def test_stage_lines_of_untracked_file_creates_partial_index_entry(working_copy) -> None:
    working_copy.write("draft.txt", "a\nb\nc\n")

    result = stage_lines(working_copy.ctx, "draft.txt", 0, [0, 2])

    assert result.success, result.message
    assert working_copy.index_content("draft.txt") == "a\nc\n"
    assert working_copy.read("draft.txt") == "a\nb\nc\n"
    remaining = get_file_diff(working_copy.ctx, "draft.txt")
    assert remaining is not None
    assert remaining.status is FileStatus.MODIFIED
    assert [line.content for line in remaining.hunks[0].lines if line.type is LineType.ADD] == ["b"]


def test_stage_hunk_of_untracked_file_stages_whole_content(working_copy) -> None:
    working_copy.write("draft.txt", "a\nb\nc\n")

    result = stage_hunk(working_copy.ctx, "draft.txt", 0)

    assert result.success, result.message
    assert working_copy.index_content("draft.txt") == "a\nb\nc\n"


def test_discard_lines_of_untracked_file_edits_the_working_tree(working_copy) -> None:
    working_copy.write("draft.txt", "a\nb\nc\n")

    result = discard_lines(working_copy.ctx, "draft.txt", 0, [1])

    assert result.success, result.message
    assert working_copy.read("draft.txt") == "a\nc\n"


@pytest.mark.parametrize("line_indices", [[], [0], [99], [-1]])
def test_invalid_selection_leaves_repository_untouched(working_copy, line_indices) -> None:
    _two_hunk_edit(working_copy)
    before = working_copy.read("notes.txt")

    result = stage_lines(working_copy.ctx, "notes.txt", 0, line_indices)

    assert result.success is False
    assert result.error is StagingErrorKind.INVALID_SELECTION
    assert working_copy.staged_diff("notes.txt") == ""
    assert working_copy.read("notes.txt") == before


def test_missing_hunk_is_an_invalid_selection(working_copy) -> None:
    _two_hunk_edit(working_copy)

    result = stage_hunk(working_copy.ctx, "notes.txt", 7)

    assert result.error is StagingErrorKind.INVALID_SELECTION
    assert result.message == "Hunk 7 not found in notes.txt (2 hunk(s))"
    assert working_copy.staged_diff("notes.txt") == ""


def test_operations_without_a_diff_report_no_diff_found(working_copy) -> None:
    staged_side = unstage_hunk(working_copy.ctx, "notes.txt", 0)
    unstaged_side = stage_lines(working_copy.ctx, "notes.txt", 0, [1])

    assert staged_side.error is StagingErrorKind.NO_DIFF_FOUND
    assert staged_side.message == "No staged changes found for notes.txt"
    assert unstaged_side.error is StagingErrorKind.NO_DIFF_FOUND
    assert unstaged_side.message == "No unstaged changes found for notes.txt"


def test_stale_snapshot_is_refused(working_copy) -> None:
    edited = _numbered()
    edited[3:4] = ["A", "B"]
    working_copy.write("notes.txt", _content(edited))
    file_diff = get_file_diff(working_copy.ctx, "notes.txt")
    selection = Selection.of("notes.txt", 0, _indices(file_diff.hunks[0], ["A"]), snapshot=file_diff.snapshot)

    edited[0] = "line one"
    working_copy.write("notes.txt", _content(edited))
    result = apply_selection(working_copy.ctx, StagingAction.STAGE, selection)

    assert result.error is StagingErrorKind.INVALID_SELECTION
    assert "changed since the selection was made" in result.message
    assert working_copy.staged_diff("notes.txt") == ""


def test_fresh_snapshot_is_accepted(working_copy) -> None:
    edited = _numbered()
    edited[3:4] = ["A", "B"]
    working_copy.write("notes.txt", _content(edited))
    file_diff = get_file_diff(working_copy.ctx, "notes.txt")

    result = stage_lines(
        working_copy.ctx,
        "notes.txt",
        0,
        _indices(file_diff.hunks[0], ["A"]),
        snapshot=file_diff.snapshot,
    )

    assert result.success, result.message
    assert result.message == "Staged 1 line(s) in notes.txt"


def test_apply_failure_carries_git_message(working_copy, monkeypatch) -> None:
    _two_hunk_edit(working_copy)

    def _fail(*_args, **_kwargs):
        raise PatchError("error: patch failed: notes.txt:1", details={"telemetry": {"mode": "index"}})

    monkeypatch.setattr("hunkstage.staging.apply_patch", _fail)
    result = stage_hunk(working_copy.ctx, "notes.txt", 0)

    assert result.success is False
    assert result.error is StagingErrorKind.APPLY_FAILURE
    assert result.message == "error: patch failed: notes.txt:1"
    assert result.details == {"telemetry": {"mode": "index"}}


def test_apply_failure_without_message_uses_generic_text(working_copy, monkeypatch) -> None:
    _two_hunk_edit(working_copy)

    def _fail(*_args, **_kwargs):
        raise PatchError("")

    monkeypatch.setattr("hunkstage.staging.apply_patch", _fail)
    result = discard_hunk(working_copy.ctx, "notes.txt", 0)

    assert result.error is StagingErrorKind.APPLY_FAILURE
    assert result.message == GENERIC_APPLY_FAILURE


LEGACY_BYTES = b"caf\xe9 one\nline two\nline three\n"


def _legacy_edit(working_copy) -> None:
    working_copy.write_bytes("legacy.txt", LEGACY_BYTES)
    working_copy.commit("Add latin-1 file")
    working_copy.write_bytes("legacy.txt", LEGACY_BYTES.replace(b"line two", b"line 2"))


def test_stage_hunk_of_non_utf8_file_keeps_original_bytes(working_copy) -> None:
    _legacy_edit(working_copy)

    result = stage_hunk(working_copy.ctx, "legacy.txt", 0)

    assert result.success, result.message
    assert working_copy.index_bytes("legacy.txt") == b"caf\xe9 one\nline 2\nline three\n"


def test_line_operations_on_non_utf8_file(working_copy) -> None:
    _legacy_edit(working_copy)
    hunk = get_file_diff(working_copy.ctx, "legacy.txt").hunks[0]

    staged = stage_lines(working_copy.ctx, "legacy.txt", 0, _indices(hunk, ["line 2"]))

    assert staged.success, staged.message
    assert working_copy.index_bytes("legacy.txt") == b"caf\xe9 one\nline two\nline 2\nline three\n"

    remaining = get_file_diff(working_copy.ctx, "legacy.txt").hunks[0]
    discarded = discard_lines(working_copy.ctx, "legacy.txt", 0, _indices(remaining, ["line two"]))

    assert discarded.success, discarded.message
    assert (working_copy.root / "legacy.txt").read_bytes() == working_copy.index_bytes("legacy.txt")


def test_whole_file_operations(working_copy) -> None:
    _two_hunk_edit(working_copy)
    working_copy.write("draft.txt", "draft\n")

    assert stage_all(working_copy.ctx).success
    assert working_copy.index_content("draft.txt") == "draft\n"
    assert unstage_file(working_copy.ctx, "notes.txt").success
    assert working_copy.staged_diff("notes.txt") == ""
    assert unstage_all(working_copy.ctx).success
    assert working_copy.staged_diff("draft.txt") == ""

    assert stage_file(working_copy.ctx, "notes.txt").success
    assert working_copy.index_content("notes.txt") == working_copy.read("notes.txt")

    working_copy.write("notes.txt", _content(_numbered()[:-1]))
    assert discard_file_changes(working_copy.ctx, "notes.txt").success
    assert working_copy.read("notes.txt") == working_copy.index_content("notes.txt")


def test_file_operation_failure_is_a_git_failure(working_copy) -> None:
    result = discard_file_changes(working_copy.ctx, "missing.txt")

    assert result.success is False
    assert result.error is StagingErrorKind.GIT_FAILURE
    assert "missing.txt" in result.message


def test_list_changed_files_reports_each_side(working_copy) -> None:
    _two_hunk_edit(working_copy)
    assert stage_hunk(working_copy.ctx, "notes.txt", 0).success
    working_copy.write("draft.txt", "draft\n")

    files = {(item.path, item.staged): item.status for item in list_changed_files(working_copy.ctx)}

    assert files == {
        ("notes.txt", True): FileStatus.MODIFIED,
        ("notes.txt", False): FileStatus.MODIFIED,
        ("draft.txt", False): FileStatus.UNTRACKED,
    }


def test_working_status_summarises_both_sides(working_copy) -> None:
    clean = get_working_status(working_copy.ctx)
    assert clean.has_changes is False
    assert clean.files == []

    _two_hunk_edit(working_copy)
    assert stage_hunk(working_copy.ctx, "notes.txt", 0).success

    status = get_working_status(working_copy.ctx)

    assert status.has_changes is True
    assert status.staged_count == 1
    assert status.unstaged_count == 1
    assert (status.additions, status.deletions) == (2, 2)


def test_contexts_drive_linked_worktrees_independently(working_copy, tmp_path: Path) -> None:
    linked_root = tmp_path / "linked"
    working_copy.repo.git("worktree", "add", "-b", "side", str(linked_root))
    linked = RepositoryContext(repo=GitRepository(linked_root))

    (linked_root / "notes.txt").write_text(_content(["changed"] + _numbered()[1:]), encoding="utf-8")
    result = stage_hunk(linked, "notes.txt", 0)

    assert result.success, result.message
    assert linked.repo.diff("notes.txt", cached=True) != ""
    assert working_copy.staged_diff("notes.txt") == ""
    assert get_file_diff(working_copy.ctx, "notes.txt") is None


def test_zero_context_diffs_still_apply(working_copy) -> None:
    ctx = RepositoryContext(repo=working_copy.repo, context_lines=0)
    edited = _numbered()
    edited[9] = "line ten"
    working_copy.write("notes.txt", _content(edited))
    hunk = get_file_diff(ctx, "notes.txt").hunks[0]
    assert hunk.header == "@@ -10 +10 @@"

    partial = stage_lines(ctx, "notes.txt", 0, _indices(hunk, ["line ten"]))

    assert partial.success, partial.message
    assert working_copy.index_content("notes.txt") == _content(_numbered()[:10] + ["line ten"] + _numbered()[10:])

    whole = stage_hunk(ctx, "notes.txt", 0)

    assert whole.success, whole.message
    assert working_copy.index_content("notes.txt") == _content(edited)


def test_missing_git_executable_is_an_apply_failure(working_copy, monkeypatch) -> None:
    _two_hunk_edit(working_copy)

    def _missing(*_args, **_kwargs):
        raise FileNotFoundError("git")

    monkeypatch.setattr("hunkstage.tools.patch.subprocess", SimpleNamespace(run=_missing))
    result = stage_hunk(working_copy.ctx, "notes.txt", 0)

    assert result.success is False
    assert result.error is StagingErrorKind.APPLY_FAILURE
    assert result.message.startswith("Unable to run git apply")
    assert working_copy.staged_diff("notes.txt") == ""
