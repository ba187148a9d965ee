"""CLI commands for inspecting and partially staging working-copy changes."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from .diff.schema import PATCH_ENCODING_ERRORS, FileDiff, Selection
from .repository import RepositoryContext
from .staging import (
    StagingAction,
    StagingResult,
    apply_selection,
    discard_file_changes,
    discard_hunk,
    get_file_diff,
    get_working_status,
    stage_all,
    stage_file,
    stage_hunk,
    unstage_all,
    unstage_file,
    unstage_hunk,
)
from .tools.patch import ApplyMode, PatchError, apply_patch
from .tools.vcs import GitError

APP_HELP = "Stage, unstage and discard changes by file, hunk or line."
DEFAULT_CONFIG_NAME = "hunkstage.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "repository": {
        "root": ".",
    },
    "apply": {
        "check": True,
    },
    "diff": {
        "context_lines": 3,
    },
    "logging": {
        "level": "WARNING",
        "telemetry": False,
    },
}


@dataclass(slots=True)
class CliState:
    """Global options shared by every command."""

    config_path: Path
    repo: Optional[str] = None


def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


app = typer.Typer(help=APP_HELP)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk; a missing file means defaults."""
    if not config_path.exists():
        return _copy_config_template()

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}", err=True)
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.", err=True)
        raise typer.Exit(code=1)

    return data


def _configure_logging(config: Dict[str, Any]) -> None:
    logging_cfg = config.get("logging") or {}
    level_name = str(logging_cfg.get("level") or "WARNING").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    telemetry = logging.getLogger("hunkstage.telemetry")
    telemetry.setLevel(logging.INFO if logging_cfg.get("telemetry") else logging.WARNING)


def _open_context(ctx: typer.Context) -> RepositoryContext:
    state: CliState = ctx.obj
    config = load_config(state.config_path)
    _configure_logging(config)

    base_dir = state.config_path.parent if state.config_path.exists() else Path.cwd()
    if state.repo:
        repository_cfg = dict(config.get("repository") or {})
        repository_cfg["root"] = state.repo
        config = {**config, "repository": repository_cfg}
        base_dir = Path.cwd()

    try:
        return RepositoryContext.from_config(config, base_dir=base_dir)
    except GitError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=1) from error


def _report(result: StagingResult) -> None:
    if result.success:
        typer.echo(result.message)
        return
    label = result.error.value if result.error else "error"
    typer.echo(f"{label}: {result.message}", err=True)
    raise typer.Exit(code=1)


def _render_file_diff(file_diff: FileDiff) -> None:
    summary = f"{file_diff.file_path} [{file_diff.status.value}] +{file_diff.additions} -{file_diff.deletions}"
    if file_diff.old_path:
        summary += f" (from {file_diff.old_path})"
    typer.echo(summary)
    typer.echo(f"snapshot: {file_diff.snapshot}")
    if file_diff.is_binary:
        typer.echo("Binary file; no hunks.")
        return
    for hunk_index, hunk in enumerate(file_diff.hunks):
        typer.echo(f"[{hunk_index}] {hunk.header}")
        for line in hunk.lines:
            typer.echo(f"{line.line_index:>5} {line.marker}{line.content}")


@app.callback()
def main(
    ctx: typer.Context,
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    repo: Optional[str] = typer.Option(
        None,
        "--repo",
        "-r",
        help="Repository (or worktree) to operate on; overrides the configuration.",
    ),
) -> None:
    ctx.obj = CliState(config_path=Path(config), repo=repo)


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write a default configuration file."""
    state: CliState = ctx.obj
    if state.config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {state.config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    _write_config(state.config_path, _copy_config_template())
    typer.echo(f"Wrote configuration to {state.config_path}")


@app.command()
def status(ctx: typer.Context) -> None:
    """List files with pending changes."""
    repo_ctx = _open_context(ctx)
    working = get_working_status(repo_ctx)
    branch = repo_ctx.repo.current_branch() or "(detached)"
    typer.echo(f"On {branch}")
    if not working.has_changes:
        typer.echo("No pending changes.")
        return
    for item in working.files:
        side = "staged" if item.staged else "unstaged"
        typer.echo(f"{side:<9} {item.status.value:<10} {item.path}")
    typer.echo(
        f"{working.staged_count} staged, {working.unstaged_count} unstaged, "
        f"+{working.additions} -{working.deletions}"
    )


@app.command()
def diff(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File to show."),
    staged: bool = typer.Option(False, "--staged", help="Show the staged diff instead of the unstaged one."),
    as_json: bool = typer.Option(False, "--json", help="Emit the parsed diff as JSON."),
) -> None:
    """Show the parsed diff of one file with line indices."""
    repo_ctx = _open_context(ctx)
    file_diff = get_file_diff(repo_ctx, path, staged=staged)
    if file_diff is None:
        typer.echo(f"No {'staged' if staged else 'unstaged'} changes for {path}.")
        return
    if as_json:
        typer.echo(file_diff.model_dump_json(indent=2))
        return
    _render_file_diff(file_diff)


@app.command("stage-hunk")
def stage_hunk_command(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File containing the hunk."),
    hunk: int = typer.Argument(..., help="Zero-based hunk index in the unstaged diff."),
) -> None:
    """Stage one hunk."""
    _report(stage_hunk(_open_context(ctx), path, hunk))


@app.command("unstage-hunk")
def unstage_hunk_command(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File containing the hunk."),
    hunk: int = typer.Argument(..., help="Zero-based hunk index in the staged diff."),
) -> None:
    """Unstage one hunk."""
    _report(unstage_hunk(_open_context(ctx), path, hunk))


@app.command("discard-hunk")
def discard_hunk_command(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File containing the hunk."),
    hunk: int = typer.Argument(..., help="Zero-based hunk index in the unstaged diff."),
) -> None:
    """Discard one hunk from the working tree."""
    _report(discard_hunk(_open_context(ctx), path, hunk))


def _run_lines(
    ctx: typer.Context,
    action: StagingAction,
    path: str,
    hunk: int,
    lines: Optional[List[int]],
    snapshot: Optional[str],
) -> None:
    selection = Selection.of(path, hunk, lines or [], snapshot=snapshot)
    _report(apply_selection(_open_context(ctx), action, selection))


_LINE_HELP = "Line index within the hunk (repeatable)."
_SNAPSHOT_HELP = "Snapshot printed by 'diff'; refuse to act if the diff changed since."


@app.command("stage-lines")
def stage_lines_command(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File containing the hunk."),
    hunk: int = typer.Argument(..., help="Zero-based hunk index in the unstaged diff."),
    line: List[int] = typer.Option(None, "--line", "-l", help=_LINE_HELP),
    snapshot: Optional[str] = typer.Option(None, "--snapshot", help=_SNAPSHOT_HELP),
) -> None:
    """Stage selected lines of one hunk."""
    _run_lines(ctx, StagingAction.STAGE, path, hunk, line, snapshot)


@app.command("unstage-lines")
def unstage_lines_command(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File containing the hunk."),
    hunk: int = typer.Argument(..., help="Zero-based hunk index in the staged diff."),
    line: List[int] = typer.Option(None, "--line", "-l", help=_LINE_HELP),
    snapshot: Optional[str] = typer.Option(None, "--snapshot", help=_SNAPSHOT_HELP),
) -> None:
    """Unstage selected lines of one hunk."""
    _run_lines(ctx, StagingAction.UNSTAGE, path, hunk, line, snapshot)


@app.command("discard-lines")
def discard_lines_command(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File containing the hunk."),
    hunk: int = typer.Argument(..., help="Zero-based hunk index in the unstaged diff."),
    line: List[int] = typer.Option(None, "--line", "-l", help=_LINE_HELP),
    snapshot: Optional[str] = typer.Option(None, "--snapshot", help=_SNAPSHOT_HELP),
) -> None:
    """Discard selected lines of one hunk from the working tree."""
    _run_lines(ctx, StagingAction.DISCARD, path, hunk, line, snapshot)


@app.command()
def stage(
    ctx: typer.Context,
    paths: List[str] = typer.Argument(None, help="Files to stage."),
    all_changes: bool = typer.Option(False, "--all", "-A", help="Stage every change."),
) -> None:
    """Stage whole files."""
    repo_ctx = _open_context(ctx)
    if all_changes:
        _report(stage_all(repo_ctx))
        return
    if not paths:
        raise typer.BadParameter("Provide at least one path or --all.")
    for path in paths:
        _report(stage_file(repo_ctx, path))


@app.command()
def unstage(
    ctx: typer.Context,
    paths: List[str] = typer.Argument(None, help="Files to unstage."),
    all_changes: bool = typer.Option(False, "--all", "-A", help="Unstage every change."),
) -> None:
    """Unstage whole files."""
    repo_ctx = _open_context(ctx)
    if all_changes:
        _report(unstage_all(repo_ctx))
        return
    if not paths:
        raise typer.BadParameter("Provide at least one path or --all.")
    for path in paths:
        _report(unstage_file(repo_ctx, path))


@app.command()
def discard(
    ctx: typer.Context,
    paths: List[str] = typer.Argument(..., help="Files whose working-tree changes are dropped."),
) -> None:
    """Discard working-tree changes of whole files."""
    repo_ctx = _open_context(ctx)
    for path in paths:
        _report(discard_file_changes(repo_ctx, path))


@app.command()
def apply(
    ctx: typer.Context,
    patch_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Unified diff to apply."),
    cached: bool = typer.Option(False, "--cached", help="Apply to the index only."),
    reverse: bool = typer.Option(False, "--reverse", "-R", help="Reverse-apply the patch."),
) -> None:
    """Apply a patch file with git apply."""
    repo_ctx = _open_context(ctx)
    mode = ApplyMode.from_flags(cached=cached, reverse=reverse)
    patch = patch_file.read_text(encoding="utf-8", errors=PATCH_ENCODING_ERRORS)
    try:
        apply_patch(patch, repo_root=repo_ctx.root, mode=mode, check=repo_ctx.check_patches)
    except PatchError as error:
        typer.echo(f"apply_failure: {str(error).strip() or 'Failed to apply patch'}", err=True)
        raise typer.Exit(code=1) from error
    typer.echo(f"Applied {patch_file} ({mode.value})")


if __name__ == "__main__":
    app()
