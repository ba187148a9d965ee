"""Explicit repository handle passed to every staging operation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .diff.parser import DiffParser
from .tools.vcs import GitRepository


@dataclass(slots=True)
class RepositoryContext:
    """A working copy plus the settings used to read and patch it.

    Contexts are plain values: operations receive one explicitly, so several
    repositories or worktrees can be driven side by side.
    """

    repo: GitRepository
    check_patches: bool = True
    context_lines: int | None = None
    parser: DiffParser = field(default_factory=DiffParser)

    @property
    def root(self) -> Path:
        return self.repo.root

    @classmethod
    def open(cls, path: Path | str | None = None, **options: Any) -> "RepositoryContext":
        """Build a context for the repository containing ``path``."""
        return cls(repo=GitRepository.discover(path), **options)

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        base_dir: Path | str | None = None,
    ) -> "RepositoryContext":
        """Build a context from a loaded configuration mapping.

        ``repository.root`` is resolved relative to ``base_dir`` (usually the
        directory holding the configuration file).
        """

        repository_cfg = config.get("repository") or {}
        apply_cfg = config.get("apply") or {}
        diff_cfg = config.get("diff") or {}

        base = Path(base_dir) if base_dir is not None else Path.cwd()
        root_value = repository_cfg.get("root") or "."
        root = Path(root_value)
        if not root.is_absolute():
            root = (base / root).resolve()

        context_lines = diff_cfg.get("context_lines")
        return cls(
            repo=GitRepository.discover(root),
            check_patches=bool(apply_cfg.get("check", True)),
            context_lines=int(context_lines) if context_lines is not None else None,
        )


__all__ = ["RepositoryContext"]
