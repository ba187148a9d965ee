from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from hunkstage.repository import RepositoryContext  # noqa: E402
from hunkstage.tools.vcs import GitRepository  # noqa: E402


@dataclass(slots=True)
class WorkingCopy:
    """Fixture payload wrapping a throw-away repository with one commit."""

    repo: GitRepository
    ctx: RepositoryContext

    @property
    def root(self) -> Path:
        return self.repo.root

    def write(self, path: str, content: str) -> Path:
        return self.write_bytes(path, content.encode("utf-8"))

    def write_bytes(self, path: str, payload: bytes) -> Path:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)
        return target

    def read(self, path: str) -> str:
        return (self.root / path).read_bytes().decode("utf-8")

    def commit(self, message: str = "update") -> None:
        self.repo.git("add", "--all")
        self.repo.git("commit", "-m", message)

    def index_content(self, path: str) -> str:
        return self.repo.git("show", f":{path}").stdout

    def index_bytes(self, path: str) -> bytes:
        return subprocess.run(
            ["git", "show", f":{path}"],
            cwd=self.root,
            capture_output=True,
            check=True,
        ).stdout

    def staged_diff(self, path: str) -> str:
        return self.repo.diff(path, cached=True)

    def unstaged_diff(self, path: str) -> str:
        return self.repo.diff(path)


@pytest.fixture()
def working_copy(tmp_path: Path) -> WorkingCopy:
    """Create a repository whose ``notes.txt`` holds thirty numbered lines."""

    repo = GitRepository.initialise(tmp_path / "repo")
    repo.git("config", "core.autocrlf", "false")
    copy = WorkingCopy(repo=repo, ctx=RepositoryContext(repo=repo))
    copy.write("notes.txt", "".join(f"line {number}\n" for number in range(1, 31)))
    copy.commit("Add notes")
    return copy
