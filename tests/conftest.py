"""Shared fixtures for boardsync tests."""

import json
import os
from collections.abc import Callable
from pathlib import Path

import pytest

from boardsync.backlog import SYNC_MARKER
from boardsync.config import Settings
from boardsync.store import Task
from boardsync.sync import SyncEngine


def bump_mtime(path: Path, seconds: int = 1) -> None:
    """Move a file's mtime forward so pollers always see a change."""
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))


@pytest.fixture
def workspaces_base(tmp_path: Path) -> Path:
    """Directory holding workspace-* directories."""
    base = tmp_path / "openclaw"
    base.mkdir()
    return base


@pytest.fixture
def settings(tmp_path: Path, workspaces_base: Path) -> Settings:
    """Settings pointing at temporary locations with short timings."""
    return Settings(
        board_file=tmp_path / "board-data.json",
        workspaces_base=workspaces_base,
        debounce_seconds=0.05,
        poll_interval=0.05,
        suppression_window=5.0,
    )


@pytest.fixture
def engine(settings: Settings) -> SyncEngine:
    """Sync engine on the temporary board."""
    return SyncEngine(settings)


@pytest.fixture
def make_workspace(workspaces_base: Path) -> Callable[..., Path]:
    """Factory creating a workspace with a backlog file."""

    def _make(agent: str, body: str = "", tracked: bool = True) -> Path:
        name = "workspace" if agent == "main" else f"workspace-{agent}"
        directory = workspaces_base / name
        directory.mkdir(exist_ok=True)
        path = directory / "BACKLOG.md"
        content = f"{SYNC_MARKER}\n\n{body}" if tracked else body
        path.write_text(content, encoding="utf-8")
        return path.resolve()

    return _make


@pytest.fixture
def write_board(settings: Settings) -> Callable[..., Path]:
    """Factory writing a board file with the given tasks."""

    def _write(tasks: list[Task], **extra) -> Path:
        data = {
            "tasks": [t.to_dict() for t in tasks],
            "projects": [],
            "config": {},
        }
        data.update(extra)
        settings.board_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return settings.board_file

    return _write


def read_board(settings: Settings) -> dict:
    """Load the raw board JSON."""
    return json.loads(settings.board_file.read_text(encoding="utf-8"))
