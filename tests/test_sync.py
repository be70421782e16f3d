"""Tests for discovery, write locks, reconciliation, the engine and import."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from conftest import read_board

from boardsync.backlog import SYNC_MARKER, render_backlog
from boardsync.backlog.parser import ParsedFileTask
from boardsync.store import Board, Task, TaskStatus, format_timestamp
from boardsync.sync import (
    SyncEngine,
    WriteLockTracker,
    agent_for_directory,
    build_engine,
    discover_workspaces,
    import_backlogs,
    reconcile,
)
from boardsync.sync.importer import dedupe_key, slugify

MAIN_ID = "aaaaaaaa-0000-4000-8000-000000000000"
INFRA_ID = "bbbbbbbb-0000-4000-8000-000000000000"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestDiscovery:
    """Test workspace discovery."""

    def test_agent_for_directory(self):
        """Test directory names map to agents."""
        assert agent_for_directory("workspace") == "main"
        assert agent_for_directory("workspace-infra") == "infra"
        assert agent_for_directory("workspace-") is None
        assert agent_for_directory("workspaces") is None
        assert agent_for_directory("notes") is None
        assert agent_for_directory("ws-a", prefix="ws", default_agent="lead") == "a"

    def test_discover(self, workspaces_base: Path):
        """Test only workspace directories with a backlog are found."""
        for name in ("workspace", "workspace-infra", "workspace-empty", "other"):
            (workspaces_base / name).mkdir()
        for name in ("workspace", "workspace-infra", "other"):
            (workspaces_base / name / "BACKLOG.md").write_text("x")
        (workspaces_base / "workspace-file").write_text("not a dir")

        found = discover_workspaces(workspaces_base)

        assert list(found) == ["infra", "main"]
        assert found["main"] == (workspaces_base / "workspace" / "BACKLOG.md").resolve()

    def test_missing_base(self, tmp_path: Path):
        """Test a missing base directory yields nothing."""
        assert discover_workspaces(tmp_path / "missing") == {}


class TestWriteLockTracker:
    """Test write-lock bookkeeping."""

    def test_consume_within_window(self, tmp_path: Path):
        """Test a recent write is reported once."""
        clock = FakeClock()
        locks = WriteLockTracker(window=5.0, clock=clock)
        path = tmp_path / "BACKLOG.md"

        locks.record(path)
        clock.now += 1
        assert locks.is_recent(path)
        assert locks.consume(path)
        assert not locks.consume(path)
        assert len(locks) == 0

    def test_expired(self, tmp_path: Path):
        """Test writes older than the window are not suppressed."""
        clock = FakeClock()
        locks = WriteLockTracker(window=5.0, clock=clock)
        path = tmp_path / "BACKLOG.md"

        locks.record(path)
        clock.now += 6
        assert not locks.is_recent(path)
        assert not locks.consume(path)

    def test_paths_normalized(self, tmp_path: Path, monkeypatch):
        """Test relative and absolute forms share a stamp."""
        monkeypatch.chdir(tmp_path)
        locks = WriteLockTracker()
        locks.record("BACKLOG.md")
        assert locks.is_recent(Path.cwd() / "BACKLOG.md")
        locks.clear()
        assert len(locks) == 0


class TestReconcile:
    """Test merging parsed lines into a board."""

    NOW = datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_updates_matched_task(self):
        """Test title and status from the file win."""
        board = Board(tasks=[Task(id=MAIN_ID, title="Old", status="todo")])
        parsed = [ParsedFileTask("aaaaaaaa", "New", TaskStatus.DONE, "", 0)]

        result = reconcile("main", parsed, board, now=self.NOW)

        task = board.tasks[0]
        assert task.title == "New"
        assert task.status == TaskStatus.DONE
        assert task.updated_at == format_timestamp(self.NOW)
        assert result.updated == [task]
        assert result.changed
        assert not result.file_changed

    def test_unchanged_task_not_touched(self):
        """Test identical lines leave the task alone."""
        task = Task(id=MAIN_ID, title="Same", status="todo")
        stamp = task.updated_at
        board = Board(tasks=[task])
        parsed = [ParsedFileTask("aaaaaaaa", "Same", TaskStatus.TODO, "", 0)]

        result = reconcile("main", parsed, board, now=self.NOW)

        assert not result.changed
        assert task.updated_at == stamp

    def test_rendered_title_form_is_not_an_edit(self):
        """Test titles that only differ by line breaks or padding are kept."""
        task = Task(id=MAIN_ID, title="  Two\nlines  ", status="todo")
        board = Board(tasks=[task])
        parsed = [ParsedFileTask("aaaaaaaa", "Two lines", TaskStatus.TODO, "", 0)]

        result = reconcile("main", parsed, board)

        assert not result.changed
        assert task.title == "  Two\nlines  "

    def test_empty_title_keeps_old_title(self):
        """Test a marker-only line does not blank the title."""
        board = Board(tasks=[Task(id=MAIN_ID, title="Keep", status="todo")])
        parsed = [ParsedFileTask("aaaaaaaa", "", TaskStatus.TODO, "", 0)]

        reconcile("main", parsed, board)

        assert board.tasks[0].title == "Keep"

    def test_duplicate_lines_update_once(self):
        """Test the same marker twice reports one updated task."""
        board = Board(tasks=[Task(id=MAIN_ID, title="A", status="todo")])
        parsed = [
            ParsedFileTask("aaaaaaaa", "B", TaskStatus.TODO, "", 0),
            ParsedFileTask("aaaaaaaa", "C", TaskStatus.TODO, "", 1),
        ]

        result = reconcile("main", parsed, board)

        assert len(result.updated) == 1
        assert board.tasks[0].title == "C"

    def test_creates_new_task(self):
        """Test unmarked lines become tasks owned by the agent."""
        board = Board()
        parsed = [ParsedFileTask(None, "Fix login", TaskStatus.BLOCKED, "Tech", 7)]

        result = reconcile("infra", parsed, board, now=self.NOW)

        assert len(board.tasks) == 1
        task = board.tasks[0]
        assert task.agent == "infra"
        assert task.status == TaskStatus.BLOCKED
        assert task.project == "Infra/Core"
        assert task.notes == "Section: Tech"
        assert task.created_at == format_timestamp(self.NOW)
        assert result.created == [task]
        assert result.assignments == {7: (task.short_id, TaskStatus.BLOCKED)}

    def test_custom_project_map(self):
        """Test new tasks use the given keyword table."""
        board = Board()
        parsed = [ParsedFileTask(None, "x", TaskStatus.TODO, "Roadmap Q3", 0)]

        reconcile("main", parsed, board, project_map={"roadmap": "Core"})

        assert board.tasks[0].project == "Core"

    def test_stale_marker_dropped(self):
        """Test markers with no task are neither created nor updated."""
        board = Board()
        parsed = [ParsedFileTask("deadbeef", "Gone", TaskStatus.TODO, "", 0)]

        result = reconcile("main", parsed, board)

        assert board.tasks == []
        assert result.stale_ids == ["deadbeef"]
        assert not result.changed

    def test_missing_line_does_not_delete(self):
        """Test tasks absent from the file stay on the board."""
        board = Board(tasks=[Task(id=MAIN_ID, title="Keep me", agent="main")])

        result = reconcile("main", [], board)

        assert len(board.tasks) == 1
        assert not result.changed


class TestSyncEngine:
    """Test SyncEngine file handling."""

    def test_new_line_gets_marker(self, engine, settings, make_workspace, write_board):
        """Test a new line becomes a task and gets its marker appended."""
        write_board([Task(id=MAIN_ID, title="Existing", status="done")])
        body = (
            "## Ideas\n"
            "- [x] Existing <!-- qb:aaaaaaaa:done -->\n"
            "- [ ] Write onboarding doc\n"
            "Some note\n"
        )
        path = make_workspace("main", body)
        before = path.read_text(encoding="utf-8").split("\n")

        result = engine.handle_file_change("main", path)

        assert result is not None
        assert len(result.created) == 1
        new_task = result.created[0]
        assert new_task.project == "Prisma Engine"
        assert new_task.status == TaskStatus.BACKLOG

        after = path.read_text(encoding="utf-8").split("\n")
        assert len(after) == len(before)
        for index, line in enumerate(before):
            if index == 4:
                assert after[4] == (
                    f"{line} <!-- qb:{new_task.short_id}:backlog -->"
                )
            else:
                assert after[index] == line

        saved = read_board(settings)
        assert [t["title"] for t in saved["tasks"]] == [
            "Existing",
            "Write onboarding doc",
        ]

    def test_own_write_is_suppressed(self, engine, make_workspace, write_board):
        """Test the marker write-back does not trigger another pass."""
        write_board([])
        path = make_workspace("main", "- [ ] Something new\n")

        assert engine.handle_file_change("main", path) is not None
        assert engine.handle_file_change("main", path) is None

        again = engine.handle_file_change("main", path)
        assert again is not None
        assert not again.changed

    def test_file_status_wins(self, engine, settings, make_workspace, write_board):
        """Test checking a box marks the task done on the board."""
        write_board([Task(id=MAIN_ID, title="Ship it", status="todo")])
        path = make_workspace("main", "- [x] Ship it <!-- qb:aaaaaaaa:todo -->\n")

        result = engine.handle_file_change("main", path)

        assert result is not None
        assert [t.id for t in result.updated] == [MAIN_ID]
        assert read_board(settings)["tasks"][0]["status"] == "done"

    def test_other_backlogs_resynced(
        self, engine, settings, make_workspace, write_board
    ):
        """Test a change in one file rewrites other tracked files only."""
        write_board(
            [Task(id=INFRA_ID, title="Rotate keys", status="todo", agent="infra")]
        )
        main_path = make_workspace("main", "- [ ] Draft launch post\n")
        infra_path = make_workspace("infra", "stale content\n")
        ops_path = make_workspace("ops", "- [ ] Untracked\n", tracked=False)

        engine.handle_file_change("main", main_path)

        board = engine.store.load()
        assert infra_path.read_text(encoding="utf-8") == render_backlog(
            board.tasks, "infra"
        )
        assert "Draft launch post" not in infra_path.read_text(encoding="utf-8")
        assert ops_path.read_text(encoding="utf-8") == "- [ ] Untracked\n"
        assert engine.locks.is_recent(infra_path)

        main_text = main_path.read_text(encoding="utf-8")
        assert main_text.startswith(
            f"{SYNC_MARKER}\n\n- [ ] Draft launch post <!-- qb:"
        )

    def test_untracked_file_ignored(
        self, engine, settings, make_workspace, write_board
    ):
        """Test files without the sync marker are never ingested."""
        write_board([])
        path = make_workspace("main", "- [ ] Private\n", tracked=False)

        assert engine.handle_file_change("main", path) is None
        assert read_board(settings)["tasks"] == []
        assert path.read_text(encoding="utf-8") == "- [ ] Private\n"

    def test_unreadable_backlog_skipped(
        self, engine, settings, make_workspace, write_board
    ):
        """Test a file that cannot be decoded is skipped and others still sync."""
        write_board([Task(id=INFRA_ID, title="Rotate keys", agent="infra")])
        broken = make_workspace("main")
        broken.write_bytes(SYNC_MARKER.encode() + b"\n- [ ] \xff\n")
        infra_path = make_workspace("infra", "stale content\n")
        before = broken.read_bytes()

        assert engine.handle_file_change("main", broken) is None
        assert engine.resync() == ["infra"]

        assert "Rotate keys" in infra_path.read_text(encoding="utf-8")
        assert broken.read_bytes() == before
        assert len(read_board(settings)["tasks"]) == 1

    def test_tagged_title_survives_round_trip(
        self, engine, settings, make_workspace, write_board
    ):
        """Test a title containing a status tag is not rewritten by a sync pass."""
        title = "Fix [EN PROGRESO] badge color"
        write_board(
            [
                Task(id=INFRA_ID, title=title, status="todo", agent="infra"),
                Task(id=MAIN_ID, title="Wait", status="blocked", agent="infra"),
            ]
        )
        path = make_workspace("infra")
        assert engine.resync() == ["infra"]
        engine.locks.clear()

        result = engine.handle_file_change("infra", path)

        assert result is not None
        assert not result.changed
        titles = {t["id"]: t["title"] for t in read_board(settings)["tasks"]}
        assert titles == {INFRA_ID: title, MAIN_ID: "Wait"}

    def test_missing_board(self, engine, make_workspace):
        """Test nothing happens without a board file."""
        path = make_workspace("main", "- [ ] Task\n")
        assert engine.handle_file_change("main", path) is None

    def test_corrupted_board(self, engine, settings, make_workspace):
        """Test a corrupted board is left untouched."""
        settings.board_file.write_text("{oops", encoding="utf-8")
        path = make_workspace("main", "- [ ] Task\n")

        assert engine.handle_file_change("main", path) is None
        assert settings.board_file.read_text(encoding="utf-8") == "{oops"

    def test_stale_marker_not_recreated(
        self, engine, settings, make_workspace, write_board
    ):
        """Test a deleted task's line is not brought back."""
        write_board([])
        path = make_workspace("main", "- [ ] Gone <!-- qb:deadbeef:todo -->\n")
        before = path.read_text(encoding="utf-8")

        result = engine.handle_file_change("main", path)

        assert result is not None
        assert result.stale_ids == ["deadbeef"]
        assert read_board(settings)["tasks"] == []
        assert path.read_text(encoding="utf-8") == before

    def test_crlf_file(self, engine, settings, make_workspace, write_board):
        """Test marker write-back keeps Windows line endings."""
        write_board([])
        path = make_workspace("main")
        path.write_bytes(f"{SYNC_MARKER}\r\n- [ ] Windows task\r\n".encode())

        result = engine.handle_file_change("main", path)

        short = result.created[0].short_id
        expected = (
            f"{SYNC_MARKER}\r\n- [ ] Windows task <!-- qb:{short}:backlog -->\r\n"
        )
        assert path.read_bytes() == expected.encode()


class TestResync:
    """Test board -> backlog rendering."""

    def test_rewrites_tracked_files(self, engine, make_workspace, write_board):
        """Test every tracked file gets its own agent's tasks."""
        write_board(
            [
                Task(id=MAIN_ID, title="Main task", status="todo"),
                Task(id=INFRA_ID, title="Infra task", status="blocked", agent="infra"),
            ]
        )
        main_path = make_workspace("main")
        infra_path = make_workspace("infra")

        assert engine.resync() == ["infra", "main"]

        main_text = main_path.read_text(encoding="utf-8")
        infra_text = infra_path.read_text(encoding="utf-8")
        assert "- [ ] Main task <!-- qb:aaaaaaaa:todo -->" in main_text
        assert "Infra task" not in main_text
        assert "- [ ] Infra task [BLOQUEADO] <!-- qb:bbbbbbbb:blocked -->" in infra_text
        assert "# Backlog - infra" in infra_text

    def test_idempotent(self, engine, make_workspace, write_board):
        """Test a second resync writes nothing."""
        write_board([Task(id=MAIN_ID, title="Main task")])
        make_workspace("main")

        assert engine.resync() == ["main"]
        assert engine.resync() == []

    def test_exclude_agent(self, engine, make_workspace, write_board):
        """Test the excluded agent's file is left alone."""
        write_board([Task(id=MAIN_ID, title="Main task")])
        path = make_workspace("main", "- [ ] Local edit\n")
        before = path.read_text(encoding="utf-8")

        assert engine.resync(exclude_agent="main") == []
        assert path.read_text(encoding="utf-8") == before

    def test_store_config_overrides_base(
        self, engine, tmp_path, make_workspace, write_board
    ):
        """Test workspacesBase from the board config is honored."""
        other = tmp_path / "elsewhere" / "workspace-ops"
        other.mkdir(parents=True)
        (other / "TASKS.md").write_text(SYNC_MARKER + "\n", encoding="utf-8")
        make_workspace("main")
        write_board(
            [Task(id=MAIN_ID, title="Ops task", agent="ops")],
            config={
                "workspacesBase": str(tmp_path / "elsewhere"),
                "backlogFilename": "TASKS.md",
            },
        )

        assert engine.resync() == ["ops"]
        assert "Ops task" in (other / "TASKS.md").read_text(encoding="utf-8")

    def test_missing_board_writes_nothing(self, engine, make_workspace):
        """Test resync without a board is a no-op."""
        make_workspace("main", "- [ ] Keep\n")
        assert engine.resync() == []

    def test_write_failure_releases_lock(self, engine, tmp_path):
        """Test a failed write does not leave a suppression stamp."""
        target = tmp_path / "missing-dir" / "BACKLOG.md"
        with pytest.raises(OSError):
            engine.write_backlog(target, "x")
        assert len(engine.locks) == 0


class TestImport:
    """Test one-time bulk import."""

    MAIN = (
        "# Backlog\n"
        "## Pipeline Prisma\n"
        "- [ ] Render thumbnails\n"
        "- [x] Publish v1\n"
        "## Completado\n"
        "- [x] Old\n"
    )
    INFRA = "## Tech\n- [ ] Render thumbnails\n- [ ] Rotate keys - BLOQUEADO: vendor\n"

    def test_helpers(self):
        """Test dedupe keys and slugs."""
        assert dedupe_key("A" * 80) == "a" * 60
        assert slugify("Growth/Monetizacion") == "growth-monetizacion"
        assert slugify("R&D Lab") == "randd-lab"

    def test_import(self, engine, settings, make_workspace):
        """Test tasks from every workspace land on a new board."""
        make_workspace("main", self.MAIN, tracked=False)
        make_workspace("infra", self.INFRA, tracked=False)

        report = import_backlogs(engine)

        assert report.parsed == 4
        assert report.imported == 3
        assert report.duplicates == 1
        assert report.by_agent == {"infra": 2, "main": 1}
        assert report.by_status == {"backlog": 1, "blocked": 1, "done": 1}
        assert report.new_projects == ["Infra/Core", "Prisma Pipeline"]

        saved = read_board(settings)
        assert [t["title"] for t in saved["tasks"]] == [
            "Render thumbnails",
            "Rotate keys",
            "Publish v1",
        ]
        assert saved["tasks"][1]["blockedBy"] == "vendor"
        assert saved["projects"] == ["Infra/Core", "Prisma Pipeline"]

    def test_dedupes_against_board(self, engine, settings, make_workspace, write_board):
        """Test titles already on the board are skipped."""
        write_board(
            [Task(id=MAIN_ID, title="Render thumbnails")],
            projects=[{"id": "prisma", "name": "Prisma Pipeline", "agent": "main"}],
        )
        make_workspace("infra", self.INFRA)

        report = import_backlogs(engine)

        assert report.imported == 1
        saved = read_board(settings)
        assert len(saved["tasks"]) == 2
        assert saved["projects"][-1] == {
            "id": "infra-core",
            "name": "Infra/Core",
            "agent": "infra",
        }

    def test_default_agent_fallback_project(self, engine, settings, make_workspace):
        """Test unsectioned items of the default agent land in Infra/Core."""
        make_workspace("main", "- [ ] Loose main task\n", tracked=False)
        make_workspace("infra", "- [ ] Loose infra task\n", tracked=False)

        import_backlogs(engine)

        projects = {t["title"]: t["project"] for t in read_board(settings)["tasks"]}
        assert projects == {"Loose main task": "Infra/Core", "Loose infra task": ""}

    def test_nothing_to_import(self, engine, settings, make_workspace):
        """Test no board file is created when nothing was found."""
        make_workspace("main", "just notes\n", tracked=False)

        report = import_backlogs(engine)

        assert report.imported == 0
        assert not settings.board_file.exists()


def test_engine_uses_project_map_file(settings, tmp_path, make_workspace, write_board):
    """Test the configured YAML table drives project detection."""
    table = tmp_path / "projects.yaml"
    table.write_text("roadmap: Core\n", encoding="utf-8")
    engine = SyncEngine(settings.model_copy(update={"project_map_file": table}))
    write_board([])
    path = make_workspace("main", "## Roadmap\n- [ ] Plan Q3\n")

    result = engine.handle_file_change("main", path)

    assert result.created[0].project == "Core"
    assert json.loads(settings.board_file.read_text())["tasks"][0]["project"] == "Core"


def test_engine_store_uses_default_agent(settings):
    """Test agentless board tasks belong to the configured default agent."""
    settings.board_file.write_text(
        json.dumps({"tasks": [{"id": MAIN_ID, "title": "Orphan"}]}), encoding="utf-8"
    )
    engine = build_engine(settings.model_copy(update={"default_agent": "lead"}))

    board = engine.store.load()

    assert board.tasks[0].agent == "lead"
    assert "Orphan" in render_backlog(board.tasks, "lead", "lead")
