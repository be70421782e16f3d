"""Sync engine tying the board store to workspace backlog files.

The board is the single source of truth and backlog files are projections
of it: a full resync replaces each file with freshly rendered text. The
only in-place edit the engine ever makes to a file is appending identity
markers to lines it has just turned into tasks.
"""

from pathlib import Path

import structlog

from boardsync.backlog.parser import has_sync_marker, parse_backlog
from boardsync.backlog.serializer import append_identity_markers, render_backlog
from boardsync.config import Settings, load_project_map
from boardsync.store.board import BoardStore, StoreError
from boardsync.store.models import Board
from boardsync.sync.discovery import discover_workspaces
from boardsync.sync.locks import WriteLockTracker
from boardsync.sync.reconciler import ReconcileResult, reconcile

log = structlog.get_logger()


def read_backlog(path: Path) -> str:
    """Read a backlog file, keeping its line endings."""
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


class SyncEngine:
    """Reconciles backlog edits into the board and the board into backlogs."""

    def __init__(
        self,
        settings: Settings,
        store: BoardStore | None = None,
        locks: WriteLockTracker | None = None,
        project_map: dict[str, str] | None = None,
    ):
        """Initialize the engine.

        Args:
            settings: Loaded settings.
            store: Board store (defaults to ``settings.board_file``).
            locks: Write-lock tracker shared with the watcher.
            project_map: Section keyword table for new tasks.
        """
        self.settings = settings
        self.store = store or BoardStore(settings.board_file, settings.default_agent)
        self.locks = locks or WriteLockTracker(settings.suppression_window)
        self.project_map = (
            project_map
            if project_map is not None
            else load_project_map(settings.project_map_file)
        )

    def _load_board(self) -> Board | None:
        try:
            return self.store.load()
        except StoreError as e:
            log.warning("board_unreadable", path=str(self.store.path), error=str(e))
            return None

    def workspaces(self, board: Board | None = None) -> dict[str, Path]:
        """Discover workspaces, honoring the board's ``config`` overrides.

        Args:
            board: Already loaded board; read from disk when omitted.

        Returns:
            Agent -> backlog path.
        """
        if board is None and self.store.exists():
            board = self._load_board()
        settings = self.settings.with_store_config(board.config if board else None)
        return discover_workspaces(
            settings.workspaces_base,
            settings.backlog_filename,
            settings.workspace_prefix,
            settings.default_agent,
        )

    def write_backlog(self, path: Path, content: str) -> None:
        """Replace a backlog file, stamping the write lock first."""
        self.locks.record(path)
        try:
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        except OSError:
            self.locks.consume(path)
            raise

    def handle_file_change(self, agent: str, path: Path) -> ReconcileResult | None:
        """Reconcile one agent's backlog file into the board.

        Skips the file if the engine wrote it within the suppression
        window, if it cannot be read, or if it lacks the sync marker.

        Args:
            agent: Agent owning the file.
            path: Backlog file path.

        Returns:
            ReconcileResult, or None if nothing was reconciled.
        """
        if self.locks.consume(path):
            log.debug("self_write_ignored", agent=agent, path=str(path))
            return None

        try:
            content = read_backlog(path)
        except (OSError, UnicodeDecodeError) as e:
            log.warning(
                "backlog_unreadable", agent=agent, path=str(path), error=str(e)
            )
            return None

        if not has_sync_marker(content):
            log.debug("backlog_not_tracked", agent=agent, path=str(path))
            return None

        board = self._load_board()
        if board is None:
            return None

        result = reconcile(agent, parse_backlog(content), board, self.project_map)

        if result.changed:
            try:
                self.store.save(board)
            except OSError as e:
                log.error(
                    "board_write_failed", path=str(self.store.path), error=str(e)
                )
                return None
            log.info(
                "board_updated_from_backlog",
                agent=agent,
                created=len(result.created),
                updated=len(result.updated),
            )

        if result.file_changed:
            try:
                self.write_backlog(
                    path, append_identity_markers(content, result.assignments)
                )
                log.info(
                    "identity_markers_written",
                    agent=agent,
                    count=len(result.assignments),
                )
            except OSError as e:
                log.warning(
                    "backlog_write_failed", agent=agent, path=str(path), error=str(e)
                )

        if result.changed:
            try:
                self.resync(exclude_agent=agent)
            except Exception as e:
                log.error("resync_failed", agent=agent, error=str(e))

        return result

    def resync(self, exclude_agent: str | None = None) -> list[str]:
        """Rewrite every tracked backlog file from the board.

        Files without the sync marker are left untouched, as are files
        whose content already matches the rendered text.

        Args:
            exclude_agent: Agent whose file must not be rewritten.

        Returns:
            Agents whose files were written.
        """
        board = self._load_board()
        if board is None:
            return []

        written: list[str] = []
        for agent, path in self.workspaces(board).items():
            if agent == exclude_agent:
                continue

            try:
                current = read_backlog(path)
            except (OSError, UnicodeDecodeError) as e:
                log.warning(
                    "backlog_unreadable", agent=agent, path=str(path), error=str(e)
                )
                continue

            if not has_sync_marker(current):
                log.debug("backlog_not_tracked", agent=agent, path=str(path))
                continue

            rendered = render_backlog(board.tasks, agent, self.settings.default_agent)
            if rendered == current:
                continue

            try:
                self.write_backlog(path, rendered)
            except OSError as e:
                log.warning(
                    "backlog_write_failed", agent=agent, path=str(path), error=str(e)
                )
                continue
            written.append(agent)

        if written:
            log.info("backlogs_resynced", agents=written, excluded=exclude_agent)
        return written


def build_engine(settings: Settings) -> SyncEngine:
    """Create an engine wired from settings."""
    return SyncEngine(
        settings,
        store=BoardStore(settings.board_file, settings.default_agent),
        locks=WriteLockTracker(settings.suppression_window),
        project_map=load_project_map(settings.project_map_file),
    )
