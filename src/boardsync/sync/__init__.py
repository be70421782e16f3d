"""Backlog <-> board synchronization."""

from boardsync.sync.discovery import agent_for_directory, discover_workspaces
from boardsync.sync.engine import SyncEngine, build_engine
from boardsync.sync.importer import ImportReport, import_backlogs
from boardsync.sync.locks import WriteLockTracker
from boardsync.sync.reconciler import ReconcileResult, reconcile
from boardsync.sync.watcher import BacklogWatcher, FileState

__all__ = [
    # Discovery
    "agent_for_directory",
    "discover_workspaces",
    # Engine
    "SyncEngine",
    "build_engine",
    "ReconcileResult",
    "reconcile",
    "WriteLockTracker",
    # Watching
    "BacklogWatcher",
    "FileState",
    # Import
    "ImportReport",
    "import_backlogs",
]
