"""Polling watcher for workspace backlog files.

Files are polled by modification time rather than watched with OS
notifications: the engine replaces files wholesale, which some platforms
report as delete + recreate and which breaks descriptor-based watches.
The cost is up to one poll interval of latency.

Each file moves through ``idle -> pending -> processing -> idle``. A
change seen while pending restarts the debounce timer, so a burst of
edits results in a single reconciliation.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from boardsync.sync.engine import SyncEngine

log = structlog.get_logger()


class FileState(str, Enum):
    """Watch state of one backlog file."""

    IDLE = "idle"
    PENDING = "pending"
    PROCESSING = "processing"


def _mtime(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


class BacklogWatcher:
    """Polls backlog files and hands settled changes to the sync engine.

    All reconciliation runs on the event loop thread, one file at a time.
    """

    def __init__(
        self,
        engine: SyncEngine,
        poll_interval: float | None = None,
        debounce_seconds: float | None = None,
    ):
        """Initialize the watcher.

        Args:
            engine: Engine that reconciles changed files.
            poll_interval: Seconds between polls (defaults to settings).
            debounce_seconds: Quiet period before reconciling (defaults to
                settings).
        """
        self.engine = engine
        self.poll_interval = poll_interval or engine.settings.poll_interval
        self.debounce_seconds = debounce_seconds or engine.settings.debounce_seconds

        # path -> agent
        self._agents: dict[Path, str] = {}
        self._mtimes: dict[Path, int | None] = {}
        self._states: dict[Path, FileState] = {}
        self._timers: dict[Path, asyncio.Task] = {}
        self._poll_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        """Whether the polling loop is active."""
        return self._poll_task is not None and not self._poll_task.done()

    @property
    def watched(self) -> dict[str, Path]:
        """Agent -> path of every watched file."""
        return {agent: path for path, agent in self._agents.items()}

    def state(self, path: Path) -> FileState:
        """Current state of a watched file."""
        return self._states.get(Path(path), FileState.IDLE)

    def watch(self, agent: str, path: Path) -> None:
        """Start tracking a backlog file from its current mtime."""
        path = Path(path)
        self._agents[path] = agent
        self._mtimes[path] = _mtime(path)
        self._states[path] = FileState.IDLE
        log.info("watching_backlog", agent=agent, path=str(path))

    async def start(self, workspaces: dict[str, Path] | None = None) -> None:
        """Begin watching.

        Args:
            workspaces: Agent -> path to watch; discovered when omitted.
        """
        if self.running:
            return

        if workspaces is None:
            workspaces = self.engine.workspaces()
        for agent, path in workspaces.items():
            self.watch(agent, path)

        log.info("watcher_started", files=len(self._agents))
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Cancel polling and all pending timers, and forget every file."""
        tasks = list(self._timers.values())
        if self._poll_task is not None:
            tasks.append(self._poll_task)

        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._poll_task = None
        self._timers.clear()
        self._agents.clear()
        self._mtimes.clear()
        self._states.clear()
        log.info("watcher_stopped")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self.poll_once()

    def poll_once(self) -> list[Path]:
        """Check every watched file for an mtime change.

        Returns:
            Paths whose debounce timer was (re)started.
        """
        changed: list[Path] = []
        for path in list(self._agents):
            current = _mtime(path)
            if current == self._mtimes.get(path):
                continue
            self._mtimes[path] = current
            if current is None:
                # Removed; wait for it to come back.
                continue
            self._schedule(path)
            changed.append(path)
        return changed

    def _schedule(self, path: Path) -> None:
        timer = self._timers.pop(path, None)
        if timer is not None and not timer.done():
            timer.cancel()
        self._states[path] = FileState.PENDING
        self._timers[path] = asyncio.create_task(self._fire(path))

    async def _fire(self, path: Path) -> None:
        await asyncio.sleep(self.debounce_seconds)

        if self._timers.get(path) is asyncio.current_task():
            del self._timers[path]

        agent = self._agents.get(path)
        if agent is None:
            return

        self._states[path] = FileState.PROCESSING
        try:
            self.engine.handle_file_change(agent, path)
        except Exception as e:
            log.error("reconcile_failed", agent=agent, path=str(path), error=str(e))
        finally:
            self._states[path] = FileState.IDLE
