"""Merge parsed backlog lines into the board."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from boardsync.backlog.parser import ParsedFileTask, detect_project, normalize_title
from boardsync.store.models import Board, Task, TaskStatus

log = structlog.get_logger()


@dataclass
class ReconcileResult:
    """Outcome of reconciling one backlog file against the board."""

    agent: str
    created: list[Task] = field(default_factory=list)
    updated: list[Task] = field(default_factory=list)
    stale_ids: list[str] = field(default_factory=list)
    # Line index -> (short id, status) for lines that need a marker.
    assignments: dict[int, tuple[str, TaskStatus]] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        """Whether the board was mutated."""
        return bool(self.created or self.updated)

    @property
    def file_changed(self) -> bool:
        """Whether the backlog file needs identity markers written back."""
        return bool(self.assignments)


def reconcile(
    agent: str,
    parsed: list[ParsedFileTask],
    board: Board,
    project_map: dict[str, str] | None = None,
    now: datetime | None = None,
) -> ReconcileResult:
    """Apply a file's task lines to the board in place.

    Marked lines update their task (the file wins on title and status);
    unmarked lines become new tasks owned by ``agent``; markers with no
    matching task are dropped. Tasks whose line disappeared are left alone.

    Args:
        agent: Agent owning the file.
        parsed: Output of :func:`boardsync.backlog.parse_backlog`.
        board: Board to mutate.
        project_map: Section keyword table for new tasks.
        now: Timestamp for created/updated tasks.

    Returns:
        ReconcileResult describing the mutation.
    """
    now = now or datetime.now(timezone.utc)
    result = ReconcileResult(agent=agent)

    # Short ids are not deduplicated; on collision the later task wins.
    by_short_id = {t.short_id: t for t in board.tasks}

    for ft in parsed:
        if ft.qb_id:
            task = by_short_id.get(ft.qb_id)
            if task is None:
                result.stale_ids.append(ft.qb_id)
                continue

            touched = False
            # Compare with the rendered form; stored whitespace is not a file edit.
            if ft.title and normalize_title(task.title) != ft.title:
                task.title = ft.title
                touched = True
            if task.status != ft.status:
                task.status = ft.status
                touched = True
            if touched:
                task.touch(now)
                if all(t.id != task.id for t in result.updated):
                    result.updated.append(task)
            continue

        if not ft.title:
            continue

        task = Task(
            title=ft.title,
            project=detect_project(ft.section, project_map) if ft.section else "",
            agent=agent,
            status=ft.status,
            notes=f"Section: {ft.section}" if ft.section else "",
            created_at=now,
            updated_at=now,
        )
        board.tasks.append(task)
        by_short_id[task.short_id] = task
        result.created.append(task)
        result.assignments[ft.line] = (task.short_id, task.status)

    if result.stale_ids:
        log.debug("stale_markers_dropped", agent=agent, ids=result.stale_ids)

    return result
