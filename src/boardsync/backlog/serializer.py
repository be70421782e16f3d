"""Render board tasks back into BACKLOG.md text."""

from boardsync.backlog.parser import (
    BLOCKED_TAG,
    IDENTITY_RE,
    IN_PROGRESS_TAG,
    SYNC_MARKER,
    normalize_title,
)
from boardsync.store.models import Task, TaskStatus

STATUS_ORDER = {
    TaskStatus.IN_PROGRESS: 0,
    TaskStatus.TODO: 1,
    TaskStatus.BLOCKED: 2,
    TaskStatus.BACKLOG: 3,
    TaskStatus.DONE: 4,
}

UNGROUPED_PROJECT = "Other"


def identity_marker(short_id: str, status: TaskStatus) -> str:
    """Build the ``<!-- qb:id:status -->`` comment for a task line."""
    return f"<!-- qb:{short_id}:{status.value} -->"


def render_task_line(task: Task) -> str:
    """Render one task as a checkbox line.

    Args:
        task: Task to render.

    Returns:
        ``- [ ] title [TAG] <!-- qb:id:status -->``
    """
    check = "x" if task.status == TaskStatus.DONE else " "
    line = f"- [{check}] {normalize_title(task.title)}"
    if task.status == TaskStatus.BLOCKED:
        line += f" {BLOCKED_TAG}"
    elif task.status == TaskStatus.IN_PROGRESS:
        line += f" {IN_PROGRESS_TAG}"
    return f"{line} {identity_marker(task.short_id, task.status)}"


def group_by_project(tasks: list[Task]) -> dict[str, list[Task]]:
    """Group tasks by project, keeping first-appearance order of projects.

    Within a group tasks are ordered by status priority; ties keep their
    board order.
    """
    groups: dict[str, list[Task]] = {}
    for task in tasks:
        groups.setdefault(task.project or UNGROUPED_PROJECT, []).append(task)
    return {
        project: sorted(items, key=lambda t: STATUS_ORDER[t.status])
        for project, items in groups.items()
    }


def render_backlog(
    tasks: list[Task],
    agent: str | None = None,
    default_agent: str = "main",
) -> str:
    """Render the complete replacement text of a backlog file.

    Args:
        tasks: Board tasks (all agents).
        agent: Only render this agent's tasks; None renders everything.
        default_agent: Agent whose heading carries no suffix.

    Returns:
        Markdown starting with the sync marker line.
    """
    selected = tasks if agent is None else [t for t in tasks if t.agent == agent]

    heading = "# Backlog"
    if agent is not None and agent != default_agent:
        heading += f" - {agent}"

    lines = [SYNC_MARKER, "", heading, ""]
    for project, items in group_by_project(selected).items():
        lines.append(f"### {project}")
        lines.extend(render_task_line(t) for t in items)
        lines.append("")

    return "\n".join(lines)


def append_identity_markers(
    content: str,
    assignments: dict[int, tuple[str, TaskStatus]],
) -> str:
    """Append identity markers to specific lines, leaving the rest intact.

    Args:
        content: Current file text.
        assignments: Line index -> (short id, status).

    Returns:
        Updated file text.
    """
    lines = content.split("\n")
    for index, (short_id, status) in assignments.items():
        if index >= len(lines) or IDENTITY_RE.search(lines[index]):
            continue
        line = lines[index]
        ending = "\r" if line.endswith("\r") else ""
        lines[index] = f"{line.rstrip()} {identity_marker(short_id, status)}{ending}"
    return "\n".join(lines)
