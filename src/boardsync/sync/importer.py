"""One-time bulk import of existing backlog files into the board."""

import re
from collections import Counter
from dataclasses import dataclass, field

import structlog

from boardsync.backlog.parser import parse_import
from boardsync.store.board import StoreNotFoundError
from boardsync.store.models import Board
from boardsync.sync.engine import SyncEngine, read_backlog

log = structlog.get_logger()

DEDUPE_KEY_LENGTH = 60


def dedupe_key(title: str) -> str:
    """Key used to recognize the same task across files."""
    return title.lower()[:DEDUPE_KEY_LENGTH]


def slugify(name: str) -> str:
    """Convert a project name to an id slug."""
    slug = name.lower().replace("&", "and")
    slug = re.sub(r"[\s/]+", "-", slug)
    return slug.strip("-")


def project_entry(board: Board, name: str, agent: str) -> str | dict:
    """Build a ``projects`` entry matching the board's existing format.

    Older boards list plain names, newer ones ``{id, name, agent}`` objects.
    """
    if any(isinstance(p, dict) for p in board.projects):
        return {"id": slugify(name), "name": name, "agent": agent}
    return name


@dataclass
class ImportReport:
    """Summary of a bulk import."""

    parsed: int = 0
    imported: int = 0
    by_agent: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    new_projects: list[str] = field(default_factory=list)

    @property
    def duplicates(self) -> int:
        """Parsed tasks dropped as duplicates."""
        return self.parsed - self.imported


def import_backlogs(engine: SyncEngine) -> ImportReport:
    """Parse every discovered backlog and append its tasks to the board.

    Unlike live sync this reads files regardless of the sync marker and
    accepts plain bullet lines. Titles already on the board (or seen
    earlier in the same import) are skipped.

    Args:
        engine: Engine providing the store, settings and project table.

    Returns:
        ImportReport with counts.

    Raises:
        StoreCorruptedError: If an existing board file cannot be parsed.
    """
    try:
        board = engine.store.load()
    except StoreNotFoundError:
        board = Board()

    report = ImportReport()
    seen = {dedupe_key(t.title) for t in board.tasks}
    known_projects = board.project_names()
    statuses: Counter[str] = Counter()

    for agent, path in engine.workspaces(board).items():
        try:
            content = read_backlog(path)
        except (OSError, UnicodeDecodeError) as e:
            log.warning(
                "backlog_unreadable", agent=agent, path=str(path), error=str(e)
            )
            continue

        tasks = parse_import(
            content, agent, engine.project_map, engine.settings.default_agent
        )
        report.parsed += len(tasks)
        imported = 0

        for task in tasks:
            key = dedupe_key(task.title)
            if key in seen:
                continue
            seen.add(key)
            board.tasks.append(task)
            statuses[task.status.value] += 1
            imported += 1

            if task.project and task.project not in known_projects:
                known_projects.add(task.project)
                board.projects.append(project_entry(board, task.project, agent))
                report.new_projects.append(task.project)

        report.by_agent[agent] = imported
        report.imported += imported
        log.info(
            "backlog_imported", agent=agent, parsed=len(tasks), imported=imported
        )

    report.by_status = dict(statuses)
    if report.imported:
        engine.store.save(board)
    return report
