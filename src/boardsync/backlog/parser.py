"""BACKLOG.md parser for task extraction.

Parsing is split in two steps: :func:`tokenize` classifies every line
(heading, checkbox item, plain item, other) and the parsers then pull
task records out of the token stream.
"""

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum

from boardsync.config import DEFAULT_PROJECT_MAP
from boardsync.store.models import DEFAULT_AGENT, Task, TaskStatus

# Files without this line are never ingested or rewritten.
SYNC_MARKER = "<!-- sync:qualia-board -->"

IDENTITY_RE = re.compile(r"<!-- qb:([a-f0-9]{8})(?::(\w[\w-]*))? -->")
HEADING_RE = re.compile(r"^#{1,4}\s+(.+)")
CHECKBOX_RE = re.compile(r"^[-*]\s+\[([^\]]*)\]\s+(.+)")
PLAIN_RE = re.compile(r"^[-*]\s+(?!\[)(.+)")

BLOCKED_TAG = "[BLOQUEADO]"
IN_PROGRESS_TAG = "[EN PROGRESO]"
BLOCKED_KEYWORD = "bloqueado"
IN_PROGRESS_KEYWORD = "en progreso"

# Project for unsectioned checkbox items in the default agent's file on import.
DEFAULT_IMPORT_PROJECT = "Infra/Core"

_IDENTITY_STRIP_RE = re.compile(r"\s*" + IDENTITY_RE.pattern)
# Rendered lines carry at most one tag, right before the identity marker.
_TRAILING_TAG_RE = re.compile(r"\s*\[(BLOQUEADO|EN PROGRESO)\]\s*$", re.IGNORECASE)
_TAG_STATUS = {
    "BLOQUEADO": TaskStatus.BLOCKED,
    "EN PROGRESO": TaskStatus.IN_PROGRESS,
}
_IMPORT_BLOCKED_RE = re.compile(r"BLOQUEADO:?\s*(.+)", re.IGNORECASE)
_IMPORT_BLOCKED_TAIL_RE = re.compile(r"\s*[-–]\s*BLOQUEADO:?\s*.+", re.IGNORECASE)

# Emoji modifiers that survive category filtering.
_DECORATION_CHARS = {"\ufe0f", "\ufe0e", "\u200d", "\u20e3"}


class LineKind(str, Enum):
    """Classification of a backlog line."""

    HEADING = "heading"
    CHECKBOX = "checkbox"
    PLAIN = "plain"
    OTHER = "other"


@dataclass(frozen=True)
class LineToken:
    """One classified line of a backlog file."""

    kind: LineKind
    index: int
    text: str
    mark: str | None = None


@dataclass
class ParsedFileTask:
    """A task line as found in a backlog file during one sync pass."""

    qb_id: str | None
    title: str
    status: TaskStatus
    section: str
    line: int


def tokenize(content: str) -> list[LineToken]:
    """Classify each line of backlog content.

    Args:
        content: Raw file text.

    Returns:
        One token per line, in file order.
    """
    tokens: list[LineToken] = []
    for index, line in enumerate(content.split("\n")):
        match = HEADING_RE.match(line)
        if match:
            tokens.append(LineToken(LineKind.HEADING, index, match.group(1).strip()))
            continue

        match = CHECKBOX_RE.match(line)
        if match:
            tokens.append(
                LineToken(
                    LineKind.CHECKBOX,
                    index,
                    match.group(2).strip(),
                    mark=match.group(1).strip().lower(),
                )
            )
            continue

        match = PLAIN_RE.match(line)
        if match:
            tokens.append(LineToken(LineKind.PLAIN, index, match.group(1).strip()))
            continue

        tokens.append(LineToken(LineKind.OTHER, index, line))
    return tokens


def clean_section(text: str) -> str:
    """Strip emoji and other decoration from a heading."""
    kept = [
        ch
        for ch in text
        if ch not in _DECORATION_CHARS
        and unicodedata.category(ch) not in ("So", "Cs")
    ]
    return "".join(kept).strip()


def extract_identity(text: str) -> tuple[str | None, str | None]:
    """Find the ``<!-- qb:id[:status] -->`` marker in a task line.

    Returns:
        Tuple of (short id, status token), either may be None.
    """
    match = IDENTITY_RE.search(text)
    if not match:
        return None, None
    return match.group(1), match.group(2)


def normalize_title(title: str) -> str:
    """Collapse a title to the single line a backlog file can hold."""
    return " ".join(title.splitlines()).strip()


def clean_title(text: str, encoded: TaskStatus | None = None) -> str:
    """Remove the identity marker and the trailing status tag from task text.

    Tags elsewhere in the text are part of the title. When the marker
    encodes a status, only the tag matching that status is removed.

    Args:
        text: Item text after the checkbox.
        encoded: Status parsed from the identity marker, if any.
    """
    title = _IDENTITY_STRIP_RE.sub("", text)
    match = _TRAILING_TAG_RE.search(title)
    if match and encoded in (None, _TAG_STATUS[match.group(1).upper()]):
        title = title[: match.start()]
    return title.strip()


def parse_status(value: str | None) -> TaskStatus | None:
    """Parse an encoded status token.

    Args:
        value: Token from an identity marker.

    Returns:
        TaskStatus if the token names a member, else None.
    """
    if not value:
        return None
    try:
        return TaskStatus(value.strip().lower())
    except ValueError:
        return None


def resolve_status(mark: str | None, token: str | None, text: str) -> TaskStatus:
    """Decide a line's status.

    Precedence: checked box, encoded token, blocked keyword, in-progress
    keyword, then BACKLOG.

    Args:
        mark: Lowercased checkbox mark, or None for plain items.
        token: Status token from the identity marker.
        text: Raw item text.
    """
    if mark == "x":
        return TaskStatus.DONE

    encoded = parse_status(token)
    if encoded is not None:
        return encoded

    lower = text.lower()
    if BLOCKED_KEYWORD in lower:
        return TaskStatus.BLOCKED
    if IN_PROGRESS_KEYWORD in lower:
        return TaskStatus.IN_PROGRESS
    return TaskStatus.BACKLOG


def detect_project(section: str, project_map: dict[str, str] | None = None) -> str:
    """Resolve a section heading to a project name.

    Args:
        section: Cleaned heading text.
        project_map: Keyword -> project table (defaults to the built-in one).

    Returns:
        Project name of the first keyword contained in the section, or "".
    """
    table = DEFAULT_PROJECT_MAP if project_map is None else project_map
    lower = section.lower()
    for keyword, project in table.items():
        if keyword in lower:
            return project
    return ""


def has_sync_marker(content: str) -> bool:
    """Check whether a file opted in to synchronization."""
    return SYNC_MARKER in content


def parse_backlog(content: str) -> list[ParsedFileTask]:
    """Parse checkbox task lines for live sync.

    Args:
        content: Backlog file text.

    Returns:
        Parsed tasks in file order.
    """
    tasks: list[ParsedFileTask] = []
    section = ""

    for token in tokenize(content):
        if token.kind == LineKind.HEADING:
            section = clean_section(token.text)
            continue
        if token.kind != LineKind.CHECKBOX:
            continue

        qb_id, encoded = extract_identity(token.text)
        tasks.append(
            ParsedFileTask(
                qb_id=qb_id,
                title=clean_title(token.text, parse_status(encoded)),
                status=resolve_status(token.mark, encoded, token.text),
                section=section,
                line=token.index,
            )
        )

    return tasks


def parse_import(
    content: str,
    agent: str,
    project_map: dict[str, str] | None = None,
    default_agent: str = DEFAULT_AGENT,
) -> list[Task]:
    """Parse a backlog for one-time bulk import.

    Unlike :func:`parse_backlog` this also accepts plain bullets (when the
    section maps to a project), skips "Completado" sections and extracts
    ``BLOQUEADO: reason`` into ``blocked_by``. Checkbox items outside any project
    section of the default agent's file go to :data:`DEFAULT_IMPORT_PROJECT`.

    Args:
        content: Backlog file text.
        agent: Agent owning the file.
        project_map: Keyword -> project table.
        default_agent: Agent owning the unsuffixed workspace.

    Returns:
        New, unsaved Task objects.
    """
    tasks: list[Task] = []
    section = ""
    project = ""

    for token in tokenize(content):
        if token.kind == LineKind.HEADING:
            section = clean_section(token.text)
            project = detect_project(section, project_map)
            continue

        if section.lower().startswith("completado"):
            continue

        if token.kind == LineKind.CHECKBOX:
            status = TaskStatus.DONE if token.mark == "x" else TaskStatus.BACKLOG
            task_project = project
            if not task_project and agent == default_agent:
                task_project = DEFAULT_IMPORT_PROJECT
        elif token.kind == LineKind.PLAIN and project:
            if len(token.text) < 5:
                continue
            status = TaskStatus.BACKLOG
            task_project = project
        else:
            continue

        text = _IDENTITY_STRIP_RE.sub("", token.text).strip()
        blocked_by = ""
        match = _IMPORT_BLOCKED_RE.search(text)
        if match:
            status = TaskStatus.BLOCKED
            blocked_by = match.group(1).strip()

        title = _IMPORT_BLOCKED_TAIL_RE.sub("", text).replace("**", "").strip()
        if not title:
            continue

        tasks.append(
            Task(
                title=title,
                project=task_project,
                agent=agent,
                status=status,
                blocked_by=blocked_by,
                notes=f"Section: {section}" if section else "",
            )
        )

    return tasks
