"""BACKLOG.md parsing and rendering."""

from boardsync.backlog.parser import (
    SYNC_MARKER,
    LineKind,
    LineToken,
    ParsedFileTask,
    detect_project,
    has_sync_marker,
    parse_backlog,
    parse_import,
    resolve_status,
    tokenize,
)
from boardsync.backlog.serializer import (
    STATUS_ORDER,
    append_identity_markers,
    render_backlog,
    render_task_line,
)

__all__ = [
    "SYNC_MARKER",
    "STATUS_ORDER",
    "LineKind",
    "LineToken",
    "ParsedFileTask",
    "append_identity_markers",
    "detect_project",
    "has_sync_marker",
    "parse_backlog",
    "parse_import",
    "render_backlog",
    "render_task_line",
    "resolve_status",
    "tokenize",
]
