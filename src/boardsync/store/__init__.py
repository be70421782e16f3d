"""Board document models and JSON storage."""

from boardsync.store.board import (
    BoardStore,
    StoreCorruptedError,
    StoreError,
    StoreNotFoundError,
    compute_stats,
)
from boardsync.store.models import (
    DEFAULT_AGENT,
    LEGACY_STATUS_MAP,
    Board,
    Task,
    TaskStatus,
    coerce_status,
    format_timestamp,
)

__all__ = [
    "Board",
    "BoardStore",
    "DEFAULT_AGENT",
    "LEGACY_STATUS_MAP",
    "StoreCorruptedError",
    "StoreError",
    "StoreNotFoundError",
    "Task",
    "TaskStatus",
    "coerce_status",
    "compute_stats",
    "format_timestamp",
]
