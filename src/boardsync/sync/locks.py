"""Write-lock tracking for sync-initiated backlog writes."""

import time
from collections.abc import Callable
from pathlib import Path


class WriteLockTracker:
    """Remembers when the engine itself last wrote each backlog file.

    A watcher that sees a file change within ``window`` seconds of such a
    write treats the change as its own echo and skips reconciliation.
    """

    def __init__(
        self,
        window: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window
        self._clock = clock
        self._writes: dict[Path, float] = {}

    @staticmethod
    def _key(path: Path | str) -> Path:
        return Path(path).expanduser().absolute()

    def record(self, path: Path | str) -> None:
        """Stamp a write that is about to land on ``path``."""
        self._writes[self._key(path)] = self._clock()

    def is_recent(self, path: Path | str) -> bool:
        """Check for a write to ``path`` within the window, without consuming it."""
        stamp = self._writes.get(self._key(path))
        return stamp is not None and self._clock() - stamp < self.window

    def consume(self, path: Path | str) -> bool:
        """Check and clear the write stamp for ``path``.

        Returns:
            True if a write was recorded within the window.
        """
        stamp = self._writes.pop(self._key(path), None)
        if stamp is None:
            return False
        return self._clock() - stamp < self.window

    def clear(self) -> None:
        """Forget every recorded write."""
        self._writes.clear()

    def __len__(self) -> int:
        return len(self._writes)
