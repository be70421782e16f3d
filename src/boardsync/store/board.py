"""JSON board file access.

The board is a single JSON document shared with the API layer. It is
always read whole and written whole; writes go through a temporary file
and an atomic rename so a crash never leaves a truncated board behind.
"""

import json
import os
import tempfile
from collections import Counter
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from boardsync.store.models import DEFAULT_AGENT, Board


class StoreError(Exception):
    """Base error for board file problems."""


class StoreNotFoundError(StoreError):
    """Raised when the board file does not exist or cannot be read."""


class StoreCorruptedError(StoreError):
    """Raised when the board file is not a valid board document."""


class BoardStore:
    """Reads and writes the board JSON file."""

    def __init__(self, path: Path, default_agent: str = DEFAULT_AGENT):
        """Initialize the store.

        Args:
            path: Location of the board JSON file.
            default_agent: Owner assigned to tasks stored without an agent.
        """
        self.path = Path(path)
        self.default_agent = default_agent

    def exists(self) -> bool:
        """Check whether the board file is present."""
        return self.path.is_file()

    def load(self) -> Board:
        """Read and validate the board file.

        Returns:
            Parsed Board.

        Raises:
            StoreNotFoundError: If the file is missing or unreadable.
            StoreCorruptedError: If the JSON is invalid or not a board.
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise StoreNotFoundError(f"Board file not found: {self.path}") from e
        except json.JSONDecodeError as e:
            raise StoreCorruptedError(f"Failed to parse {self.path}: {e}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise StoreNotFoundError(f"Failed to read {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StoreCorruptedError(f"{self.path} must contain a JSON object")

        try:
            return Board.model_validate(
                data, context={"default_agent": self.default_agent}
            )
        except ValidationError as e:
            raise StoreCorruptedError(f"Invalid board in {self.path}: {e}") from e

    def save(self, board: Board) -> None:
        """Write the whole board atomically.

        Args:
            board: Board to persist.
        """
        self.write_raw(board.to_dict())

    def write_raw(self, data: dict[str, Any]) -> None:
        """Write a raw board document atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=".board_", suffix=".json.tmp"
        )

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")

            os.replace(temp_path, self.path)

        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise


def compute_stats(board: Board) -> dict[str, Any]:
    """Count tasks by status, project and agent.

    Args:
        board: Board to summarize.

    Returns:
        Dict with ``total``, ``byStatus``, ``byProject`` and ``byAgent``.
    """
    return {
        "total": len(board.tasks),
        "byStatus": dict(Counter(t.status.value for t in board.tasks)),
        "byProject": dict(Counter(t.project for t in board.tasks)),
        "byAgent": dict(Counter(t.agent for t in board.tasks)),
    }
