"""boardsync - two-way sync between agent BACKLOG.md files and a JSON task board."""

__version__ = "0.1.0"
