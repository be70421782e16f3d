"""Pydantic models for the task board document."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

# Owner of tasks stored without an agent, unless the loader says otherwise.
DEFAULT_AGENT = "main"


def format_timestamp(value: datetime) -> str:
    """Render a timestamp the way the board stores it (``...T12:00:00.000Z``)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _utc_now() -> str:
    """Get current UTC time as a board timestamp."""
    return format_timestamp(datetime.now(timezone.utc))


def _new_id() -> str:
    return str(uuid.uuid4())


class TaskStatus(str, Enum):
    """Task status enumeration."""

    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    BLOCKED = "blocked"
    DONE = "done"


# Statuses written by older board versions.
LEGACY_STATUS_MAP = {
    "idea": TaskStatus.BACKLOG,
    "review": TaskStatus.IN_PROGRESS,
    "ready": TaskStatus.TODO,
}


def coerce_status(value: Any) -> TaskStatus:
    """Map any stored status value onto the closed enumeration.

    Args:
        value: Raw status from the board file or API.

    Returns:
        Matching TaskStatus, the legacy mapping, or BACKLOG.
    """
    if isinstance(value, TaskStatus):
        return value
    if not isinstance(value, str):
        return TaskStatus.BACKLOG

    value = value.strip().lower()
    try:
        return TaskStatus(value)
    except ValueError:
        return LEGACY_STATUS_MAP.get(value, TaskStatus.BACKLOG)


class Task(BaseModel):
    """A task on the board, owned by one agent."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(default_factory=_new_id)
    title: str = ""
    description: str = ""
    project: str = ""
    # Empty until validated; filled from the load context or DEFAULT_AGENT.
    agent: str = Field(default="", validate_default=True)
    status: TaskStatus = TaskStatus.BACKLOG
    blocked_by: str = Field(default="", alias="blockedBy")
    priority: str = "medium"
    type: str = "feature"
    deadline: str | None = None
    notes: str = ""
    # Kept as stored text so untouched tasks are written back byte for byte.
    created_at: str = Field(default_factory=_utc_now, alias="createdAt")
    updated_at: str = Field(default_factory=_utc_now, alias="updatedAt")

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v: Any) -> str:
        """Accept numeric ids; mint one when missing."""
        if v is None or v == "":
            return _new_id()
        return str(v)

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> TaskStatus:
        """Coerce unknown statuses instead of rejecting the task."""
        return coerce_status(v)

    @field_validator(
        "title",
        "description",
        "project",
        "blocked_by",
        "priority",
        "type",
        "notes",
        mode="before",
    )
    @classmethod
    def validate_text(cls, v: Any) -> str:
        """Treat null text fields as empty."""
        if v is None:
            return ""
        return str(v)

    @field_validator("agent", mode="before")
    @classmethod
    def validate_agent(cls, v: Any, info: ValidationInfo) -> str:
        """Tasks without an agent belong to the default workspace.

        The default agent can be passed as validation context, e.g.
        ``Board.model_validate(data, context={"default_agent": "lead"})``.
        """
        if v:
            return str(v)
        context = info.context or {}
        return str(context.get("default_agent") or DEFAULT_AGENT)

    @field_validator("deadline", mode="before")
    @classmethod
    def validate_deadline(cls, v: Any) -> str | None:
        """Keep any scalar deadline as text; drop anything else."""
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (str, int, float)):
            return str(v)
        return None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def validate_timestamp(cls, v: Any) -> str:
        """Keep stored timestamps verbatim; fill in missing ones."""
        if isinstance(v, datetime):
            return format_timestamp(v)
        if isinstance(v, str) and v:
            return v
        return _utc_now()

    @property
    def short_id(self) -> str:
        """Identity anchor embedded in Markdown (first 8 chars of id)."""
        return self.id[:8].lower()

    def touch(self, now: datetime | None = None) -> None:
        """Bump ``updated_at``."""
        self.updated_at = format_timestamp(now) if now else _utc_now()

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the board file's camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


class Board(BaseModel):
    """The whole board document.

    Only ``tasks``, ``projects`` and ``config`` are interpreted here; any
    other top-level key (ecosystem boards, branding...) is carried through
    untouched.
    """

    model_config = ConfigDict(extra="allow")

    tasks: list[Task] = Field(default_factory=list)
    projects: list[Any] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("tasks", "projects", mode="before")
    @classmethod
    def validate_list(cls, v: Any) -> Any:
        """Treat a null list as empty."""
        return [] if v is None else v

    @field_validator("config", mode="before")
    @classmethod
    def validate_config(cls, v: Any) -> Any:
        """Treat a null config as empty."""
        return {} if v is None else v

    def tasks_for(self, agent: str | None) -> list[Task]:
        """Tasks owned by ``agent``, or every task when agent is None."""
        if agent is None:
            return list(self.tasks)
        return [t for t in self.tasks if t.agent == agent]

    def project_names(self) -> set[str]:
        """Names of registered projects (plain strings or ``{name: ...}``)."""
        names: set[str] = set()
        for p in self.projects:
            if isinstance(p, str):
                names.add(p)
            elif isinstance(p, dict) and p.get("name"):
                names.add(str(p["name"]))
        return names

    def to_dict(self) -> dict[str, Any]:
        """Serialize the full document."""
        return self.model_dump(by_alias=True, mode="json")
