"""Configuration management for boardsync."""

import sys
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = structlog.get_logger()

# Section keyword -> project name. Order matters: first keyword found wins.
DEFAULT_PROJECT_MAP: dict[str, str] = {
    "pipeline prisma": "Prisma Pipeline",
    "pipeline engine": "Prisma Engine",
    "prisma engine": "Prisma Engine",
    "modelo academy": "Qualia Academy",
    "distribucion": "Qualia Academy",
    "academy": "Qualia Academy",
    "levanta26": "Qualia Academy",
    "asesorias": "Qualia Academy",
    "coaching": "Qualia Academy",
    "qualia-wealth": "Qualia Wealth",
    "wealth": "Qualia Wealth",
    "inversiones": "Qualia Wealth",
    "infraqualia": "InfraQualia",
    "producto": "InfraQualia",
    "ventas": "InfraQualia",
    "revenue": "InfraQualia",
    "portal": "InfraQualia",
    "dashboard": "InfraQualia",
    "visual mapping": "Visual Mapping WTW",
    "measurebot": "Visual Mapping WTW",
    "cotizador": "Visual Mapping WTW",
    "growth": "Growth/Monetizacion",
    "monetizacion": "Growth/Monetizacion",
    "infra": "Infra/Core",
    "servicios": "Infra/Core",
    "tokens": "Infra/Core",
    "consumo": "Infra/Core",
    "fixes": "Infra/Core",
    "tech debt": "Infra/Core",
    "tech": "Infra/Core",
    "proceso instalacion": "InfraQualia",
    "instalacion": "InfraQualia",
    "pagos": "Qualia Academy",
    "revenue split": "Qualia Academy",
    "saas tools": "Qualia Academy",
    "anti-churn": "Qualia Academy",
    "ideas": "Prisma Engine",
    "futuro": "Prisma Engine",
}


class Settings(BaseSettings):
    """boardsync configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Store
    board_file: Path = Field(
        default_factory=lambda: Path.cwd() / "board-data.json",
        description="JSON task board shared with the API layer",
    )

    # Workspaces
    workspaces_base: Path = Field(
        default=Path("~/.openclaw"),
        validate_default=True,
        description="Directory holding the agent workspace directories",
    )
    backlog_filename: str = Field(
        default="BACKLOG.md",
        description="Backlog file name inside each workspace",
    )
    workspace_prefix: str = Field(
        default="workspace",
        description="Directory name prefix that marks a workspace",
    )
    default_agent: str = Field(
        default="main",
        description="Agent owning the unsuffixed workspace",
    )

    # Timing (seconds)
    debounce_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Quiet period before a changed file is reconciled",
    )
    poll_interval: float = Field(
        default=2.0,
        gt=0,
        description="Interval between modification-time polls",
    )
    suppression_window: float = Field(
        default=5.0,
        ge=0,
        description="How long a sync-initiated write suppresses the watcher",
    )

    project_map_file: Path | None = Field(
        default=None,
        description="Optional YAML file mapping section keywords to projects",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("board_file", "workspaces_base", mode="before")
    @classmethod
    def resolve_path(cls, v: str | Path) -> Path:
        """Expand and resolve configured paths."""
        return Path(v).expanduser().resolve()

    @field_validator("project_map_file", mode="before")
    @classmethod
    def resolve_optional_path(cls, v: str | Path | None) -> Path | None:
        """Expand the project map path when one is given."""
        if v is None or v == "":
            return None
        return Path(v).expanduser().resolve()

    def with_store_config(self, config: dict[str, Any] | None) -> "Settings":
        """Overlay the board document's ``config`` object on these settings.

        The API layer edits ``workspacesBase`` and ``backlogFilename`` inside
        the board file; those values take precedence over the environment.
        """
        if not config:
            return self

        update: dict[str, Any] = {}
        base = config.get("workspacesBase")
        if base:
            update["workspaces_base"] = Path(str(base)).expanduser().resolve()
        filename = config.get("backlogFilename")
        if filename:
            update["backlog_filename"] = str(filename)

        if not update:
            return self
        return self.model_copy(update=update)


def load_project_map(path: Path | None) -> dict[str, str]:
    """Load the section keyword table.

    Args:
        path: YAML file with a ``keyword: project`` mapping, or None.

    Returns:
        Ordered keyword -> project mapping with lowercase keywords.
    """
    if path is None:
        return dict(DEFAULT_PROJECT_MAP)

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        log.warning("project_map_unreadable", path=str(path), error=str(e))
        return dict(DEFAULT_PROJECT_MAP)

    if not isinstance(raw, dict):
        log.warning("project_map_invalid", path=str(path))
        return dict(DEFAULT_PROJECT_MAP)

    return {str(k).lower(): str(v) for k, v in raw.items() if k and v}


def load_settings(root: Path | None = None, **overrides: Any) -> Settings:
    """Load settings from environment and .env file.

    Args:
        root: Optional directory to look for a .env file in.
        **overrides: Explicit field values (e.g. from CLI flags).

    Returns:
        Validated Settings instance.

    Raises:
        SystemExit: If the configuration is invalid.
    """
    env_file = None
    if root:
        env_file = root / ".env"
        if not env_file.exists():
            env_file = root / ".boardsync" / ".env"
            if not env_file.exists():
                env_file = None

    values = {k: v for k, v in overrides.items() if v is not None}

    try:
        if env_file:
            return Settings(_env_file=env_file, **values)  # type: ignore[call-arg]
        return Settings(**values)

    except Exception as e:
        _print_config_help(e)
        sys.exit(1)


def _print_config_help(error: Exception) -> None:
    """Print helpful message for invalid configuration."""
    print("\n" + "=" * 60)
    print("boardsync Configuration Error")
    print("=" * 60 + "\n")

    print("Example .env file:")
    print("-" * 40)
    print("BOARD_FILE=~/board/board-data.json")
    print("WORKSPACES_BASE=~/.openclaw")
    print("BACKLOG_FILENAME=BACKLOG.md")
    print()
    print("# Timing (seconds)")
    print("DEBOUNCE_SECONDS=1")
    print("POLL_INTERVAL=2")
    print("SUPPRESSION_WINDOW=5")
    print("-" * 40)
    print()

    print(f"Validation error: {error}")
    print()
