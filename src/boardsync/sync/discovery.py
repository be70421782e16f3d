"""Workspace discovery."""

from pathlib import Path

import structlog

log = structlog.get_logger()


def agent_for_directory(
    name: str,
    prefix: str = "workspace",
    default_agent: str = "main",
) -> str | None:
    """Map a workspace directory name to its agent.

    ``workspace`` -> default agent, ``workspace-foo`` -> ``foo``.

    Returns:
        Agent name, or None if the name is not a workspace.
    """
    if name == prefix:
        return default_agent
    if name.startswith(f"{prefix}-") and len(name) > len(prefix) + 1:
        return name[len(prefix) + 1 :]
    return None


def discover_workspaces(
    base: Path,
    backlog_filename: str = "BACKLOG.md",
    prefix: str = "workspace",
    default_agent: str = "main",
) -> dict[str, Path]:
    """Find every workspace holding a backlog file.

    Args:
        base: Directory containing the workspace directories.
        backlog_filename: Backlog file name inside a workspace.
        prefix: Directory name prefix marking a workspace.
        default_agent: Agent for the unsuffixed workspace.

    Returns:
        Agent -> absolute backlog path, sorted by agent.
    """
    base = Path(base).expanduser()
    if not base.is_dir():
        log.info("workspaces_base_missing", base=str(base))
        return {}

    workspaces: dict[str, Path] = {}
    try:
        entries = sorted(base.iterdir())
    except OSError as e:
        log.warning("workspaces_base_unreadable", base=str(base), error=str(e))
        return {}

    for entry in entries:
        agent = agent_for_directory(entry.name, prefix, default_agent)
        if agent is None or not entry.is_dir():
            continue
        backlog = entry / backlog_filename
        if backlog.is_file():
            workspaces[agent] = backlog.resolve()

    return dict(sorted(workspaces.items()))
