"""boardsync CLI entry point."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

import structlog
from dotenv import load_dotenv

from boardsync import __version__
from boardsync.config import Settings, load_settings
from boardsync.store import compute_stats
from boardsync.store.board import StoreError
from boardsync.sync import BacklogWatcher, SyncEngine, build_engine, import_backlogs

# ANSI color codes
RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
BRIGHT_GREEN = "\033[92m"
BRIGHT_BLUE = "\033[94m"


def configure_logging(level: str) -> None:
    """Configure structlog for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _setup(args: argparse.Namespace) -> tuple[Settings, SyncEngine]:
    """Load .env, settings and logging; build the engine."""
    root: Path = args.root.expanduser().resolve()
    env_file = root / ".env"
    if not env_file.exists():
        env_file = root / ".boardsync" / ".env"
    load_dotenv(env_file if env_file.exists() else None)

    settings = load_settings(root, board_file=args.board)
    configure_logging(settings.log_level)
    return settings, build_engine(settings)


async def watch(settings: Settings, engine: SyncEngine) -> None:
    """Watch backlog files until SIGINT/SIGTERM.

    Args:
        settings: Loaded settings.
        engine: Sync engine.
    """
    log = structlog.get_logger()
    log.info(
        "config_loaded",
        board_file=str(settings.board_file),
        workspaces_base=str(settings.workspaces_base),
        poll_interval=settings.poll_interval,
        debounce_seconds=settings.debounce_seconds,
    )

    watcher = BacklogWatcher(engine)
    await watcher.start()

    shutdown_event = asyncio.Event()

    def signal_handler():
        log.info("shutdown_signal_received")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    print()
    print(
        f"  {BRIGHT_GREEN}✓{RESET} {BOLD}boardsync v{__version__} is watching{RESET}"
    )
    for agent, path in watcher.watched.items():
        print(f"    {BRIGHT_BLUE}{agent}{RESET} {DIM}{path}{RESET}")
    print(f"  Press {BOLD}Ctrl+C{RESET} to stop")
    print()

    await shutdown_event.wait()

    log.info("shutting_down")
    await watcher.stop()


def cmd_sync(engine: SyncEngine, exclude_agent: str | None) -> int:
    """Rewrite tracked backlog files from the board."""
    if not engine.store.exists():
        print(f"Board file not found: {engine.store.path}")
        return 1
    written = engine.resync(exclude_agent=exclude_agent)
    print(f"Rewrote {len(written)} backlog file(s)")
    for agent in written:
        print(f"  ✓ {agent}")
    return 0


def cmd_render(engine: SyncEngine, agent: str | None) -> int:
    """Print the rendered backlog for an agent."""
    from boardsync.backlog import render_backlog

    try:
        board = engine.store.load()
    except StoreError as e:
        print(f"Error: {e}")
        return 1
    print(render_backlog(board.tasks, agent, engine.settings.default_agent))
    return 0


def cmd_import(engine: SyncEngine) -> int:
    """Bulk-import existing backlog files."""
    try:
        report = import_backlogs(engine)
    except StoreError as e:
        print(f"Error: {e}")
        return 1

    for agent, count in report.by_agent.items():
        print(f"  ✓ {agent}: {count} tasks imported")
    print()
    print(f"Total: {report.imported} tasks ({report.duplicates} duplicates skipped)")
    print(f"  By status: {json.dumps(report.by_status)}")
    if report.new_projects:
        print(f"  New projects: {', '.join(report.new_projects)}")
    return 0


def cmd_stats(engine: SyncEngine) -> int:
    """Print task counts."""
    try:
        board = engine.store.load()
    except StoreError as e:
        print(f"Error: {e}")
        return 1
    print(json.dumps(compute_stats(board), indent=2, ensure_ascii=False))
    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="boardsync",
        description="Keep agent BACKLOG.md files in sync with a JSON task board",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--root",
        type=Path,
        default=Path.cwd(),
        help="Directory containing the .env file (default: current directory)",
    )
    common.add_argument(
        "--board",
        type=Path,
        default=None,
        help="Board JSON file (overrides BOARD_FILE)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser(
        "watch",
        parents=[common],
        help="Watch backlog files and sync changes into the board",
    )

    sync_parser = subparsers.add_parser(
        "sync",
        parents=[common],
        help="Rewrite tracked backlog files from the board once",
    )
    sync_parser.add_argument(
        "--exclude-agent",
        default=None,
        help="Agent whose backlog must not be rewritten",
    )

    render_parser = subparsers.add_parser(
        "render",
        parents=[common],
        help="Print the rendered backlog for an agent",
    )
    render_parser.add_argument(
        "--agent",
        default=None,
        help="Agent to render (default: all tasks)",
    )

    subparsers.add_parser(
        "import",
        parents=[common],
        help="Bulk-import existing backlog files into the board",
    )
    subparsers.add_parser(
        "stats",
        parents=[common],
        help="Print task counts by status, project and agent",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings, engine = _setup(args)

    if args.command == "watch":
        asyncio.run(watch(settings, engine))
        return
    if args.command == "sync":
        sys.exit(cmd_sync(engine, args.exclude_agent))
    if args.command == "render":
        sys.exit(cmd_render(engine, args.agent))
    if args.command == "import":
        sys.exit(cmd_import(engine))
    if args.command == "stats":
        sys.exit(cmd_stats(engine))


if __name__ == "__main__":
    main()
