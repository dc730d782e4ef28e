"""Entry point for python -m terminaut.

Headless commands for inspecting session state artifacts and the task
archive.

Usage:
    python -m terminaut state-path ~/code/my-app
    python -m terminaut show ~/code/my-app --json
    python -m terminaut watch ~/code/my-app
    python -m terminaut archive session_01Qy...
    python -m terminaut unarchive session_01Qy...
    python -m terminaut archived
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from terminaut.config import load_config
from terminaut.exceptions import TerminautError
from terminaut.models import AppConfig, SessionStateSnapshot

if TYPE_CHECKING:
    from terminaut.task_archive import TaskArchive


def _setup_logging(args: argparse.Namespace) -> None:
    """Configure logging based on command-line arguments."""
    from terminaut.logging_config import enable_debug_mode, setup_logging

    if args.debug:
        enable_debug_mode(log_to_file=not args.no_log_file)
    else:
        setup_logging(
            level=args.log_level,
            log_to_console=False,
            log_to_file=not args.no_log_file,
        )


def _print_json(data: Any) -> None:
    """Print data as JSON to stdout."""
    print(json.dumps(data, indent=2, default=str))


def _print_snapshot(snapshot: SessionStateSnapshot) -> None:
    """Print a short human-readable summary of a snapshot."""
    timestamp = snapshot.timestamp.isoformat() if snapshot.timestamp else "-"
    print(f"Project:  {snapshot.project_name or '-'}")
    print(f"Model:    {snapshot.model or '-'}")
    print(f"Updated:  {timestamp}")
    print(f"Context:  {snapshot.context_percent:.0f}%")
    print(f"Quota:    {snapshot.quota_percent:.0f}%")
    if snapshot.git_branch:
        print(
            f"Git:      {snapshot.git_branch} "
            f"(+{snapshot.git_ahead}/-{snapshot.git_behind}, "
            f"{snapshot.git_uncommitted} uncommitted)"
        )

    counts = snapshot.todo_counts
    print(
        f"Todos:    {counts['completed']}/{len(snapshot.todos)} done, "
        f"{counts['in_progress']} in progress"
    )
    for todo in snapshot.in_progress_todos:
        print(f"  > {todo.display_text}")

    prs = snapshot.open_pull_requests
    print(f"PRs:      {len(prs)} open")
    for pr in prs:
        draft = " (draft)" if pr.is_draft else ""
        print(f"  #{pr.number} {pr.title}{draft}")

    if snapshot.background_tasks:
        print(f"Tasks:    {len(snapshot.background_tasks)} background")


def _load_config(args: argparse.Namespace) -> AppConfig:
    return load_config(args.config)


# =============================================================================
# CLI Command Handlers
# =============================================================================


def cmd_state_path(args: argparse.Namespace) -> int:
    """Handle state-path command."""
    from terminaut.state_artifact import artifact_path, sanitize_project_name

    config = _load_config(args)
    project_path = Path(args.path).expanduser()
    name = sanitize_project_name(project_path.name)
    path = artifact_path(project_path, config.resolved_state_dir)

    if args.json:
        _print_json({"project": str(project_path), "name": name, "path": str(path)})
    else:
        print(f"Name: {name}")
        print(f"Path: {path}")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Handle show command."""
    from terminaut.state_artifact import artifact_path, read_state_file, snapshot_to_dict

    config = _load_config(args)
    path = artifact_path(args.path, config.resolved_state_dir)

    try:
        snapshot = read_state_file(path)
    except FileNotFoundError:
        print(f"Error: no state artifact at {path}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: failed to read {path}: {e}", file=sys.stderr)
        return 1

    archive = _archive(config)
    snapshot.background_tasks = archive.visible_tasks(snapshot)

    if args.json:
        _print_json(snapshot_to_dict(snapshot))
    else:
        _print_snapshot(snapshot)
    return 0


async def cmd_watch(args: argparse.Namespace) -> int:
    """Handle watch command."""
    from terminaut.state_artifact import snapshot_to_dict
    from terminaut.state_watcher import StateWatcher

    config = _load_config(args)
    done = asyncio.Event()
    received = 0

    def on_snapshot(snapshot: SessionStateSnapshot) -> None:
        nonlocal received
        if snapshot.is_empty:
            return
        received += 1
        if args.json:
            print(json.dumps(snapshot_to_dict(snapshot), default=str), flush=True)
        else:
            _print_snapshot(snapshot)
            print(flush=True)
        if args.count and received >= args.count:
            done.set()

    watcher = StateWatcher.from_config(config)
    watcher.on_snapshot = on_snapshot
    await watcher.watch_project(args.path)
    if not args.json:
        print(f"Watching {watcher.artifact_path} (Ctrl+C to stop)", file=sys.stderr)

    try:
        await done.wait()
    finally:
        await watcher.stop_watching()
    return 0


def cmd_archive(args: argparse.Namespace) -> int:
    """Handle archive command."""
    _archive(_load_config(args)).archive(args.session_id)
    print(f"Archived {args.session_id}")
    return 0


def cmd_unarchive(args: argparse.Namespace) -> int:
    """Handle unarchive command."""
    _archive(_load_config(args)).unarchive(args.session_id)
    print(f"Unarchived {args.session_id}")
    return 0


def cmd_archived(args: argparse.Namespace) -> int:
    """Handle archived command."""
    archived = sorted(_archive(_load_config(args)).archived_ids())
    if args.json:
        _print_json(archived)
    elif not archived:
        print("No archived tasks.")
    else:
        for session_id in archived:
            print(session_id)
    return 0


def _archive(config: AppConfig) -> TaskArchive:
    from terminaut.task_archive import TaskArchive

    return TaskArchive(config.resolved_archive_path)


def _run_async(coro: Any) -> int:
    """Run an async coroutine and return exit code."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        return 130


# =============================================================================
# Argument Parser Setup
# =============================================================================


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add common arguments to a parser."""
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )


def _create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="terminaut",
        description="Terminaut - session state tools for the coding assistant shell",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Where does the status hook write state for a project?
  python -m terminaut state-path ~/code/my-app

  # Print the current state once
  python -m terminaut show ~/code/my-app

  # Follow state updates
  python -m terminaut watch ~/code/my-app

  # Hide a background task
  python -m terminaut archive session_01Qy
""",
    )

    # Global arguments
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging to console",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set log level (default: INFO)",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Disable logging to file",
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        default=None,
        help="Config file (default: ~/.terminaut/config.json)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # state-path
    state_path_parser = subparsers.add_parser(
        "state-path",
        help="Show the state artifact location for a project",
    )
    state_path_parser.add_argument("path", help="Project directory")
    _add_common_args(state_path_parser)

    # show
    show_parser = subparsers.add_parser(
        "show",
        help="Parse and print a project's state artifact",
    )
    show_parser.add_argument("path", help="Project directory")
    _add_common_args(show_parser)

    # watch
    watch_parser = subparsers.add_parser(
        "watch",
        help="Print each state update for a project until interrupted",
    )
    watch_parser.add_argument("path", help="Project directory")
    watch_parser.add_argument(
        "--count",
        type=int,
        default=0,
        help="Exit after this many updates (default: run until interrupted)",
    )
    _add_common_args(watch_parser)

    # archive / unarchive
    archive_parser = subparsers.add_parser(
        "archive",
        help="Hide a background task",
    )
    archive_parser.add_argument("session_id", help="Background task session ID")

    unarchive_parser = subparsers.add_parser(
        "unarchive",
        help="Show a previously hidden background task again",
    )
    unarchive_parser.add_argument("session_id", help="Background task session ID")

    # archived
    archived_parser = subparsers.add_parser(
        "archived",
        help="List archived background task IDs",
    )
    _add_common_args(archived_parser)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the terminaut command line."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    _setup_logging(args)

    try:
        if args.command == "state-path":
            return cmd_state_path(args)
        if args.command == "show":
            return cmd_show(args)
        if args.command == "watch":
            return _run_async(cmd_watch(args))
        if args.command == "archive":
            return cmd_archive(args)
        if args.command == "unarchive":
            return cmd_unarchive(args)
        if args.command == "archived":
            return cmd_archived(args)
    except TerminautError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
