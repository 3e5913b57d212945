"""CLI command implementations for i3mux.

Every command acts on the focused workspace except ``sessions`` and ``kill``,
which address saved sessions on a host.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from .. import __version__
from ..core.config import load_config
from ..errors import AmbiguousSessionError, I3muxError
from ..services.workspace_manager import TerminalOutcome, WorkspaceManager
from .formatters import console, format_bindings, format_sessions
from .logging_config import setup_logging


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_AMBIGUOUS = 2


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    RED = "\033[31m"
    BLUE = "\033[34m"
    GRAY = "\033[90m"


def print_success(message: str) -> None:
    """Print success message in green."""
    print(f"{Colors.GREEN}✓{Colors.RESET} {message}")


def print_error(message: str) -> None:
    """Print error message in red."""
    print(f"{Colors.RED}✗{Colors.RESET} {message}", file=sys.stderr)


def print_info(message: str) -> None:
    """Print info message in blue."""
    print(f"{Colors.BLUE}ℹ{Colors.RESET} {message}")


def print_warning(message: str) -> None:
    """Print warning message in yellow."""
    print(f"{Colors.YELLOW}⚠{Colors.RESET} {message}")


def print_error_with_remediation(error: str, remediation: str) -> None:
    """Print error with remediation steps.

    Format: "✗ Error: <issue>" followed by "  Remediation: <steps>", on stderr.

    Examples:
        >>> print_error_with_remediation(
        ...     "Workspace 8 is not bound to an i3mux session",
        ...     "Run 'i3mux activate' first"
        ... )
    """
    print(f"{Colors.RED}✗ Error:{Colors.RESET} {error}", file=sys.stderr)
    print(f"{Colors.BLUE}  Remediation:{Colors.RESET} {remediation}", file=sys.stderr)


def report_error(error: I3muxError) -> int:
    """Print a structural failure and return its exit code."""
    if isinstance(error, AmbiguousSessionError):
        print_error_with_remediation(error.message, error.suggestion)
        return EXIT_AMBIGUOUS

    print_error_with_remediation(
        error.message,
        error.suggestion or "Run with --debug for details",
    )
    return EXIT_ERROR


def report_outcome(outcome: TerminalOutcome) -> None:
    if not outcome.tracked:
        print_info(f"Opened a plain terminal on unbound workspace {outcome.workspace}")
    elif outcome.mark:
        print_success(f"Opened {outcome.socket_id} in window {outcome.con_id}")
    else:
        print_warning(f"Opened {outcome.socket_id} but could not identify its window: {outcome.warning}")


def _manager(args: argparse.Namespace) -> WorkspaceManager:
    config_path = Path(args.config) if getattr(args, "config", None) else None
    return WorkspaceManager(load_config(config_path))


# ============================================================================
# Binding commands
# ============================================================================


async def cmd_activate(args: argparse.Namespace) -> int:
    """Bind the focused workspace to a session and open its first terminal.

    Returns:
        0 on success, 1 on error
    """
    try:
        async with _manager(args) as mgr:
            outcome = await mgr.activate(host=args.remote, session_name=args.session)
    except I3muxError as e:
        return report_error(e)

    target = args.remote or "local"
    print_success(f"Workspace {outcome.workspace} bound to {target} session")
    report_outcome(outcome)
    return EXIT_OK


async def cmd_deactivate(args: argparse.Namespace) -> int:
    try:
        async with _manager(args) as mgr:
            remaining = await mgr.deactivate()
    except I3muxError as e:
        return report_error(e)

    print_success("Workspace unbound")
    if remaining:
        print_info(f"{remaining} multiplexer session(s) left running")
    return EXIT_OK


async def cmd_detach(args: argparse.Namespace) -> int:
    """Save the focused workspace as a named session and close its windows."""
    try:
        async with _manager(args) as mgr:
            record = await mgr.detach(session_name=args.session)
    except I3muxError as e:
        return report_error(e)

    print_success(
        f"Detached {len(record.sockets)} terminal(s) as '{record.name}' on {record.host}"
    )
    return EXIT_OK


async def cmd_attach(args: argparse.Namespace) -> int:
    """Reopen the terminals of a saved session on the focused workspace.

    Returns:
        0 on success, 1 on error, 2 when several sessions exist and none was named
    """
    try:
        async with _manager(args) as mgr:
            outcomes = await mgr.attach(session_name=args.session, host=args.remote)
    except I3muxError as e:
        return report_error(e)

    for outcome in outcomes:
        report_outcome(outcome)
    print_success(f"Attached {len(outcomes)} terminal(s)")
    return EXIT_OK


async def cmd_kill(args: argparse.Namespace) -> int:
    try:
        async with _manager(args) as mgr:
            record = await mgr.kill(args.session, host=args.remote)
    except I3muxError as e:
        return report_error(e)

    print_success(f"Killed session '{record.name}' ({len(record.sockets)} terminal(s))")
    return EXIT_OK


# ============================================================================
# Terminal command
# ============================================================================


async def cmd_terminal(args: argparse.Namespace) -> int:
    command: Optional[List[str]] = list(args.cmd) or None
    if command and command[0] == "--":
        command = command[1:] or None

    try:
        async with _manager(args) as mgr:
            outcome = await mgr.terminal(command=command)
    except I3muxError as e:
        return report_error(e)

    report_outcome(outcome)
    return EXIT_OK


# ============================================================================
# Inspection commands
# ============================================================================


async def cmd_list(args: argparse.Namespace) -> int:
    """Show workspace bindings and the liveness of their sockets."""
    try:
        async with _manager(args) as mgr:
            statuses = await mgr.list()
    except I3muxError as e:
        return report_error(e)

    if args.json:
        print(json.dumps([
            {
                "workspace": s.workspace,
                "host": s.session.host_label,
                "session_name": s.session_name,
                "sockets": [
                    {"socket": sock.socket_id, "window": sock.window_id, "live": sock.live}
                    for sock in s.sockets
                ],
            }
            for s in statuses
        ], indent=2))
        return EXIT_OK

    if not statuses:
        print_info("No workspaces are bound to i3mux sessions")
        return EXIT_OK

    console.print(format_bindings(statuses))
    return EXIT_OK


async def cmd_sessions(args: argparse.Namespace) -> int:
    try:
        async with _manager(args) as mgr:
            records = await mgr.sessions(host=args.remote)
    except I3muxError as e:
        return report_error(e)

    if args.json:
        print(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return EXIT_OK

    host = args.remote or "local"
    if not records:
        print_info(f"No saved sessions on {host}")
        return EXIT_OK

    console.print(format_sessions(records, host))
    return EXIT_OK


async def cmd_cleanup(args: argparse.Namespace) -> int:
    """Garbage-collect sockets whose session and window are both gone."""
    try:
        async with _manager(args) as mgr:
            report = await mgr.cleanup(workspace=args.workspace)
    except I3muxError as e:
        return report_error(e)

    if not report.total_removed and not report.removed_bindings:
        print_info("Nothing to clean up")
        return EXIT_OK

    for ws, sockets in sorted(report.removed_sockets.items()):
        print_success(f"Workspace {ws}: removed {', '.join(sockets)}")
    for ws in report.removed_bindings:
        print_success(f"Workspace {ws}: binding removed (no sockets left)")
    return EXIT_OK


# ============================================================================
# Entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="i3mux",
        description="i3mux - bind i3/Sway workspaces to local or remote terminal sessions",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"i3mux {__version__}"
    )

    # Global logging flags
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (INFO level)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (DEBUG level, includes verbose)"
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Configuration file (default: ~/.config/i3mux/config.json)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # i3mux activate [--remote HOST] [--session NAME]
    parser_activate = subparsers.add_parser(
        "activate",
        help="Bind the focused workspace and open a session terminal"
    )
    parser_activate.add_argument(
        "--remote",
        metavar="HOST",
        help="Run sessions on [user@]HOST over ssh"
    )
    parser_activate.add_argument(
        "--session",
        metavar="NAME",
        help="Name used when the workspace is later detached"
    )

    # i3mux deactivate
    subparsers.add_parser(
        "deactivate",
        help="Unbind the focused workspace (sessions keep running)"
    )

    # i3mux detach [--session NAME]
    parser_detach = subparsers.add_parser(
        "detach",
        help="Save the focused workspace as a session and close its windows"
    )
    parser_detach.add_argument(
        "--session",
        metavar="NAME",
        help="Session name (default: the bound name or wsN)"
    )

    # i3mux attach [--session NAME] [--remote HOST]
    parser_attach = subparsers.add_parser(
        "attach",
        help="Reopen a saved session on the focused workspace"
    )
    parser_attach.add_argument("--session", metavar="NAME", help="Session to attach")
    parser_attach.add_argument("--remote", metavar="HOST", help="Host holding the session")

    # i3mux kill --session NAME [--remote HOST]
    parser_kill = subparsers.add_parser(
        "kill",
        help="Terminate every terminal of a saved session and forget it"
    )
    parser_kill.add_argument("--session", metavar="NAME", required=True, help="Session to kill")
    parser_kill.add_argument("--remote", metavar="HOST", help="Host holding the session")

    # i3mux terminal [-- CMD...]
    parser_terminal = subparsers.add_parser(
        "terminal",
        help="Open a terminal on the focused workspace"
    )
    parser_terminal.add_argument(
        "cmd",
        nargs=argparse.REMAINDER,
        help="Command to run in a new session (after --)"
    )

    # i3mux list [--json]
    parser_list = subparsers.add_parser(
        "list",
        help="Show workspace bindings and their terminals"
    )
    parser_list.add_argument("--json", action="store_true", help="Output JSON")

    # i3mux sessions [--remote HOST] [--json]
    parser_sessions = subparsers.add_parser(
        "sessions",
        help="List saved sessions on a host"
    )
    parser_sessions.add_argument("--remote", metavar="HOST", help="Host to query")
    parser_sessions.add_argument("--json", action="store_true", help="Output JSON")

    # i3mux cleanup [WORKSPACE]
    parser_cleanup = subparsers.add_parser(
        "cleanup",
        help="Remove dead sockets and empty bindings"
    )
    parser_cleanup.add_argument(
        "workspace",
        nargs="?",
        help="Only clean this workspace (default: all)"
    )

    return parser


command_handlers = {
    "activate": cmd_activate,
    "deactivate": cmd_deactivate,
    "detach": cmd_detach,
    "attach": cmd_attach,
    "kill": cmd_kill,
    "terminal": cmd_terminal,
    "list": cmd_list,
    "sessions": cmd_sessions,
    "cleanup": cmd_cleanup,
}


def cli_main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, debug=args.debug)

    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    handler = command_handlers.get(args.command)
    if not handler:
        print_error(f"Unknown command: {args.command}")
        return EXIT_ERROR

    try:
        return asyncio.run(handler(args))
    except KeyboardInterrupt:
        print_warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(cli_main())
