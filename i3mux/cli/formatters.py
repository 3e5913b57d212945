"""Rich formatters for i3mux CLI output."""

import time
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from ..models import SessionRecord
from ..services.workspace_manager import BindingStatus


# Global console instance
console = Console()


def format_age(timestamp: float, now: Optional[float] = None) -> str:
    """Compact relative age, e.g. '3m ago'."""
    delta = max(0, int((now if now is not None else time.time()) - timestamp))
    if delta >= 86400:
        return f"{delta // 86400}d ago"
    if delta >= 3600:
        return f"{delta // 3600}h ago"
    if delta >= 60:
        return f"{delta // 60}m ago"
    return f"{delta}s ago"


def format_bindings(statuses: List[BindingStatus]) -> Table:
    """Format workspace bindings as a Rich table, one row per socket.

    Sockets whose recorded container is no longer in the tree show as
    "no window".
    """
    table = Table(title="i3mux workspaces", show_header=True, header_style="bold cyan")

    table.add_column("Workspace", style="bold green", justify="right")
    table.add_column("Host", style="blue")
    table.add_column("Session", style="magenta")
    table.add_column("Socket", style="yellow")
    table.add_column("Window")

    for status in statuses:
        first = True
        rows = status.sockets or [None]
        for sock in rows:
            if sock is None:
                window = "[dim]no terminals[/dim]"
                socket_id = ""
            elif sock.live:
                window = f"[green]{sock.window_id}[/green]"
                socket_id = sock.socket_id
            else:
                window = "[red]no window[/red]"
                socket_id = sock.socket_id

            table.add_row(
                status.workspace if first else "",
                status.session.host_label if first else "",
                (status.session_name or "") if first else "",
                socket_id,
                window,
            )
            first = False

    return table


def format_sessions(records: List[SessionRecord], host: str) -> Table:
    """Format saved (detached) sessions as a Rich table."""
    table = Table(title=f"Sessions on {host}", show_header=True, header_style="bold cyan")

    table.add_column("Name", style="bold green")
    table.add_column("Workspace", justify="right")
    table.add_column("Terminals", justify="right", style="yellow")
    table.add_column("Detached", style="dim")

    now = time.time()
    for record in records:
        table.add_row(
            record.name,
            record.workspace,
            str(len(record.sockets)),
            format_age(record.detached_at, now),
        )

    return table
