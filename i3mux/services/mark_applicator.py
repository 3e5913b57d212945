"""
Mark applicator.

Tags resolved containers with a hidden mark addressed by container id, never
by title or class (titles change at any time).

Mark Format: _i3mux:HOST:SOCKET
Examples:
- _i3mux:local:ws8-001
- _i3mux:dev@build-box:ws3-002
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from i3ipc import Con

from ..core.wm import WindowManagerClient
from ..errors import StaleWindowError, WindowManagerError
from ..models import Session

logger = logging.getLogger(__name__)

MARK_PREFIX = "_i3mux"


@dataclass(frozen=True)
class ParsedMark:
    host: str
    socket_id: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.host, self.socket_id)


def build_mark(session: Session, socket_id: str) -> str:
    return f"{MARK_PREFIX}:{session.host_label}:{socket_id}"


def parse_mark(mark: str) -> Optional[ParsedMark]:
    """Parse an i3mux mark. Returns None for anything else."""
    prefix, sep, rest = mark.partition(":")
    if prefix != MARK_PREFIX or not sep:
        return None
    # Hosts never contain ':' but user@host may, so split from the right
    host, sep, socket_id = rest.rpartition(":")
    if not sep or not host or not socket_id:
        return None
    return ParsedMark(host=host, socket_id=socket_id)


def workspace_id(con: Con) -> Optional[str]:
    """Identifier of the workspace holding a container (its number as a string)."""
    ws = con.workspace()
    if ws is None:
        return None
    if ws.num is not None and ws.num >= 0:
        return str(ws.num)
    return ws.name


class MarkApplicator:
    """Applies and queries i3mux marks."""

    def __init__(self, wm: WindowManagerClient):
        self.wm = wm

    async def apply(self, con_id: int, mark: str) -> str:
        """Mark a container. Reapplying the same mark is a no-op.

        Raises:
            StaleWindowError: If the container no longer exists
        """
        start_time = time.perf_counter()

        try:
            await self.wm.command(f'[con_id={con_id}] mark --add "{mark}"')
        except WindowManagerError as e:
            raise StaleWindowError(con_id, e.context.get("error", e.message))

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(f"Marked window {con_id}: {mark} ({elapsed_ms:.2f}ms)")
        return mark

    async def find_marked_windows(
        self,
        workspace: Optional[str] = None,
        tree: Optional[Con] = None,
    ) -> Dict[Tuple[str, str], Con]:
        """Map (host, socket) to the window carrying that i3mux mark.

        Args:
            workspace: Only consider windows on this workspace
            tree: Pre-fetched tree (fetched when None)
        """
        if tree is None:
            tree = await self.wm.get_tree()

        found: Dict[Tuple[str, str], Con] = {}
        for con in tree.descendants():
            if not con.marks:
                continue
            if workspace is not None and workspace_id(con) != workspace:
                continue
            for mark in con.marks:
                parsed = parse_mark(mark)
                if parsed is not None:
                    found[parsed.key] = con

        logger.debug(f"Found {len(found)} marked i3mux window(s)")
        return found

    async def kill_marked(self, workspace: str) -> int:
        """Close every i3mux window on a workspace. Returns the number closed.

        Windows that vanish concurrently are skipped.
        """
        marked = await self.find_marked_windows(workspace)
        closed = 0
        for (host, socket_id), con in marked.items():
            try:
                await self.wm.command(f"[con_id={con.id}] kill")
                closed += 1
            except WindowManagerError as e:
                logger.warning(f"Could not close window {con.id} ({host}:{socket_id}): {e.message}")
        return closed
