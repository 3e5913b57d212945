"""Window manager client.

Query and command wrappers on top of the raw IPC transport:

- Window tree (GET_TREE), parsed into i3ipc ``Con`` objects
- Workspaces (GET_WORKSPACES)
- Commands (RUN_COMMAND)

Every exchange that hits a ProtocolError reconnects once (after a short
backoff) and retries before surfacing the error.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Union

from i3ipc import Con

from ..errors import ProtocolError, WindowManagerError
from .ipc import IpcConnection, MessageType

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 0.1


def window_class(con: Con) -> Optional[str]:
    """Window class in a Sway/i3-compatible way (app_id first for native Wayland)."""
    return getattr(con, "app_id", None) or con.window_class


def window_instance(con: Con) -> Optional[str]:
    return con.window_instance or getattr(con, "app_id", None)


def is_window(con: Con) -> bool:
    """True for containers backed by a client window (X11 or Wayland)."""
    return bool(con.window or getattr(con, "app_id", None))


class WindowManagerClient:
    """Async client for i3/Sway queries and commands."""

    def __init__(self, socket_path: Optional[str] = None):
        self.socket_path = socket_path
        self._conn: Optional[IpcConnection] = None

    async def connect(self) -> "WindowManagerClient":
        """Connect to the IPC socket.

        Raises:
            ProtocolError: If the socket cannot be reached
        """
        self._conn = await IpcConnection(self.socket_path).connect()
        self.socket_path = self._conn.socket_path
        return self

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "WindowManagerClient":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request(self, msg_type: MessageType, payload: Union[str, bytes] = b"") -> Any:
        if self._conn is None:
            await self.connect()

        try:
            return await self._conn.send(msg_type, payload)
        except ProtocolError as e:
            logger.warning(f"IPC {msg_type.name} failed ({e}), reconnecting once")

        await self._conn.close()
        await asyncio.sleep(RECONNECT_DELAY)
        await self.connect()
        return await self._conn.send(msg_type, payload)

    async def get_tree(self) -> Con:
        """Get the layout tree (GET_TREE).

        Returns:
            Root container with full window hierarchy
        """
        logger.debug("IPC query: GET_TREE")
        data = await self._request(MessageType.GET_TREE)
        if not isinstance(data, dict):
            raise ProtocolError(f"GET_TREE returned {type(data).__name__}, expected object")
        return Con(data, None, None)

    async def get_windows(self) -> List[Con]:
        """All client windows currently in the tree."""
        tree = await self.get_tree()
        windows = [c for c in tree.descendants() if is_window(c)]
        logger.debug(f"GET_TREE returned {len(windows)} window(s)")
        return windows

    async def get_workspaces(self) -> List[Dict[str, Any]]:
        """Get all workspaces (GET_WORKSPACES).

        Returns:
            List of workspace dicts with keys: num, name, output, visible, focused
        """
        logger.debug("IPC query: GET_WORKSPACES")
        data = await self._request(MessageType.GET_WORKSPACES)
        if not isinstance(data, list):
            raise ProtocolError(f"GET_WORKSPACES returned {type(data).__name__}, expected array")
        return data

    async def focused_workspace(self) -> str:
        """Identifier of the focused workspace (its number as a string).

        Raises:
            WindowManagerError: If no workspace is focused
        """
        for ws in await self.get_workspaces():
            if ws.get("focused"):
                num = ws.get("num")
                # Named-only workspaces report num -1
                if num is None or num < 0:
                    return str(ws.get("name"))
                return str(num)
        raise WindowManagerError("No focused workspace reported by the window manager")

    async def command(self, cmd: str) -> List[Dict[str, Any]]:
        """Run a command (RUN_COMMAND).

        Raises:
            WindowManagerError: If any command in the reply reports failure
        """
        logger.debug(f"IPC command: {cmd}")
        replies = await self._request(MessageType.RUN_COMMAND, cmd)
        if not isinstance(replies, list):
            raise ProtocolError(f"RUN_COMMAND returned {json.dumps(replies)[:80]}")

        for reply in replies:
            if not reply.get("success", False):
                error = reply.get("error", "unknown error")
                raise WindowManagerError(
                    f"Command '{cmd}' failed: {error}",
                    context={"command": cmd, "error": error},
                )
        return replies
