"""Pytest configuration and shared fixtures for i3mux tests.

Provides:
- Tree/window builders producing i3-shaped GET_TREE JSON
- FakeWindowManager: an i3 IPC server on a Unix socket
- Isolated I3muxConfig pointing every path into a temp directory
"""

import asyncio
import json
import logging
import re
import shutil
import struct
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

# Add the package root to the Python path before test collection
package_root = Path(__file__).parent.parent
if str(package_root) not in sys.path:
    sys.path.insert(0, str(package_root))

from i3mux.core.config import I3muxConfig  # noqa: E402
from i3mux.core.ipc import EVENT_FLAG, EventType, MessageType, pack_message  # noqa: E402


RECT = {"x": 0, "y": 0, "width": 800, "height": 600}

MARK_COMMAND = re.compile(r'^\[con_id=(\d+)\] mark --add "(.+)"$')
KILL_COMMAND = re.compile(r"^\[con_id=(\d+)\] kill$")


# ============================================================================
# Tree builders
# ============================================================================


def make_window(
    con_id: int,
    window_class: Optional[str] = None,
    instance: Optional[str] = None,
    title: str = "",
    marks: Optional[List[str]] = None,
    app_id: Optional[str] = None,
) -> Dict[str, Any]:
    """An X11 window container, or a Wayland one when ``app_id`` is given."""
    node: Dict[str, Any] = {
        "id": con_id,
        "type": "con",
        "name": title,
        "marks": list(marks or []),
        "rect": dict(RECT),
        "nodes": [],
        "floating_nodes": [],
    }
    if app_id:
        node["app_id"] = app_id
        node["window"] = None
    else:
        node["window"] = con_id + 10000
        node["window_properties"] = {
            "class": window_class,
            "instance": instance,
            "title": title,
        }
    return node


def make_workspace(num: int, windows: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    return {
        "id": 1000 + num,
        "type": "workspace",
        "name": str(num),
        "num": num,
        "marks": [],
        "rect": dict(RECT),
        "nodes": list(windows or []),
        "floating_nodes": [],
    }


def make_tree(workspaces: Optional[Dict[int, List[Dict[str, Any]]]] = None) -> Dict[str, Any]:
    """Root -> one output -> workspaces -> windows."""
    workspaces = workspaces or {}
    return {
        "id": 1,
        "type": "root",
        "name": "root",
        "marks": [],
        "rect": dict(RECT),
        "floating_nodes": [],
        "nodes": [
            {
                "id": 2,
                "type": "output",
                "name": "eDP-1",
                "marks": [],
                "rect": dict(RECT),
                "floating_nodes": [],
                "nodes": [make_workspace(num, wins) for num, wins in sorted(workspaces.items())],
            }
        ],
    }


def window_event(change: str, node: Dict[str, Any]) -> Dict[str, Any]:
    return {"change": change, "container": node}


# ============================================================================
# Fake window manager
# ============================================================================


class FakeWindowManager:
    """Minimal i3 IPC server speaking the real wire format.

    Applies ``mark --add`` and ``kill`` commands to its tree so callers can
    observe their effects through GET_TREE.
    """

    def __init__(self, socket_path: str):
        self.socket_path = socket_path
        self.tree = make_tree({1: []})
        self.focused = 1
        self.commands: List[str] = []
        self.subscriptions: List[List[str]] = []
        self.reject_subscribe = False
        self.raw_replies: Dict[int, bytes] = {}
        self._subscribers: List[asyncio.StreamWriter] = []
        self._connections: List[asyncio.StreamWriter] = []
        self.connections_opened = 0
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> "FakeWindowManager":
        self._server = await asyncio.start_unix_server(self._handle, path=self.socket_path)
        return self

    async def stop(self) -> None:
        for writer in self._connections:
            writer.close()
        self._connections.clear()
        self._subscribers.clear()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    # ------------------------------------------------------------------
    # Tree helpers
    # ------------------------------------------------------------------

    def _workspace_nodes(self) -> List[Dict[str, Any]]:
        return self.tree["nodes"][0]["nodes"]

    def workspace_node(self, num: int) -> Dict[str, Any]:
        for ws in self._workspace_nodes():
            if ws["num"] == num:
                return ws
        ws = make_workspace(num)
        self._workspace_nodes().append(ws)
        return ws

    def find(self, con_id: int) -> Optional[Dict[str, Any]]:
        for ws in self._workspace_nodes():
            for node in ws["nodes"]:
                if node["id"] == con_id:
                    return node
        return None

    def remove(self, con_id: int) -> bool:
        for ws in self._workspace_nodes():
            for node in ws["nodes"]:
                if node["id"] == con_id:
                    ws["nodes"].remove(node)
                    return True
        return False

    def open_window(self, workspace: int, node: Dict[str, Any], notify: bool = True) -> None:
        """Add a window to a workspace and announce it to subscribers."""
        self.workspace_node(workspace)["nodes"].append(node)
        if notify:
            self.emit(EventType.WINDOW, window_event("new", node))

    def emit(self, event_code: int, payload: Any) -> None:
        """Write an event frame to every subscribed connection."""
        if not isinstance(payload, bytes):
            payload = json.dumps(payload).encode()
        frame = pack_message(event_code | EVENT_FLAG, payload)
        for writer in self._subscribers:
            writer.write(frame)

    def drop_subscribers(self) -> None:
        for writer in self._subscribers:
            writer.close()
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    def _workspaces(self) -> List[Dict[str, Any]]:
        return [
            {"num": ws["num"], "name": ws["name"], "focused": ws["num"] == self.focused,
             "visible": ws["num"] == self.focused, "output": "eDP-1"}
            for ws in self._workspace_nodes()
        ]

    def _run_command(self, cmd: str) -> List[Dict[str, Any]]:
        self.commands.append(cmd)

        m = MARK_COMMAND.match(cmd)
        if m:
            node = self.find(int(m.group(1)))
            if node is None:
                return [{"success": False, "error": "No window matches given criteria"}]
            if m.group(2) not in node["marks"]:
                node["marks"].append(m.group(2))
            return [{"success": True}]

        m = KILL_COMMAND.match(cmd)
        if m:
            if not self.remove(int(m.group(1))):
                return [{"success": False, "error": "No window matches given criteria"}]
            return [{"success": True}]

        return [{"success": True}]

    def _reply(self, msg_type: int, payload: bytes, writer: asyncio.StreamWriter) -> Any:
        if msg_type == MessageType.GET_TREE:
            return self.tree
        if msg_type == MessageType.GET_WORKSPACES:
            return self._workspaces()
        if msg_type == MessageType.RUN_COMMAND:
            return self._run_command(payload.decode())
        if msg_type == MessageType.SUBSCRIBE:
            self.subscriptions.append(json.loads(payload))
            if self.reject_subscribe:
                return {"success": False}
            self._subscribers.append(writer)
            return {"success": True}
        if msg_type == MessageType.GET_VERSION:
            return {"major": 4, "minor": 23, "patch": 0, "human_readable": "4.23"}
        return {"success": True}

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._connections.append(writer)
        self.connections_opened += 1
        try:
            while True:
                header = await reader.readexactly(14)
                _, length, msg_type = struct.unpack("<6sII", header)
                payload = await reader.readexactly(length)

                if msg_type in self.raw_replies:
                    writer.write(self.raw_replies[msg_type])
                else:
                    reply = self._reply(msg_type, payload, writer)
                    writer.write(pack_message(msg_type, json.dumps(reply)))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            if writer in self._subscribers:
                self._subscribers.remove(writer)
            writer.close()


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def short_tmp():
    """Short temp directory (Unix socket paths are limited to ~108 bytes)."""
    path = tempfile.mkdtemp(prefix="i3mux-")
    yield Path(path)
    shutil.rmtree(path, ignore_errors=True)


@pytest_asyncio.fixture
async def fake_wm(short_tmp):
    """Running FakeWindowManager; its socket path is ``fake_wm.socket_path``."""
    server = FakeWindowManager(str(short_tmp / "ipc.sock"))
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def config(tmp_path, short_tmp):
    """Configuration isolated from the user's environment."""
    (short_tmp / "sockets").mkdir()
    return I3muxConfig(
        terminal="xterm",
        state_file=tmp_path / "state.json",
        match_timeout=0.5,
        poll_interval=0.01,
        session_dir=str(short_tmp / "sockets"),
        bookkeeping_dir=str(tmp_path / "bookkeeping"),
        reconnect_max_attempts=3,
        reconnect_max_delay=0.2,
    )


@pytest.fixture(autouse=True)
def reset_i3mux_logger():
    """Undo CLI logging setup so caplog keeps seeing i3mux records."""
    yield
    logger = logging.getLogger("i3mux")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
