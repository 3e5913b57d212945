"""Unit tests for WindowManagerClient queries, commands and reconnect-once."""

from unittest.mock import patch

import pytest
from i3ipc import Con

from conftest import make_tree, make_window
from i3mux.core.ipc import MessageType, pack_message
from i3mux.core.wm import WindowManagerClient, is_window, window_class, window_instance
from i3mux.errors import ProtocolError, WindowManagerError


class TestWindowHelpers:
    def test_x11_window(self):
        con = Con(make_window(5, "XTerm", "i3mux-abc"), None, None)
        assert window_class(con) == "XTerm"
        assert window_instance(con) == "i3mux-abc"
        assert is_window(con)

    def test_wayland_app_id(self):
        con = Con(make_window(6, app_id="foot"), None, None)
        assert window_class(con) == "foot"
        assert window_instance(con) == "foot"
        assert is_window(con)


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_windows(self, fake_wm):
        fake_wm.tree = make_tree({
            1: [make_window(10, "XTerm", "a")],
            2: [make_window(20, "Firefox", "Navigator"), make_window(21, app_id="foot")],
        })
        async with WindowManagerClient(fake_wm.socket_path) as wm:
            windows = await wm.get_windows()
        assert sorted(w.id for w in windows) == [10, 20, 21]

    @pytest.mark.asyncio
    async def test_focused_workspace(self, fake_wm):
        fake_wm.tree = make_tree({3: [], 8: []})
        fake_wm.focused = 8
        async with WindowManagerClient(fake_wm.socket_path) as wm:
            assert await wm.focused_workspace() == "8"

    @pytest.mark.asyncio
    async def test_no_focused_workspace(self, fake_wm):
        fake_wm.focused = 99
        async with WindowManagerClient(fake_wm.socket_path) as wm:
            with pytest.raises(WindowManagerError):
                await wm.focused_workspace()


class TestCommands:
    @pytest.mark.asyncio
    async def test_command_success(self, fake_wm):
        async with WindowManagerClient(fake_wm.socket_path) as wm:
            replies = await wm.command("nop")
        assert replies == [{"success": True}]
        assert fake_wm.commands == ["nop"]

    @pytest.mark.asyncio
    async def test_command_failure_carries_error(self, fake_wm):
        async with WindowManagerClient(fake_wm.socket_path) as wm:
            with pytest.raises(WindowManagerError) as exc_info:
                await wm.command('[con_id=404] mark --add "x"')
        assert exc_info.value.context["error"] == "No window matches given criteria"


class TestReconnect:
    @pytest.mark.asyncio
    async def test_retries_once_after_protocol_error(self, fake_wm):
        # First GET_TREE reply has a bad magic; the retry gets a clean one
        fake_wm.raw_replies[MessageType.GET_TREE] = b"garbage-frame!"

        async with WindowManagerClient(fake_wm.socket_path) as wm:
            original_connect = wm.connect

            async def reconnect():
                fake_wm.raw_replies.clear()
                return await original_connect()

            with patch.object(wm, "connect", side_effect=reconnect), \
                    patch("i3mux.core.wm.RECONNECT_DELAY", 0):
                tree = await wm.get_tree()

        assert tree.type == "root"

    @pytest.mark.asyncio
    async def test_second_failure_propagates(self, fake_wm):
        fake_wm.raw_replies[MessageType.GET_TREE] = pack_message(MessageType.GET_TREE, b"{oops")
        async with WindowManagerClient(fake_wm.socket_path) as wm:
            with patch("i3mux.core.wm.RECONNECT_DELAY", 0):
                with pytest.raises(ProtocolError):
                    await wm.get_tree()
