"""
Unit tests for the IPC transport.

Covers frame encoding/decoding, truncation and magic errors, socket
discovery, and request/reply exchange against a fake window manager.
"""

import asyncio
import struct
import subprocess
from unittest.mock import patch

import pytest

from i3mux.core.ipc import (
    EVENT_FLAG,
    HEADER,
    IpcConnection,
    MessageType,
    find_socket_path,
    is_event,
    pack_message,
    read_frame,
    unpack_header,
)
from i3mux.errors import ProtocolError


def stream_with(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


class TestFraming:
    """Tests for pack_message() and unpack_header()."""

    def test_pack_message_layout(self):
        frame = pack_message(MessageType.RUN_COMMAND, "nop")
        assert frame[:6] == b"i3-ipc"
        assert struct.unpack("<II", frame[6:14]) == (3, 0)
        assert frame[14:] == b"nop"

    def test_pack_empty_payload(self):
        frame = pack_message(MessageType.GET_TREE)
        assert len(frame) == HEADER.size
        assert unpack_header(frame) == (0, 4)

    def test_bad_magic(self):
        header = b"i4-ipc" + struct.pack("<II", 0, 4)
        with pytest.raises(ProtocolError, match="magic"):
            unpack_header(header)

    def test_short_header(self):
        with pytest.raises(ProtocolError, match="Truncated IPC header"):
            unpack_header(b"i3-ipc\x00")

    def test_event_flag(self):
        assert is_event(3 | EVENT_FLAG)
        assert not is_event(3)


class TestReadFrame:
    """Tests for read_frame() on a stream."""

    @pytest.mark.asyncio
    async def test_complete_frame(self):
        reader = stream_with(pack_message(MessageType.GET_WORKSPACES, b"[]"))
        assert await read_frame(reader) == (1, b"[]")

    @pytest.mark.asyncio
    async def test_two_frames_in_order(self):
        reader = stream_with(
            pack_message(MessageType.GET_TREE, b"{}") + pack_message(3 | EVENT_FLAG, b"{}")
        )
        first, _ = await read_frame(reader)
        second, _ = await read_frame(reader)
        assert first == 4
        assert second == 3 | EVENT_FLAG

    @pytest.mark.asyncio
    async def test_clean_eof(self):
        with pytest.raises(ProtocolError, match="closed"):
            await read_frame(stream_with(b""))

    @pytest.mark.asyncio
    async def test_truncated_header(self):
        with pytest.raises(ProtocolError, match="Truncated IPC header"):
            await read_frame(stream_with(b"i3-ipc\x05\x00"))

    @pytest.mark.asyncio
    async def test_truncated_payload(self):
        frame = pack_message(MessageType.GET_TREE, b'{"id": 1}')
        with pytest.raises(ProtocolError, match="Truncated IPC payload"):
            await read_frame(stream_with(frame[:-3]))


class TestFindSocketPath:
    """Tests for IPC socket discovery order."""

    def test_swaysock_wins(self):
        env = {"SWAYSOCK": "/run/sway.sock", "I3SOCK": "/run/i3.sock"}
        assert find_socket_path(env) == "/run/sway.sock"

    def test_i3sock(self):
        assert find_socket_path({"I3SOCK": "/run/i3.sock"}) == "/run/i3.sock"

    def test_get_socketpath_fallback(self):
        def fake_run(argv, **kwargs):
            if argv[0] == "sway":
                raise FileNotFoundError("sway")
            return subprocess.CompletedProcess(argv, 0, stdout="/run/user/1000/i3/ipc.sock\n")

        with patch("i3mux.core.ipc.subprocess.run", side_effect=fake_run):
            assert find_socket_path({}) == "/run/user/1000/i3/ipc.sock"

    def test_nothing_running(self):
        with patch("i3mux.core.ipc.subprocess.run", side_effect=FileNotFoundError("missing")):
            with pytest.raises(ProtocolError) as exc_info:
                find_socket_path({})
        assert exc_info.value.suggestion


class TestIpcConnection:
    """Request/reply exchange against FakeWindowManager."""

    @pytest.mark.asyncio
    async def test_send_returns_decoded_reply(self, fake_wm):
        conn = await IpcConnection(fake_wm.socket_path).connect()
        try:
            workspaces = await conn.send(MessageType.GET_WORKSPACES)
        finally:
            await conn.close()
        assert workspaces[0]["num"] == 1
        assert workspaces[0]["focused"] is True

    @pytest.mark.asyncio
    async def test_reply_type_mismatch(self, fake_wm):
        fake_wm.raw_replies[MessageType.GET_TREE] = pack_message(MessageType.GET_WORKSPACES, b"[]")
        conn = await IpcConnection(fake_wm.socket_path).connect()
        try:
            with pytest.raises(ProtocolError, match="does not match"):
                await conn.send(MessageType.GET_TREE)
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_undecodable_reply(self, fake_wm):
        fake_wm.raw_replies[MessageType.GET_TREE] = pack_message(MessageType.GET_TREE, b"{oops")
        conn = await IpcConnection(fake_wm.socket_path).connect()
        try:
            with pytest.raises(ProtocolError, match="Undecodable"):
                await conn.send(MessageType.GET_TREE)
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_connect_missing_socket(self, short_tmp):
        with pytest.raises(ProtocolError, match="Cannot connect"):
            await IpcConnection(str(short_tmp / "absent.sock")).connect()

    @pytest.mark.asyncio
    async def test_subscribe_uses_dedicated_connection(self, fake_wm):
        conn = await IpcConnection(fake_wm.socket_path).connect()
        stream = await conn.subscribe(["window"])
        try:
            assert stream is not conn
            assert fake_wm.subscriptions == [["window"]]
            # The command connection still answers requests
            assert isinstance(await conn.send(MessageType.GET_TREE), dict)
        finally:
            await stream.close()
            await conn.close()

    @pytest.mark.asyncio
    async def test_subscribe_rejected(self, fake_wm):
        fake_wm.reject_subscribe = True
        conn = await IpcConnection(fake_wm.socket_path).connect()
        try:
            with pytest.raises(ProtocolError, match="rejected"):
                await conn.subscribe(["window"])
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_listen_subscribes_in_place(self, fake_wm):
        conn = await IpcConnection(fake_wm.socket_path).connect()
        try:
            assert await conn.listen(["window"]) is conn
            assert fake_wm.subscriber_count == 1
        finally:
            await conn.close()

    @pytest.mark.asyncio
    async def test_listen_rejected_closes_connection(self, fake_wm):
        fake_wm.reject_subscribe = True
        conn = await IpcConnection(fake_wm.socket_path).connect()

        with pytest.raises(ProtocolError, match="rejected"):
            await conn.listen(["window"])

        assert not conn.is_connected

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_wm):
        conn = await IpcConnection(fake_wm.socket_path).connect()
        await conn.close()
        await conn.close()
        assert not conn.is_connected
