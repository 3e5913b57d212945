"""i3/Sway IPC transport.

Frames messages for the window manager's control socket::

    "i3-ipc" (6 bytes) | payload length (uint32 LE) | type (uint32 LE) | payload

Replies carry the request's type code. Events carry the event code with the
high bit set. The protocol has no correlation ids, so ordering on a single
connection is the only guarantee: command traffic and the event stream use
separate connections (see IpcConnection.subscribe).
"""

import asyncio
import json
import logging
import os
import struct
import subprocess
from enum import IntEnum
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Tuple, Union

from ..errors import ProtocolError

logger = logging.getLogger(__name__)

I3_IPC_MAGIC = b"i3-ipc"
HEADER = struct.Struct("<6sII")
EVENT_FLAG = 1 << 31

# Frames larger than this are treated as corruption rather than allocated
MAX_PAYLOAD = 64 * 1024 * 1024


class MessageType(IntEnum):
    """Request/reply type codes."""
    RUN_COMMAND = 0
    GET_WORKSPACES = 1
    SUBSCRIBE = 2
    GET_OUTPUTS = 3
    GET_TREE = 4
    GET_MARKS = 5
    GET_BAR_CONFIG = 6
    GET_VERSION = 7


class EventType(IntEnum):
    """Event type codes (sent with EVENT_FLAG set)."""
    WORKSPACE = 0
    OUTPUT = 1
    MODE = 2
    WINDOW = 3
    BARCONFIG_UPDATE = 4
    BINDING = 5
    SHUTDOWN = 6
    TICK = 7


def pack_message(msg_type: int, payload: Union[str, bytes] = b"") -> bytes:
    """Encode one IPC frame."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return HEADER.pack(I3_IPC_MAGIC, len(payload), int(msg_type)) + payload


def unpack_header(header: bytes) -> Tuple[int, int]:
    """Decode a 14-byte frame header into (payload_length, type_code).

    Raises:
        ProtocolError: On short header or magic mismatch
    """
    if len(header) != HEADER.size:
        raise ProtocolError(f"Truncated IPC header ({len(header)}/{HEADER.size} bytes)")

    magic, length, type_code = HEADER.unpack(header)
    if magic != I3_IPC_MAGIC:
        raise ProtocolError(f"Bad IPC magic: {magic!r}")
    if length > MAX_PAYLOAD:
        raise ProtocolError(f"IPC payload length {length} exceeds limit")
    return length, type_code


async def read_frame(reader: asyncio.StreamReader) -> Tuple[int, bytes]:
    """Read one complete frame.

    Returns:
        Tuple of (type_code, payload bytes)

    Raises:
        ProtocolError: On socket closure, truncated frame, or bad magic
    """
    try:
        header = await reader.readexactly(HEADER.size)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            raise ProtocolError("IPC connection closed by window manager")
        raise ProtocolError(f"Truncated IPC header ({len(e.partial)}/{HEADER.size} bytes)")
    except ConnectionError as e:
        raise ProtocolError(f"IPC connection lost: {e}")

    length, type_code = unpack_header(header)

    try:
        payload = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError(f"Truncated IPC payload ({len(e.partial)}/{length} bytes)")
    except ConnectionError as e:
        raise ProtocolError(f"IPC connection lost: {e}")

    return type_code, payload


def is_event(type_code: int) -> bool:
    return bool(type_code & EVENT_FLAG)


def find_socket_path(environ: Optional[Mapping[str, str]] = None) -> str:
    """Discover the window manager's IPC socket.

    Order: SWAYSOCK, I3SOCK, ``sway --get-socketpath``, ``i3 --get-socketpath``.

    Raises:
        ProtocolError: If no socket can be found
    """
    if environ is None:
        environ = os.environ

    for var in ("SWAYSOCK", "I3SOCK"):
        path = environ.get(var)
        if path:
            logger.debug(f"Using IPC socket from ${var}: {path}")
            return path

    for wm in ("sway", "i3"):
        try:
            result = subprocess.run(
                [wm, "--get-socketpath"],
                capture_output=True,
                text=True,
                timeout=2.0,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"{wm} --get-socketpath unavailable: {e}")
            continue
        path = result.stdout.strip()
        if result.returncode == 0 and path:
            logger.debug(f"Using IPC socket from {wm} --get-socketpath: {path}")
            return path

    raise ProtocolError(
        "No running window manager (i3 or Sway) detected",
        suggestion="Ensure I3SOCK or SWAYSOCK is set",
    )


class IpcConnection:
    """One connection to the window manager's IPC socket.

    A connection is either a command connection (send/reply) or, after
    subscribe(), an event connection that only yields events.
    """

    def __init__(self, socket_path: Optional[str] = None):
        self.socket_path = socket_path
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> "IpcConnection":
        """Open the socket, discovering its path if none was given.

        Raises:
            ProtocolError: If the socket cannot be reached
        """
        if self.socket_path is None:
            self.socket_path = find_socket_path()

        try:
            self._reader, self._writer = await asyncio.open_unix_connection(self.socket_path)
        except OSError as e:
            raise ProtocolError(
                f"Cannot connect to IPC socket {self.socket_path}: {e}",
                context={"socket_path": self.socket_path},
            )

        logger.debug(f"Connected to IPC socket {self.socket_path}")
        return self

    async def close(self) -> None:
        """Close the connection. Safe to call repeatedly."""
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing IPC connection: {e}")

    async def _write(self, msg_type: int, payload: Union[str, bytes]) -> None:
        if not self.is_connected:
            raise ProtocolError("IPC connection is not open")
        try:
            self._writer.write(pack_message(msg_type, payload))
            await self._writer.drain()
        except ConnectionError as e:
            raise ProtocolError(f"IPC connection lost: {e}")

    async def read_frame(self) -> Tuple[int, bytes]:
        if self._reader is None:
            raise ProtocolError("IPC connection is not open")
        return await read_frame(self._reader)

    async def send(self, msg_type: int, payload: Union[str, bytes] = b"") -> Any:
        """Synchronous command exchange: write one request, read its reply.

        Returns:
            Decoded JSON reply

        Raises:
            ProtocolError: On framing errors, socket closure, or a reply of the
                wrong type
        """
        async with self._lock:
            await self._write(msg_type, payload)

            while True:
                type_code, body = await self.read_frame()
                if is_event(type_code):
                    # Only possible if this connection was subscribed
                    logger.debug(f"Dropping event 0x{type_code:08x} on command connection")
                    continue
                break

        if type_code != int(msg_type):
            raise ProtocolError(
                f"Reply type {type_code} does not match request type {int(msg_type)}"
            )

        try:
            return json.loads(body)
        except ValueError as e:
            raise ProtocolError(f"Undecodable IPC reply: {e}")

    async def listen(self, events: Iterable[str]) -> "IpcConnection":
        """Subscribe this connection to ``events``, turning it into an event stream.

        The connection is closed if the subscription fails.

        Raises:
            ProtocolError: If the window manager rejects the subscription
        """
        names = list(events)
        try:
            reply = await self.send(MessageType.SUBSCRIBE, json.dumps(names))
        except ProtocolError:
            await self.close()
            raise

        if not isinstance(reply, dict) or not reply.get("success"):
            await self.close()
            raise ProtocolError(f"Subscription to {names} rejected: {reply}")

        logger.debug(f"Subscribed to IPC events: {names}")
        return self

    async def subscribe(self, events: Iterable[str]) -> "IpcConnection":
        """Open a dedicated event connection subscribed to ``events``.

        Args:
            events: Event names, e.g. ["window", "shutdown"]

        Returns:
            A new connected IpcConnection that yields events via events()

        Raises:
            ProtocolError: If the window manager rejects the subscription
        """
        stream = await IpcConnection(self.socket_path).connect()
        return await stream.listen(events)

    async def events(self) -> AsyncIterator[Tuple[int, bytes]]:
        """Yield (event_code, payload) for every event frame until closed.

        The event code is returned without EVENT_FLAG. Payload decoding is
        left to the caller so that one corrupt payload can be skipped.

        Raises:
            ProtocolError: When the connection drops or a frame is malformed
        """
        while True:
            type_code, body = await self.read_frame()
            if not is_event(type_code):
                logger.debug(f"Ignoring non-event frame type {type_code} on event connection")
                continue
            yield type_code & ~EVENT_FLAG, body
