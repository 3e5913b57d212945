"""Event subscriber.

A single-consumer task draining the window manager's event connection and
dispatching window events to the launch registry. It never touches the state
store; the command path does that once a match resolves.
"""

import asyncio
import json
import logging
from typing import Optional

from i3ipc import Event

from ..errors import ProtocolError
from ..models import WindowEvent
from ..services.launch_registry import LaunchRegistry
from .ipc import EventType, IpcConnection

logger = logging.getLogger(__name__)

SUBSCRIBED_EVENTS = [Event.WINDOW.value, Event.SHUTDOWN.value]
DISPATCHED_CHANGES = frozenset({"new", "title"})


class EventSubscriber:
    """Reads window events on a dedicated connection and feeds the registry."""

    def __init__(
        self,
        registry: LaunchRegistry,
        socket_path: Optional[str] = None,
        max_attempts: int = 5,
        max_delay: float = 2.0,
    ):
        """
        Args:
            registry: Registry receiving decoded window events
            socket_path: IPC socket path (discovered when None)
            max_attempts: Reconnection attempts after a connection loss
            max_delay: Upper bound of the reconnection backoff in seconds
        """
        self.registry = registry
        self.socket_path = socket_path
        self.max_attempts = max_attempts
        self.max_delay = max_delay
        self.reconnect_delay = 0.1

        self._stream: Optional[IpcConnection] = None
        self._task: Optional[asyncio.Task] = None
        self.events_seen = 0
        self.frames_discarded = 0

    async def _subscribe(self) -> IpcConnection:
        stream = await IpcConnection(self.socket_path).connect()
        self.socket_path = stream.socket_path
        return await stream.listen(SUBSCRIBED_EVENTS)

    async def start(self) -> None:
        """Subscribe, then start the read loop in the background.

        Returns only once the subscription is active, so any window created
        afterwards is guaranteed to be seen.

        Raises:
            ProtocolError: If the initial subscription fails
        """
        self._stream = await self._subscribe()
        logger.debug(f"Subscribed to {SUBSCRIBED_EVENTS} on {self.socket_path}")
        self._task = asyncio.create_task(self._run(), name="i3mux-event-subscriber")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._stream is not None:
            await self._stream.close()
            self._stream = None

    async def __aenter__(self) -> "EventSubscriber":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def handle_frame(self, event_code: int, body: bytes) -> Optional[WindowEvent]:
        """Decode one event frame and dispatch it.

        A frame that cannot be decoded is discarded with a warning.
        """
        self.events_seen += 1

        if event_code == EventType.SHUTDOWN:
            logger.info("Window manager announced shutdown")
            return None
        if event_code != EventType.WINDOW:
            return None

        try:
            payload = json.loads(body)
            if payload.get("change") not in DISPATCHED_CHANGES:
                return None
            event = WindowEvent.from_payload(payload)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self.frames_discarded += 1
            logger.warning(f"Discarding undecodable window event: {e}")
            return None

        self.registry.dispatch(event)
        return event

    async def _run(self) -> None:
        while True:
            try:
                async for event_code, body in self._stream.events():
                    self.handle_frame(event_code, body)
            except ProtocolError as e:
                logger.warning(f"Event connection lost: {e}")

            self.registry.fail_all("event connection lost")
            await self._stream.close()

            if not await self._reconnect():
                logger.error(
                    f"Giving up on event stream after {self.max_attempts} reconnection attempts"
                )
                return

    async def _reconnect(self) -> bool:
        """Resubscribe with exponential backoff. Returns False when exhausted."""
        delay = self.reconnect_delay

        for attempt in range(1, self.max_attempts + 1):
            logger.debug(f"Waiting {delay:.1f}s before resubscribing...")
            await asyncio.sleep(delay)
            try:
                self._stream = await self._subscribe()
                logger.info(f"Event stream re-established (attempt {attempt}/{self.max_attempts})")
                return True
            except ProtocolError as e:
                logger.warning(f"Resubscribe attempt {attempt}/{self.max_attempts} failed: {e}")
                delay = min(delay * 2, self.max_delay)

        return False
