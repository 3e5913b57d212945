"""Launch registry for window correlation.

Holds the PendingMatch of every terminal spawned by this process that is
still waiting for its window. The event subscriber feeds window events in via
dispatch(); the window matcher registers before spawning and awaits the
pending match's future.

Every future is completed exactly once: with the matching WindowEvent, or with
an exception on timeout or event-stream loss.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

from ..errors import MatchTimeoutError, ProtocolError
from ..models import MatchMode, PendingMatch, WindowEvent

logger = logging.getLogger(__name__)

TITLE_CHANGES = frozenset({"new", "title"})


class LaunchRegistry:
    """
    Correlation-tag keyed registry of pending matches.

    Runs entirely on the event loop thread: register/dispatch/expire never
    interleave, so no lock is needed.
    """

    MAX_PENDING_MATCHES = 1000

    def __init__(self):
        self._pending: Dict[str, PendingMatch] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, tag: str) -> bool:
        return tag in self._pending

    def register(self, tag: str, mode: MatchMode, timeout: float) -> PendingMatch:
        """
        Register a pending match. Must be called before the process is spawned.

        Args:
            tag: Correlation tag (unique among pending matches)
            mode: Match on window instance or on title substring
            timeout: Seconds until the match expires

        Returns:
            The registered PendingMatch

        Raises:
            ValueError: If the tag is already pending
            RuntimeError: If the registry is full
        """
        if tag in self._pending:
            raise ValueError(f"Correlation tag '{tag}' is already pending")

        if len(self._pending) >= self.MAX_PENDING_MATCHES:
            raise RuntimeError(
                f"Maximum pending matches ({self.MAX_PENDING_MATCHES}) reached"
            )

        loop = asyncio.get_running_loop()
        pending = PendingMatch(
            tag=tag,
            mode=mode,
            deadline=time.monotonic() + timeout,
            future=loop.create_future(),
        )
        self._pending[tag] = pending

        logger.debug(f"Registered pending match {tag} (mode={mode.value}, timeout={timeout}s)")
        return pending

    def dispatch(self, event: WindowEvent) -> Optional[PendingMatch]:
        """
        Resolve the pending match (if any) that this window event satisfies.

        ``new`` events are offered to every pending match. ``title`` events are
        offered to title-mode matches only, since instances never change.

        Returns:
            The resolved PendingMatch, or None if the event matched nothing
        """
        candidate: Optional[PendingMatch] = None

        # Instance matches are an exact key lookup
        if event.change == "new" and event.instance in self._pending:
            pending = self._pending[event.instance]
            if pending.mode == MatchMode.INSTANCE:
                candidate = pending

        if candidate is None and event.change in TITLE_CHANGES and event.title:
            for pending in self._pending.values():
                if pending.mode == MatchMode.TITLE and pending.matches(event):
                    candidate = pending
                    break

        if candidate is None:
            logger.debug(
                f"Window event {event.change} con_id={event.con_id} "
                f"(instance={event.instance}) matched no pending tag"
            )
            return None

        del self._pending[candidate.tag]
        if not candidate.future.done():
            candidate.future.set_result(event)

        logger.info(
            f"Matched window {event.con_id} to tag {candidate.tag} "
            f"via {candidate.mode.value} after "
            f"{time.monotonic() - candidate.registered_at:.3f}s"
        )
        return candidate

    def expire(self, tag: str) -> None:
        """Remove a timed-out pending match and fail its future."""
        pending = self._pending.pop(tag, None)
        if pending is None:
            return

        if not pending.future.done():
            timeout = pending.deadline - pending.registered_at
            pending.future.set_exception(MatchTimeoutError(tag, timeout))
            # Retrieved here so an unawaited slot never warns on GC
            pending.future.exception()
        logger.debug(f"Expired pending match {tag}")

    def discard(self, tag: str) -> None:
        """Drop a pending match whose spawn never happened."""
        pending = self._pending.pop(tag, None)
        if pending is not None and not pending.future.done():
            pending.future.cancel()

    def fail_all(self, reason: str) -> int:
        """
        Fail every outstanding match (event stream lost).

        Waiters observe a ProtocolError and fall through to the fallback path.

        Returns:
            Number of matches failed
        """
        failed = list(self._pending.values())
        self._pending.clear()

        for pending in failed:
            if not pending.future.done():
                pending.future.set_exception(ProtocolError(reason))
                pending.future.exception()

        if failed:
            logger.warning(f"Failed {len(failed)} pending match(es): {reason}")
        return len(failed)
