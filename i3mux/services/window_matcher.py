"""
Window matcher.

Correlates a just-spawned terminal with the container it eventually creates,
without PIDs (terminals fork, and remote ones run elsewhere):

1. Snapshot existing windows (untagged spawns only; must precede the spawn)
2. Register the PendingMatch before spawning, so no event can be missed
3. Spawn
4. Wait for the event subscriber to resolve the match (instance == tag, or
   tag in title for untagged emulators) until the deadline
5. Fallback: look the tag up in the current tree, then diff against the
   snapshot filtered by the expected window class; the largest container id
   wins ties

A match failure is not fatal: the terminal keeps running unmarked.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from i3ipc import Con

from ..core.wm import WindowManagerClient, window_class, window_instance
from ..errors import MatchFailure, MatchTimeoutError, ProtocolError
from ..models import MatchMethod, MatchResult, PendingMatch, WindowEvent
from .launch_registry import LaunchRegistry
from .terminal_spawner import SpawnPlan

logger = logging.getLogger(__name__)


def select_new_window(
    windows: Iterable[Con],
    snapshot: Set[int],
    expected_class: Optional[str],
) -> Optional[Con]:
    """Pick the newest window absent from the pre-spawn snapshot.

    Args:
        windows: Current client windows
        snapshot: Container ids present before the spawn
        expected_class: Only windows of this class qualify (None = any)

    Returns:
        The candidate with the largest container id, or None
    """
    candidates = [
        w for w in windows
        if w.id not in snapshot
        and (expected_class is None or window_class(w) == expected_class)
    ]
    if len(candidates) > 1:
        logger.debug(
            f"{len(candidates)} new window candidates {[c.id for c in candidates]}, "
            f"taking the most recent"
        )
    return max(candidates, key=lambda w: w.id, default=None)


def find_tagged_window(windows: Iterable[Con], plan: SpawnPlan) -> Optional[Con]:
    """Window already carrying the plan's tag (instance or title)."""
    for w in windows:
        if plan.tagged and window_instance(w) == plan.tag:
            return w
        if not plan.tagged and w.name and plan.tag in w.name:
            return w
    return None


@dataclass
class PendingSpawn:
    """A registered spawn awaiting its window."""

    plan: SpawnPlan
    pending: PendingMatch
    snapshot: Optional[Set[int]] = None
    started: float = field(default_factory=time.monotonic)

    def elapsed(self) -> float:
        return time.monotonic() - self.started


class WindowMatcher:
    """Spawn-and-match driver shared by every command that opens terminals."""

    def __init__(
        self,
        registry: LaunchRegistry,
        wm: WindowManagerClient,
        timeout: float = 10.0,
        poll_interval: float = 0.1,
    ):
        self.registry = registry
        self.wm = wm
        self.timeout = timeout
        self.poll_interval = poll_interval

    async def snapshot(self, tagged: bool) -> Optional[Set[int]]:
        """Container ids present before a spawn (untagged emulators only).

        Must be taken before the process is launched.
        """
        if tagged:
            return None
        ids = {w.id for w in await self.wm.get_windows()}
        logger.debug(f"Pre-spawn snapshot: {len(ids)} window(s)")
        return ids

    def begin(self, plan: SpawnPlan, snapshot: Optional[Set[int]] = None) -> PendingSpawn:
        """Register the plan's tag. Must be called before the process is launched."""
        pending = self.registry.register(plan.tag, plan.match_mode, self.timeout)
        return PendingSpawn(plan=plan, pending=pending, snapshot=snapshot)

    def abort(self, handle: PendingSpawn) -> None:
        """Drop the registration of a spawn that never happened."""
        self.registry.discard(handle.plan.tag)

    async def finish(self, handle: PendingSpawn) -> MatchResult:
        """Wait for the launched process's window.

        Returns:
            MatchResult; ``error`` is set when nothing could be matched
        """
        plan = handle.plan

        event = await self._wait(handle.pending)
        if event is not None:
            method = MatchMethod.INSTANCE if plan.tagged else MatchMethod.TITLE
            return MatchResult(
                tag=plan.tag,
                con_id=event.con_id,
                method=method,
                elapsed=handle.elapsed(),
            )

        try:
            con_id, method = await self._fallback(plan, handle.snapshot, handle.pending.deadline)
        except MatchFailure as e:
            logger.warning(f"{e.message}; the terminal keeps running unmarked")
            return MatchResult(tag=plan.tag, elapsed=handle.elapsed(), error=e.message)

        logger.info(f"Matched window {con_id} to tag {plan.tag} via {method.value} fallback")
        return MatchResult(tag=plan.tag, con_id=con_id, method=method, elapsed=handle.elapsed())

    async def _wait(self, pending: PendingMatch) -> Optional[WindowEvent]:
        """Block until the pending match resolves, fails or expires."""
        try:
            return await asyncio.wait_for(
                asyncio.shield(pending.future), timeout=pending.remaining()
            )
        except asyncio.TimeoutError:
            if pending.future.done() and not pending.future.cancelled() \
                    and pending.future.exception() is None:
                return pending.future.result()
            self.registry.expire(pending.tag)
            logger.warning(MatchTimeoutError(pending.tag, self.timeout).message)
        except ProtocolError as e:
            logger.warning(f"Event stream unavailable while matching {pending.tag}: {e.message}")
        except MatchTimeoutError as e:
            logger.warning(e.message)
        return None

    async def _fallback(
        self,
        plan: SpawnPlan,
        snapshot: Optional[Set[int]],
        deadline: float,
    ):
        """Poll the tree until the deadline (at least once).

        Raises:
            MatchFailure: If no window qualifies
        """
        while True:
            windows: List[Con] = await self.wm.get_windows()

            tagged = find_tagged_window(windows, plan)
            if tagged is not None:
                method = MatchMethod.INSTANCE if plan.tagged else MatchMethod.TITLE
                return tagged.id, method

            if snapshot is not None:
                found = select_new_window(windows, snapshot, plan.window_class)
                if found is not None:
                    return found.id, MatchMethod.SNAPSHOT

            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(self.poll_interval)

        if snapshot is None:
            reason = "no window with its instance appeared"
        else:
            reason = f"no new {plan.window_class or 'terminal'} window appeared"
        raise MatchFailure(plan.tag, reason)
