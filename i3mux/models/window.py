"""
Window correlation models.

WindowEvent is decoded from a window manager ``window`` event and is never
persisted. PendingMatch lives only in the launch registry for the duration of
one spawn.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class MatchMode(str, Enum):
    """Which window property a pending match is keyed on."""
    INSTANCE = "instance"
    TITLE = "title"


class MatchMethod(str, Enum):
    """How a window was finally identified."""
    INSTANCE = "instance"
    TITLE = "title"
    SNAPSHOT = "snapshot"


class WindowEvent(BaseModel):
    """A window-created (or retitled) notification from the event stream."""

    change: str = Field(..., description="Event change, e.g. 'new' or 'title'")
    con_id: int = Field(..., description="Window manager container id")
    window: Optional[int] = Field(None, description="Display-server window id (X11 only)")
    window_class: Optional[str] = None
    instance: Optional[str] = None
    title: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WindowEvent":
        """Build from a decoded ``window`` event payload.

        Native Wayland clients have no ``window_properties``; their ``app_id``
        stands in for both class and instance.

        Raises:
            KeyError/TypeError/ValueError: If the payload lacks a container
        """
        container = payload["container"]
        props = container.get("window_properties") or {}
        app_id = container.get("app_id")

        return cls(
            change=payload["change"],
            con_id=container["id"],
            window=container.get("window"),
            window_class=props.get("class") or app_id,
            instance=props.get("instance") or app_id,
            title=props.get("title") or container.get("name"),
        )


@dataclass
class PendingMatch:
    """A correlation waiting for its window.

    The future is the completion slot: it is written exactly once, with a
    WindowEvent on success or an exception on timeout/connection loss.
    """

    tag: str
    mode: MatchMode
    deadline: float
    future: "asyncio.Future[WindowEvent]"
    registered_at: float = field(default_factory=time.monotonic)

    def matches(self, event: WindowEvent) -> bool:
        if self.mode == MatchMode.INSTANCE:
            return event.instance == self.tag
        return bool(event.title) and self.tag in event.title

    @property
    def resolved(self) -> bool:
        return self.future.done()

    def remaining(self, now: Optional[float] = None) -> float:
        now = time.monotonic() if now is None else now
        return max(0.0, self.deadline - now)


class MatchResult(BaseModel):
    """Outcome of one spawn-and-match."""

    tag: str
    con_id: Optional[int] = None
    method: Optional[MatchMethod] = None
    elapsed: float = 0.0
    error: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.con_id is not None
