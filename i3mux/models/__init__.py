"""Data models for i3mux."""

from .session import (
    LOCAL_HOST,
    LocalState,
    Session,
    SessionKind,
    SessionRecord,
    SocketEntry,
    WorkspaceBinding,
    validate_host,
    validate_session_name,
)
from .window import (
    MatchMethod,
    MatchMode,
    MatchResult,
    PendingMatch,
    WindowEvent,
)

__all__ = [
    "LOCAL_HOST",
    "LocalState",
    "Session",
    "SessionKind",
    "SessionRecord",
    "SocketEntry",
    "WorkspaceBinding",
    "validate_host",
    "validate_session_name",
    "MatchMethod",
    "MatchMode",
    "MatchResult",
    "PendingMatch",
    "WindowEvent",
]
