"""
Session state models.

Pydantic models for the persisted workspace bindings (the local state file)
and for the session records saved on a host by ``detach``.

State file layout::

    {
      "workspaces": {
        "8": {
          "session": {"kind": "local", "host": null},
          "session_name": null,
          "next_socket_id": 3,
          "sockets": {
            "ws8-001": {"socket_id": "ws8-001", "window_id": 94811, "created_at": 1730815200.1},
            "ws8-002": {"socket_id": "ws8-002", "window_id": null, "created_at": 1730815209.7}
          }
        }
      }
    }
"""

import re
import time
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

LOCAL_HOST = "local"

SESSION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
HOST_USER_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
HOST_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class SessionKind(str, Enum):
    """Where the multiplexer sessions of a workspace live."""
    LOCAL = "local"
    REMOTE = "remote"


def validate_session_name(name: str) -> str:
    """Validate a session name (alphanumeric, hyphens, underscores)."""
    if not name:
        raise ValueError("Session name cannot be empty")
    if not SESSION_NAME_PATTERN.match(name):
        raise ValueError(
            f"Invalid session name '{name}': only alphanumeric characters, "
            "hyphens, and underscores are allowed"
        )
    return name


def validate_host(host: str) -> str:
    """Validate an SSH host in ``host`` or ``user@host`` form."""
    if not host:
        raise ValueError("Remote host cannot be empty")

    user, sep, hostname = host.rpartition("@")
    if sep:
        if not user:
            raise ValueError(f"Username cannot be empty in '{host}'")
        if not HOST_USER_PATTERN.match(user):
            raise ValueError(
                f"Invalid username in '{host}': only alphanumeric, hyphens, and underscores allowed"
            )
    if not hostname:
        raise ValueError("Hostname cannot be empty")
    if not HOST_NAME_PATTERN.match(hostname):
        raise ValueError(
            f"Invalid hostname in '{host}': only alphanumeric, hyphens, dots, and underscores allowed"
        )
    return host


class Session(BaseModel):
    """Logical identity a workspace is bound to. Replaced wholesale on re-activation."""

    kind: SessionKind = Field(
        default=SessionKind.LOCAL,
        description="local or remote",
    )
    host: Optional[str] = Field(
        default=None,
        description="SSH host for remote sessions, None for local",
    )

    model_config = {"frozen": True}

    @field_validator("host")
    @classmethod
    def validate_host_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return validate_host(v)

    @model_validator(mode="after")
    def check_host_matches_kind(self) -> "Session":
        if self.kind == SessionKind.REMOTE and not self.host:
            raise ValueError("Remote sessions require a host")
        if self.kind == SessionKind.LOCAL and self.host:
            raise ValueError("Local sessions cannot have a host")
        return self

    @classmethod
    def local(cls) -> "Session":
        return cls(kind=SessionKind.LOCAL)

    @classmethod
    def remote(cls, host: str) -> "Session":
        return cls(kind=SessionKind.REMOTE, host=host)

    @property
    def is_remote(self) -> bool:
        return self.kind == SessionKind.REMOTE

    @property
    def host_label(self) -> str:
        """Host as shown in marks and titles ("local" for local sessions)."""
        return self.host if self.host else LOCAL_HOST


class SocketEntry(BaseModel):
    """One terminal's multiplexer socket and the container it lives in."""

    socket_id: str = Field(
        ...,
        min_length=1,
        description="Multiplexer socket name, e.g. 'ws8-001'",
    )
    window_id: Optional[int] = Field(
        default=None,
        description="Window manager container id once the matcher resolved it",
    )
    created_at: float = Field(
        default_factory=time.time,
        description="Unix timestamp of socket allocation",
    )


class WorkspaceBinding(BaseModel):
    """Workspace -> session binding with its socket ledger."""

    session: Session = Field(default_factory=Session.local)
    session_name: Optional[str] = Field(
        default=None,
        description="Name used when the workspace is detached or was attached",
    )
    next_socket_id: int = Field(
        default=1,
        ge=1,
        description="Monotonic counter for socket ids",
    )
    sockets: Dict[str, SocketEntry] = Field(default_factory=dict)

    @field_validator("session_name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return validate_session_name(v)

    @property
    def is_empty(self) -> bool:
        """An empty socket mapping means the binding is semantically deactivated."""
        return not self.sockets


class LocalState(BaseModel):
    """Everything persisted in the local state file."""

    workspaces: Dict[str, WorkspaceBinding] = Field(default_factory=dict)


class SessionRecord(BaseModel):
    """A detached session as saved on its host under ``sessions/NAME.json``."""

    name: str
    workspace: str
    host: str = Field(default=LOCAL_HOST)
    sockets: List[str] = Field(default_factory=list)
    detached_at: float = Field(default_factory=time.time)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_session_name(v)
