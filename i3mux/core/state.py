"""Session state store.

The single persisted source of truth for workspace bindings. Every command
brackets its work with load()/save(), normally through transaction(), which
also holds an advisory lock on ``<state_file>.lock`` so concurrent i3mux
invocations serialize their short read-modify-write sections. The lock is
never held while waiting for a window.
"""

import fcntl
import json
import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import ValidationError

from ..errors import BindingError, StateCorruptionError
from ..models import LocalState, Session, SocketEntry, WorkspaceBinding

logger = logging.getLogger(__name__)

SOCKET_COUNTER = re.compile(r"-(\d+)$")


def format_socket_id(workspace: str, counter: int) -> str:
    """Socket name for the ``counter``-th terminal of a workspace, e.g. ``ws8-001``."""
    return f"ws{workspace}-{counter:03d}"


def socket_prefix(workspace: str) -> str:
    return f"ws{workspace}"


def socket_counter(socket_id: str) -> Optional[int]:
    """Counter part of a socket id (``ws8-012`` -> 12), or None."""
    m = SOCKET_COUNTER.search(socket_id)
    return int(m.group(1)) if m else None


class SessionStateStore:
    """Load/mutate/save access to the local state file."""

    def __init__(self, state_file: Path):
        self.state_file = Path(state_file)
        self.lock_file = self.state_file.with_name(self.state_file.name + ".lock")
        self.state = LocalState()
        self.last_error: Optional[StateCorruptionError] = None
        self._lock = threading.Lock()

    def load(self) -> LocalState:
        """Load state from disk.

        A missing file yields empty state. An unreadable or invalid file also
        yields empty state, with a warning: the file is an advisory cache.
        """
        self.last_error = None

        if not self.state_file.exists():
            logger.debug(f"State file not found: {self.state_file}, starting empty")
            with self._lock:
                self.state = LocalState()
            return self.state

        try:
            with open(self.state_file) as f:
                data = json.load(f)
            state = LocalState.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            self.last_error = StateCorruptionError(
                f"State file {self.state_file} is unreadable: {e}",
                suggestion="It will be rewritten on the next change",
                context={"state_file": str(self.state_file)},
            )
            logger.warning(f"{self.last_error.message}; proceeding with empty state")
            state = LocalState()

        with self._lock:
            self.state = state
        logger.debug(f"Loaded state with {len(state.workspaces)} binding(s)")
        return state

    def save(self) -> None:
        """Write state to disk atomically (temp file + rename)."""
        with self._lock:
            data = self.state.model_dump(mode="json")

        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self.state_file.parent, prefix=".state-", suffix=".json"
        )

        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            os.rename(temp_path, self.state_file)
            logger.debug(f"Saved state with {len(data['workspaces'])} binding(s)")

        except OSError:
            if Path(temp_path).exists():
                os.unlink(temp_path)
            raise

    @contextmanager
    def transaction(self) -> Iterator["SessionStateStore"]:
        """Exclusive load -> mutate -> save section.

        Nothing is saved if the body raises, so a failed spawn or remote call
        leaves the file untouched.
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_file, "a") as lock:
            fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
            try:
                self.load()
                yield self
                self.save()
            finally:
                fcntl.flock(lock.fileno(), fcntl.LOCK_UN)

    def get_binding(self, workspace: str) -> Optional[WorkspaceBinding]:
        return self.state.workspaces.get(workspace)

    def require_binding(self, workspace: str) -> WorkspaceBinding:
        binding = self.get_binding(workspace)
        if binding is None:
            raise BindingError(
                f"Workspace {workspace} is not bound to an i3mux session",
                suggestion="Run 'i3mux activate' first",
            )
        return binding

    def bind(
        self,
        workspace: str,
        session: Session,
        session_name: Optional[str] = None,
        next_socket_id: int = 1,
    ) -> WorkspaceBinding:
        """Bind a workspace to a session.

        Binding an already bound workspace to the same session keeps its
        sockets; the counter never drops to an id that is still in use.

        Raises:
            BindingError: If the workspace is bound to a different session
        """
        with self._lock:
            binding = self.state.workspaces.get(workspace)
            if binding is None:
                binding = WorkspaceBinding(
                    session=session,
                    session_name=session_name,
                    next_socket_id=next_socket_id,
                )
                self.state.workspaces[workspace] = binding
                logger.info(f"Bound workspace {workspace} to {session.host_label}")
                return binding

            if binding.session != session:
                raise BindingError(
                    f"Workspace {workspace} is already bound to {binding.session.host_label}",
                    suggestion="Run 'i3mux deactivate' first",
                )

            if session_name is not None:
                binding.session_name = session_name
            highest = max((socket_counter(s) or 0 for s in binding.sockets), default=0)
            binding.next_socket_id = max(binding.next_socket_id, next_socket_id, highest + 1)

        logger.info(
            f"Workspace {workspace} already bound to {session.host_label}, "
            f"keeping {len(binding.sockets)} socket(s)"
        )
        return binding

    def unbind(self, workspace: str) -> Optional[WorkspaceBinding]:
        with self._lock:
            binding = self.state.workspaces.pop(workspace, None)
        if binding is not None:
            logger.info(f"Unbound workspace {workspace}")
        return binding

    def allocate_socket(self, workspace: str) -> str:
        """Reserve the next socket id of a workspace and record its entry.

        Raises:
            BindingError: If the workspace is not bound
        """
        with self._lock:
            binding = self.require_binding(workspace)
            counter = binding.next_socket_id
            socket_id = format_socket_id(workspace, counter)
            # Skip ids already present (e.g. a hand-edited counter)
            while socket_id in binding.sockets:
                counter += 1
                socket_id = format_socket_id(workspace, counter)
            binding.next_socket_id = counter + 1
            binding.sockets[socket_id] = SocketEntry(socket_id=socket_id)

        logger.debug(f"Allocated socket {socket_id} on workspace {workspace}")
        return socket_id

    def record_window(self, workspace: str, socket_id: str, con_id: Optional[int]) -> None:
        """Link a socket to its container (None clears the link).

        Raises:
            BindingError: If the workspace or socket is unknown
        """
        with self._lock:
            binding = self.require_binding(workspace)
            entry = binding.sockets.get(socket_id)
            if entry is None:
                raise BindingError(f"Socket {socket_id} is not allocated on workspace {workspace}")
            entry.window_id = con_id
        logger.debug(f"Recorded window {con_id} for socket {socket_id}")

    def remove_socket(self, workspace: str, socket_id: str) -> bool:
        with self._lock:
            binding = self.get_binding(workspace)
            if binding is None or socket_id not in binding.sockets:
                return False
            del binding.sockets[socket_id]
        logger.debug(f"Removed socket {socket_id} from workspace {workspace}")
        return True

    def find_socket(self, socket_id: str) -> Optional[Tuple[str, SocketEntry]]:
        """Locate a socket id across all bindings."""
        for workspace, binding in self.state.workspaces.items():
            entry = binding.sockets.get(socket_id)
            if entry is not None:
                return workspace, entry
        return None

    def prune_empty(self) -> List[str]:
        """Remove bindings whose socket mapping is empty. Returns their workspaces."""
        with self._lock:
            empty = [ws for ws, b in self.state.workspaces.items() if b.is_empty]
            for ws in empty:
                del self.state.workspaces[ws]
        if empty:
            logger.info(f"Removed empty binding(s): {', '.join(empty)}")
        return empty

    def list(self) -> Dict[str, WorkspaceBinding]:
        """All bindings, ordered by workspace."""
        return dict(sorted(self.state.workspaces.items(), key=lambda kv: _workspace_key(kv[0])))


def _workspace_key(workspace: str) -> Tuple[int, str]:
    return (int(workspace), "") if workspace.isdigit() else (1 << 30, workspace)
