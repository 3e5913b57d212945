"""
Workspace manager.

Orchestrates the i3mux commands on the focused workspace. Each command owns
its state checkpoints: short store transactions around socket allocation and
spawn, and around recording the matched window. Waiting for a window happens
outside any transaction.

Structural failures (SpawnError, RemoteError, BindingError) propagate and
leave the state file as it was for that step. Match and mark failures are
absorbed into the returned TerminalOutcome.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..core.config import I3muxConfig
from ..core.events import EventSubscriber
from ..core.state import SessionStateStore, socket_counter, socket_prefix
from ..core.timing import log_timing
from ..core.wm import WindowManagerClient
from ..errors import AmbiguousSessionError, BindingError, StaleWindowError, ValidationError
from ..models import (
    LOCAL_HOST,
    Session,
    SessionRecord,
    SocketEntry,
    validate_host,
    validate_session_name,
)
from .launch_registry import LaunchRegistry
from .mark_applicator import MarkApplicator, build_mark
from .remote import RemoteSessionCoordinator
from .terminal_spawner import TerminalSpawner
from .window_matcher import WindowMatcher

logger = logging.getLogger(__name__)


def check_inputs(host: Optional[str] = None, session_name: Optional[str] = None) -> None:
    """Validate user-supplied names before any state is touched.

    Raises:
        ValidationError: On an invalid host or session name
    """
    try:
        if host is not None:
            validate_host(host)
        if session_name is not None:
            validate_session_name(session_name)
    except ValueError as e:
        raise ValidationError(str(e), suggestion="Use letters, digits, '-' and '_'")


@dataclass
class TerminalOutcome:
    """Result of opening one session terminal."""

    workspace: str
    socket_id: Optional[str] = None
    con_id: Optional[int] = None
    mark: Optional[str] = None
    warning: Optional[str] = None

    @property
    def tracked(self) -> bool:
        return self.socket_id is not None


@dataclass
class SocketStatus:
    socket_id: str
    window_id: Optional[int]
    live: bool


@dataclass
class BindingStatus:
    workspace: str
    session: Session
    session_name: Optional[str]
    sockets: List[SocketStatus] = field(default_factory=list)


@dataclass
class CleanupReport:
    removed_sockets: Dict[str, List[str]] = field(default_factory=dict)
    removed_bindings: List[str] = field(default_factory=list)

    @property
    def total_removed(self) -> int:
        return sum(len(s) for s in self.removed_sockets.values())


class WorkspaceManager:
    """Runs activate / terminal / deactivate / detach / attach / kill / cleanup / list."""

    def __init__(
        self,
        config: I3muxConfig,
        wm: Optional[WindowManagerClient] = None,
        store: Optional[SessionStateStore] = None,
        spawner: Optional[TerminalSpawner] = None,
        remote: Optional[RemoteSessionCoordinator] = None,
        registry: Optional[LaunchRegistry] = None,
    ):
        self.config = config
        self.wm = wm or WindowManagerClient()
        self.store = store or SessionStateStore(config.state_file)
        self.spawner = spawner or TerminalSpawner(config.terminal)
        self.remote = remote or RemoteSessionCoordinator(config)
        self.registry = registry or LaunchRegistry()
        self.matcher = WindowMatcher(
            self.registry, self.wm, config.match_timeout, config.poll_interval
        )
        self.marks = MarkApplicator(self.wm)
        self.subscriber: Optional[EventSubscriber] = None

    async def __aenter__(self) -> "WorkspaceManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self.subscriber is not None:
            await self.subscriber.stop()
            self.subscriber = None
        await self.wm.close()

    async def _ensure_subscriber(self) -> None:
        """Start the event subscriber before the first spawn."""
        if self.subscriber is not None:
            return
        await self.wm.connect()
        self.subscriber = EventSubscriber(
            self.registry,
            socket_path=self.wm.socket_path,
            max_attempts=self.config.reconnect_max_attempts,
            max_delay=self.config.reconnect_max_delay,
        )
        await self.subscriber.start()

    async def _check_host(self, session: Session) -> None:
        """Fail fast (before any state change) if the multiplexer is unavailable."""
        await self.remote.check_deps(session.host)
        if session.is_remote:
            await self.remote.helper_version(session.host)

    # ------------------------------------------------------------------
    # Terminals
    # ------------------------------------------------------------------

    async def _open_terminal(
        self,
        workspace: str,
        socket_id: Optional[str] = None,
        command: Optional[List[str]] = None,
        bind: Optional[Tuple[Session, Optional[str], int]] = None,
    ) -> TerminalOutcome:
        """Spawn, match, mark and record one session terminal.

        Args:
            workspace: Bound workspace
            socket_id: Existing socket to re-attach (a new one is allocated when None)
            command: Command to run in a new multiplexer session
            bind: (session, session_name, next_socket_id) to bind the
                workspace to in the same transaction as the spawn

        Raises:
            SpawnError: Nothing is persisted for this terminal
            BindingError: If the workspace is not bound, or bound to another session
        """
        await self._ensure_subscriber()
        snapshot = await self.matcher.snapshot(self.spawner.emulator.supports_tag)

        # Holds the file lock: nothing in this block may await
        with self.store.transaction():
            if bind is not None:
                self.store.bind(workspace, *bind)
            binding = self.store.require_binding(workspace)
            session = binding.session
            if socket_id is None:
                socket_id = self.store.allocate_socket(workspace)
            elif socket_id not in binding.sockets:
                binding.sockets[socket_id] = SocketEntry(socket_id=socket_id)

            inner = self.remote.attach(session.host, socket_id, command)
            plan = self.spawner.build_plan(session, socket_id, inner)

            handle = self.matcher.begin(plan, snapshot)
            try:
                self.spawner.spawn(plan)
            except Exception:
                self.matcher.abort(handle)
                raise

        outcome = TerminalOutcome(workspace=workspace, socket_id=socket_id)
        with log_timing(f"Match {socket_id}", logger):
            result = await self.matcher.finish(handle)

        if result.matched:
            mark = build_mark(session, socket_id)
            try:
                await self.marks.apply(result.con_id, mark)
                outcome.con_id = result.con_id
                outcome.mark = mark
            except StaleWindowError as e:
                logger.warning(f"{e.message}; socket {socket_id} recorded without a window")
                outcome.warning = e.message
        else:
            outcome.warning = result.error

        with self.store.transaction():
            binding = self.store.get_binding(workspace)
            if binding is not None and socket_id in binding.sockets:
                self.store.record_window(workspace, socket_id, outcome.con_id)
            else:
                logger.warning(f"Workspace {workspace} changed while matching {socket_id}")

        return outcome

    async def activate(
        self,
        host: Optional[str] = None,
        session_name: Optional[str] = None,
    ) -> TerminalOutcome:
        """Bind the focused workspace to a local or remote session and open a terminal.

        The binding and the new socket are persisted together, only once
        the terminal was launched. Activating a workspace that is already
        bound to the same session keeps its sockets and adds a terminal.

        Raises:
            BindingError: If the workspace is bound to a different session
        """
        check_inputs(host=host, session_name=session_name)

        session = Session.remote(host) if host else Session.local()
        workspace = await self.wm.focused_workspace()
        await self._check_host(session)

        return await self._open_terminal(workspace, bind=(session, session_name, 1))

    async def terminal(self, command: Optional[List[str]] = None) -> TerminalOutcome:
        """Open a terminal on the focused workspace.

        Unbound workspaces get a plain terminal that is neither tagged nor tracked.
        """
        workspace = await self.wm.focused_workspace()
        self.store.load()
        binding = self.store.get_binding(workspace)

        if binding is None:
            self.spawner.spawn(self.spawner.plain_plan(command))
            return TerminalOutcome(workspace=workspace)

        await self.remote.check_deps(binding.session.host)
        return await self._open_terminal(workspace, command=command)

    async def deactivate(self) -> int:
        """Unbind the focused workspace. Returns the number of sockets left running.

        Raises:
            BindingError: If the workspace is not bound
        """
        workspace = await self.wm.focused_workspace()
        with self.store.transaction():
            binding = self.store.require_binding(workspace)
            self.store.unbind(workspace)
        return len(binding.sockets)

    async def detach(self, session_name: Optional[str] = None) -> SessionRecord:
        """Save the focused workspace as a named session, close its windows, unbind it.

        The multiplexer sessions keep running.
        """
        workspace = await self.wm.focused_workspace()
        self.store.load()
        binding = self.store.require_binding(workspace)

        name = session_name or binding.session_name or f"ws{workspace}"
        check_inputs(session_name=name)
        if binding.is_empty:
            raise BindingError(f"Workspace {workspace} has no terminals to detach")

        record = await self.remote.detach(
            binding.session.host, workspace, name, list(binding.sockets)
        )
        closed = await self.marks.kill_marked(workspace)
        logger.info(f"Closed {closed} window(s) on workspace {workspace}")

        with self.store.transaction():
            self.store.unbind(workspace)
        return record

    async def select_session(
        self,
        host: Optional[str],
        session_name: Optional[str],
    ) -> SessionRecord:
        """Resolve which saved session to use.

        Raises:
            BindingError: No (matching) session exists
            AmbiguousSessionError: Several exist and none was named
        """
        label = host or LOCAL_HOST

        if session_name is not None:
            record = await self.remote.load_session(host, session_name)
            if record is None:
                raise BindingError(f"Session '{session_name}' not found on {label}")
            return record

        records = await self.remote.list(host)
        if not records:
            raise BindingError(f"No sessions found on {label}")
        if len(records) > 1:
            raise AmbiguousSessionError(label, [r.name for r in records])
        return records[0]

    async def attach(
        self,
        session_name: Optional[str] = None,
        host: Optional[str] = None,
    ) -> List[TerminalOutcome]:
        """Rebind the focused workspace to a saved session and reopen its terminals."""
        check_inputs(host=host, session_name=session_name)

        record = await self.select_session(host, session_name)
        workspace = await self.wm.focused_workspace()

        if await self.marks.find_marked_windows(workspace):
            raise BindingError(
                f"Workspace {workspace} already holds i3mux terminals",
                suggestion="Switch to an empty workspace first",
            )

        session = Session.remote(host) if host else Session.local()
        await self._check_host(session)

        counters = [socket_counter(s) or 0 for s in record.sockets]
        bind = (session, record.name, max(counters, default=0) + 1)

        outcomes = []
        for socket_id in record.sockets:
            outcomes.append(await self._open_terminal(workspace, socket_id=socket_id, bind=bind))
            bind = None
        logger.info(f"Attached session '{record.name}' to workspace {workspace}")
        return outcomes

    async def kill(self, session_name: str, host: Optional[str] = None) -> SessionRecord:
        """Kill every multiplexer session of a saved session and forget it."""
        check_inputs(host=host, session_name=session_name)

        record = await self.select_session(host, session_name)
        for socket_id in record.sockets:
            await self.remote.kill(host, socket_id)
        await self.remote.delete_session(host, record.name)

        with self.store.transaction():
            for socket_id in record.sockets:
                found = self.store.find_socket(socket_id)
                if found is not None:
                    workspace, _ = found
                    binding = self.store.get_binding(workspace)
                    if binding.session.host_label == (host or LOCAL_HOST):
                        self.store.remove_socket(workspace, socket_id)
        return record

    # ------------------------------------------------------------------
    # Inspection and garbage collection
    # ------------------------------------------------------------------

    async def list(self) -> List[BindingStatus]:
        """Every binding with its sockets and whether each has a live window."""
        self.store.load()
        bindings = self.store.list()
        live_windows: Set[int] = set()
        if bindings:
            live_windows = {w.id for w in await self.wm.get_windows()}

        statuses = []
        for workspace, binding in bindings.items():
            status = BindingStatus(
                workspace=workspace,
                session=binding.session,
                session_name=binding.session_name,
            )
            for socket_id, entry in sorted(binding.sockets.items()):
                status.sockets.append(SocketStatus(
                    socket_id=socket_id,
                    window_id=entry.window_id,
                    live=entry.window_id is not None and entry.window_id in live_windows,
                ))
            statuses.append(status)
        return statuses

    async def sessions(self, host: Optional[str] = None) -> List[SessionRecord]:
        check_inputs(host=host)
        return await self.remote.list(host)

    async def cleanup(self, workspace: Optional[str] = None) -> CleanupReport:
        """Drop sockets whose multiplexer session and window are both gone."""
        self.store.load()
        bindings = self.store.list()
        if workspace is not None:
            if workspace not in bindings:
                raise BindingError(f"Workspace {workspace} is not bound to an i3mux session")
            bindings = {workspace: bindings[workspace]}

        live_windows = {w.id for w in await self.wm.get_windows()}
        live_sockets: Dict[Optional[str], Set[str]] = {}
        dead: Dict[str, List[str]] = {}

        for ws, binding in bindings.items():
            host = binding.session.host
            if host not in live_sockets:
                live_sockets[host] = await self.remote.live_sockets(host)
            dead[ws] = [
                socket_id for socket_id, entry in binding.sockets.items()
                if socket_id not in live_sockets[host]
                and (entry.window_id is None or entry.window_id not in live_windows)
            ]
            if binding.session_name:
                await self.remote.cleanup_check(host, socket_prefix(ws), binding.session_name)

        report = CleanupReport()
        with self.store.transaction():
            for ws, sockets in dead.items():
                removed = [s for s in sockets if self.store.remove_socket(ws, s)]
                if removed:
                    report.removed_sockets[ws] = removed
            if workspace is None:
                report.removed_bindings = self.store.prune_empty()
            else:
                binding = self.store.get_binding(workspace)
                if binding is not None and binding.is_empty:
                    self.store.unbind(workspace)
                    report.removed_bindings = [workspace]

        logger.info(
            f"Cleanup removed {report.total_removed} socket(s) and "
            f"{len(report.removed_bindings)} binding(s)"
        )
        return report
