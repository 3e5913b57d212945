"""
Terminal spawner.

Builds the terminal emulator invocation for a session socket and launches it
fire-and-forget. Emulator differences live in one closed capability table
(EMULATORS): supporting a new emulator is one row, never a new branch.

A spawn is "tagged" when the emulator can set the window instance from the
command line; the correlation tag is then injected as the instance. Untagged
spawns carry the tag in the initial window title instead.
"""

import logging
import os
import secrets
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..errors import SpawnError
from ..models import MatchMode, Session

logger = logging.getLogger(__name__)

TAG_PREFIX = "i3mux-"
TITLE_MARKER = "\u200b"


@dataclass(frozen=True)
class EmulatorCapability:
    """How one terminal emulator is driven from the command line.

    Argument templates may use ``{tag}`` and ``{title}``.
    """

    name: str
    window_class: Optional[str]
    instance_args: Tuple[str, ...] = ()
    title_args: Tuple[str, ...] = ("-T", "{title}")
    exec_args: Tuple[str, ...] = ("-e",)
    # The instance flag also sets the class (Wayland app_id style)
    class_is_tag: bool = False

    @property
    def supports_tag(self) -> bool:
        return bool(self.instance_args)


EMULATORS: Dict[str, EmulatorCapability] = {
    cap.name: cap
    for cap in (
        EmulatorCapability("xterm", "XTerm", ("-name", "{tag}")),
        EmulatorCapability("uxterm", "UXTerm", ("-name", "{tag}")),
        EmulatorCapability("urxvt", "URxvt", ("-name", "{tag}"), ("-title", "{title}")),
        EmulatorCapability("rxvt-unicode", "URxvt", ("-name", "{tag}"), ("-title", "{title}")),
        EmulatorCapability("st", "st-256color", ("-n", "{tag}"), ("-t", "{title}")),
        EmulatorCapability(
            "alacritty", "Alacritty", ("--class", "{tag}"), ("--title", "{title}"),
            class_is_tag=True,
        ),
        EmulatorCapability(
            "kitty", "kitty", ("--class", "{tag}"), ("--title", "{title}"), (),
            class_is_tag=True,
        ),
        EmulatorCapability(
            "foot", "foot", ("--app-id", "{tag}"), ("--title", "{title}"), (),
            class_is_tag=True,
        ),
        EmulatorCapability("gnome-terminal", "Gnome-terminal", (), ("--title", "{title}"), ("--",)),
        EmulatorCapability("xfce4-terminal", "Xfce4-terminal", (), ("-T", "{title}"), ("-x",)),
        EmulatorCapability("konsole", "konsole", (), ("-p", "tabtitle={title}"), ("-e",)),
    )
}

# Unknown emulators (including i3-sensible-terminal) get the common xterm-style flags
DEFAULT_EMULATOR = EmulatorCapability("default", None)


def lookup_emulator(name: str) -> EmulatorCapability:
    return EMULATORS.get(os.path.basename(name), DEFAULT_EMULATOR)


def new_tag() -> str:
    """Correlation tag: fixed namespace prefix plus 48 random bits."""
    return f"{TAG_PREFIX}{secrets.token_hex(6)}"


def session_title(session: Session, socket_id: str) -> str:
    """Window title identifying an i3mux terminal, e.g. ``\\u200blocal:ws8-001\\u200b``."""
    return f"{TITLE_MARKER}{session.host_label}:{socket_id}{TITLE_MARKER}"


def parse_title(title: Optional[str]) -> Optional[Tuple[str, str]]:
    """Extract (host, socket) from an i3mux window title, or None."""
    if not title or not title.startswith(TITLE_MARKER):
        return None
    end = title.find(TITLE_MARKER, len(TITLE_MARKER))
    if end < 0:
        return None
    host, sep, socket_id = title[len(TITLE_MARKER):end].rpartition(":")
    if not sep or not host or not socket_id:
        return None
    return host, socket_id


@dataclass
class SpawnPlan:
    """A fully built terminal invocation."""

    argv: List[str]
    tag: Optional[str]
    title: Optional[str]
    emulator: EmulatorCapability
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def tagged(self) -> bool:
        return self.emulator.supports_tag

    @property
    def match_mode(self) -> MatchMode:
        return MatchMode.INSTANCE if self.tagged else MatchMode.TITLE

    @property
    def window_class(self) -> Optional[str]:
        """Class the new window is expected to carry (None = unknown)."""
        if self.emulator.class_is_tag:
            return self.tag
        return self.emulator.window_class


class TerminalSpawner:
    """Builds and launches terminal emulator processes."""

    def __init__(self, terminal: str = "i3-sensible-terminal"):
        """
        Args:
            terminal: Terminal command, possibly with arguments (``$TERMINAL``)
        """
        self.terminal_argv = shlex.split(terminal) or ["i3-sensible-terminal"]
        self.emulator = lookup_emulator(self.terminal_argv[0])

        # "$TERMINAL='xterm -e'" is common; the exec flag is added per plan
        base = self.terminal_argv
        exec_args = list(self.emulator.exec_args)
        if exec_args and base[-len(exec_args):] == exec_args and len(base) > len(exec_args):
            base = base[:-len(exec_args)]
        self.base_argv = base

        logger.debug(
            f"Terminal '{terminal}' -> emulator '{self.emulator.name}' "
            f"(tagged={self.emulator.supports_tag})"
        )

    def build_plan(
        self,
        session: Session,
        socket_id: str,
        inner_argv: List[str],
        tag: Optional[str] = None,
    ) -> SpawnPlan:
        """Build the invocation for a session terminal.

        Args:
            session: Session the workspace is bound to
            socket_id: Multiplexer socket of this terminal
            inner_argv: Command run inside the terminal (multiplexer attach)
            tag: Correlation tag (a fresh one when None)

        Returns:
            SpawnPlan ready for spawn()
        """
        cap = self.emulator
        tag = tag or new_tag()
        title = session_title(session, socket_id)
        if not cap.supports_tag:
            title = f"{title} {tag}"

        argv = list(self.base_argv)
        argv += [a.format(tag=tag, title=title) for a in cap.instance_args]
        argv += [a.format(tag=tag, title=title) for a in cap.title_args]
        argv += list(cap.exec_args)
        argv += inner_argv

        env = {
            "I3MUX_SOCKET": socket_id,
            "I3MUX_HOST": session.host_label,
        }
        if session.is_remote:
            env["TERM"] = "xterm-256color"

        return SpawnPlan(argv=argv, tag=tag, title=title, emulator=cap, env=env)

    def plain_plan(self, command: Optional[List[str]] = None) -> SpawnPlan:
        """Invocation for an ordinary (untracked) terminal."""
        argv = list(self.base_argv)
        if command:
            argv += list(self.emulator.exec_args) + list(command)
        return SpawnPlan(argv=argv, tag=None, title=None, emulator=self.emulator)

    def spawn(self, plan: SpawnPlan) -> subprocess.Popen:
        """Launch without waiting for the child.

        Raises:
            SpawnError: If the executable is missing or not executable
        """
        env = dict(os.environ)
        env.update(plan.env)

        try:
            process = subprocess.Popen(
                plan.argv,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,  # Detach from parent
            )
        except OSError as e:
            logger.error(f"Failed to launch {plan.argv[0]}: {e}")
            raise SpawnError(plan.argv[0], e.strerror or str(e))

        logger.info(
            f"Launched {self.emulator.name} terminal (PID: {process.pid}, "
            f"tag={plan.tag}, mode={plan.match_mode.value})"
        )
        return process
