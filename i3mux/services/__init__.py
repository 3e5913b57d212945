"""
Services for i3mux terminal tracking.

WorkspaceManager is imported from its module directly
(``i3mux.services.workspace_manager``); it depends on the event subscriber,
which itself uses the launch registry exported here.
"""

from .launch_registry import LaunchRegistry
from .mark_applicator import MarkApplicator, ParsedMark, build_mark, parse_mark
from .remote import RemoteSessionCoordinator
from .terminal_spawner import (
    EMULATORS,
    EmulatorCapability,
    SpawnPlan,
    TerminalSpawner,
    lookup_emulator,
)
from .window_matcher import WindowMatcher, select_new_window

__all__ = [
    "LaunchRegistry",
    "MarkApplicator",
    "ParsedMark",
    "build_mark",
    "parse_mark",
    "RemoteSessionCoordinator",
    "EMULATORS",
    "EmulatorCapability",
    "SpawnPlan",
    "TerminalSpawner",
    "lookup_emulator",
    "WindowMatcher",
    "select_new_window",
]
