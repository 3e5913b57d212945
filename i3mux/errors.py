"""
Error taxonomy for i3mux.

Two families of failures exist:

- Absorbed (race-prone) failures: MatchTimeoutError, MatchFailure,
  StaleWindowError, StateCorruptionError. Callers log a warning and carry on
  with a degraded result.
- Structural failures: SpawnError, RemoteError, ProtocolError (after one
  reconnect), BindingError, ValidationError. These abort the command and the
  CLI maps them to a non-zero exit code.
"""

from typing import Any, Dict, List, Optional


class I3muxError(Exception):
    """Base exception for all i3mux errors."""

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize i3mux error.

        Args:
            message: Human-readable error message
            suggestion: Suggested recovery action
            context: Additional context for debugging
        """
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON output."""
        result: Dict[str, Any] = {
            "error": type(self).__name__,
            "message": self.message,
        }

        if self.suggestion:
            result["suggestion"] = self.suggestion

        if self.context:
            result["context"] = self.context

        return result


class ProtocolError(I3muxError):
    """Malformed or truncated IPC frame, or the IPC socket went away."""


class WindowManagerError(I3muxError):
    """The window manager replied to a command with success=false."""


class MatchTimeoutError(I3muxError):
    """No correlating window event arrived before the deadline."""

    def __init__(self, tag: str, timeout: float):
        super().__init__(
            f"No window appeared for tag '{tag}' within {timeout:.1f}s",
            context={"tag": tag, "timeout": timeout},
        )
        self.tag = tag
        self.timeout = timeout


class MatchFailure(I3muxError):
    """Neither the event stream nor the fallback heuristic found the window."""

    def __init__(self, tag: str, reason: str):
        super().__init__(
            f"Could not identify window for tag '{tag}': {reason}",
            suggestion="The terminal keeps running unmarked; run 'i3mux list' to inspect",
            context={"tag": tag, "reason": reason},
        )
        self.tag = tag
        self.reason = reason


class StaleWindowError(I3muxError):
    """The resolved container vanished before it could be marked."""

    def __init__(self, con_id: int, detail: str = ""):
        super().__init__(
            f"Container {con_id} no longer exists" + (f": {detail}" if detail else ""),
            context={"con_id": con_id},
        )
        self.con_id = con_id


class StateCorruptionError(I3muxError):
    """The persisted state file could not be read or validated."""


class SpawnError(I3muxError):
    """The terminal emulator could not be executed."""

    def __init__(self, command: str, reason: str):
        super().__init__(
            f"Failed to launch terminal '{command}': {reason}",
            suggestion="Set $TERMINAL to an installed terminal emulator",
            context={"command": command},
        )
        self.command = command


class RemoteError(I3muxError):
    """A remote (or local multiplexer) invocation failed.

    The remote tool's diagnostic text is kept verbatim in ``stderr``.
    """

    def __init__(
        self,
        host: str,
        stderr: str,
        returncode: Optional[int] = None,
        suggestion: Optional[str] = None,
    ):
        super().__init__(
            f"Remote command on {host} failed: {stderr.strip() or 'no diagnostic output'}",
            suggestion=suggestion,
            context={"host": host, "returncode": returncode},
        )
        self.host = host
        self.stderr = stderr
        self.returncode = returncode


class BindingError(I3muxError):
    """The command requires a workspace binding state that does not hold."""


class ValidationError(I3muxError):
    """Invalid session name or host given on the command line."""


class AmbiguousSessionError(I3muxError):
    """Several saved sessions exist and none was named."""

    def __init__(self, host: str, names: List[str]):
        super().__init__(
            f"Multiple sessions available on {host}: {', '.join(names)}",
            suggestion="Specify one with --session",
            context={"host": host, "sessions": names},
        )
        self.host = host
        self.names = names
