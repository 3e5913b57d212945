"""i3mux - persistent terminal sessions bound to i3/Sway workspaces.

This package provides:
- A client for the i3/Sway IPC protocol (commands and event stream)
- Correlation of freshly spawned terminals to the windows they create
- Workspace -> session bindings persisted across invocations
- Local and SSH-remote sessions backed by a detachable multiplexer
"""

__version__ = "0.4.0"
__author__ = "i3mux contributors"
__license__ = "MIT"

__all__ = ["__version__", "__author__", "__license__"]
