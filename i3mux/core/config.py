"""Configuration loader for i3mux.

Settings come from three layers, later layers winning:

1. Built-in defaults (I3muxConfig field defaults)
2. ``~/.config/i3mux/config.json`` (optional)
3. Environment variables (TERMINAL, I3MUX_STATE_FILE, I3MUX_MATCH_TIMEOUT,
   I3MUX_REMOTE_HELPER)
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


def default_config_dir() -> Path:
    """Return ``$XDG_CONFIG_HOME/i3mux`` (``~/.config/i3mux`` when unset)."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "i3mux"


class I3muxConfig(BaseModel):
    """Runtime settings for one i3mux invocation."""

    terminal: str = Field(
        default="i3-sensible-terminal",
        description="Terminal emulator command",
    )
    state_file: Path = Field(
        default_factory=lambda: default_config_dir() / "state.json",
        description="Local state file holding workspace bindings",
    )
    match_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for a spawned terminal's window",
    )
    poll_interval: float = Field(
        default=0.1,
        gt=0,
        description="Cadence of window-list polling in the fallback path",
    )
    remote_helper: str = Field(
        default="~/.local/bin/i3mux-remote-helper",
        description="Path of the helper script on remote hosts",
    )
    expected_helper_version: str = Field(default="1.0.4")
    multiplexer: str = Field(default="abduco")
    session_dir: str = Field(
        default="/tmp",
        description="Directory holding multiplexer sockets (same on every host)",
    )
    bookkeeping_dir: str = Field(
        default="/tmp/i3mux",
        description="Directory holding session records and locks (same on every host)",
    )
    ssh_control_path: str = Field(default="~/.ssh/sockets/%r@%h:%p")
    ssh_control_persist: str = Field(default="10m")
    reconnect_max_attempts: int = Field(default=5, ge=1)
    reconnect_max_delay: float = Field(default=2.0, gt=0)

    def ssh_options(self) -> list:
        """SSH ``-o`` options enabling connection reuse."""
        return [
            "-o", f"ControlPath={self.ssh_control_path}",
            "-o", "ControlMaster=auto",
            "-o", f"ControlPersist={self.ssh_control_persist}",
        ]


ENV_OVERRIDES = {
    "TERMINAL": "terminal",
    "I3MUX_STATE_FILE": "state_file",
    "I3MUX_MATCH_TIMEOUT": "match_timeout",
    "I3MUX_REMOTE_HELPER": "remote_helper",
}


def load_config(
    config_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> I3muxConfig:
    """Load configuration from JSON file and environment.

    A missing file yields defaults. A malformed file is logged and ignored:
    configuration problems should never stop a terminal from opening.

    Args:
        config_file: Path to config.json (default: ~/.config/i3mux/config.json)
        environ: Environment mapping (default: os.environ)

    Returns:
        I3muxConfig instance
    """
    if config_file is None:
        config_file = default_config_dir() / "config.json"
    if environ is None:
        environ = os.environ

    data: Dict[str, Any] = {}
    if config_file.exists():
        try:
            with open(config_file) as f:
                loaded = json.load(f)
            if isinstance(loaded, dict):
                data.update(loaded)
                logger.debug(f"Loaded config from {config_file}: {sorted(loaded)}")
            else:
                logger.warning(f"Ignoring config {config_file}: top level is not an object")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read config {config_file}: {e}, using defaults")
    else:
        logger.debug(f"Config file not found: {config_file}, using defaults")

    for env_name, field_name in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            data[field_name] = value

    # Invalid values fall back to their defaults one field at a time
    while True:
        try:
            return I3muxConfig(**data)
        except ValidationError as e:
            invalid = {err["loc"][0]: err["msg"] for err in e.errors() if err["loc"]}
            invalid = {k: v for k, v in invalid.items() if k in data}
            if not invalid:
                logger.warning(f"Invalid configuration, using defaults: {e}")
                return I3muxConfig()
            for field_name, reason in invalid.items():
                logger.warning(
                    f"Invalid configuration value {field_name}={data.pop(field_name)!r} "
                    f"({reason}), using the default"
                )
