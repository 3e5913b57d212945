"""
Remote session coordinator.

Drives the session multiplexer (abduco) on the host a workspace is bound to.
Remote hosts are reached over ssh with connection reuse (ControlMaster) and
the i3mux remote helper script; ``host=None`` means the local machine.

Remote helper contract:
- ``check-deps``: exit 0 printing the multiplexer path, else exit 1 with
  remediation text on stderr
- ``attach <socket> [-- <cmd>]``: exec into the multiplexer session
- ``cleanup-check <prefix> <session>``: drop session bookkeeping when no
  ``<prefix>-*`` sockets remain
- ``version``: print the helper version

Every call blocks until the external command finishes; no timeout is imposed
beyond what ssh itself enforces.
"""

import asyncio
import json
import logging
import os
import shlex
import stat
import tempfile
from pathlib import Path
from typing import List, Optional, Set

from pydantic import ValidationError

from ..core.config import I3muxConfig
from ..core.timing import log_timing
from ..errors import RemoteError
from ..models import LOCAL_HOST, SessionRecord

logger = logging.getLogger(__name__)


class RemoteSessionCoordinator:
    """Multiplexer sessions and session records on local or ssh hosts."""

    def __init__(self, config: I3muxConfig):
        self.config = config
        self.bookkeeping_dir = config.bookkeeping_dir.rstrip("/")
        self.session_dir = config.session_dir.rstrip("/")

    # ------------------------------------------------------------------
    # Paths and command lines
    # ------------------------------------------------------------------

    def socket_path(self, socket_id: str) -> str:
        return f"{self.session_dir}/{socket_id}"

    def record_path(self, name: str) -> str:
        return f"{self.bookkeeping_dir}/sessions/{name}.json"

    def lock_path(self, name: str) -> str:
        return f"{self.bookkeeping_dir}/locks/{name}.lock"

    def ssh_argv(self, host: str, remote_command: str, tty: bool = False) -> List[str]:
        argv = ["ssh", *self.config.ssh_options()]
        if tty:
            argv.append("-t")
        return argv + [host, remote_command]

    def helper_command(self, *args: str) -> str:
        # The helper path is left unquoted so the remote shell expands '~'
        return " ".join([self.config.remote_helper, *(shlex.quote(a) for a in args)])

    async def _run(
        self,
        host: Optional[str],
        script: str,
        input_data: Optional[str] = None,
    ) -> str:
        """Run a shell snippet on a host and return its stdout.

        Raises:
            RemoteError: On non-zero exit (stderr kept verbatim) or exec failure
        """
        label = host or LOCAL_HOST
        cmd = self.ssh_argv(host, script) if host else ["bash", "-c", script]
        logger.debug(f"Running on {label}: {script}")

        try:
            with log_timing(f"{cmd[0]} on {label}", logger):
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
                stdout, stderr = await proc.communicate(
                    input_data.encode() if input_data is not None else None
                )
        except OSError as e:
            raise RemoteError(label, f"{cmd[0]}: {e.strerror or e}")

        if proc.returncode != 0:
            error_msg = stderr.decode(errors="replace")
            logger.error(f"Command on {label} failed ({proc.returncode}): {error_msg.strip()}")
            raise RemoteError(label, error_msg, proc.returncode)

        return stdout.decode(errors="replace")

    # ------------------------------------------------------------------
    # Multiplexer sessions
    # ------------------------------------------------------------------

    async def check_deps(self, host: Optional[str]) -> str:
        """Verify the multiplexer is installed on a host.

        Returns:
            Path of the multiplexer binary

        Raises:
            RemoteError: If it is missing or the host is unreachable
        """
        if host:
            script = self.helper_command("check-deps")
        else:
            mux = shlex.quote(self.config.multiplexer)
            script = (
                f"command -v {mux} || "
                f"{{ echo 'ERROR: {self.config.multiplexer} not found' >&2; exit 1; }}"
            )

        try:
            path = (await self._run(host, script)).strip()
        except RemoteError as e:
            e.suggestion = (
                f"Install {self.config.multiplexer} on {host or 'this machine'}"
                + (f" and the helper at {self.config.remote_helper}" if host else "")
            )
            raise

        logger.debug(f"{self.config.multiplexer} on {host or LOCAL_HOST}: {path}")
        return path

    async def helper_version(self, host: str) -> str:
        """Version reported by the remote helper. A mismatch is only a warning."""
        version = (await self._run(host, self.helper_command("version"))).strip()
        if version != self.config.expected_helper_version:
            logger.warning(
                f"Remote helper on {host} is version {version!r}, "
                f"expected {self.config.expected_helper_version!r}; consider updating it"
            )
        return version

    def attach(
        self,
        host: Optional[str],
        socket_id: str,
        command: Optional[List[str]] = None,
    ) -> List[str]:
        """Command line that attaches (creating if needed) a multiplexer session.

        The argv is run inside the terminal. Local sessions run the
        multiplexer directly; remote ones go through ssh and the helper.
        """
        if host:
            remote_cmd = self.helper_command("attach", socket_id)
            if command:
                remote_cmd += " -- " + shlex.join(command)
            return self.ssh_argv(host, remote_cmd, tty=True)

        shell = command or [os.environ.get("SHELL", "/bin/bash")]
        return [self.config.multiplexer, "-A", self.socket_path(socket_id), *shell]

    async def kill(self, host: Optional[str], socket_id: str) -> None:
        """Terminate one multiplexer session and remove its socket."""
        path = self.socket_path(socket_id)
        mux = self.config.multiplexer
        # Bracketed first letter so the pattern never matches the shell running it
        pattern = shlex.quote(f"[{mux[0]}]{mux[1:]} .*{path}( |$)")
        await self._run(host, f"pkill -f -- {pattern} || true; rm -f {shlex.quote(path)}")
        logger.info(f"Killed session {socket_id} on {host or LOCAL_HOST}")

    async def live_sockets(self, host: Optional[str]) -> Set[str]:
        """Names of multiplexer sockets currently present on a host."""
        if not host:
            found = set()
            try:
                with os.scandir(self.session_dir) as entries:
                    for entry in entries:
                        if entry.name.startswith("ws") and stat.S_ISSOCK(entry.stat().st_mode):
                            found.add(entry.name)
            except OSError as e:
                raise RemoteError(LOCAL_HOST, str(e))
            return found

        script = (
            f"for f in {shlex.quote(self.session_dir)}/ws*-*; do "
            f'[ -S "$f" ] && basename "$f"; done; true'
        )
        return {line.strip() for line in (await self._run(host, script)).splitlines() if line.strip()}

    async def cleanup_check(self, host: Optional[str], prefix: str, session_name: str) -> None:
        """Drop a session's bookkeeping if none of its ``prefix-*`` sockets remain."""
        if host:
            await self._run(host, self.helper_command("cleanup-check", prefix, session_name))
            return

        sockets = [s for s in await self.live_sockets(None) if s.startswith(f"{prefix}-")]
        if not sockets:
            await self.delete_session(None, session_name)

    # ------------------------------------------------------------------
    # Session records
    # ------------------------------------------------------------------

    async def detach(
        self,
        host: Optional[str],
        workspace: str,
        name: str,
        sockets: List[str],
    ) -> SessionRecord:
        """Record sockets as detached under ``name``. The sessions keep running."""
        record = SessionRecord(
            name=name,
            workspace=workspace,
            host=host or LOCAL_HOST,
            sockets=sorted(sockets),
        )
        await self.save_session(host, record)
        logger.info(f"Detached {len(sockets)} socket(s) as session '{name}' on {record.host}")
        return record

    async def save_session(self, host: Optional[str], record: SessionRecord) -> None:
        data = record.model_dump_json()

        if host:
            path = shlex.quote(self.record_path(record.name))
            tmp = shlex.quote(self.record_path(record.name) + ".tmp")
            sessions_dir = shlex.quote(f"{self.bookkeeping_dir}/sessions")
            await self._run(
                host,
                f"mkdir -p {sessions_dir} && cat > {tmp} && mv -f {tmp} {path}",
                input_data=data + "\n",
            )
            return

        record_file = Path(self.record_path(record.name))
        record_file.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=record_file.parent, prefix=".session-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(data + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.rename(temp_path, record_file)
        except OSError as e:
            if Path(temp_path).exists():
                os.unlink(temp_path)
            raise RemoteError(LOCAL_HOST, str(e))

    async def load_session(self, host: Optional[str], name: str) -> Optional[SessionRecord]:
        """Load a session record, or None if it does not exist."""
        for record in await self.list(host, name):
            if record.name == name:
                return record
        return None

    async def list(self, host: Optional[str], name: Optional[str] = None) -> List[SessionRecord]:
        """Session records on a host, sorted by name. Malformed records are skipped."""
        pattern = f"{name}.json" if name else "*.json"

        if host:
            script = (
                f"for f in {shlex.quote(self.bookkeeping_dir)}/sessions/{pattern}; do "
                f'[ -f "$f" ] && {{ cat "$f"; echo; }}; done; true'
            )
            blobs = (await self._run(host, script)).splitlines()
        else:
            blobs = []
            for path in sorted(Path(self.bookkeeping_dir, "sessions").glob(pattern)):
                try:
                    blobs.append(path.read_text())
                except OSError as e:
                    logger.warning(f"Cannot read session record {path}: {e}")

        records = []
        for blob in blobs:
            if not blob.strip():
                continue
            try:
                records.append(SessionRecord.model_validate(json.loads(blob)))
            except (ValueError, ValidationError) as e:
                logger.warning(f"Skipping malformed session record on {host or LOCAL_HOST}: {e}")

        return sorted(records, key=lambda r: r.name)

    async def delete_session(self, host: Optional[str], name: str) -> None:
        """Remove a session record and its lock file."""
        paths = [self.record_path(name), self.lock_path(name)]

        if host:
            await self._run(host, "rm -f " + " ".join(shlex.quote(p) for p in paths))
        else:
            for path in paths:
                try:
                    os.unlink(path)
                except FileNotFoundError:
                    pass
                except OSError as e:
                    raise RemoteError(LOCAL_HOST, str(e))

        logger.debug(f"Deleted session record '{name}' on {host or LOCAL_HOST}")
