"""SSH transport for remote command execution.

Runs the system ``ssh`` binary through asyncio.create_subprocess_exec. Each
call opens its own session with the workload's private key written to a
private temporary file.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import os
import posixpath
import tempfile
import time
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

from loguru import logger

from burrow.core.exceptions import (
    ConnectivityError,
    RemoteCommandError,
    SshAuthenticationError,
)
from burrow.core.naming import DEFAULT_USER
from burrow.core.shell import in_dir, quote


if TYPE_CHECKING:
    from burrow.models import Workload


SSH_FAILURE_EXIT = 255
TIMEOUT_EXIT = 124
STREAM_LIMIT = 10 * 1024 * 1024  # claude stream-json lines can be megabytes
AUTH_FAILURE_MARKERS = ("Permission denied", "Too many authentication failures")


class ExitStatus(int):
    """Final item yielded by :meth:`SshClient.execute`."""


class CommandResult(NamedTuple):
    exit_code: int
    output: str


class SshClient:
    """Runs commands on one host as one user.

    Args:
        host: IP address or hostname.
        private_key: Private key content (not a path).
        user: Login user.
        port: SSH port.
        connect_timeout: Seconds to wait for the TCP/SSH handshake.
    """

    def __init__(
        self,
        host: str,
        private_key: str,
        user: str = DEFAULT_USER,
        port: int = 22,
        connect_timeout: int = 10,
    ) -> None:
        self.host = host
        self.user = user
        self.port = port
        self.connect_timeout = connect_timeout
        self._private_key = private_key

    def _ssh_args(self, key_path: str, command: str) -> list[str]:
        return [
            "ssh",
            "-i", key_path,
            "-p", str(self.port),
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", "BatchMode=yes",
            "-o", "LogLevel=ERROR",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            f"{self.user}@{self.host}",
            command,
        ]

    def _write_key(self) -> str:
        fd, path = tempfile.mkstemp(prefix="burrow-key-")
        with os.fdopen(fd, "w") as f:
            f.write(self._private_key if self._private_key.endswith("\n") else self._private_key + "\n")
        os.chmod(path, 0o600)
        return path

    def _connectivity_error(self, last_lines: list[str]) -> ConnectivityError:
        detail = last_lines[-1] if last_lines else "no output"
        if any(marker in line for line in last_lines for marker in AUTH_FAILURE_MARKERS):
            return SshAuthenticationError(
                f"SSH authentication failed for {self.user}@{self.host}: {detail}"
            )
        return ConnectivityError(f"SSH connection to {self.host} failed: {detail}")

    async def execute(
        self,
        command: str,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[str | ExitStatus]:
        """Run a command, streaming merged stdout/stderr lines.

        Args:
            command: Shell command for the remote login shell.
            cwd: Remote working directory.
            timeout: Seconds before the process is killed.

        Yields:
            Output lines without trailing newline, then one ExitStatus.
            A killed process reports exit status 124.

        Raises:
            ConnectivityError: If ssh itself failed (exit status 255).
            SshAuthenticationError: If the host rejected the key.
        """
        full_command = in_dir(cwd, command) if cwd else command
        key_path = self._write_key()
        deadline = time.monotonic() + timeout if timeout else None
        recent: list[str] = []
        try:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *self._ssh_args(key_path, full_command),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    limit=STREAM_LIMIT,
                )
            except OSError as e:
                raise ConnectivityError(f"Cannot start ssh: {e}") from e

            if proc.stdout is None:
                raise ConnectivityError("Failed to capture ssh output")

            timed_out = False
            drained = False
            try:
                while True:
                    if deadline is not None:
                        remaining = deadline - time.monotonic()
                        if remaining <= 0:
                            raise TimeoutError
                        raw = await asyncio.wait_for(proc.stdout.readline(), remaining)
                    else:
                        raw = await proc.stdout.readline()
                    if not raw:
                        break
                    line = raw.decode(errors="replace").rstrip("\r\n")
                    recent = (recent + [line])[-5:]
                    yield line
                drained = True
            except TimeoutError:
                timed_out = True
                logger.warning("Remote command timed out", host=self.host, timeout=timeout)
            finally:
                if not drained and proc.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                await proc.wait()

            if timed_out:
                yield ExitStatus(TIMEOUT_EXIT)
                return
            if proc.returncode == SSH_FAILURE_EXIT:
                raise self._connectivity_error(recent)
            yield ExitStatus(proc.returncode or 0)
        finally:
            Path(key_path).unlink(missing_ok=True)

    async def run(
        self,
        command: str,
        cwd: str | None = None,
        timeout: float | None = None,
        raise_on_error: bool = True,
    ) -> CommandResult:
        """Run a command and collect its output.

        Raises:
            RemoteCommandError: If the command exits nonzero and
                ``raise_on_error`` is set.
            ConnectivityError: If the host cannot be reached.
        """
        lines: list[str] = []
        exit_code = 0
        async for item in self.execute(command, cwd=cwd, timeout=timeout):
            if isinstance(item, ExitStatus):
                exit_code = int(item)
            else:
                lines.append(item)
        output = "\n".join(lines).strip()
        if raise_on_error and exit_code != 0:
            raise RemoteCommandError(
                f"Command failed (exit code: {exit_code}): {command}",
                exit_code=exit_code,
                output=output,
            )
        return CommandResult(exit_code, output)

    async def interactive(self) -> int:
        """Open a login shell on the current terminal and return its exit status."""
        key_path = self._write_key()
        try:
            args = self._ssh_args(key_path, "")[:-1]
            proc = await asyncio.create_subprocess_exec(*args[:1], "-t", *args[1:])
            return await proc.wait()
        finally:
            Path(key_path).unlink(missing_ok=True)

    async def available(self) -> bool:
        try:
            result = await self.run("echo ok", timeout=self.connect_timeout + 5, raise_on_error=False)
        except ConnectivityError:
            return False
        return result.exit_code == 0 and result.output.strip() == "ok"

    async def wait_until_ready(self, max_attempts: int = 60, interval: float = 5) -> bool:
        """Probe until the host accepts SSH.

        Raises:
            ConnectivityError: If the host is still unreachable.
        """
        for attempt in range(max_attempts):
            if await self.available():
                return True
            logger.debug(
                "Waiting for SSH",
                host=self.host,
                attempt=attempt + 1,
                max_attempts=max_attempts,
            )
            await asyncio.sleep(interval)
        raise ConnectivityError(f"SSH not available after {max_attempts} attempts")

    async def read_file(self, remote_path: str) -> str | None:
        """Remote file content, or None if it cannot be read."""
        result = await self.run(f"cat {quote(remote_path)}", raise_on_error=False)
        return result.output if result.exit_code == 0 else None

    async def write_file(self, remote_path: str, content: str, mode: str = "0644") -> None:
        """Write content to a remote file through ``base64 -d``.

        Raises:
            RemoteCommandError: If any step fails.
        """
        encoded = base64.b64encode(content.encode()).decode()
        directory = posixpath.dirname(remote_path) or "."
        await self.run(
            f"mkdir -p {quote(directory)} && "
            f"echo {quote(encoded)} | base64 -d > {quote(remote_path)} && "
            f"chmod {quote(mode)} {quote(remote_path)}"
        )


SshClientFactory = Callable[["Workload"], SshClient]


def ssh_client_for(workload: Workload, connect_timeout: int = 10) -> SshClient:
    """Client for a workload's server using its own keypair.

    Raises:
        ConnectivityError: If the workload has no server address or key yet.
    """
    if not workload.server_ip or not workload.ssh_private_key:
        raise ConnectivityError(f"Workload {workload.slug} has no reachable server")
    return SshClient(
        host=workload.server_ip,
        private_key=workload.ssh_private_key,
        connect_timeout=connect_timeout,
    )
