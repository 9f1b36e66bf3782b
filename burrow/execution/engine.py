"""Remote command execution with ordered, persisted output.

Every remote command a workload runs goes through :class:`ExecutionEngine`.
It records a CommandExecution, streams the transport's output into
CommandLog rows with gap-free line numbers, and publishes each persisted
line on the log bus.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import aclosing
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from loguru import logger

from burrow.core.exceptions import ConnectivityError, RemoteCommandError
from burrow.core.runtime import RuntimeConfig
from burrow.core.shell import quote, redact
from burrow.execution.events import LogBus
from burrow.models import CommandExecution, CommandLog, ExecutionKind, LogLine, LogStream
from burrow.remote.ssh import ExitStatus, SshClient, SshClientFactory, ssh_client_for


if TYPE_CHECKING:
    from burrow.models import Workload
    from burrow.store import ExecutionRepository


LineCallback = Callable[[str], None]

CONNECTIVITY_EXIT = -1


def _now() -> datetime:
    return datetime.now(UTC)


class ExecutionEngine:
    """Runs commands on a workload's server and records them.

    Args:
        executions: Repository the executions and log lines are written to.
        ssh_factory: Builds the transport for a workload. Defaults to the
            workload's own keypair and address.
        bus: Log bus receiving each persisted line.
        runtime: Timeouts applied when a call does not pass its own.
    """

    def __init__(
        self,
        executions: ExecutionRepository,
        ssh_factory: SshClientFactory | None = None,
        bus: LogBus | None = None,
        runtime: RuntimeConfig | None = None,
    ) -> None:
        self.executions = executions
        self.bus = bus or LogBus()
        self.runtime = runtime or RuntimeConfig()
        self._ssh_factory = ssh_factory or self._default_factory

    def _default_factory(self, workload: Workload) -> SshClient:
        return ssh_client_for(workload, connect_timeout=self.runtime.ssh_connect_timeout)

    def ssh(self, workload: Workload) -> SshClient:
        """Transport for a workload, for work that is not recorded (e.g. probes)."""
        return self._ssh_factory(workload)

    async def wait_for_ssh(self, workload: Workload) -> None:
        """Probe the workload's server until it accepts SSH.

        Raises:
            ConnectivityError: If the server is still unreachable.
        """
        await self.ssh(workload).wait_until_ready(
            max_attempts=self.runtime.ssh_wait_attempts,
            interval=self.runtime.ssh_wait_interval,
        )

    async def start(
        self,
        workload: Workload,
        command: str,
        *,
        kind: ExecutionKind = ExecutionKind.EXEC,
        category: str | None = None,
        tag: str | None = None,
        session_id: int | None = None,
    ) -> CommandExecution:
        """Persist a new, not yet started execution."""
        if workload.id is None:
            raise ValueError("Workload must be saved before running commands")
        execution = CommandExecution(
            workload_type=workload.workload_type,
            workload_id=workload.id,
            session_id=session_id,
            command=command,
            kind=kind,
            category=category,
            tag=tag,
        )
        return await self.executions.create(execution)

    async def append(
        self,
        execution: CommandExecution,
        content: str,
        stream: LogStream = LogStream.OUTPUT,
        on_line: LineCallback | None = None,
    ) -> int:
        """Persist and publish text as one or more log lines.

        Multi-line text is split; blank lines are dropped. Numbering continues
        from the execution's last persisted line.

        Returns:
            Number of lines appended.
        """
        if execution.id is None:
            raise ValueError("Execution must be saved before logging")
        appended = 0
        for content_line in content.split("\n"):
            if not content_line.strip():
                continue
            if not execution.lines:
                base = await self.executions.last_line_number(execution.id)
            else:
                base = execution.last_line_number
            log = CommandLog(
                execution_id=execution.id,
                line_number=base + 1,
                stream=stream,
                content=content_line,
            )
            await self.executions.append_log(log)
            execution.lines.append(log)
            appended += 1
            logger.debug(content_line, source=execution.category or execution.tag or execution.kind)
            if on_line is not None:
                on_line(content_line)
            self.bus.publish(
                LogLine(
                    workload_type=execution.workload_type,
                    workload_id=execution.workload_id,
                    session_id=execution.session_id,
                    execution_id=execution.id,
                    line_number=log.line_number,
                    stream=stream,
                    content=content_line,
                )
            )
        return appended

    async def run(
        self,
        execution: CommandExecution,
        workload: Workload,
        *,
        command: str | None = None,
        on_line: LineCallback | None = None,
        timeout: float | None = None,
        raise_on_error: bool = False,
    ) -> CommandExecution:
        """Run an already persisted execution over SSH.

        Args:
            execution: Execution to run.
            workload: Owner of the server the command runs on.
            command: Command actually sent, when it differs from the recorded
                one (e.g. to keep secrets out of the store).
            on_line: Called with each output line after it is persisted.
            timeout: Seconds before the remote process is killed.
            raise_on_error: Raise instead of recording failure as data.

        Returns:
            The execution with ``exit_code`` and ``finished_at`` set.

        Raises:
            ConnectivityError: If the host is unreachable and
                ``raise_on_error`` is set.
            RemoteCommandError: If the command exits nonzero and
                ``raise_on_error`` is set.
        """
        execution.started_at = _now()
        await self.executions.update(execution)
        try:
            ssh = self._ssh_factory(workload)
            stream = ssh.execute(
                command or execution.command,
                timeout=timeout or self.runtime.command_timeout,
            )
            async with aclosing(stream):
                async for item in stream:
                    if isinstance(item, ExitStatus):
                        execution.exit_code = int(item)
                    else:
                        await self.append(execution, item, on_line=on_line)
        except ConnectivityError as e:
            execution.exit_code = CONNECTIVITY_EXIT
            await self.append(execution, str(e), stream=LogStream.STDERR, on_line=on_line)
            logger.warning(
                "Remote command could not connect",
                workload=workload.slug,
                execution_id=execution.id,
                error=str(e),
            )
            if raise_on_error:
                raise
            return execution
        finally:
            if execution.exit_code is None:
                execution.exit_code = CONNECTIVITY_EXIT
            execution.finished_at = _now()
            await self.executions.update(execution)

        if raise_on_error and execution.exit_code != 0:
            raise RemoteCommandError(
                f"Command failed with exit code {execution.exit_code}: {execution.command}",
                exit_code=execution.exit_code,
                output=execution.output,
            )
        return execution

    async def exec(
        self,
        workload: Workload,
        command: str,
        *,
        kind: ExecutionKind = ExecutionKind.EXEC,
        category: str | None = None,
        tag: str | None = None,
        session_id: int | None = None,
        on_line: LineCallback | None = None,
        timeout: float | None = None,
        raise_on_error: bool = False,
        secrets: Sequence[str | None] = (),
    ) -> CommandExecution:
        """Record and run one remote command.

        Nonzero exit is returned as data unless ``raise_on_error`` is set.
        Each of ``secrets`` is masked in the recorded command; the unmasked
        command is what runs.
        """
        recorded = redact(command, *secrets)
        execution = await self.start(
            workload,
            recorded,
            kind=kind,
            category=category,
            tag=tag,
            session_id=session_id,
        )
        return await self.run(
            execution,
            workload,
            command=command if recorded != command else None,
            on_line=on_line,
            timeout=timeout,
            raise_on_error=raise_on_error,
        )

    async def container_exec(
        self,
        workload: Workload,
        command: str,
        container: str,
        on_line: LineCallback | None = None,
    ) -> CommandExecution:
        """Run a command inside a container on the workload's server."""
        return await self.exec(
            workload,
            f"docker exec {quote(container)} sh -c {quote(command)}",
            on_line=on_line,
        )

    async def log_step(self, workload: Workload, category: str) -> CommandExecution:
        """Record a step marker for work that runs outside the server.

        Markers have the category as command and no exit code.
        """
        execution = await self.start(workload, category, category=category)
        logger.info("Step", workload=workload.slug, step=category)
        return execution
