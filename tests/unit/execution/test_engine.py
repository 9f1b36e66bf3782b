"""Tests for ExecutionEngine recording and line numbering."""
import pytest

from burrow.core.exceptions import ConnectivityError, RemoteCommandError
from burrow.execution.engine import ExecutionEngine
from burrow.models import LogLine, LogStream, Sandbox
from burrow.remote.ssh import ExitStatus


class UnreachableSsh:
    async def execute(self, command, cwd=None, timeout=None):
        raise ConnectivityError("SSH connection to 203.0.113.10 failed: timed out")
        yield  # pragma: no cover


class ClosableSsh:
    def __init__(self):
        self.closed = False

    async def execute(self, command, cwd=None, timeout=None):
        try:
            yield "one"
            yield "two"
            yield ExitStatus(0)
        finally:
            self.closed = True


class TestExec:
    """Tests for ExecutionEngine.exec."""

    async def test_lines_are_numbered_from_one_without_gaps(self, engine, fake_ssh, executions, make_sandbox):
        sandbox = await make_sandbox(server_ip="203.0.113.10")
        fake_ssh.on("build", ["step 1", "", "   ", "step 2", "step 3"])

        execution = await engine.exec(sandbox, "build", category="docker")

        stored = await executions.get(execution.id)
        assert [line.line_number for line in stored.lines] == [1, 2, 3]
        assert stored.output == "step 1\nstep 2\nstep 3"
        assert stored.exit_code == 0
        assert stored.category == "docker"
        assert stored.started_at is not None
        assert stored.finished_at is not None

    async def test_nonzero_exit_is_recorded_not_raised(self, engine, fake_ssh, make_sandbox):
        sandbox = await make_sandbox()
        fake_ssh.on("false", ["nope"], exit_code=1)

        execution = await engine.exec(sandbox, "false")

        assert execution.failed
        assert execution.exit_code == 1

    async def test_raise_on_error(self, engine, fake_ssh, executions, make_sandbox):
        sandbox = await make_sandbox()
        fake_ssh.on("false", ["nope"], exit_code=2)

        with pytest.raises(RemoteCommandError) as exc_info:
            await engine.exec(sandbox, "false", raise_on_error=True)

        assert exc_info.value.exit_code == 2
        assert exc_info.value.output == "nope"
        recorded = await executions.list_for_workload("sandbox", sandbox.id)
        assert recorded[0].exit_code == 2

    async def test_connectivity_failure_records_exit_minus_one(self, executions, bus, make_sandbox):
        engine = ExecutionEngine(executions, ssh_factory=lambda w: UnreachableSsh(), bus=bus)
        sandbox = await make_sandbox()

        execution = await engine.exec(sandbox, "ls")

        stored = await executions.get(execution.id)
        assert stored.exit_code == -1
        assert stored.lines[0].stream == LogStream.STDERR
        assert "timed out" in stored.lines[0].content

        with pytest.raises(ConnectivityError):
            await engine.exec(sandbox, "ls", raise_on_error=True)

    async def test_stream_closed_when_line_handler_fails(self, executions, bus, make_sandbox):
        ssh = ClosableSsh()
        engine = ExecutionEngine(executions, ssh_factory=lambda w: ssh, bus=bus)
        sandbox = await make_sandbox()

        def explode(line):
            raise RuntimeError("subscriber gone")

        with pytest.raises(RuntimeError):
            await engine.exec(sandbox, "tail -f log", on_line=explode)

        assert ssh.closed
        execution = (await executions.list_for_workload("sandbox", sandbox.id))[-1]
        assert execution.exit_code == -1
        assert execution.finished_at is not None

    async def test_unsaved_workload_is_rejected(self, engine):
        with pytest.raises(ValueError, match="saved"):
            await engine.exec(Sandbox(), "ls")

    async def test_container_exec_wraps_command(self, engine, fake_ssh, make_sandbox):
        sandbox = await make_sandbox()

        await engine.container_exec(sandbox, "echo 'hi'", "burrow-sandbox-x-app")

        assert fake_ssh.commands[-1] == "docker exec burrow-sandbox-x-app sh -c 'echo '\"'\"'hi'\"'\"''"

    async def test_secrets_are_masked_in_record_only(self, engine, fake_ssh, executions, make_sandbox):
        sandbox = await make_sandbox()
        fake_ssh.on("gh auth", ["denied"], exit_code=1)

        with pytest.raises(RemoteCommandError) as exc_info:
            await engine.exec(sandbox, "echo ghp_abc | gh auth login", secrets=("ghp_abc", None), raise_on_error=True)

        assert fake_ssh.commands[-1] == "echo ghp_abc | gh auth login"
        stored = (await executions.list_for_workload("sandbox", sandbox.id))[-1]
        assert stored.command == "echo **** | gh auth login"
        assert "ghp_abc" not in str(exc_info.value)


class TestAppend:
    async def test_numbering_continues_across_appends(self, engine, executions, make_sandbox):
        sandbox = await make_sandbox()
        execution = await engine.start(sandbox, "claude -p")

        await engine.append(execution, "first\nsecond")
        await engine.append(execution, "\nthird\n")

        stored = await executions.get(execution.id)
        assert [(line.line_number, line.content) for line in stored.lines] == [
            (1, "first"),
            (2, "second"),
            (3, "third"),
        ]

    async def test_numbering_resumes_from_store(self, engine, executions, make_sandbox):
        sandbox = await make_sandbox()
        execution = await engine.start(sandbox, "ls")
        await engine.append(execution, "one")

        reloaded = await executions.get(execution.id, with_logs=False)
        await engine.append(reloaded, "two")

        assert [line.line_number for line in (await executions.get(execution.id)).lines] == [1, 2]

    async def test_lines_are_published_in_order(self, engine, bus, make_sandbox):
        sandbox = await make_sandbox()
        received: list[LogLine] = []
        bus.subscribe(received.append, workload_type="sandbox", workload_id=sandbox.id)
        execution = await engine.start(sandbox, "ls")

        appended = await engine.append(execution, "a\nb", on_line=lambda line: None)

        assert appended == 2
        assert [(line.line_number, line.content) for line in received] == [(1, "a"), (2, "b")]
        assert received[0].execution_id == execution.id


class TestLogStep:
    async def test_marker_has_no_exit_code(self, engine, fake_ssh, executions, make_sandbox):
        sandbox = await make_sandbox()

        marker = await engine.log_step(sandbox, "server")

        stored = await executions.get(marker.id)
        assert stored.command == "server"
        assert stored.category == "server"
        assert stored.exit_code is None
        assert fake_ssh.commands == []
