"""Tests for the SQLite repositories."""
import sqlite3

import pytest

from burrow.models import (
    ClaudeSession,
    CommandExecution,
    CommandLog,
    Release,
    ReleaseState,
    Sandbox,
    SandboxState,
)


class TestWorkloadRepository:
    """Tests for WorkloadRepository."""

    async def test_create_and_get_sandbox(self, workloads):
        sandbox = await workloads.create(Sandbox(exposed=True))

        loaded = await workloads.get_sandbox(sandbox.id)

        assert loaded is not None
        assert loaded.id == sandbox.id
        assert loaded.slug == sandbox.slug
        assert loaded.exposed is True
        assert loaded.branch == f"burrow-sandbox/{sandbox.slug}"
        assert loaded.access_token == sandbox.access_token

    async def test_save_updates_fields(self, workloads):
        sandbox = await workloads.create(Sandbox())
        sandbox.transition(SandboxState.PROVISIONING)
        sandbox.server_ip = "203.0.113.10"
        sandbox.last_error = "boom"
        await workloads.save(sandbox)

        loaded = await workloads.get_sandbox_by_slug(sandbox.slug)

        assert loaded.state == SandboxState.PROVISIONING
        assert loaded.server_ip == "203.0.113.10"
        assert loaded.last_error == "boom"

    async def test_save_requires_id(self, workloads):
        with pytest.raises(ValueError):
            await workloads.save(Sandbox())

    async def test_missing_returns_none(self, workloads):
        assert await workloads.get_sandbox(999) is None
        assert await workloads.get_release(999) is None
        assert await workloads.get_sandbox_by_slug("abcdef") is None

    async def test_slug_is_unique(self, workloads):
        await workloads.create(Sandbox(slug="abc123"))

        with pytest.raises(sqlite3.IntegrityError):
            await workloads.create(Sandbox(slug="abc123"))

    async def test_list_sandboxes_hides_stopped(self, workloads):
        live = await workloads.create(Sandbox())
        stopped = await workloads.create(Sandbox(state=SandboxState.STOPPED))

        assert [s.id for s in await workloads.list_sandboxes()] == [live.id]
        assert [s.id for s in await workloads.list_sandboxes(include_stopped=True)] == [live.id, stopped.id]

    async def test_latest_release_skips_torn_down(self, workloads):
        older = await workloads.create(Release(environment="production"))
        await workloads.create(Release(environment="production", state=ReleaseState.TORN_DOWN))
        await workloads.create(Release(environment="staging"))

        latest = await workloads.latest_release("production")

        assert latest.id == older.id
        assert await workloads.latest_release("preview") is None

    async def test_live_slugs(self, workloads):
        sandbox = await workloads.create(Sandbox())
        release = await workloads.create(Release())
        await workloads.create(Sandbox(state=SandboxState.STOPPED))
        await workloads.create(Release(state=ReleaseState.TORN_DOWN))

        assert await workloads.live_slugs() == {sandbox.slug, release.slug}


class TestExecutionRepository:
    """Tests for ExecutionRepository."""

    async def test_logs_round_trip_in_line_order(self, executions, make_sandbox):
        sandbox = await make_sandbox()
        execution = await executions.create(
            CommandExecution(workload_type="sandbox", workload_id=sandbox.id, command="ls", category="clone")
        )
        for n, content in [(2, "b"), (1, "a")]:
            await executions.append_log(CommandLog(execution_id=execution.id, line_number=n, content=content))

        loaded = await executions.get(execution.id)

        assert loaded.output == "a\nb"
        assert await executions.last_line_number(execution.id) == 2

    async def test_duplicate_line_number_rejected(self, executions, make_sandbox):
        sandbox = await make_sandbox()
        execution = await executions.create(
            CommandExecution(workload_type="sandbox", workload_id=sandbox.id, command="ls")
        )
        await executions.append_log(CommandLog(execution_id=execution.id, line_number=1, content="a"))

        with pytest.raises(sqlite3.IntegrityError):
            await executions.append_log(CommandLog(execution_id=execution.id, line_number=1, content="b"))

    async def test_last_line_number_empty(self, executions):
        assert await executions.last_line_number(12345) == 0

    async def test_list_for_workload_steps_only(self, executions, make_sandbox):
        sandbox = await make_sandbox()
        step = await executions.create(
            CommandExecution(workload_type="sandbox", workload_id=sandbox.id, command="x", category="server")
        )
        await executions.create(CommandExecution(workload_type="sandbox", workload_id=sandbox.id, command="ls"))

        steps = await executions.list_for_workload("sandbox", sandbox.id, steps_only=True)
        everything = await executions.list_for_workload("sandbox", sandbox.id)

        assert [e.id for e in steps] == [step.id]
        assert len(everything) == 2

    async def test_update_persists_exit_code(self, executions, make_sandbox):
        sandbox = await make_sandbox()
        execution = await executions.create(
            CommandExecution(workload_type="sandbox", workload_id=sandbox.id, command="ls")
        )
        execution.exit_code = 3
        await executions.update(execution)

        assert (await executions.get(execution.id)).exit_code == 3


class TestSessionRepository:
    """Tests for SessionRepository."""

    async def test_create_get_and_save(self, sessions, make_sandbox):
        sandbox = await make_sandbox()
        session = await sessions.create(ClaudeSession(sandbox_id=sandbox.id, title="Fix login"))
        session.git_diff = "diff --git a b"
        await sessions.save(session)

        loaded = await sessions.get(session.id)

        assert loaded.session_uuid == session.session_uuid
        assert loaded.git_diff == "diff --git a b"
        assert [s.id for s in await sessions.list_for_sandbox(sandbox.id)] == [session.id]

    async def test_resumable_after_successful_run(self, sessions, executions, make_sandbox):
        sandbox = await make_sandbox()
        session = await sessions.create(ClaudeSession(sandbox_id=sandbox.id))
        assert not await sessions.resumable(session.id)

        await executions.create(
            CommandExecution(
                workload_type="sandbox", workload_id=sandbox.id, session_id=session.id, command="claude", exit_code=1
            )
        )
        assert not await sessions.resumable(session.id)

        await executions.create(
            CommandExecution(
                workload_type="sandbox", workload_id=sandbox.id, session_id=session.id, command="claude", exit_code=0
            )
        )
        assert await sessions.resumable(session.id)
