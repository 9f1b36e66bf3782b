"""Tests for job entry points."""
import pytest

from burrow import jobs
from burrow.jobs import JobContext, JobNotFoundError, job_context
from burrow.models import SandboxState


@pytest.fixture
def context(settings, db, workloads, executions, sessions, bus, engine, tunnels, fake_compute) -> JobContext:
    return JobContext(
        settings=settings,
        db=db,
        workloads=workloads,
        executions=executions,
        sessions=sessions,
        bus=bus,
        engine=engine,
        tunnels=tunnels,
        compute=fake_compute,
    )


class TestJobs:
    async def test_provision_then_deprovision_sandbox(self, context, make_sandbox, workloads):
        sandbox = await make_sandbox()

        await jobs.provision_sandbox(sandbox.id, context)
        assert (await workloads.get_sandbox(sandbox.id)).state == SandboxState.RUNNING

        await jobs.deprovision_sandbox(sandbox.id, context)
        assert (await workloads.get_sandbox(sandbox.id)).state == SandboxState.STOPPED

    @pytest.mark.parametrize(
        "job",
        [jobs.provision_sandbox, jobs.deprovision_sandbox, jobs.provision_release, jobs.teardown_release],
    )
    async def test_missing_workload(self, context, job):
        with pytest.raises(JobNotFoundError, match="999 not found"):
            await job(999, context)

    async def test_run_claude_missing_session(self, context):
        with pytest.raises(JobNotFoundError, match="Claude session 42 not found"):
            await jobs.run_claude(42, "hello", context)

    async def test_run_claude(self, context, make_sandbox, fake_ssh):
        sandbox = await make_sandbox(state=SandboxState.RUNNING, server_ip="203.0.113.10")
        session = await context.session_runner().create_session(sandbox)
        fake_ssh.on("--dangerously-skip-permissions", ["done"])

        execution = await jobs.run_claude(session.id, "hello", context)

        assert execution.success
        assert execution.session_id == session.id


async def test_job_context_opens_store(settings, tmp_path):
    settings = settings.model_copy(update={"database_path": str(tmp_path / "burrow.db")})

    async with job_context(settings) as ctx:
        assert await ctx.workloads.list_sandboxes() == []
        assert ctx.tunnels.configured

    assert (tmp_path / "burrow.db").exists()
