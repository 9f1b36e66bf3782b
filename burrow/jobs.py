"""Entry points for provisioning and session work.

Each job loads its workload by id and runs one operation to completion.
Jobs open their own store connection unless a :class:`JobContext` is
passed in, so they can run from the CLI or from any async task runner.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from burrow.config import load_settings
from burrow.core.exceptions import BurrowError
from burrow.core.runtime import RuntimeConfig
from burrow.execution.engine import ExecutionEngine
from burrow.execution.events import LogBus
from burrow.provisioners.release import ReleaseProvisioner
from burrow.provisioners.sandbox import SandboxProvisioner
from burrow.sessions.runner import SessionRunner
from burrow.store import Database, ExecutionRepository, SessionRepository, WorkloadRepository
from burrow.tunnel.manager import TunnelManager


if TYPE_CHECKING:
    from burrow.core.types import Settings
    from burrow.models import CommandExecution, Release, Sandbox
    from burrow.providers.base import ComputeClient


class JobNotFoundError(BurrowError):
    """The workload or session a job refers to does not exist."""


@dataclass
class JobContext:
    """Store, engine and managers shared by the jobs of one process."""

    settings: Settings
    db: Database
    workloads: WorkloadRepository
    executions: ExecutionRepository
    sessions: SessionRepository
    bus: LogBus
    engine: ExecutionEngine
    tunnels: TunnelManager
    compute: ComputeClient | None = None

    def sandbox_provisioner(self) -> SandboxProvisioner:
        return SandboxProvisioner(self.settings, self.workloads, self.engine, self.tunnels, self.compute)

    def release_provisioner(self) -> ReleaseProvisioner:
        return ReleaseProvisioner(self.settings, self.workloads, self.engine, self.tunnels, self.compute)

    def session_runner(self) -> SessionRunner:
        return SessionRunner(self.settings, self.engine, self.sessions, self.workloads)

    async def sandbox(self, sandbox_id: int) -> Sandbox:
        sandbox = await self.workloads.get_sandbox(sandbox_id)
        if sandbox is None:
            raise JobNotFoundError(f"Sandbox {sandbox_id} not found")
        return sandbox

    async def release(self, release_id: int) -> Release:
        release = await self.workloads.get_release(release_id)
        if release is None:
            raise JobNotFoundError(f"Release {release_id} not found")
        return release


@asynccontextmanager
async def job_context(
    settings: Settings | None = None,
    runtime: RuntimeConfig | None = None,
    bus: LogBus | None = None,
) -> AsyncIterator[JobContext]:
    """Open the store and wire the engine, tunnel manager and repositories.

    Args:
        settings: Loaded settings. Read with :func:`load_settings` when omitted.
        runtime: Timeouts. Read from ``BURROW_*`` variables when omitted.
        bus: Log bus to publish lines on, e.g. one the CLI subscribes to.
    """
    settings = settings or load_settings()
    bus = bus or LogBus()
    async with Database(settings.database_path) as db:
        workloads = WorkloadRepository(db)
        executions = ExecutionRepository(db)
        engine = ExecutionEngine(executions, bus=bus, runtime=runtime or RuntimeConfig())
        try:
            yield JobContext(
                settings=settings,
                db=db,
                workloads=workloads,
                executions=executions,
                sessions=SessionRepository(db),
                bus=bus,
                engine=engine,
                tunnels=TunnelManager(settings, engine, workloads),
            )
        finally:
            await bus.cleanup()


@asynccontextmanager
async def _context(context: JobContext | None) -> AsyncIterator[JobContext]:
    if context is not None:
        yield context
        return
    async with job_context() as opened:
        yield opened


async def provision_sandbox(sandbox_id: int, context: JobContext | None = None) -> Sandbox:
    async with _context(context) as ctx:
        sandbox = await ctx.sandbox(sandbox_id)
        logger.info("Job started", job="provision_sandbox", workload=sandbox.slug)
        return await ctx.sandbox_provisioner().provision(sandbox)


async def deprovision_sandbox(sandbox_id: int, context: JobContext | None = None) -> Sandbox:
    async with _context(context) as ctx:
        sandbox = await ctx.sandbox(sandbox_id)
        logger.info("Job started", job="deprovision_sandbox", workload=sandbox.slug)
        return await ctx.sandbox_provisioner().deprovision(sandbox)


async def provision_release(release_id: int, context: JobContext | None = None) -> Release:
    async with _context(context) as ctx:
        release = await ctx.release(release_id)
        logger.info("Job started", job="provision_release", workload=release.slug)
        return await ctx.release_provisioner().provision(release)


async def redeploy_release(release_id: int, context: JobContext | None = None) -> Release:
    async with _context(context) as ctx:
        release = await ctx.release(release_id)
        logger.info("Job started", job="redeploy_release", workload=release.slug)
        return await ctx.release_provisioner().redeploy(release)


async def teardown_release(release_id: int, context: JobContext | None = None) -> Release:
    async with _context(context) as ctx:
        release = await ctx.release(release_id)
        logger.info("Job started", job="teardown_release", workload=release.slug)
        return await ctx.release_provisioner().teardown(release)


async def run_claude(session_id: int, prompt: str, context: JobContext | None = None) -> CommandExecution:
    """Run one prompt in an existing claude session.

    Raises:
        JobNotFoundError: If the session does not exist.
    """
    async with _context(context) as ctx:
        session = await ctx.sessions.get(session_id)
        if session is None:
            raise JobNotFoundError(f"Claude session {session_id} not found")
        logger.info("Job started", job="run_claude", session=session.session_uuid)
        return await ctx.session_runner().run(session, prompt)
