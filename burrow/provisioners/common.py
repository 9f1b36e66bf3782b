"""Steps shared by the sandbox and release provisioners."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from loguru import logger

from burrow.core import naming
from burrow.core.shell import join, quote
from burrow.providers import cloud_init
from burrow.remote.keys import generate_keypair


if TYPE_CHECKING:
    from burrow.core.types import GitConfig, Settings
    from burrow.execution.engine import ExecutionEngine
    from burrow.models import CommandExecution, ReleaseState, SandboxState, Workload
    from burrow.providers.base import ComputeClient
    from burrow.providers.types import FirewallRule, Server
    from burrow.store import WorkloadRepository
    from burrow.tunnel.manager import TunnelManager


WORKSPACE = f"/home/{naming.DEFAULT_USER}/workspace"
CLONE_TIMEOUT = 120


def repo_sync_command(git: GitConfig, branch: str, workspace_exists: bool) -> tuple[str, str]:
    """Command bringing the workspace to ``branch``.

    Returns:
        ``("pull", ...)`` when the workspace already holds a clone,
        otherwise ``("clone", ...)``.
    """
    if workspace_exists:
        b = quote(branch)
        return (
            "pull",
            f"cd {WORKSPACE} && git fetch origin && git checkout {b} && git pull origin {b}",
        )
    return ("clone", f"git clone --branch {quote(branch)} {quote(git.clone_url())} {WORKSPACE}")


class Provisioner:
    """Base for provisioners: state bookkeeping and compute resources.

    Args:
        settings: Loaded settings.
        workloads: Repository the workload state is saved to.
        engine: Runs and records every remote command.
        tunnels: Tunnel manager for publishing the workload.
        compute: Compute client. Built from ``settings.compute`` when omitted.
    """

    def __init__(
        self,
        settings: Settings,
        workloads: WorkloadRepository,
        engine: ExecutionEngine,
        tunnels: TunnelManager,
        compute: ComputeClient | None = None,
    ):
        self.settings = settings
        self.workloads = workloads
        self.engine = engine
        self.tunnels = tunnels
        self._compute = compute

    @property
    def compute(self) -> ComputeClient:
        if self._compute is None:
            self._compute = self.settings.compute.client()
        return self._compute

    async def _transition(self, workload: Workload, state: SandboxState | ReleaseState) -> None:
        workload.transition(state)
        await self.workloads.save(workload)
        logger.info("Workload state changed", workload=workload.slug, state=state)

    @asynccontextmanager
    async def _recording_failure(self, workload: Workload) -> AsyncIterator[None]:
        """Record ``last_error`` for any failure and re-raise it.

        The workload keeps its in-flight state so the operation can be retried.
        """
        try:
            yield
        except Exception as e:
            workload.last_error = str(e) or type(e).__name__
            await self.workloads.save(workload)
            logger.error(
                "Provisioning step failed",
                workload=workload.slug,
                state=workload.state,  # type: ignore[attr-defined]
                error=workload.last_error,
            )
            raise
        else:
            if workload.last_error:
                workload.last_error = None
                await self.workloads.save(workload)

    async def run(
        self,
        workload: Workload,
        command: str,
        category: str | None = None,
        timeout: float | None = None,
        raise_on_error: bool = True,
    ) -> CommandExecution:
        """Run a recorded command with the git token masked in the record."""
        return await self.engine.exec(
            workload,
            command,
            category=category,
            timeout=timeout,
            raise_on_error=raise_on_error,
            secrets=(self.settings.git.pat,),
        )

    async def ensure_keypair(self, workload: Workload) -> None:
        """Generate the workload keypair once. Existing keys are never replaced."""
        if workload.has_keypair:
            return
        await self.engine.log_step(workload, "ssh_key")
        keypair = generate_keypair(comment=naming.ssh_comment(workload.slug))
        workload.ssh_private_key = keypair.private_key
        workload.ssh_public_key = keypair.public_key
        await self.workloads.save(workload)

    def user_data(self, workload: Workload) -> str:
        keys = [workload.ssh_public_key or ""]
        operator_key = self.settings.compute.operator_public_key()
        if operator_key:
            keys.append(operator_key)
        return cloud_init.generate(keys)

    async def create_infrastructure(
        self,
        workload: Workload,
        *,
        target: str,
        labels: dict[str, str],
        firewall_rules: list[FirewallRule] | None = None,
    ) -> Server:
        """Firewall, private network and server, then wait for SSH."""
        name = workload.resource_name
        compute = self.settings.compute

        await self.engine.log_step(workload, "firewall")
        firewall = await self.compute.find_or_create_firewall(name, rules=firewall_rules)

        await self.engine.log_step(workload, "network")
        network = await self.compute.find_or_create_network(name, location=compute.location)

        await self.engine.log_step(workload, "server")
        server_type = compute.server_type
        if isinstance(server_type, dict):
            server_type = server_type.get(target) or next(iter(server_type.values()))
        server = await self.compute.find_or_create_server(
            name,
            server_type=server_type,
            image=compute.image,
            location=compute.location,
            user_data=self.user_data(workload),
            labels=labels,
            firewall_ids=[firewall.id],
            network_ids=[network.id],
        )
        if not server.running or not server.public_ipv4:
            server = await self.compute.wait_for_server(server.id)
        workload.server_id = server.id
        workload.server_ip = server.public_ipv4
        await self.workloads.save(workload)
        logger.info("Server ready", workload=workload.slug, server=name, ip=server.public_ipv4)

        await self.engine.log_step(workload, "ssh_wait")
        await self.engine.wait_for_ssh(workload)
        return server

    async def delete_infrastructure(self, workload: Workload) -> None:
        """Delete the server, network and firewall, whichever exist."""
        name = workload.resource_name

        await self.engine.log_step(workload, "delete_server")
        server = await self.compute.find_server(name)
        if server:
            await self.compute.delete_server(server.id)

        await self.engine.log_step(workload, "delete_network")
        network = await self.compute.find_network(name)
        if network:
            await self.compute.delete_network(network.id)

        await self.engine.log_step(workload, "delete_firewall")
        firewall = await self.compute.find_firewall(name)
        if firewall:
            await self.compute.delete_firewall(firewall.id)

    async def workspace_exists(self, workload: Workload) -> bool:
        check = await self.run(workload, f"test -d {WORKSPACE}/.git", raise_on_error=False, timeout=10)
        return check.success

    async def sync_repo(self, workload: Workload, branch: str) -> str:
        """Clone or pull the repository into the workspace.

        Returns:
            ``"clone"`` or ``"pull"``.
        """
        action, command = repo_sync_command(
            self.settings.git, branch, await self.workspace_exists(workload)
        )
        await self.run(workload, command, category=action, timeout=CLONE_TIMEOUT)
        return action

    async def command_exists(self, workload: Workload, command: str) -> bool:
        check = await self.run(workload, join(["which", command]), raise_on_error=False, timeout=10)
        return check.success
