# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Shared fixtures and fakes for all tests.

The fakes stand in for the SSH transport and the compute provider so that
provisioning flows run end to end against an in-memory SQLite store.
"""
import itertools
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from burrow.core.runtime import RuntimeConfig
from burrow.core.types import (
    AppConfig,
    ClaudeConfig,
    CloudflareConfig,
    DatabaseConfig,
    GitConfig,
    ProcessConfig,
    Settings,
)
from burrow.execution.engine import ExecutionEngine
from burrow.execution.events import LogBus
from burrow.models import Release, Sandbox
from burrow.providers.registry import HetznerProvider
from burrow.providers.types import Firewall, Network, Server, Volume
from burrow.remote.ssh import CommandResult, ExitStatus
from burrow.store import Database, ExecutionRepository, SessionRepository, WorkloadRepository
from burrow.tunnel.cloudflare import CloudflareClient, Tunnel
from burrow.tunnel.manager import TunnelManager


SERVER_IP = "203.0.113.10"


class FakeSsh:
    """Scripted stand-in for SshClient.

    Every command succeeds with no output unless a rule registered with
    :meth:`on` matches a fragment of it. Later rules win.
    """

    def __init__(self) -> None:
        self.commands: list[str] = []
        self.rules: list[tuple[str, list[str], int]] = []

    def on(self, fragment: str, lines: list[str] | None = None, exit_code: int = 0) -> None:
        self.rules.insert(0, (fragment, list(lines or []), exit_code))

    def _result(self, command: str) -> tuple[list[str], int]:
        for fragment, lines, exit_code in self.rules:
            if fragment in command:
                return lines, exit_code
        return [], 0

    def ran(self, fragment: str) -> bool:
        return any(fragment in command for command in self.commands)

    async def execute(self, command: str, cwd: str | None = None, timeout: float | None = None):
        self.commands.append(command)
        lines, exit_code = self._result(command)
        for line in lines:
            yield line
        yield ExitStatus(exit_code)

    async def run(
        self,
        command: str,
        cwd: str | None = None,
        timeout: float | None = None,
        raise_on_error: bool = True,
    ) -> CommandResult:
        self.commands.append(command)
        lines, exit_code = self._result(command)
        return CommandResult(exit_code, "\n".join(lines).strip())

    async def wait_until_ready(self, max_attempts: int = 60, interval: float = 5) -> bool:
        return True


class FakeCompute:
    """In-memory compute provider keyed by resource name."""

    def __init__(self) -> None:
        self.servers: dict[str, Server] = {}
        self.firewalls: dict[str, Firewall] = {}
        self.networks: dict[str, Network] = {}
        self.volumes: dict[str, Volume] = {}
        self.created: list[str] = []
        self._ids = itertools.count(100)

    def _id(self) -> str:
        return str(next(self._ids))

    async def find_or_create_server(self, name: str, **kwargs: Any) -> Server:
        if name not in self.servers:
            self.created.append(f"server:{name}")
            self.servers[name] = Server(
                id=self._id(), name=name, status="running", public_ipv4=SERVER_IP, labels=kwargs.get("labels") or {}
            )
        return self.servers[name]

    async def find_server(self, name: str) -> Server | None:
        return self.servers.get(name)

    async def get_server(self, server_id: str) -> Server | None:
        return next((s for s in self.servers.values() if s.id == server_id), None)

    async def list_servers(self, label_selector: str | None = None) -> list[Server]:
        return list(self.servers.values())

    async def wait_for_server(self, server_id: str, max_attempts: int = 60, interval: float = 5) -> Server:
        server = await self.get_server(server_id)
        assert server is not None
        return server

    async def delete_server(self, server_id: str) -> None:
        self.servers = {n: s for n, s in self.servers.items() if s.id != server_id}

    async def find_or_create_firewall(self, name: str, rules: Any = None) -> Firewall:
        if name not in self.firewalls:
            self.created.append(f"firewall:{name}")
            self.firewalls[name] = Firewall(id=self._id(), name=name)
        return self.firewalls[name]

    async def find_firewall(self, name: str) -> Firewall | None:
        return self.firewalls.get(name)

    async def list_firewalls(self) -> list[Firewall]:
        return list(self.firewalls.values())

    async def delete_firewall(self, firewall_id: str) -> None:
        self.firewalls = {n: f for n, f in self.firewalls.items() if f.id != firewall_id}

    async def find_or_create_network(self, name: str, location: str | None = None) -> Network:
        if name not in self.networks:
            self.created.append(f"network:{name}")
            self.networks[name] = Network(id=self._id(), name=name, location=location)
        return self.networks[name]

    async def find_network(self, name: str) -> Network | None:
        return self.networks.get(name)

    async def list_networks(self) -> list[Network]:
        return list(self.networks.values())

    async def delete_network(self, network_id: str) -> None:
        self.networks = {n: net for n, net in self.networks.items() if net.id != network_id}

    async def find_or_create_volume(
        self, name: str, *, size_gb: int, location: str, labels: dict[str, str] | None = None
    ) -> Volume:
        if name not in self.volumes:
            self.created.append(f"volume:{name}")
            self.volumes[name] = Volume(id=self._id(), name=name, size_gb=size_gb, location=location)
        return self.volumes[name]

    async def find_volume(self, name: str) -> Volume | None:
        return self.volumes.get(name)

    async def get_volume(self, volume_id: str) -> Volume | None:
        return next((v for v in self.volumes.values() if v.id == volume_id), None)

    async def attach_volume(self, volume_id: str, server_id: str) -> Volume | None:
        volume = await self.get_volume(volume_id)
        assert volume is not None
        attached = volume.model_copy(
            update={"server_id": server_id, "device_path": f"/dev/disk/by-id/scsi-0HC_Volume_{volume_id}"}
        )
        self.volumes[volume.name] = attached
        return attached

    async def detach_volume(self, volume_id: str) -> None:
        volume = await self.get_volume(volume_id)
        if volume:
            self.volumes[volume.name] = volume.model_copy(update={"server_id": None, "device_path": None})

    async def delete_volume(self, volume_id: str) -> None:
        self.volumes = {n: v for n, v in self.volumes.items() if v.id != volume_id}


@pytest.fixture
def settings() -> Settings:
    """Settings with Cloudflare, git and claude configured, postgres and a web process."""
    return Settings(
        compute=HetznerProvider(api_key="hetzner-token"),
        cloudflare=CloudflareConfig(api_token="cf-token", account_id="acct", domain="example.com"),
        git=GitConfig(pat="ghp_secret", repo="acme/shop"),
        claude=ClaudeConfig(auth_token="sk-ant-test"),
        databases={"postgres": DatabaseConfig()},
        app=AppConfig(processes={"web": ProcessConfig(command="bin/server", port=3000, subdomain="www")}),
        setup=["bin/setup"],
        env={"RAILS_ENV": {"sandbox": "development", "production": "production"}},
        app_name="shop",
    )


@pytest.fixture
def bare_settings(settings: Settings) -> Settings:
    """Settings without Cloudflare or claude credentials."""
    return settings.model_copy(update={"cloudflare": CloudflareConfig(), "claude": ClaudeConfig()})


@pytest.fixture
async def db() -> AsyncIterator[Database]:
    async with Database(":memory:") as database:
        yield database


@pytest.fixture
def workloads(db: Database) -> WorkloadRepository:
    return WorkloadRepository(db)


@pytest.fixture
def executions(db: Database) -> ExecutionRepository:
    return ExecutionRepository(db)


@pytest.fixture
def sessions(db: Database) -> SessionRepository:
    return SessionRepository(db)


@pytest.fixture
def fake_ssh() -> FakeSsh:
    return FakeSsh()


@pytest.fixture
def fake_compute() -> FakeCompute:
    return FakeCompute()


@pytest.fixture
def bus() -> LogBus:
    return LogBus()


@pytest.fixture
def engine(executions: ExecutionRepository, fake_ssh: FakeSsh, bus: LogBus) -> ExecutionEngine:
    return ExecutionEngine(
        executions,
        ssh_factory=lambda workload: fake_ssh,  # type: ignore[arg-type,return-value]
        bus=bus,
        runtime=RuntimeConfig(ssh_wait_attempts=1, ssh_wait_interval=0),
    )


@pytest.fixture
def cloudflare() -> AsyncMock:
    """Cloudflare client mock answering like a fresh account."""
    client = AsyncMock(spec=CloudflareClient)
    client.get_zone_id.return_value = "zone-1"
    client.find_or_create_tunnel.side_effect = lambda name: Tunnel(id="tunnel-1", name=name)
    client.get_tunnel_token.return_value = "tunnel-token"
    client.get_tunnel.return_value = Tunnel(id="tunnel-1", name="t", status="healthy")
    client.find_tunnel.return_value = None
    client.find_dns_record.return_value = None
    return client


@pytest.fixture
def tunnels(
    settings: Settings, engine: ExecutionEngine, workloads: WorkloadRepository, cloudflare: AsyncMock
) -> TunnelManager:
    return TunnelManager(settings, engine, workloads, client_factory=lambda s: cloudflare)


@pytest.fixture
def make_sandbox(workloads: WorkloadRepository) -> Callable[..., Any]:
    """Factory creating a saved sandbox that already has a keypair.

    Example:
        sandbox = await make_sandbox(state=SandboxState.RUNNING, server_ip="203.0.113.10")
    """

    async def _make(**overrides: Any) -> Sandbox:
        fields: dict[str, Any] = {"ssh_public_key": "ssh-rsa AAAA test", "ssh_private_key": "PEM"}
        return await workloads.create(Sandbox(**{**fields, **overrides}))  # type: ignore[return-value]

    return _make


@pytest.fixture
def make_release(workloads: WorkloadRepository) -> Callable[..., Any]:
    """Factory creating a saved release that already has a keypair."""

    async def _make(**overrides: Any) -> Release:
        fields: dict[str, Any] = {"ssh_public_key": "ssh-rsa AAAA test", "ssh_private_key": "PEM"}
        return await workloads.create(Release(**{**fields, **overrides}))  # type: ignore[return-value]

    return _make
