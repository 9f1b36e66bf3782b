"""Tests for ResourceInspector orphan detection."""
from unittest.mock import AsyncMock

import pytest

from burrow.core.exceptions import ApiError
from burrow.inspector import ResourceInspector
from burrow.models import SandboxState
from burrow.tunnel.cloudflare import CloudflareClient, DnsRecord, Tunnel, WorkerScript


@pytest.fixture
def edge() -> AsyncMock:
    client = AsyncMock(spec=CloudflareClient)
    client.list_tunnels.return_value = [
        Tunnel(id="t-1", name="burrow-sandbox-aaaaaa", status="healthy"),
        Tunnel(id="t-2", name="unrelated-tunnel"),
    ]
    client.list_workers.return_value = [WorkerScript(id="burrow-sandbox-widget-bbbbbb")]
    client.get_zone_id.return_value = "zone-1"
    client.list_dns_records.return_value = [
        DnsRecord(id="d-1", type="CNAME", name="burrow-sandbox-bbbbbb.example.com", content="t.cfargotunnel.com"),
        DnsRecord(id="d-2", type="A", name="www.example.com", content="198.51.100.1"),
    ]
    client.list_worker_routes.return_value = [
        {"id": "r-1", "pattern": "burrow-sandbox-bbbbbb.example.com/*", "script": "burrow-sandbox-widget-bbbbbb"}
    ]
    return client


@pytest.fixture
def inspector(settings, workloads, fake_compute, edge):
    return ResourceInspector(settings, workloads, compute=fake_compute, cloudflare_factory=lambda s: edge)


class TestResourceInspector:
    async def test_lists_only_burrow_resources(self, inspector, fake_compute):
        await fake_compute.find_or_create_server("burrow-sandbox-aaaaaa")
        await fake_compute.find_or_create_server("mail-server")
        await fake_compute.find_or_create_firewall("burrow-sandbox-aaaaaa")

        resources = await inspector.all()

        assert sorted((r.kind, r.slug) for r in resources) == [
            ("dns_record", "bbbbbb"),
            ("firewall", "aaaaaa"),
            ("server", "aaaaaa"),
            ("tunnel", "aaaaaa"),
            ("worker", "bbbbbb"),
            ("worker_route", "bbbbbb"),
        ]
        server = next(r for r in resources if r.kind == "server")
        assert server.detail == "running 203.0.113.10"

    async def test_orphans_exclude_live_workloads(self, inspector, make_sandbox, fake_compute):
        await make_sandbox(slug="aaaaaa", state=SandboxState.RUNNING)
        await make_sandbox(slug="bbbbbb", state=SandboxState.STOPPED)
        await fake_compute.find_or_create_server("burrow-sandbox-aaaaaa")

        orphans = await inspector.orphans()

        assert {r.slug for r in orphans} == {"bbbbbb"}
        assert {r.kind for r in orphans} == {"dns_record", "worker", "worker_route"}

    async def test_skips_cloudflare_when_unconfigured(self, bare_settings, workloads, fake_compute, edge):
        inspector = ResourceInspector(bare_settings, workloads, compute=fake_compute, cloudflare_factory=lambda s: edge)

        assert await inspector.cloudflare_resources() == []
        edge.list_tunnels.assert_not_awaited()

    async def test_zone_failure_keeps_account_resources(self, inspector, edge):
        edge.get_zone_id.side_effect = ApiError("[403] Forbidden", status=403)

        kinds = {r.kind for r in await inspector.cloudflare_resources()}

        assert kinds == {"tunnel", "worker"}
        edge.list_dns_records.assert_not_awaited()
