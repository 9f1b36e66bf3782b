"""Inventory of provider and Cloudflare resources, and orphan detection."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import BaseModel, ConfigDict

from burrow.core import naming
from burrow.core.exceptions import ApiError, ConfigurationError
from burrow.tunnel.cloudflare import CloudflareClient


if TYPE_CHECKING:
    from burrow.core.types import Settings
    from burrow.providers.base import ComputeClient
    from burrow.store import WorkloadRepository


class Resource(BaseModel):
    """One remote resource carrying a burrow name.

    Attributes:
        kind: "server", "network", "firewall", "tunnel", "dns_record",
            "worker" or "worker_route".
        slug: Workload slug parsed from the name.
        detail: Short extra information (status, IP, target).
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    id: str
    name: str
    slug: str | None = None
    detail: str | None = None


class ResourceInspector:
    """Lists every resource named after a workload slug.

    Args:
        settings: Provider and Cloudflare settings.
        workloads: Source of the live workload slugs.
        compute: Compute client. Built from settings when omitted.
        cloudflare_factory: Builds the Cloudflare client when Cloudflare is
            configured.
    """

    def __init__(
        self,
        settings: Settings,
        workloads: WorkloadRepository,
        compute: ComputeClient | None = None,
        cloudflare_factory: Callable[[Settings], CloudflareClient] | None = None,
    ):
        self.settings = settings
        self.workloads = workloads
        self.compute = compute or settings.compute.client()
        self._cloudflare_factory = cloudflare_factory or (
            lambda s: CloudflareClient.from_config(s.cloudflare)
        )

    async def compute_resources(self) -> list[Resource]:
        resources = []
        for server in await self.compute.list_servers():
            if slug := naming.extract_slug(server.name):
                resources.append(
                    Resource(kind="server", id=server.id, name=server.name, slug=slug,
                             detail=f"{server.status} {server.public_ipv4 or ''}".strip())
                )
        for network in await self.compute.list_networks():
            if slug := naming.extract_slug(network.name):
                resources.append(Resource(kind="network", id=network.id, name=network.name, slug=slug))
        for firewall in await self.compute.list_firewalls():
            if slug := naming.extract_slug(firewall.name):
                resources.append(Resource(kind="firewall", id=firewall.id, name=firewall.name, slug=slug))
        return resources

    async def cloudflare_resources(self) -> list[Resource]:
        if not self.settings.cloudflare_configured:
            return []
        client = self._cloudflare_factory(self.settings)
        resources = []
        for tunnel in await client.list_tunnels():
            if slug := naming.extract_slug(tunnel.name):
                resources.append(
                    Resource(kind="tunnel", id=tunnel.id, name=tunnel.name, slug=slug, detail=tunnel.status)
                )
        for worker in await client.list_workers():
            if slug := naming.extract_worker_slug(worker.id):
                resources.append(Resource(kind="worker", id=worker.id, name=worker.id, slug=slug))

        try:
            zone_id = await client.get_zone_id(self.settings.cloudflare.domain or "")
        except (ApiError, ConfigurationError) as e:
            logger.warning("Skipping DNS and routes, zone lookup failed", error=str(e))
            return resources
        for record in await client.list_dns_records(zone_id):
            if slug := naming.extract_slug(record.name):
                resources.append(
                    Resource(kind="dns_record", id=record.id, name=record.name, slug=slug, detail=record.content)
                )
        for route in await client.list_worker_routes(zone_id):
            pattern = route.get("pattern", "")
            if slug := naming.extract_hostname_slug(pattern):
                resources.append(
                    Resource(kind="worker_route", id=route.get("id", ""), name=pattern, slug=slug,
                             detail=route.get("script"))
                )
        return resources

    async def all(self) -> list[Resource]:
        return [*await self.compute_resources(), *await self.cloudflare_resources()]

    async def orphans(self) -> list[Resource]:
        """Resources whose slug belongs to no sandbox or release that is still alive."""
        live = await self.workloads.live_slugs()
        return [resource for resource in await self.all() if resource.slug not in live]
