"""Cloudflare API client for tunnels, DNS, rulesets and workers."""

from __future__ import annotations

import base64
import json
import secrets
from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict

from burrow.core import naming
from burrow.core.exceptions import ApiError, ConfigurationError
from burrow.core.types import CloudflareConfig
from burrow.providers.http import BaseClient
from burrow.tunnel import worker


IFRAME_PHASE = "http_response_headers_transform"
SANDBOX_RULE_DESCRIPTION = f"Allow iframe for {naming.PREFIX}-* subdomains"
TUNNEL_DOMAIN = "cfargotunnel.com"


class Zone(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    status: str | None = None


class Tunnel(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    status: str | None = None
    created_at: str | None = None


class DnsRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    name: str
    content: str
    proxied: bool = False


class WorkerScript(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    created_on: str | None = None
    modified_on: str | None = None


def tunnel_target(tunnel_id: str) -> str:
    return f"{tunnel_id}.{TUNNEL_DOMAIN}"


class CloudflareClient(BaseClient):
    """Cloudflare v4 API client.

    Args:
        api_token: API token.
        account_id: Account owning tunnels and workers.
        transport: Optional httpx transport, used by tests.
    """

    BASE_URL = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        api_token: str | None,
        account_id: str | None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_token:
            raise ConfigurationError("Cloudflare API token not configured")
        if not account_id:
            raise ConfigurationError("Cloudflare account ID not configured")
        self._api_token = api_token
        self.account_id = account_id
        super().__init__(timeout=60.0, connect_timeout=10.0, transport=transport)

    @classmethod
    def from_config(
        cls, config: CloudflareConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> CloudflareClient:
        return cls(config.api_token, config.account_id, transport=transport)

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_token}"}

    @property
    def _account(self) -> str:
        return f"/accounts/{self.account_id}"

    @staticmethod
    def _result(response: Any) -> Any:
        if not isinstance(response, dict):
            return None
        return response.get("result")

    # Zones

    async def find_zone(self, domain: str) -> Zone | None:
        results = self._result(await self.get("/zones", {"name": domain})) or []
        return self._to_zone(results[0]) if results else None

    async def get_zone_id(self, domain: str) -> str:
        """Zone id for a domain.

        Raises:
            ConfigurationError: If the account has no zone for the domain.
        """
        zone = await self.find_zone(domain)
        if zone is None:
            raise ConfigurationError(f"Zone not found for domain: {domain}")
        return zone.id

    async def list_zones(self) -> list[Zone]:
        results = self._result(await self.get("/zones")) or []
        return [self._to_zone(z) for z in results]

    # Tunnels

    async def find_or_create_tunnel(self, name: str) -> Tunnel:
        existing = await self.find_tunnel(name)
        if existing:
            return existing
        response = await self.post(
            f"{self._account}/cfd_tunnel",
            {
                "name": name,
                "tunnel_secret": base64.b64encode(secrets.token_bytes(32)).decode(),
                "config_src": "cloudflare",
            },
        )
        tunnel = self._to_tunnel(self._result(response))
        logger.info("Tunnel created", tunnel=name, tunnel_id=tunnel.id)
        return tunnel

    async def find_tunnel(self, name: str) -> Tunnel | None:
        results = self._result(
            await self.get(f"{self._account}/cfd_tunnel", {"name": name, "is_deleted": "false"})
        ) or []
        return self._to_tunnel(results[0]) if results else None

    async def get_tunnel(self, tunnel_id: str) -> Tunnel | None:
        try:
            response = await self.get(f"{self._account}/cfd_tunnel/{tunnel_id}")
        except ApiError as e:
            if e.not_found:
                return None
            raise
        result = self._result(response)
        return self._to_tunnel(result) if result else None

    async def list_tunnels(self) -> list[Tunnel]:
        results = self._result(
            await self.get(f"{self._account}/cfd_tunnel", {"is_deleted": "false"})
        ) or []
        return [self._to_tunnel(t) for t in results]

    async def get_tunnel_token(self, tunnel_id: str) -> str:
        return self._result(await self.get(f"{self._account}/cfd_tunnel/{tunnel_id}/token"))

    async def configure_tunnel_ingress(self, tunnel_id: str, rules: list[dict[str, Any]]) -> None:
        await self.put(
            f"{self._account}/cfd_tunnel/{tunnel_id}/configurations",
            {"config": {"ingress": rules}},
        )

    async def get_tunnel_configuration(self, tunnel_id: str) -> dict[str, Any]:
        result = self._result(await self.get(f"{self._account}/cfd_tunnel/{tunnel_id}/configurations"))
        return (result or {}).get("config") or {}

    async def delete_tunnel(self, tunnel_id: str) -> None:
        """Delete a tunnel after dropping its active connections."""
        try:
            await self.delete(f"{self._account}/cfd_tunnel/{tunnel_id}/connections")
        except ApiError as e:
            logger.warning("Could not clean tunnel connections", tunnel_id=tunnel_id, error=str(e))
        await self.delete(f"{self._account}/cfd_tunnel/{tunnel_id}")
        logger.info("Tunnel deleted", tunnel_id=tunnel_id)

    # DNS

    async def ensure_dns_record(self, zone_id: str, hostname: str, tunnel_id: str) -> DnsRecord:
        """Proxied CNAME from ``hostname`` to the tunnel, created or repointed."""
        content = tunnel_target(tunnel_id)
        existing = await self.find_dns_record(zone_id, hostname)
        if existing and existing.content == content:
            return existing
        payload = {"type": "CNAME", "name": hostname, "content": content, "proxied": True, "ttl": 1}
        if existing:
            response = await self.put(f"/zones/{zone_id}/dns_records/{existing.id}", payload)
        else:
            response = await self.post(f"/zones/{zone_id}/dns_records", payload)
        return self._to_dns_record(self._result(response))

    async def find_dns_record(self, zone_id: str, hostname: str, record_type: str = "CNAME") -> DnsRecord | None:
        results = self._result(
            await self.get(f"/zones/{zone_id}/dns_records", {"name": hostname, "type": record_type})
        ) or []
        return self._to_dns_record(results[0]) if results else None

    async def list_dns_records(self, zone_id: str) -> list[DnsRecord]:
        results = self._result(await self.get(f"/zones/{zone_id}/dns_records")) or []
        return [self._to_dns_record(r) for r in results]

    async def delete_dns_record(self, zone_id: str, record_id: str) -> None:
        await self.delete(f"/zones/{zone_id}/dns_records/{record_id}")

    # Rulesets

    async def ensure_sandbox_iframe_rule(self, zone_id: str) -> dict[str, Any]:
        """Strip frame-blocking headers from sandbox preview responses."""
        rule = {
            "expression": f'(starts_with(http.host, "{naming.PREFIX}-"))',
            "action": "rewrite",
            "action_parameters": {
                "headers": {
                    "X-Frame-Options": {"operation": "remove"},
                    "Content-Security-Policy": {"operation": "remove"},
                }
            },
            "description": SANDBOX_RULE_DESCRIPTION,
        }
        rulesets = self._result(await self.get(f"/zones/{zone_id}/rulesets")) or []
        existing = next((r for r in rulesets if r.get("phase") == IFRAME_PHASE), None)
        if existing is None:
            response = await self.post(
                f"/zones/{zone_id}/rulesets",
                {
                    "name": "Sandbox iframe headers",
                    "kind": "zone",
                    "phase": IFRAME_PHASE,
                    "rules": [rule],
                },
            )
            return self._result(response)
        rules = existing.get("rules") or []
        if any(r.get("description") == SANDBOX_RULE_DESCRIPTION for r in rules):
            return existing
        response = await self.put(f"/zones/{zone_id}/rulesets/{existing['id']}", {"rules": [*rules, rule]})
        return self._result(response)

    # Workers

    async def deploy_worker(self, slug: str, access_token: str, config: CloudflareConfig) -> None:
        """Upload the preview gate worker for a sandbox.

        Raises:
            ApiError: If the upload is rejected.
        """
        name = naming.worker(slug)
        files = {
            "metadata": (None, json.dumps(worker.metadata(slug, access_token, config)), "application/json"),
            worker.MAIN_MODULE: (worker.MAIN_MODULE, worker.script(), "application/javascript+module"),
        }
        response = await self.request("PUT", f"{self._account}/workers/scripts/{name}", files=files)
        if isinstance(response, dict) and response.get("success") is False:
            errors = ", ".join(e.get("message", "") for e in response.get("errors") or [])
            raise ApiError(f"Worker deploy failed: {errors or 'unknown error'}", body=response)
        logger.info("Worker deployed", worker=name)

    async def create_worker_route(self, zone_id: str, slug: str, domain: str) -> dict[str, Any]:
        pattern = naming.worker_route(slug, domain)
        existing = await self.find_worker_route(zone_id, pattern)
        if existing:
            return existing
        response = await self.post(
            f"/zones/{zone_id}/workers/routes",
            {"pattern": pattern, "script": naming.worker(slug)},
        )
        return self._result(response)

    async def find_worker_route(self, zone_id: str, pattern: str) -> dict[str, Any] | None:
        routes = await self.list_worker_routes(zone_id)
        return next((r for r in routes if r.get("pattern") == pattern), None)

    async def list_worker_routes(self, zone_id: str) -> list[dict[str, Any]]:
        return self._result(await self.get(f"/zones/{zone_id}/workers/routes")) or []

    async def delete_worker(self, slug: str) -> None:
        await self.delete(f"{self._account}/workers/scripts/{naming.worker(slug)}")

    async def list_workers(self) -> list[WorkerScript]:
        results = self._result(await self.get(f"{self._account}/workers/scripts")) or []
        return [
            WorkerScript(id=w["id"], created_on=w.get("created_on"), modified_on=w.get("modified_on"))
            for w in results
        ]

    async def validate_credentials(self) -> bool:
        """Verify the API token.

        Raises:
            ConfigurationError: If the token is rejected.
        """
        try:
            await self.get("/user/tokens/verify")
        except ApiError as e:
            if e.unauthorized:
                raise ConfigurationError(f"Cloudflare credentials invalid: {e}") from e
            raise
        return True

    @staticmethod
    def _to_zone(data: dict[str, Any]) -> Zone:
        return Zone(id=data["id"], name=data["name"], status=data.get("status"))

    @staticmethod
    def _to_tunnel(data: dict[str, Any]) -> Tunnel:
        return Tunnel(
            id=data["id"],
            name=data["name"],
            status=data.get("status"),
            created_at=data.get("created_at"),
        )

    @staticmethod
    def _to_dns_record(data: dict[str, Any]) -> DnsRecord:
        return DnsRecord(
            id=data["id"],
            type=data.get("type", "CNAME"),
            name=data["name"],
            content=data.get("content", ""),
            proxied=bool(data.get("proxied")),
        )
