"""Scaleway API client.

Security groups stand in for firewalls and private networks for networks,
so the client presents the same operations as :class:`HetznerClient`.
Labels are stored as ``key=value`` server tags.
"""
import asyncio
import re
from typing import Any

import httpx
from loguru import logger

from burrow.core.exceptions import ApiError, BurrowError, ConfigurationError
from burrow.providers.http import BaseClient
from burrow.providers.types import (
    SSH_RULE,
    Firewall,
    FirewallRule,
    Network,
    Server,
    SshKey,
    Volume,
)


BYTES_PER_GB = 1_000_000_000


def zone_to_region(zone: str) -> str:
    """``fr-par-1`` becomes ``fr-par``."""
    return re.sub(r"-\d+$", "", zone)


def labels_to_tags(labels: dict[str, str] | None) -> list[str]:
    return [f"{key}={value}" for key, value in (labels or {}).items()]


def tags_to_labels(tags: list[str] | None) -> dict[str, str]:
    labels = {}
    for tag in tags or []:
        key, sep, value = tag.partition("=")
        labels[key] = value if sep else "true"
    return labels


class ScalewayClient(BaseClient):
    """Scaleway instance, IAM and VPC client.

    Args:
        api_key: Scaleway secret key.
        project_id: Project owning all resources.
        zone: Availability zone (e.g. "fr-par-1").
        transport: Optional httpx transport, used by tests.
    """

    BASE_URL = "https://api.scaleway.com"

    def __init__(
        self,
        api_key: str | None,
        project_id: str | None,
        zone: str = "fr-par-1",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ConfigurationError("Scaleway API key not configured")
        if not project_id:
            raise ConfigurationError("Scaleway project ID not configured")
        self._api_key = api_key
        self._project_id = project_id
        self._zone = zone
        super().__init__(timeout=300.0, transport=transport)

    def auth_headers(self) -> dict[str, str]:
        return {"X-Auth-Token": self._api_key}

    def _instance(self, path: str) -> str:
        return f"/instance/v1/zones/{self._zone}{path}"

    def _iam(self, path: str) -> str:
        return f"/iam/v1alpha1{path}"

    def _vpc(self, path: str) -> str:
        return f"/vpc/v2/regions/{zone_to_region(self._zone)}{path}"

    # Servers

    async def find_or_create_server(self, name: str, **kwargs: Any) -> Server:
        existing = await self.find_server(name)
        if existing:
            return existing
        return await self.create_server(name, **kwargs)

    async def create_server(
        self,
        name: str,
        *,
        server_type: str,
        image: str = "ubuntu_jammy",
        location: str | None = None,
        ssh_keys: list[str] | None = None,
        user_data: str | None = None,
        labels: dict[str, str] | None = None,
        firewall_ids: list[str] | None = None,
        network_ids: list[str] | None = None,
    ) -> Server:
        """Create, configure and power on a server.

        ``location`` and ``ssh_keys`` are accepted for interface parity. The
        zone comes from the client and keys are delivered through cloud-init
        or the project's IAM keys.
        """
        payload: dict[str, Any] = {
            "name": name,
            "commercial_type": server_type,
            "image": image,
            "project": self._project_id,
            "tags": labels_to_tags(labels),
        }
        if firewall_ids:
            payload["security_group"] = firewall_ids[0]

        response = await self.post(self._instance("/servers"), payload)
        server = self._to_server(response["server"])

        if user_data:
            await self.request(
                "PATCH",
                self._instance(f"/servers/{server.id}/user_data/cloud-init"),
                content=user_data.encode(),
                headers={"Content-Type": "text/plain"},
            )
        for network_id in network_ids or []:
            await self.post(
                self._instance(f"/servers/{server.id}/private_nics"),
                {"private_network_id": network_id},
            )

        # Scaleway servers are created stopped
        await self.power_on(server.id)
        logger.info("Server created", server=name, provider="scaleway")
        return server

    async def power_on(self, server_id: str) -> None:
        await self.post(self._instance(f"/servers/{server_id}/action"), {"action": "poweron"})

    async def power_off(self, server_id: str) -> None:
        await self.post(self._instance(f"/servers/{server_id}/action"), {"action": "poweroff"})

    async def get_server(self, server_id: str) -> Server | None:
        try:
            response = await self.get(self._instance(f"/servers/{server_id}"))
        except ApiError as e:
            if e.not_found:
                return None
            raise
        return self._to_server(response["server"])

    async def find_server(self, name: str) -> Server | None:
        response = await self.get(
            self._instance("/servers"), {"name": name, "project": self._project_id}
        )
        for data in response.get("servers") or []:
            if data["name"] == name:
                return self._to_server(data)
        return None

    async def list_servers(self, label_selector: str | None = None) -> list[Server]:
        params = {"project": self._project_id}
        if label_selector:
            params["tags"] = label_selector
        response = await self.get(self._instance("/servers"), params)
        return [self._to_server(s) for s in response["servers"]]

    async def wait_for_server(
        self, server_id: str, max_attempts: int = 60, interval: float = 5
    ) -> Server:
        for _ in range(max_attempts):
            server = await self.get_server(server_id)
            if server and server.running:
                return server
            await asyncio.sleep(interval)
        raise BurrowError(
            f"Server {server_id} did not become running after {max_attempts} attempts"
        )

    async def _wait_for_server_stopped(
        self, server_id: str, max_attempts: int = 30, interval: float = 5
    ) -> None:
        for _ in range(max_attempts):
            server = await self.get_server(server_id)
            if server is None or server.status == "stopped":
                return
            await asyncio.sleep(interval)
        raise BurrowError(f"Server {server_id} did not stop after {max_attempts} attempts")

    async def delete_server(self, server_id: str, stop_interval: float = 5) -> None:
        """Power off, delete attached volumes, then delete the server."""
        server = await self.get_server(server_id)
        if server is None:
            return None
        if server.running:
            await self.power_off(server_id)
            await self._wait_for_server_stopped(server_id, interval=stop_interval)

        full = (await self.get(self._instance(f"/servers/{server_id}")))["server"]
        for volume in (full.get("volumes") or {}).values():
            if not volume.get("id"):
                continue
            try:
                await self.delete_volume(volume["id"])
            except ApiError:
                logger.exception("Failed to delete server volume", volume=volume["id"])

        await self.delete(self._instance(f"/servers/{server_id}"))
        logger.info("Server deleted", server_id=server_id, provider="scaleway")
        return None

    # SSH keys

    async def find_or_create_ssh_key(self, name: str, public_key: str) -> SshKey:
        existing = await self.find_ssh_key(name)
        if existing:
            return existing
        response = await self.post(
            self._iam("/ssh-keys"),
            {"name": name, "public_key": public_key, "project_id": self._project_id},
        )
        return self._to_ssh_key(response["ssh_key"])

    async def find_ssh_key(self, name: str) -> SshKey | None:
        for key in await self.list_ssh_keys():
            if key.name == name:
                return key
        return None

    async def list_ssh_keys(self) -> list[SshKey]:
        response = await self.get(self._iam("/ssh-keys"), {"project_id": self._project_id})
        return [self._to_ssh_key(k) for k in response["ssh_keys"]]

    async def delete_ssh_key(self, key_id: str) -> None:
        await self.delete(self._iam(f"/ssh-keys/{key_id}"))

    # Firewalls (security groups)

    async def find_or_create_firewall(
        self, name: str, rules: list[FirewallRule] | None = None
    ) -> Firewall:
        existing = await self.find_firewall(name)
        if existing:
            return existing
        response = await self.post(
            self._instance("/security_groups"),
            {
                "name": name,
                "project": self._project_id,
                "inbound_default_policy": "drop",
                "outbound_default_policy": "accept",
            },
        )
        group = response["security_group"]
        created = []
        for rule in rules or [SSH_RULE]:
            for ip_range in rule.source_ips:
                created.append(
                    await self.add_security_group_rule(
                        group["id"], port=rule.port, protocol=rule.protocol.upper(), ip_range=ip_range
                    )
                )
        return self._to_firewall({**group, "rules": created})

    async def add_security_group_rule(
        self,
        security_group_id: str,
        *,
        port: int,
        protocol: str = "TCP",
        ip_range: str = "0.0.0.0/0",
        direction: str = "inbound",
        action: str = "accept",
    ) -> dict[str, Any]:
        response = await self.post(
            self._instance(f"/security_groups/{security_group_id}/rules"),
            {
                "direction": direction,
                "protocol": protocol,
                "ip_range": ip_range,
                "action": action,
                "dest_port_from": port,
                "dest_port_to": port,
            },
        )
        return response.get("rule") or {}

    async def find_firewall(self, name: str) -> Firewall | None:
        response = await self.get(
            self._instance("/security_groups"), {"name": name, "project": self._project_id}
        )
        for data in response.get("security_groups") or []:
            if data["name"] == name:
                return self._to_firewall(data)
        return None

    async def list_firewalls(self) -> list[Firewall]:
        response = await self.get(
            self._instance("/security_groups"), {"project": self._project_id}
        )
        return [self._to_firewall(sg) for sg in response["security_groups"]]

    async def delete_firewall(self, firewall_id: str) -> None:
        await self.delete(self._instance(f"/security_groups/{firewall_id}"))

    # Networks (private networks)

    async def find_or_create_network(
        self,
        name: str,
        location: str | None = None,
        ip_range: str | None = None,
    ) -> Network:
        existing = await self.find_network(name)
        if existing:
            return existing
        payload: dict[str, Any] = {
            "name": name,
            "project_id": self._project_id,
            "region": zone_to_region(self._zone),
        }
        if ip_range:
            payload["subnets"] = [ip_range]
        response = await self.post(self._vpc("/private-networks"), payload)
        return self._to_network(response.get("private_network") or response)

    async def find_network(self, name: str) -> Network | None:
        response = await self.get(
            self._vpc("/private-networks"), {"name": name, "project_id": self._project_id}
        )
        for data in response.get("private_networks") or []:
            if data["name"] == name:
                return self._to_network(data)
        return None

    async def list_networks(self) -> list[Network]:
        response = await self.get(
            self._vpc("/private-networks"), {"project_id": self._project_id}
        )
        return [self._to_network(pn) for pn in response["private_networks"]]

    async def delete_network(self, network_id: str) -> None:
        await self.delete(self._vpc(f"/private-networks/{network_id}"))

    # Volumes

    async def find_or_create_volume(
        self,
        name: str,
        *,
        size_gb: int,
        location: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> Volume:
        existing = await self.find_volume(name)
        if existing:
            return existing
        return await self.create_volume(name, size_gb=size_gb, labels=labels)

    async def create_volume(
        self,
        name: str,
        *,
        size_gb: int,
        location: str | None = None,
        labels: dict[str, str] | None = None,
        volume_type: str = "b_ssd",
    ) -> Volume:
        response = await self.post(
            self._instance("/volumes"),
            {
                "name": name,
                "project": self._project_id,
                "size": size_gb * BYTES_PER_GB,
                "volume_type": volume_type,
                "tags": labels_to_tags(labels),
            },
        )
        logger.info("Volume created", volume=name, size_gb=size_gb)
        return self._to_volume(response["volume"])

    async def get_volume(self, volume_id: str) -> Volume | None:
        try:
            response = await self.get(self._instance(f"/volumes/{volume_id}"))
        except ApiError as e:
            if e.not_found:
                return None
            raise
        return self._to_volume(response["volume"])

    async def find_volume(self, name: str) -> Volume | None:
        response = await self.get(
            self._instance("/volumes"), {"name": name, "project": self._project_id}
        )
        for data in response.get("volumes") or []:
            if data["name"] == name:
                return self._to_volume(data)
        return None

    async def list_volumes(self, label_selector: str | None = None) -> list[Volume]:
        params = {"project": self._project_id}
        if label_selector:
            params["tags"] = label_selector
        response = await self.get(self._instance("/volumes"), params)
        return [self._to_volume(v) for v in response["volumes"]]

    async def attach_volume(self, volume_id: str, server_id: str) -> Volume | None:
        volume = await self.get_volume(volume_id)
        if volume and volume.server_id and volume.server_id != str(server_id):
            await self.detach_volume(volume_id)
        await self.post(
            self._instance(f"/servers/{server_id}/attach-volume"), {"volume_id": volume_id}
        )
        return await self.get_volume(volume_id)

    async def detach_volume(self, volume_id: str) -> None:
        volume = await self.get_volume(volume_id)
        if volume is None or not volume.server_id:
            return
        await self.post(
            self._instance(f"/servers/{volume.server_id}/detach-volume"),
            {"volume_id": volume_id},
        )

    async def delete_volume(self, volume_id: str) -> None:
        await self.delete(self._instance(f"/volumes/{volume_id}"))

    async def validate_credentials(self) -> bool:
        try:
            await self.get(self._instance("/servers"), {"project": self._project_id})
        except ApiError as e:
            if e.unauthorized:
                raise ConfigurationError(f"Scaleway credentials invalid: {e}") from e
            raise
        return True

    # Mappers

    @staticmethod
    def _to_server(data: dict[str, Any]) -> Server:
        return Server(
            id=str(data["id"]),
            name=data["name"],
            status=data.get("state"),
            public_ipv4=(data.get("public_ip") or {}).get("address"),
            private_ipv4=data.get("private_ip"),
            instance_type=data.get("commercial_type"),
            image=(data.get("image") or {}).get("name"),
            location=data.get("zone"),
            labels=tags_to_labels(data.get("tags")),
            created_at=data.get("creation_date"),
        )

    @staticmethod
    def _to_ssh_key(data: dict[str, Any]) -> SshKey:
        return SshKey(
            id=str(data["id"]),
            name=data["name"],
            fingerprint=data.get("fingerprint"),
            public_key=data.get("public_key"),
            created_at=data.get("created_at"),
        )

    @staticmethod
    def _to_firewall(data: dict[str, Any]) -> Firewall:
        return Firewall(
            id=str(data["id"]),
            name=data["name"],
            rules=data.get("rules") or [],
            created_at=data.get("creation_date"),
        )

    @staticmethod
    def _to_network(data: dict[str, Any]) -> Network:
        return Network(
            id=str(data["id"]),
            name=data["name"],
            subnets=data.get("subnets") or [],
            location=data.get("region"),
            created_at=data.get("created_at"),
        )

    @staticmethod
    def _to_volume(data: dict[str, Any]) -> Volume:
        server = data.get("server") or {}
        return Volume(
            id=str(data["id"]),
            name=data["name"],
            size_gb=int(data.get("size") or 0) // BYTES_PER_GB,
            volume_type=data.get("volume_type"),
            status=data.get("state"),
            server_id=server.get("id"),
            location=data.get("zone"),
            created_at=data.get("creation_date"),
        )
