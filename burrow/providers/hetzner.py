"""Hetzner Cloud API client."""
import asyncio
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


NETWORK_ZONES = {
    "fsn1": "eu-central",
    "nbg1": "eu-central",
    "hel1": "eu-central",
    "ash": "us-east",
    "hil": "us-west",
}
DEFAULT_NETWORK_ZONE = "eu-central"


class HetznerClient(BaseClient):
    """Hetzner Cloud client returning normalized resource types.

    Args:
        api_key: Hetzner project API token.
        transport: Optional httpx transport, used by tests.
    """

    BASE_URL = "https://api.hetzner.cloud/v1"

    def __init__(self, api_key: str | None, transport: httpx.AsyncBaseTransport | None = None):
        if not api_key:
            raise ConfigurationError("Hetzner API key not configured")
        self._api_key = api_key
        super().__init__(timeout=300.0, transport=transport)

    def auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

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
        image: str = "ubuntu-22.04",
        location: str | None = None,
        ssh_keys: list[str] | None = None,
        user_data: str | None = None,
        labels: dict[str, str] | None = None,
        firewall_ids: list[str] | None = None,
        network_ids: list[str] | None = None,
    ) -> Server:
        payload: dict[str, Any] = {
            "name": name,
            "server_type": server_type,
            "image": image,
            "location": location,
            "start_after_create": True,
            "labels": labels or {},
        }
        if ssh_keys:
            payload["ssh_keys"] = ssh_keys
        if user_data:
            payload["user_data"] = user_data
        if firewall_ids:
            payload["firewalls"] = [{"firewall": int(fid)} for fid in firewall_ids]
        if network_ids:
            payload["networks"] = [int(nid) for nid in network_ids]

        response = await self.post("/servers", payload)
        logger.info("Server created", server=name, provider="hetzner")
        return self._to_server(response["server"])

    async def get_server(self, server_id: str) -> Server | None:
        try:
            response = await self.get(f"/servers/{int(server_id)}")
        except ApiError as e:
            if e.not_found:
                return None
            raise
        return self._to_server(response["server"])

    async def find_server(self, name: str) -> Server | None:
        response = await self.get("/servers", {"name": name})
        servers = response.get("servers") or []
        return self._to_server(servers[0]) if servers else None

    async def list_servers(self, label_selector: str | None = None) -> list[Server]:
        params = {"label_selector": label_selector} if label_selector else None
        response = await self.get("/servers", params)
        return [self._to_server(s) for s in response["servers"]]

    async def wait_for_server(
        self, server_id: str, max_attempts: int = 60, interval: float = 5
    ) -> Server:
        """Poll until the server reports ``running``.

        Raises:
            BurrowError: If the server is not running after ``max_attempts``.
        """
        for _ in range(max_attempts):
            server = await self.get_server(server_id)
            if server and server.running:
                return server
            await asyncio.sleep(interval)
        raise BurrowError(
            f"Server {server_id} did not become running after {max_attempts} attempts"
        )

    async def delete_server(self, server_id: str) -> None:
        """Delete a server after detaching its firewalls and networks.

        Detach failures are logged and ignored. A missing server is a no-op.
        """
        sid = int(server_id)
        try:
            server = (await self.get(f"/servers/{sid}"))["server"]
        except ApiError as e:
            if e.not_found:
                return None
            raise

        for fw in (await self.get("/firewalls"))["firewalls"]:
            for applied in fw.get("applied_to") or []:
                if applied.get("type") != "server":
                    continue
                if (applied.get("server") or {}).get("id") != sid:
                    continue
                try:
                    await self.post(
                        f"/firewalls/{fw['id']}/actions/remove_from_resources",
                        {"remove_from": [{"type": "server", "server": {"id": sid}}]},
                    )
                except ApiError:
                    logger.exception("Failed to remove firewall", firewall=fw["id"], server=sid)

        for private_net in server.get("private_net") or []:
            try:
                await self.post(
                    f"/servers/{sid}/actions/detach_from_network",
                    {"network": private_net["network"]},
                )
            except ApiError:
                logger.exception("Failed to detach network", network=private_net["network"], server=sid)

        await self.delete(f"/servers/{sid}")
        logger.info("Server deleted", server_id=sid, provider="hetzner")
        return None

    # SSH keys

    async def find_or_create_ssh_key(self, name: str, public_key: str) -> SshKey:
        existing = await self.find_ssh_key(name)
        if existing:
            return existing
        response = await self.post("/ssh_keys", {"name": name, "public_key": public_key})
        return self._to_ssh_key(response["ssh_key"])

    async def find_ssh_key(self, name: str) -> SshKey | None:
        response = await self.get("/ssh_keys", {"name": name})
        keys = response.get("ssh_keys") or []
        return self._to_ssh_key(keys[0]) if keys else None

    async def list_ssh_keys(self) -> list[SshKey]:
        response = await self.get("/ssh_keys")
        return [self._to_ssh_key(k) for k in response["ssh_keys"]]

    async def delete_ssh_key(self, key_id: str) -> None:
        await self.delete(f"/ssh_keys/{int(key_id)}")

    # Firewalls

    async def find_or_create_firewall(
        self, name: str, rules: list[FirewallRule] | None = None
    ) -> Firewall:
        existing = await self.find_firewall(name)
        if existing:
            return existing
        payload_rules = [
            {
                "direction": "in",
                "protocol": rule.protocol,
                "port": str(rule.port),
                "source_ips": rule.source_ips,
            }
            for rule in (rules or [SSH_RULE])
        ]
        response = await self.post("/firewalls", {"name": name, "rules": payload_rules})
        return self._to_firewall(response["firewall"])

    async def find_firewall(self, name: str) -> Firewall | None:
        response = await self.get("/firewalls", {"name": name})
        firewalls = response.get("firewalls") or []
        return self._to_firewall(firewalls[0]) if firewalls else None

    async def list_firewalls(self) -> list[Firewall]:
        response = await self.get("/firewalls")
        return [self._to_firewall(f) for f in response["firewalls"]]

    async def delete_firewall(self, firewall_id: str) -> None:
        await self.delete(f"/firewalls/{int(firewall_id)}")

    # Networks

    async def find_or_create_network(
        self,
        name: str,
        location: str | None = None,
        ip_range: str = "10.0.0.0/16",
        subnet_range: str = "10.0.0.0/24",
    ) -> Network:
        existing = await self.find_network(name)
        if existing:
            return existing
        zone = NETWORK_ZONES.get(location or "", DEFAULT_NETWORK_ZONE)
        response = await self.post(
            "/networks",
            {
                "name": name,
                "ip_range": ip_range,
                "subnets": [
                    {"type": "cloud", "ip_range": subnet_range, "network_zone": zone}
                ],
            },
        )
        return self._to_network(response["network"])

    async def find_network(self, name: str) -> Network | None:
        response = await self.get("/networks", {"name": name})
        networks = response.get("networks") or []
        return self._to_network(networks[0]) if networks else None

    async def list_networks(self) -> list[Network]:
        response = await self.get("/networks")
        return [self._to_network(n) for n in response["networks"]]

    async def delete_network(self, network_id: str) -> None:
        await self.delete(f"/networks/{int(network_id)}")

    # Volumes

    async def find_or_create_volume(
        self,
        name: str,
        *,
        size_gb: int,
        location: str,
        labels: dict[str, str] | None = None,
    ) -> Volume:
        existing = await self.find_volume(name)
        if existing:
            return existing
        return await self.create_volume(name, size_gb=size_gb, location=location, labels=labels)

    async def create_volume(
        self,
        name: str,
        *,
        size_gb: int,
        location: str,
        labels: dict[str, str] | None = None,
        volume_format: str = "xfs",
    ) -> Volume:
        response = await self.post(
            "/volumes",
            {
                "name": name,
                "size": size_gb,
                "location": location,
                "labels": labels or {},
                "automount": False,
                "format": volume_format,
            },
        )
        logger.info("Volume created", volume=name, size_gb=size_gb)
        return self._to_volume(response["volume"])

    async def get_volume(self, volume_id: str) -> Volume | None:
        try:
            response = await self.get(f"/volumes/{int(volume_id)}")
        except ApiError as e:
            if e.not_found:
                return None
            raise
        return self._to_volume(response["volume"])

    async def find_volume(self, name: str) -> Volume | None:
        response = await self.get("/volumes", {"name": name})
        volumes = response.get("volumes") or []
        return self._to_volume(volumes[0]) if volumes else None

    async def list_volumes(self, label_selector: str | None = None) -> list[Volume]:
        params = {"label_selector": label_selector} if label_selector else None
        response = await self.get("/volumes", params)
        return [self._to_volume(v) for v in response["volumes"]]

    async def attach_volume(self, volume_id: str, server_id: str) -> Volume | None:
        """Attach a volume, detaching it from any other server first."""
        volume = await self.get_volume(volume_id)
        if volume and volume.server_id and volume.server_id != str(server_id):
            await self.detach_volume(volume_id)
        response = await self.post(
            f"/volumes/{int(volume_id)}/actions/attach",
            {"server": int(server_id), "automount": False},
        )
        if response and response.get("action"):
            await self.wait_for_action(response["action"]["id"])
        return await self.get_volume(volume_id)

    async def detach_volume(self, volume_id: str) -> None:
        try:
            response = await self.post(f"/volumes/{int(volume_id)}/actions/detach")
        except ApiError as e:
            if "not attached" in str(e):
                return
            raise
        if response and response.get("action"):
            await self.wait_for_action(response["action"]["id"])

    async def delete_volume(self, volume_id: str) -> None:
        await self.delete(f"/volumes/{int(volume_id)}")

    async def resize_volume(self, volume_id: str, size_gb: int) -> Volume | None:
        """Grow a volume. Hetzner cannot shrink volumes."""
        response = await self.post(
            f"/volumes/{int(volume_id)}/actions/resize", {"size": size_gb}
        )
        if response and response.get("action"):
            await self.wait_for_action(response["action"]["id"])
        return await self.get_volume(volume_id)

    async def wait_for_action(
        self, action_id: int | str, max_attempts: int = 60, interval: float = 2
    ) -> bool:
        """Poll an asynchronous action until it succeeds.

        Raises:
            BurrowError: If the action reports an error or does not finish.
        """
        for _ in range(max_attempts):
            response = await self.get(f"/actions/{action_id}")
            action = response.get("action") or {}
            status = action.get("status")
            if status == "success":
                return True
            if status == "error":
                message = (action.get("error") or {}).get("message")
                raise BurrowError(f"Action {action_id} failed: {message}")
            await asyncio.sleep(interval)
        raise BurrowError(
            f"Action {action_id} timed out after {max_attempts * interval} seconds"
        )

    async def validate_credentials(self) -> bool:
        try:
            await self.get("/server_types")
        except ApiError as e:
            if e.unauthorized:
                raise ConfigurationError(f"Hetzner credentials invalid: {e}") from e
            raise
        return True

    # Mappers

    @staticmethod
    def _to_server(data: dict[str, Any]) -> Server:
        private_net = data.get("private_net") or []
        return Server(
            id=str(data["id"]),
            name=data["name"],
            status=data.get("status"),
            public_ipv4=((data.get("public_net") or {}).get("ipv4") or {}).get("ip"),
            private_ipv4=private_net[0].get("ip") if private_net else None,
            instance_type=(data.get("server_type") or {}).get("name"),
            image=(data.get("image") or {}).get("name"),
            location=(data.get("datacenter") or {}).get("name"),
            labels=data.get("labels") or {},
            created_at=data.get("created"),
        )

    @staticmethod
    def _to_ssh_key(data: dict[str, Any]) -> SshKey:
        return SshKey(
            id=str(data["id"]),
            name=data["name"],
            fingerprint=data.get("fingerprint"),
            public_key=data.get("public_key"),
            created_at=data.get("created"),
        )

    @staticmethod
    def _to_firewall(data: dict[str, Any]) -> Firewall:
        return Firewall(
            id=str(data["id"]),
            name=data["name"],
            rules=data.get("rules") or [],
            created_at=data.get("created"),
        )

    @staticmethod
    def _to_network(data: dict[str, Any]) -> Network:
        return Network(
            id=str(data["id"]),
            name=data["name"],
            ip_range=data.get("ip_range"),
            subnets=data.get("subnets") or [],
            created_at=data.get("created"),
        )

    @staticmethod
    def _to_volume(data: dict[str, Any]) -> Volume:
        server = data.get("server")
        return Volume(
            id=str(data["id"]),
            name=data["name"],
            size_gb=data.get("size"),
            volume_type=data.get("format") or "xfs",
            status=data.get("status"),
            server_id=str(server) if server is not None else None,
            location=(data.get("location") or {}).get("name"),
            device_path=data.get("linux_device"),
            created_at=data.get("created"),
        )
