"""Normalized resource types shared across compute providers.

Each provider client translates its API responses into these models, so the
provisioners never see provider-specific payloads.
"""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Server(BaseModel):
    """Compute instance.

    Attributes:
        id: Provider identifier.
        name: Server name.
        status: "running", "stopped", "starting", ...
        public_ipv4: Public address once assigned.
        private_ipv4: Address on the attached private network.
        instance_type: e.g. "cpx11", "DEV1-S".
        image: OS image name.
        location: Datacenter or zone (e.g. "ash-dc1", "fr-par-1").
        labels: Labels or tags as a mapping.
        created_at: ISO8601 creation timestamp.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    status: str | None = None
    public_ipv4: str | None = None
    private_ipv4: str | None = None
    instance_type: str | None = None
    image: str | None = None
    location: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    created_at: str | None = None

    @property
    def running(self) -> bool:
        return self.status == "running"


class SshKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    fingerprint: str | None = None
    public_key: str | None = None
    created_at: str | None = None


class Firewall(BaseModel):
    """Firewall or security group. Rules keep the provider's format."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    rules: list[dict[str, Any]] = Field(default_factory=list)
    created_at: str | None = None


class Network(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    ip_range: str | None = None
    subnets: list[Any] = Field(default_factory=list)
    location: str | None = None
    created_at: str | None = None


class Volume(BaseModel):
    """Block storage volume.

    Attributes:
        size_gb: Size in gigabytes.
        volume_type: Storage type (e.g. "b_ssd", "xfs").
        status: "available", "attached", ...
        server_id: Attached server, if any.
        device_path: Linux device path once attached (e.g. /dev/sdb).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    size_gb: int | None = None
    volume_type: str | None = None
    status: str | None = None
    server_id: str | None = None
    location: str | None = None
    device_path: str | None = None
    created_at: str | None = None


class FirewallRule(BaseModel):
    """Inbound TCP rule in provider-neutral form."""

    model_config = ConfigDict(frozen=True)

    port: int
    source_ips: list[str] = Field(default_factory=lambda: ["0.0.0.0/0", "::/0"])
    protocol: str = "tcp"


SSH_RULE = FirewallRule(port=22)
