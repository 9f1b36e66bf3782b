"""Compute provider variants and the registry that builds them.

A provider is selected in settings by its ``provider`` key::

    compute:
      provider: hetzner
      api_key: ...
      ssh_key_path: ~/.ssh/id_ed25519
"""
from pathlib import Path
from typing import Annotated, Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from burrow.core.exceptions import ConfigurationError, UnknownProviderError
from burrow.providers.base import ComputeClient
from burrow.providers.hetzner import HetznerClient
from burrow.providers.scaleway import ScalewayClient


class HetznerProvider(BaseModel):
    """Hetzner Cloud settings.

    Attributes:
        api_key: Project API token.
        server_type: Server type, or a mapping of target to server type.
        location: Location code (e.g. "ash", "fsn1").
        image: OS image.
        ssh_key_path: Operator private key. Its ``.pub`` is authorized on
            every server next to the workload key.
    """

    model_config = ConfigDict(frozen=True)

    provider: Literal["hetzner"] = "hetzner"
    api_key: str | None = None
    server_type: str | dict[str, str] = "cpx11"
    location: str = "ash"
    image: str = "ubuntu-22.04"
    ssh_key_path: str | None = None

    @property
    def supports_self_hosted_database(self) -> bool:
        return True

    @property
    def vm_based(self) -> bool:
        return True

    def validate(self) -> None:  # type: ignore[override]
        """Raise ConfigurationError unless credentials and key files exist."""
        if not self.api_key:
            raise ConfigurationError("compute.api_key is required for Hetzner")
        if not self.ssh_key_path:
            raise ConfigurationError("compute.ssh_key_path is required")
        private = Path(self.ssh_key_path).expanduser()
        if not private.exists():
            raise ConfigurationError(f"SSH private key not found: {self.ssh_key_path}")
        if not Path(f"{private}.pub").exists():
            raise ConfigurationError(f"SSH public key not found: {self.ssh_key_path}.pub")

    def operator_public_key(self) -> str | None:
        if not self.ssh_key_path:
            return None
        public = Path(f"{Path(self.ssh_key_path).expanduser()}.pub")
        if not public.exists():
            return None
        return public.read_text().strip()

    def client(self, transport: httpx.AsyncBaseTransport | None = None) -> ComputeClient:
        return HetznerClient(api_key=self.api_key, transport=transport)


class ScalewayProvider(BaseModel):
    """Scaleway settings."""

    model_config = ConfigDict(frozen=True)

    provider: Literal["scaleway"] = "scaleway"
    api_key: str | None = None
    project_id: str | None = None
    zone: str = "fr-par-1"
    server_type: str | dict[str, str] = "DEV1-S"
    image: str = "ubuntu_jammy"

    @property
    def supports_self_hosted_database(self) -> bool:
        return True

    @property
    def vm_based(self) -> bool:
        return True

    @property
    def location(self) -> str:
        return self.zone

    def validate(self) -> None:  # type: ignore[override]
        if not self.api_key:
            raise ConfigurationError("compute.api_key is required for Scaleway")
        if not self.project_id:
            raise ConfigurationError("compute.project_id is required for Scaleway")

    def operator_public_key(self) -> str | None:
        return None

    def client(self, transport: httpx.AsyncBaseTransport | None = None) -> ComputeClient:
        return ScalewayClient(
            api_key=self.api_key,
            project_id=self.project_id,
            zone=self.zone,
            transport=transport,
        )


ComputeProvider = Annotated[
    HetznerProvider | ScalewayProvider, Field(discriminator="provider")
]

PROVIDERS: dict[str, type[HetznerProvider] | type[ScalewayProvider]] = {
    "hetzner": HetznerProvider,
    "scaleway": ScalewayProvider,
}

_adapter: TypeAdapter[HetznerProvider | ScalewayProvider] = TypeAdapter(ComputeProvider)


def build(provider: str, **values: Any) -> HetznerProvider | ScalewayProvider:
    """Build a provider variant from its key and settings values.

    Raises:
        UnknownProviderError: If ``provider`` is not registered.
        ConfigurationError: If the values fail validation.
    """
    if provider not in PROVIDERS:
        raise UnknownProviderError(provider)
    try:
        return _adapter.validate_python({**values, "provider": provider})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {provider} settings: {e}") from e
