"""ComputeClient protocol: the uniform infrastructure surface of a provider."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable


if TYPE_CHECKING:
    from burrow.providers.types import (
        Firewall,
        FirewallRule,
        Network,
        Server,
        SshKey,
        Volume,
    )


@runtime_checkable
class ComputeClient(Protocol):
    """Operations every compute provider client offers.

    Identifiers are strings regardless of the provider's native type, and
    every result is a normalized value from :mod:`burrow.providers.types`.
    """

    async def find_or_create_server(self, name: str, **kwargs: Any) -> Server:
        """Return the named server, creating it with ``kwargs`` if absent."""
        ...

    async def create_server(
        self,
        name: str,
        *,
        server_type: str,
        image: str = ...,
        location: str | None = None,
        ssh_keys: list[str] | None = None,
        user_data: str | None = None,
        labels: dict[str, str] | None = None,
        firewall_ids: list[str] | None = None,
        network_ids: list[str] | None = None,
    ) -> Server: ...

    async def get_server(self, server_id: str) -> Server | None: ...

    async def find_server(self, name: str) -> Server | None: ...

    async def list_servers(self, label_selector: str | None = None) -> list[Server]: ...

    async def wait_for_server(
        self, server_id: str, max_attempts: int = 60, interval: float = 5
    ) -> Server:
        """Poll until the server is running.

        Raises:
            BurrowError: If the server never reaches ``running``.
        """
        ...

    async def delete_server(self, server_id: str) -> None:
        """Delete a server. Deleting a missing server is a no-op."""
        ...

    async def find_or_create_ssh_key(self, name: str, public_key: str) -> SshKey: ...

    async def find_ssh_key(self, name: str) -> SshKey | None: ...

    async def list_ssh_keys(self) -> list[SshKey]: ...

    async def delete_ssh_key(self, key_id: str) -> None: ...

    async def find_or_create_firewall(
        self, name: str, rules: list[FirewallRule] | None = None
    ) -> Firewall:
        """Return the named firewall, creating it (SSH only by default)."""
        ...

    async def find_firewall(self, name: str) -> Firewall | None: ...

    async def list_firewalls(self) -> list[Firewall]: ...

    async def delete_firewall(self, firewall_id: str) -> None: ...

    async def find_or_create_network(self, name: str, location: str | None = None) -> Network: ...

    async def find_network(self, name: str) -> Network | None: ...

    async def list_networks(self) -> list[Network]: ...

    async def delete_network(self, network_id: str) -> None: ...

    async def find_or_create_volume(
        self,
        name: str,
        *,
        size_gb: int,
        location: str,
        labels: dict[str, str] | None = None,
    ) -> Volume: ...

    async def create_volume(
        self,
        name: str,
        *,
        size_gb: int,
        location: str,
        labels: dict[str, str] | None = None,
    ) -> Volume: ...

    async def get_volume(self, volume_id: str) -> Volume | None: ...

    async def find_volume(self, name: str) -> Volume | None: ...

    async def list_volumes(self, label_selector: str | None = None) -> list[Volume]: ...

    async def attach_volume(self, volume_id: str, server_id: str) -> Volume | None: ...

    async def detach_volume(self, volume_id: str) -> None: ...

    async def delete_volume(self, volume_id: str) -> None: ...

    async def validate_credentials(self) -> bool:
        """Check the credentials against the API.

        Raises:
            ConfigurationError: If the API rejects the credentials.
        """
        ...
