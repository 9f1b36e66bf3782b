"""Sandbox and Release, the units of provisioning."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from typing import ClassVar, Literal

from pydantic import BaseModel, Field, model_validator

from burrow.core import naming
from burrow.models.state import (
    IN_FLIGHT_STATES,
    TERMINAL_STATES,
    ReleaseState,
    SandboxState,
    validate_transition,
)


WorkloadType = Literal["sandbox", "release"]


def _now() -> datetime:
    return datetime.now(UTC)


class Workload(BaseModel):
    """Fields shared by sandboxes and releases.

    Attributes:
        id: Store identifier, assigned on insert.
        slug: 6 hex chars every resource name derives from. Immutable.
        server_id: Provider server identifier once created.
        server_ip: Public IPv4 of the server.
        ssh_public_key: Workload public key (OpenSSH format).
        ssh_private_key: Workload private key (PEM).
        tunnel_id: Cloudflare tunnel backing the public hostnames.
        last_error: Message of the most recent failed operation.
    """

    workload_type: ClassVar[WorkloadType]

    id: int | None = None
    slug: str = Field(default_factory=naming.generate_slug)
    server_id: str | None = None
    server_ip: str | None = None
    ssh_public_key: str | None = None
    ssh_private_key: str | None = None
    tunnel_id: str | None = None
    last_error: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @model_validator(mode="after")
    def _check_slug(self) -> Workload:
        naming.validate_slug(self.slug)
        return self

    @property
    def resource_name(self) -> str:
        return naming.resource(self.slug)

    @property
    def has_keypair(self) -> bool:
        return bool(self.ssh_public_key and self.ssh_private_key)

    @property
    def in_flight(self) -> bool:
        return self.state in IN_FLIGHT_STATES  # type: ignore[attr-defined]

    @property
    def destroyed(self) -> bool:
        return self.state in TERMINAL_STATES  # type: ignore[attr-defined]

    def transition(self, target: SandboxState | ReleaseState) -> None:
        """Move to ``target`` after validating the transition.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed.
        """
        validate_transition(self.state, target)  # type: ignore[attr-defined]
        self.state = target  # type: ignore[attr-defined]
        self.updated_at = _now()


class Sandbox(Workload):
    """Development environment running the app under docker compose.

    Attributes:
        state: Lifecycle state.
        exposed: Whether the preview is published through a tunnel.
        branch: Working branch. Defaults to the naming branch for the slug.
        access_token: Token the edge worker requires before proxying.
    """

    workload_type: ClassVar[WorkloadType] = "sandbox"

    state: SandboxState = SandboxState.PENDING
    exposed: bool = False
    branch: str | None = None
    access_token: str = Field(default_factory=lambda: secrets.token_urlsafe(32))

    @model_validator(mode="after")
    def _default_branch(self) -> Sandbox:
        if not self.branch:
            self.branch = naming.branch(self.slug)
        return self

    @property
    def running(self) -> bool:
        return self.state == SandboxState.RUNNING


class Release(Workload):
    """Production-style deployment on a single-node k3s cluster.

    Attributes:
        state: Lifecycle state.
        environment: Target name used to resolve per-target settings.
        branch: Branch deployed.
        registry_tag: Image tag of the last build pushed.
        deployed_at: Time of the first successful deploy.
    """

    workload_type: ClassVar[WorkloadType] = "release"

    state: ReleaseState = ReleaseState.PENDING
    environment: str = "production"
    branch: str = "main"
    registry_tag: str | None = None
    deployed_at: datetime | None = None

    @property
    def deployed(self) -> bool:
        return self.state == ReleaseState.DEPLOYED

    def prefix(self, app_name: str) -> str:
        return naming.release_prefix(app_name, self.environment)
