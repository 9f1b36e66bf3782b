"""Release provisioning: a single-node k3s cluster running the built app."""

from __future__ import annotations

import asyncio
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from loguru import logger

from burrow.core.exceptions import BurrowError, InvalidStateError
from burrow.core.shell import quote
from burrow.core.types import resolve
from burrow.execution.database_ops import DatabaseOps
from burrow.generators.k3s import DATA_ROOT, K3sGenerator, postgres_secret_name
from burrow.kubernetes.builder import DockerBuilder
from burrow.kubernetes.installer import K3sInstaller
from burrow.kubernetes.kubectl import Kubectl
from burrow.models import ReleaseState
from burrow.providers.types import SSH_RULE, FirewallRule
from burrow.provisioners.common import WORKSPACE, Provisioner


if TYPE_CHECKING:
    from burrow.models import Release


K3S_API_RULE = FirewallRule(port=6443, source_ips=["10.0.0.0/16"])
VOLUME_DATABASES = ("postgres", "mysql", "redis")
DEVICE_ATTEMPTS = 30
DEVICE_INTERVAL = 2

DATABASE_ROLLOUT_TIMEOUT = 300
SERVICE_ROLLOUT_TIMEOUT = 120
PROCESS_ROLLOUT_TIMEOUT = 300


def size_gb(size: str | int) -> int:
    """Gigabytes from a size such as ``"10Gi"`` or ``20``."""
    if isinstance(size, int):
        return size
    digits = re.sub(r"\D", "", size)
    if not digits:
        raise BurrowError(f"Invalid volume size: {size!r}")
    return int(digits)


class ReleaseProvisioner(Provisioner):
    """Deploys, redeploys and tears down releases.

    Object names inside the cluster and volume names use the release prefix
    (``<app_name>-<environment>``); servers, firewalls, networks and tunnels
    use the slug-derived resource name.
    """

    poll_interval: float = DEVICE_INTERVAL

    def prefix(self, release: Release) -> str:
        return release.prefix(self.settings.app_name)

    def kubectl(self, release: Release) -> Kubectl:
        return Kubectl(self.engine, release, self.prefix(release))

    def database_ops(self, release: Release) -> DatabaseOps:
        return DatabaseOps(self.engine, self.settings, container_exec=self.kubectl(release).container_exec)

    async def provision(self, release: Release) -> Release:
        """Create the cluster and deploy the release's branch.

        Raises:
            InvalidStateTransitionError: If the release is being torn down.
            K3sInstallError: If the cluster does not come up.
            RemoteCommandError: If a build, apply or rollout fails.
        """
        if release.deployed:
            logger.info("Release already deployed", workload=release.slug)
            return release

        await self._transition(release, ReleaseState.DEPLOYING)
        async with self._recording_failure(release):
            await self.ensure_keypair(release)
            await self.create_infrastructure(
                release,
                target=release.environment,
                labels={"purpose": "release", "release_slug": release.slug},
                firewall_rules=[SSH_RULE, K3S_API_RULE],
            )
            await self.engine.log_step(release, "k3s_install")
            await K3sInstaller(self.engine, release).install()
            await self.provision_volumes(release)
            await self.deploy(release)
            release.deployed_at = datetime.now(UTC)
            await self._transition(release, ReleaseState.DEPLOYED)
        await self.engine.log_step(release, "deployed")
        return release

    async def redeploy(self, release: Release) -> Release:
        """Sync, rebuild and re-apply a deployed release.

        A release left in ``deploying`` by a failed redeploy can be redeployed
        again.

        Raises:
            InvalidStateError: If the release has never been deployed or is
                torn down.
        """
        if release.deployed_at is None or release.destroyed:
            raise InvalidStateError(
                "Release not deployed", workload_id=release.id, current_state=release.state
            )
        await self._transition(release, ReleaseState.DEPLOYING)
        async with self._recording_failure(release):
            await self.deploy(release)
            await self._transition(release, ReleaseState.DEPLOYED)
        await self.engine.log_step(release, "deployed")
        return release

    async def teardown(self, release: Release) -> Release:
        """Delete the tunnel, volumes and infrastructure. A torn down release is left alone."""
        if release.destroyed:
            logger.info("Release already torn down", workload=release.slug)
            return release

        await self._transition(release, ReleaseState.TEARING_DOWN)
        async with self._recording_failure(release):
            if self.tunnels.configured:
                await self.tunnels.teardown(release)
            await self.delete_volumes(release)
            await self.delete_infrastructure(release)
            await self._transition(release, ReleaseState.TORN_DOWN)
        await self.engine.log_step(release, "torn_down")
        return release

    async def deploy(self, release: Release) -> None:
        """Repo sync, image build and push, manifests and rollout."""
        await self.sync_repo(release, release.branch)
        tunnel_token = None
        if self.tunnels.configured:
            tunnel_token = await self.tunnels.setup_release_tunnel(release)

        prefix = self.prefix(release)
        if self.settings.app.processes:
            result = await DockerBuilder(self.engine, release, prefix).build_and_push(
                WORKSPACE,
                dockerfile=self.settings.app.dockerfile,
                platform=self.settings.app.platform,
                category="docker_build",
            )
            release.registry_tag = result.registry_tag
            await self.workloads.save(release)

        generator = K3sGenerator(
            self.settings,
            prefix=prefix,
            zone=self.settings.cloudflare.domain,
            target=release.environment,
            db_password=await self.database_password(release),
            registry_tag=release.registry_tag,
            tunnel_token=tunnel_token,
        )
        kubectl = self.kubectl(release)
        await kubectl.apply(generator.generate(), category="deploy_manifests")
        await self.wait_for_rollout(release, kubectl)

    async def database_password(self, release: Release) -> str | None:
        """Configured password, else the one already in the cluster, else None."""
        postgres = self.settings.databases.get("postgres")
        if postgres is None:
            return None
        if postgres.password:
            return postgres.password
        existing = await self.run(
            release,
            f"kubectl get secret {quote(postgres_secret_name(self.prefix(release)))} "
            "-o jsonpath='{.data.DB_PASSWORD}' 2>/dev/null | base64 -d",
            raise_on_error=False,
        )
        return existing.output.strip() or None

    async def wait_for_rollout(self, release: Release, kubectl: Kubectl) -> None:
        await self.engine.log_step(release, "wait_rollout")
        prefix = self.prefix(release)
        waited = set()
        for db_type in self.settings.databases:
            if db_type in ("postgres", "redis"):
                waited.add(db_type)
                await kubectl.rollout_status(f"{prefix}-{db_type}", timeout=DATABASE_ROLLOUT_TIMEOUT)
        for name in self.settings.services:
            if name not in waited:
                await kubectl.rollout_status(f"{prefix}-{name}", timeout=SERVICE_ROLLOUT_TIMEOUT)
        if release.registry_tag:
            for name in self.settings.app.processes:
                await kubectl.rollout_status(f"{prefix}-{name}", timeout=PROCESS_ROLLOUT_TIMEOUT)

    # Volumes

    def volume_name(self, release: Release, db_type: str) -> str:
        return f"{self.prefix(release)}-{db_type}"

    async def provision_volumes(self, release: Release) -> None:
        """Create, attach and mount a block volume per configured database."""
        for db_type, config in self.settings.databases.items():
            if db_type not in VOLUME_DATABASES:
                continue
            size = resolve(config.volume_size, release.environment)
            if not size:
                continue
            await self.engine.log_step(release, f"volume_{db_type}")
            name = self.volume_name(release, db_type)
            volume = await self.compute.find_or_create_volume(
                name,
                size_gb=size_gb(size),
                location=self.settings.compute.location,
                labels={"purpose": "release"},
            )
            if volume.server_id != release.server_id:
                await self.compute.attach_volume(volume.id, release.server_id or "")
            device_path = await self.wait_for_device_path(volume.id)
            await self.wait_for_device(release, device_path)
            await self.mount_volume(release, device_path, f"{DATA_ROOT}/{name}")

    async def wait_for_device_path(self, volume_id: str) -> str:
        for _ in range(DEVICE_ATTEMPTS):
            volume = await self.compute.get_volume(volume_id)
            if volume and volume.device_path:
                return volume.device_path
            await asyncio.sleep(self.poll_interval)
        raise BurrowError(f"Volume {volume_id} has no device path after attachment")

    async def wait_for_device(self, release: Release, device_path: str) -> None:
        for _ in range(DEVICE_ATTEMPTS):
            check = await self.run(
                release, f"test -b {quote(device_path)} && echo ready || true", raise_on_error=False
            )
            if "ready" in check.output:
                return
            await asyncio.sleep(self.poll_interval)
        raise BurrowError(f"Device {device_path} not available on server")

    async def mount_volume(self, release: Release, device_path: str, mount_path: str) -> None:
        """Format on first use, mount, and persist the mount in fstab.

        Raises:
            BurrowError: If the mount point is not mounted afterwards.
        """
        device = quote(device_path)
        path = quote(mount_path)
        mounted = await self.run(
            release, f"mountpoint -q {path} && echo mounted || echo not", raise_on_error=False
        )
        if "mounted" in mounted.output.split():
            return

        await self.run(release, f"sudo mkdir -p {path}")
        filesystem = await self.run(release, f"sudo blkid {device} || true", raise_on_error=False)
        if "TYPE=" not in filesystem.output:
            await self.run(release, f"sudo mkfs.xfs {device}")
        await self.run(release, f"sudo mount {device} {path}")

        fstab = await self.run(release, f"grep {path} /etc/fstab || true", raise_on_error=False)
        if mount_path not in fstab.output:
            await self.run(
                release,
                f"UUID=$(sudo blkid -s UUID -o value {device}) && "
                f'echo "UUID=$UUID {mount_path} xfs defaults,nofail 0 2" | sudo tee -a /etc/fstab',
            )

        verify = await self.run(
            release, f"mountpoint -q {path} && echo ok || echo fail", raise_on_error=False
        )
        if "ok" not in verify.output.split():
            raise BurrowError(f"Volume not mounted at {mount_path}")

    async def delete_volumes(self, release: Release) -> None:
        for db_type in self.settings.databases:
            volume = await self.compute.find_volume(self.volume_name(release, db_type))
            if volume is None:
                continue
            await self.engine.log_step(release, f"delete_volume_{db_type}")
            if volume.server_id:
                await self.compute.detach_volume(volume.id)
            await self.compute.delete_volume(volume.id)
