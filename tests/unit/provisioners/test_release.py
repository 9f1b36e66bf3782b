"""Tests for ReleaseProvisioner against fake compute and SSH."""
from datetime import UTC, datetime

import pytest

from burrow.core.exceptions import BurrowError, InvalidStateError
from burrow.models import ReleaseState
from burrow.provisioners.release import ReleaseProvisioner, size_gb


DEPLOYED_AT = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


@pytest.fixture
def provisioner(settings, workloads, engine, tunnels, fake_compute) -> ReleaseProvisioner:
    return ReleaseProvisioner(settings, workloads, engine, tunnels, fake_compute)


@pytest.fixture
def node(fake_ssh):
    """Scripted k3s node that answers every probe on the first try."""
    fake_ssh.on("boot-finished", ["ready"])
    fake_ssh.on("ifconfig.me", ["203.0.113.10"])
    fake_ssh.on("ip -4 addr show | grep -oP", ["10.0.0.2"])
    fake_ssh.on("-B2", ["enp7s0"])
    fake_ssh.on("/v2/ && echo ok", ["ok"])
    fake_ssh.on("status.phase", ["Running"])
    fake_ssh.on("echo ready || true", ["ready"])
    fake_ssh.on("echo ok || echo fail", ["ok"])
    return fake_ssh


class TestProvision:
    """Tests for ReleaseProvisioner.provision."""

    async def test_deploys(self, provisioner, make_release, workloads, fake_compute, node, cloudflare):
        release = await make_release()

        await provisioner.provision(release)

        stored = await workloads.get_release(release.id)
        assert stored.state == ReleaseState.DEPLOYED
        assert stored.deployed_at is not None
        assert stored.registry_tag.startswith("localhost:30500/shop-production:")
        assert stored.tunnel_id == "tunnel-1"
        assert "volume:shop-production-postgres" in fake_compute.created
        assert fake_compute.volumes["shop-production-postgres"].size_gb == 10
        assert node.ran("sudo mkfs.xfs")
        assert node.ran("sudo mount /dev/disk/by-id/scsi-0HC_Volume_")
        assert node.ran("kubectl rollout status deployment/shop-production-postgres")
        assert node.ran("kubectl rollout status deployment/shop-production-web")
        cloudflare.ensure_dns_record.assert_awaited_once_with("zone-1", "www.example.com", "tunnel-1")

    async def test_mounted_volume_is_not_reformatted(self, provisioner, make_release, node):
        node.on("echo mounted || echo not", ["mounted"])
        release = await make_release()

        await provisioner.provision(release)

        assert not node.ran("mkfs.xfs")

    async def test_deployed_release_is_left_alone(self, provisioner, make_release, fake_ssh):
        release = await make_release(state=ReleaseState.DEPLOYED)

        await provisioner.provision(release)

        assert fake_ssh.commands == []

    async def test_failure_keeps_deploying(self, provisioner, make_release, workloads, node):
        node.on("echo ok || echo fail", ["fail"])
        release = await make_release()

        with pytest.raises(BurrowError, match="Volume not mounted"):
            await provisioner.provision(release)

        stored = await workloads.get_release(release.id)
        assert stored.state == ReleaseState.DEPLOYING
        assert "Volume not mounted" in stored.last_error


class TestRedeploy:
    async def test_rebuilds_and_reapplies(self, provisioner, make_release, workloads, fake_ssh, cloudflare):
        release = await make_release(
            state=ReleaseState.DEPLOYED, server_id="100", server_ip="203.0.113.10", deployed_at=DEPLOYED_AT
        )

        await provisioner.redeploy(release)

        assert (await workloads.get_release(release.id)).state == ReleaseState.DEPLOYED
        assert fake_ssh.ran("docker build")
        assert fake_ssh.ran("kubectl apply -f -")
        cloudflare.find_or_create_tunnel.assert_awaited_once()

    async def test_requires_deployed(self, provisioner, make_release):
        release = await make_release()

        with pytest.raises(InvalidStateError):
            await provisioner.redeploy(release)

    async def test_failed_redeploy_can_be_retried(self, provisioner, make_release, workloads, fake_ssh):
        release = await make_release(state=ReleaseState.DEPLOYED, server_ip="203.0.113.10", deployed_at=DEPLOYED_AT)
        fake_ssh.on("docker build", ["error: failed to solve"], exit_code=1)

        with pytest.raises(BurrowError):
            await provisioner.redeploy(release)
        assert (await workloads.get_release(release.id)).state == ReleaseState.DEPLOYING

        fake_ssh.on("docker build", [])
        await provisioner.redeploy(release)

        stored = await workloads.get_release(release.id)
        assert stored.state == ReleaseState.DEPLOYED
        assert stored.last_error is None

    async def test_torn_down_release_is_rejected(self, provisioner, make_release):
        release = await make_release(state=ReleaseState.TORN_DOWN, deployed_at=DEPLOYED_AT)

        with pytest.raises(InvalidStateError):
            await provisioner.redeploy(release)

    async def test_reuses_cluster_database_password(self, provisioner, make_release, fake_ssh):
        fake_ssh.on("jsonpath='{.data.DB_PASSWORD}'", ["s3cret"])
        release = await make_release(state=ReleaseState.DEPLOYED)

        assert await provisioner.database_password(release) == "s3cret"


class TestTeardown:
    async def test_removes_volumes_and_infrastructure(self, provisioner, make_release, workloads, fake_compute, node):
        release = await make_release()
        await provisioner.provision(release)

        await provisioner.teardown(release)

        stored = await workloads.get_release(release.id)
        assert stored.state == ReleaseState.TORN_DOWN
        assert stored.tunnel_id is None
        assert fake_compute.volumes == {}
        assert fake_compute.servers == {}

    async def test_torn_down_is_noop(self, provisioner, make_release, fake_ssh):
        release = await make_release(state=ReleaseState.TORN_DOWN)

        await provisioner.teardown(release)

        assert fake_ssh.commands == []


def test_size_gb():
    assert size_gb("10Gi") == 10
    assert size_gb(20) == 20
    with pytest.raises(BurrowError):
        size_gb("Gi")
