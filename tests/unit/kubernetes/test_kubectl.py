"""Tests for Kubectl command construction over the fake transport."""
import pytest

from burrow.core.exceptions import InvalidStateError, RemoteCommandError
from burrow.kubernetes.kubectl import Kubectl
from burrow.models import ReleaseState


@pytest.fixture
async def release(make_release):
    return await make_release(state=ReleaseState.DEPLOYED, server_ip="203.0.113.10")


@pytest.fixture
def kubectl(engine, release) -> Kubectl:
    return Kubectl(engine, release, "shop-production")


class TestKubectl:
    async def test_apply_feeds_manifest(self, kubectl, fake_ssh):
        await kubectl.apply("kind: Secret\n", category="deploy_manifests")

        assert fake_ssh.commands[-1].startswith("kubectl apply -f - <<")
        assert "kind: Secret" in fake_ssh.commands[-1]

    async def test_apply_failure_raises(self, kubectl, fake_ssh):
        fake_ssh.on("kubectl apply", ["error: invalid"], exit_code=1)

        with pytest.raises(RemoteCommandError):
            await kubectl.apply("kind: Broken\n")

    async def test_get_parses_json(self, kubectl, fake_ssh):
        fake_ssh.on("kubectl get deployment", ['{"kind": "Deployment", "spec": {"replicas": 2}}'])

        result = await kubectl.get("deployment", "shop-production-web")

        assert result == {"kind": "Deployment", "spec": {"replicas": 2}}
        assert fake_ssh.commands[-1] == "kubectl get deployment shop-production-web -n default -o json"

    async def test_get_returns_none_on_failure(self, kubectl, fake_ssh):
        fake_ssh.on("kubectl get", ["NotFound"], exit_code=1)

        assert await kubectl.get("deployment", "missing") is None

    async def test_scale_and_restart(self, kubectl, fake_ssh):
        await kubectl.scale("shop-production-web", 3)
        await kubectl.rollout_restart("shop-production-worker")

        assert fake_ssh.commands == [
            "kubectl scale deployment/shop-production-web --replicas=3 -n default",
            "kubectl rollout restart deployment/shop-production-worker -n default",
        ]

    async def test_container_exec_targets_process_pod(self, kubectl, fake_ssh, release):
        fake_ssh.on("kubectl get pods", ["'shop-production-web-7d9f-abcde'"])
        fake_ssh.on("kubectl exec", ["1"])

        execution = await kubectl.container_exec(release, "psql -c 'select 1'")

        assert execution.output == "1"
        assert fake_ssh.commands[-1].startswith("kubectl exec shop-production-web-7d9f-abcde -n default -- sh -c ")

    async def test_container_exec_without_pod(self, kubectl, fake_ssh, release):
        fake_ssh.on("kubectl get pods", [])

        with pytest.raises(InvalidStateError):
            await kubectl.container_exec(release, "ls", process="worker")
