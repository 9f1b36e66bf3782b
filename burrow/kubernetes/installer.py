"""k3s installation on a fresh release server."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, NamedTuple

from loguru import logger

from burrow.core.exceptions import BurrowError
from burrow.core.naming import DEFAULT_USER
from burrow.core.shell import feed, quote
from burrow.kubernetes import resources
from burrow.kubernetes.builder import REGISTRY_PORT


if TYPE_CHECKING:
    from burrow.execution.engine import ExecutionEngine
    from burrow.models import CommandExecution, Release


CLUSTER_CIDR = "10.42.0.0/16"
SERVICE_CIDR = "10.43.0.0/16"
HTTP_NODE_PORT = 30080
HTTPS_NODE_PORT = 30443
INGRESS_NGINX_MANIFEST = (
    "https://raw.githubusercontent.com/kubernetes/ingress-nginx/"
    "controller-v1.9.4/deploy/static/provider/baremetal/deploy.yaml"
)
KUBECONFIG = f"/home/{DEFAULT_USER}/.kube/config"

CLOUD_INIT_ATTEMPTS = 120
NODE_READY_ATTEMPTS = 30
REGISTRY_ATTEMPTS = 60
INGRESS_ATTEMPTS = 30

PRIVATE_IP_PATTERN = (
    r"(?<=inet\s)(10\.\d+\.\d+\.\d+|172\.(1[6-9]|2[0-9]|3[01])\.\d+\.\d+|192\.168\.\d+\.\d+)"
)

REGISTRY_MANIFEST = f"""\
apiVersion: v1
kind: PersistentVolumeClaim
metadata:
  name: registry-pvc
  namespace: default
spec:
  accessModes: [ReadWriteOnce]
  resources:
    requests:
      storage: 10Gi
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: registry
  namespace: default
spec:
  replicas: 1
  selector:
    matchLabels:
      app: registry
  template:
    metadata:
      labels:
        app: registry
    spec:
      priorityClassName: platform
      containers:
      - name: registry
        image: registry:2
        ports:
        - containerPort: 5000
        volumeMounts:
        - name: registry-data
          mountPath: /var/lib/registry
      volumes:
      - name: registry-data
        persistentVolumeClaim:
          claimName: registry-pvc
---
apiVersion: v1
kind: Service
metadata:
  name: registry
  namespace: default
spec:
  type: NodePort
  selector:
    app: registry
  ports:
  - port: 5000
    targetPort: 5000
    nodePort: {REGISTRY_PORT}
"""

REGISTRIES_YAML = f"""\
mirrors:
  "localhost:{REGISTRY_PORT}":
    endpoint:
      - "http://registry.default.svc.cluster.local:5000"
      - "http://localhost:{REGISTRY_PORT}"
"""


class K3sInstallError(BurrowError):
    """Raised when the node does not reach a ready state."""


class NetworkInfo(NamedTuple):
    public_ip: str
    private_ip: str
    interface: str


def k3s_args(network: NetworkInfo) -> list[str]:
    """Server flags binding k3s to the private network."""
    return [
        "--disable traefik",
        "--disable servicelb",
        "--flannel-backend=wireguard-native",
        f"--flannel-iface={network.interface}",
        f"--bind-address={network.private_ip}",
        f"--advertise-address={network.private_ip}",
        f"--node-ip={network.private_ip}",
        f"--node-external-ip={network.public_ip}",
        "--write-kubeconfig-mode=644",
        f"--cluster-cidr={CLUSTER_CIDR}",
        f"--service-cidr={SERVICE_CIDR}",
    ]


class K3sInstaller:
    """Installs docker, k3s, the image registry and ingress-nginx.

    Each install step is skipped when its component is already running, so
    the installer can run again on a partly provisioned server.

    Args:
        engine: Execution engine.
        release: Release whose server is set up.
        poll_interval: Seconds between readiness probes.
    """

    def __init__(self, engine: ExecutionEngine, release: Release, poll_interval: float = 5):
        self.engine = engine
        self.release = release
        self.poll_interval = poll_interval

    async def _run(
        self,
        command: str,
        raise_on_error: bool = True,
        timeout: float | None = None,
        category: str | None = None,
    ) -> CommandExecution:
        return await self.engine.exec(
            self.release,
            command,
            category=category,
            raise_on_error=raise_on_error,
            timeout=timeout,
        )

    async def _poll(self, command: str, marker: str, attempts: int) -> bool:
        for _ in range(attempts):
            execution = await self._run(command, raise_on_error=False)
            if marker in execution.output:
                return True
            await asyncio.sleep(self.poll_interval)
        return False

    async def install(self) -> None:
        """Run every installation step in order.

        Raises:
            K3sInstallError: If cloud-init, the private network or the
                registry never becomes ready.
            RemoteCommandError: If a required command fails.
        """
        await self.wait_for_cloud_init()
        network = await self.discover_network()
        await self.install_docker()
        await self.configure_docker(network.private_ip)
        await self.configure_registries()
        await self.install_k3s(network)
        await self.setup_kubeconfig(network.private_ip)
        await self.apply(resources.priority_class_yaml(), category="deploy_priority_classes")
        await self.apply(REGISTRY_MANIFEST, category="deploy_registry")
        await self.wait_for_registry()
        await self.deploy_ingress_controller()
        logger.info("k3s installed", workload=self.release.slug, private_ip=network.private_ip)

    async def uninstall(self) -> None:
        await self._run("sudo /usr/local/bin/k3s-uninstall.sh", raise_on_error=False)
        await self._run("sudo apt-get remove -y docker.io docker-compose", raise_on_error=False)
        await self._run("sudo rm -rf /etc/rancher /var/lib/rancher /etc/docker", raise_on_error=False)

    async def wait_for_cloud_init(self) -> None:
        await self.engine.log_step(self.release, "wait_cloud_init")
        ready = await self._poll(
            "test -f /var/lib/cloud/instance/boot-finished && echo ready",
            "ready",
            CLOUD_INIT_ATTEMPTS,
        )
        if not ready:
            raise K3sInstallError(
                f"Cloud-init did not complete within {CLOUD_INIT_ATTEMPTS * self.poll_interval:.0f} seconds"
            )

    async def discover_network(self) -> NetworkInfo:
        """Public address, private address and the private interface.

        Raises:
            K3sInstallError: If the server has no private network address.
        """
        public = await self._run("curl -s ifconfig.me || curl -s icanhazip.com", category="discover_network")
        public_ip = public.output.strip()

        private = await self._run(f"ip -4 addr show | grep -oP {quote(PRIVATE_IP_PATTERN)}")
        candidates = private.output.strip().splitlines()
        if not candidates:
            raise K3sInstallError(
                "Could not detect private IP. Ensure server has a private network attached."
            )
        private_ip = candidates[0]

        iface = await self._run(
            f"ip -4 addr show | grep {quote(private_ip)} -B2 | grep -oP '(?<=: )[^:@]+(?=:)'",
            raise_on_error=False,
        )
        lines = iface.output.strip().splitlines()
        return NetworkInfo(public_ip, private_ip, lines[-1] if lines else "eth0")

    async def install_docker(self) -> None:
        check = await self._run("docker --version && systemctl is-active docker", raise_on_error=False)
        if check.success:
            logger.debug("Docker already installed", workload=self.release.slug)
            return
        await self._run(
            "export DEBIAN_FRONTEND=noninteractive && "
            "sudo apt-get update -qq && "
            "sudo apt-get install -y -qq docker.io docker-compose && "
            "sudo systemctl enable docker && "
            "sudo systemctl start docker && "
            f"sudo usermod -aG docker {DEFAULT_USER}",
            category="install_docker",
        )

    async def configure_docker(self, private_ip: str) -> None:
        daemon = json.dumps(
            {"insecure-registries": [f"{private_ip}:5001", f"localhost:{REGISTRY_PORT}"]}
        )
        await self._run("sudo mkdir -p /etc/docker", category="configure_docker")
        await self._run(feed("sudo tee /etc/docker/daemon.json > /dev/null", daemon))
        await self._run("sudo systemctl restart docker")

    async def configure_registries(self) -> None:
        await self._run("sudo mkdir -p /etc/rancher/k3s", category="configure_k3s_registries")
        await self._run(feed("sudo tee /etc/rancher/k3s/registries.yaml > /dev/null", REGISTRIES_YAML))

    async def install_k3s(self, network: NetworkInfo) -> None:
        check = await self._run("kubectl get nodes 2>/dev/null | grep -q Ready", raise_on_error=False)
        if check.success:
            logger.debug("k3s already installed", workload=self.release.slug)
            return
        exec_flags = " ".join(k3s_args(network))
        await self._run(
            f"curl -sfL https://get.k3s.io | sudo INSTALL_K3S_EXEC={quote(exec_flags)} sh -",
            timeout=300,
            category="install_k3s",
        )
        if not await self._poll("sudo kubectl get nodes", "Ready", NODE_READY_ATTEMPTS):
            logger.warning("k3s node not Ready yet", workload=self.release.slug)

    async def setup_kubeconfig(self, private_ip: str) -> None:
        home = f"/home/{DEFAULT_USER}"
        await self._run(
            f"mkdir -p {home}/.kube && "
            f"sudo cp /etc/rancher/k3s/k3s.yaml {KUBECONFIG} && "
            f"sudo sed -i 's/127.0.0.1/{private_ip}/g' {KUBECONFIG} && "
            f"sudo chown -R {DEFAULT_USER}:{DEFAULT_USER} {home}/.kube && "
            f"chmod 600 {KUBECONFIG}",
            category="setup_kubeconfig",
        )

    async def apply(self, manifest: str, category: str | None = None) -> CommandExecution:
        """Apply inline YAML, or a manifest URL."""
        if manifest.startswith("http"):
            return await self._run(
                f"kubectl --kubeconfig={KUBECONFIG} apply -f {quote(manifest)}", category=category
            )
        return await self._run(feed(f"kubectl --kubeconfig={KUBECONFIG} apply -f -", manifest), category=category)

    async def wait_for_registry(self) -> None:
        await self.engine.log_step(self.release, "wait_registry")
        ready = await self._poll(
            f"curl -sf http://localhost:{REGISTRY_PORT}/v2/ && echo ok", "ok", REGISTRY_ATTEMPTS
        )
        if not ready:
            raise K3sInstallError("Registry did not become ready")

    async def deploy_ingress_controller(self) -> None:
        await self.apply(INGRESS_NGINX_MANIFEST, category="deploy_ingress")
        await self._poll(
            f"kubectl --kubeconfig={KUBECONFIG} -n ingress-nginx get pods "
            "-l app.kubernetes.io/component=controller -o jsonpath='{.items[0].status.phase}'",
            "Running",
            INGRESS_ATTEMPTS,
        )
        patch = json.dumps(
            [
                {"op": "replace", "path": "/spec/ports/0/nodePort", "value": HTTP_NODE_PORT},
                {"op": "replace", "path": "/spec/ports/1/nodePort", "value": HTTPS_NODE_PORT},
            ],
            separators=(",", ":"),
        )
        await self._run(
            f"kubectl --kubeconfig={KUBECONFIG} patch svc ingress-nginx-controller "
            f"-n ingress-nginx --type=json -p={quote(patch)}",
            raise_on_error=False,
        )
