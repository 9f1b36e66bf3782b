"""Publishing sandboxes and releases through Cloudflare tunnels."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from loguru import logger

from burrow.core import naming
from burrow.core.exceptions import ApiError, ConfigurationError
from burrow.core.shell import join
from burrow.core.types import resolve
from burrow.kubernetes.installer import HTTP_NODE_PORT
from burrow.tunnel.cloudflare import CloudflareClient


if TYPE_CHECKING:
    from burrow.core.types import Settings
    from burrow.execution.engine import ExecutionEngine
    from burrow.models import Release, Sandbox, Workload
    from burrow.store import WorkloadRepository


CLOUDFLARED_IMAGE = "cloudflare/cloudflared:latest"
DEFAULT_APP_PORT = 3000
CATCH_ALL = {"service": "http_status:404"}

ClientFactory = Callable[["Settings"], CloudflareClient]


def _default_client(settings: Settings) -> CloudflareClient:
    return CloudflareClient.from_config(settings.cloudflare)


def ingress_rules(hostnames: list[str], service: str, host_header: bool = False) -> list[dict[str, Any]]:
    """Tunnel ingress for ``hostnames`` followed by the 404 catch-all."""
    rules: list[dict[str, Any]] = []
    for hostname in hostnames:
        rule: dict[str, Any] = {"hostname": hostname, "service": service}
        if host_header:
            rule["originRequest"] = {"httpHostHeader": hostname}
        rules.append(rule)
    rules.append(dict(CATCH_ALL))
    return rules


class TunnelManager:
    """Creates and removes the tunnel, DNS records and edge worker of a workload.

    Args:
        settings: Cloudflare settings and app processes.
        engine: Runs the cloudflared container on sandbox servers.
        workloads: Persists ``tunnel_id`` and ``exposed``.
        client_factory: Builds the Cloudflare client. Tests pass a factory
            returning a client on a mock transport.
    """

    def __init__(
        self,
        settings: Settings,
        engine: ExecutionEngine,
        workloads: WorkloadRepository,
        client_factory: ClientFactory | None = None,
    ):
        self.settings = settings
        self.engine = engine
        self.workloads = workloads
        self._client_factory = client_factory or _default_client
        self._client: CloudflareClient | None = None

    @property
    def configured(self) -> bool:
        return self.settings.cloudflare_configured

    @property
    def client(self) -> CloudflareClient:
        if self._client is None:
            self._client = self._client_factory(self.settings)
        return self._client

    @property
    def domain(self) -> str:
        domain = self.settings.cloudflare.domain
        if not domain:
            raise ConfigurationError("cloudflare.domain is required")
        return domain

    @property
    def app_port(self) -> int:
        web = self.settings.app.processes.get("web")
        return web.port if web and web.port else DEFAULT_APP_PORT

    def hostname(self, sandbox: Sandbox) -> str:
        return naming.hostname(sandbox.slug, self.domain)

    def preview_url(self, sandbox: Sandbox) -> str:
        return f"{naming.preview_url(sandbox.slug, self.domain)}?token={sandbox.access_token}"

    # Sandboxes

    async def setup_compose_tunnel(self, sandbox: Sandbox) -> str:
        """Publish a sandbox's web port behind the edge worker.

        Callers check :attr:`configured` first.

        Returns:
            The tunnel id.

        Raises:
            ApiError: If a Cloudflare call fails.
            RemoteCommandError: If the cloudflared container does not start.
        """
        zone_id = await self.client.get_zone_id(self.domain)
        await self.engine.log_step(sandbox, "tunnel_setup")
        await self.client.ensure_sandbox_iframe_rule(zone_id)

        if await self.healthy(sandbox):
            logger.info("Tunnel already healthy", workload=sandbox.slug, tunnel_id=sandbox.tunnel_id)
            return sandbox.tunnel_id  # type: ignore[return-value]

        hostname = self.hostname(sandbox)
        tunnel = await self.client.find_or_create_tunnel(sandbox.resource_name)
        token = await self.client.get_tunnel_token(tunnel.id)
        await self.client.configure_tunnel_ingress(
            tunnel.id, ingress_rules([hostname], f"http://localhost:{self.app_port}")
        )
        await self.client.ensure_dns_record(zone_id, hostname, tunnel.id)
        await self.client.deploy_worker(sandbox.slug, sandbox.access_token, self.settings.cloudflare)
        await self.client.create_worker_route(zone_id, sandbox.slug, self.domain)
        await self.start_container(sandbox, token)

        sandbox.tunnel_id = tunnel.id
        await self.workloads.save(sandbox)
        logger.info("Tunnel ready", workload=sandbox.slug, hostname=hostname, tunnel_id=tunnel.id)
        return tunnel.id

    async def healthy(self, sandbox: Sandbox) -> bool:
        """True when the tunnel exists, its container runs and Cloudflare sees it connected."""
        if not sandbox.server_ip or not sandbox.tunnel_id:
            return False
        container = naming.container(sandbox.slug, "tunnel")
        check = await self.engine.exec(sandbox, join(["docker", "ps", "-q", "-f", f"name={container}"]))
        if not check.success or not check.output.strip():
            return False
        tunnel = await self.client.get_tunnel(sandbox.tunnel_id)
        return tunnel is not None and tunnel.status != "inactive"

    async def start_container(self, sandbox: Sandbox, token: str) -> None:
        container = naming.container(sandbox.slug, "tunnel")
        await self.engine.exec(sandbox, join(["docker", "rm", "-f", container]), tag="tunnel")
        await self.engine.exec(
            sandbox,
            join(
                [
                    "docker", "run", "-d",
                    "--name", container,
                    "--network", "host",
                    "--restart", "unless-stopped",
                    CLOUDFLARED_IMAGE,
                    "tunnel", "run", "--token", token,
                ]
            ),
            tag="tunnel",
            raise_on_error=True,
        )

    async def stop_container(self, sandbox: Sandbox) -> None:
        container = naming.container(sandbox.slug, "tunnel")
        await self.engine.exec(sandbox, join(["docker", "stop", container]), tag="tunnel")
        await self.engine.exec(sandbox, join(["docker", "rm", container]), tag="tunnel")

    async def teardown(self, workload: Workload) -> None:
        """Remove everything published for a workload and clear ``tunnel_id``.

        Cloudflare and SSH failures are logged and skipped so that teardown
        always reaches the end.
        """
        await self.engine.log_step(workload, "delete_tunnel")
        if workload.workload_type == "sandbox" and workload.server_ip:
            await self.stop_container(workload)  # type: ignore[arg-type]

        await self._ignore_api_errors("delete worker", self._delete_worker(workload))
        await self._ignore_api_errors("delete DNS records", self._delete_dns_records(workload))
        await self._ignore_api_errors("delete tunnel", self._delete_tunnel(workload))

        workload.tunnel_id = None
        await self.workloads.save(workload)

    async def _ignore_api_errors(self, action: str, coro: Any) -> None:
        try:
            await coro
        except ApiError as e:
            logger.warning(f"Could not {action}", error=str(e))

    async def _delete_worker(self, workload: Workload) -> None:
        if workload.workload_type == "sandbox":
            await self.client.delete_worker(workload.slug)

    async def _delete_dns_records(self, workload: Workload) -> None:
        zone_id = await self.client.get_zone_id(self.domain)
        for hostname in self._hostnames(workload):
            record = await self.client.find_dns_record(zone_id, hostname)
            if record:
                await self.client.delete_dns_record(zone_id, record.id)

    async def _delete_tunnel(self, workload: Workload) -> None:
        tunnel_id = workload.tunnel_id
        if not tunnel_id:
            tunnel = await self.client.find_tunnel(workload.resource_name)
            tunnel_id = tunnel.id if tunnel else None
        if tunnel_id:
            await self.client.delete_tunnel(tunnel_id)

    def _hostnames(self, workload: Workload) -> list[str]:
        if workload.workload_type == "sandbox":
            return [naming.hostname(workload.slug, self.domain)]
        return self.release_hostnames(workload)  # type: ignore[arg-type]

    async def set_exposed(self, sandbox: Sandbox, exposed: bool) -> Sandbox:
        """Toggle the public preview.

        A running sandbox is published or unpublished immediately; otherwise
        only the flag changes and provisioning picks it up.

        Raises:
            ConfigurationError: If exposing without Cloudflare credentials.
        """
        if exposed and not self.configured:
            raise ConfigurationError("Cloudflare is not configured; cannot expose sandbox")
        sandbox.exposed = exposed
        await self.workloads.save(sandbox)
        if sandbox.running:
            if exposed:
                await self.setup_compose_tunnel(sandbox)
            elif self.configured:
                await self.teardown(sandbox)
        return sandbox

    # Releases

    def release_hostnames(self, release: Release) -> list[str]:
        hostnames = []
        for config in self.settings.app.processes.values():
            subdomain = resolve(config.subdomain, release.environment)
            if subdomain:
                hostnames.append(f"{subdomain}.{self.domain}")
        for config in self.settings.services.values():
            subdomain = resolve(config.subdomain, release.environment)
            if subdomain:
                hostnames.append(f"{subdomain}.{self.domain}")
        return hostnames

    async def setup_release_tunnel(self, release: Release) -> str | None:
        """Route every release subdomain to the ingress controller.

        Returns:
            The connector token for the in-cluster cloudflared deployment,
            or None when no process has a subdomain.
        """
        hostnames = self.release_hostnames(release)
        if not hostnames:
            return None
        zone_id = await self.client.get_zone_id(self.domain)
        tunnel = await self.client.find_or_create_tunnel(release.resource_name)
        token = await self.client.get_tunnel_token(tunnel.id)
        await self.client.configure_tunnel_ingress(
            tunnel.id,
            ingress_rules(hostnames, f"http://localhost:{HTTP_NODE_PORT}", host_header=True),
        )
        for hostname in hostnames:
            await self.client.ensure_dns_record(zone_id, hostname, tunnel.id)

        release.tunnel_id = tunnel.id
        await self.workloads.save(release)
        logger.info("Release tunnel ready", workload=release.slug, hostnames=hostnames)
        return token
