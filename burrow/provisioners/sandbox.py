"""Sandbox provisioning: a VM running the app under docker compose."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from burrow.core.shell import feed, in_dir, quote
from burrow.core.types import SANDBOX_TARGET
from burrow.generators.compose import ComposeGenerator
from burrow.models import SandboxState
from burrow.provisioners.common import WORKSPACE, Provisioner


if TYPE_CHECKING:
    from burrow.models import CommandExecution, Sandbox


COMPOSE_FILE = "docker-compose.generated.yml"
APT_PACKAGES = "curl git jq rsync docker.io docker-compose-v2 ca-certificates gnupg"
COMPOSE_TIMEOUT = 300

NODE_INSTALL = (
    "curl -fsSL https://deb.nodesource.com/setup_20.x | sudo bash - "
    "&& sudo apt-get install -y nodejs"
)
CLAUDE_INSTALL = "sudo npm install -g @anthropic-ai/claude-code"
GH_INSTALL = (
    "curl -fsSL https://cli.github.com/packages/githubcli-archive-keyring.gpg "
    "| sudo dd of=/usr/share/keyrings/githubcli-archive-keyring.gpg "
    '&& echo "deb [arch=$(dpkg --print-architecture) '
    'signed-by=/usr/share/keyrings/githubcli-archive-keyring.gpg] '
    'https://cli.github.com/packages stable main" '
    "| sudo tee /etc/apt/sources.list.d/github-cli.list > /dev/null "
    "&& sudo apt update && sudo apt install gh -y"
)

# (binary, step category, install command)
TOOLS = [
    ("node", "nodejs", NODE_INSTALL),
    ("claude", "claude_code", CLAUDE_INSTALL),
    ("gh", "gh_cli", GH_INSTALL),
]


def gitignore_command(entry: str) -> str:
    """Append ``entry`` to the workspace .gitignore unless already listed."""
    e = quote(entry)
    return f"grep -qxF {e} {WORKSPACE}/.gitignore 2>/dev/null || echo {e} >> {WORKSPACE}/.gitignore"


def env_file(values: dict[str, str]) -> str:
    return "".join(f"{key}={value}\n" for key, value in values.items())


class SandboxProvisioner(Provisioner):
    """Provisions and destroys development sandboxes.

    ``provision`` on a running sandbox and ``deprovision`` on a stopped one
    return without doing anything. A failed run leaves the sandbox in its
    in-flight state with ``last_error`` set, and can be run again.
    """

    async def provision(self, sandbox: Sandbox) -> Sandbox:
        """Bring a sandbox from pending to running.

        Raises:
            InvalidStateTransitionError: If the sandbox is stopping or stopped.
            RemoteCommandError: If a required remote step fails.
            ConnectivityError: If the server never accepts SSH.
            ApiError: If a provider or Cloudflare call fails.
        """
        if sandbox.running:
            logger.info("Sandbox already running", workload=sandbox.slug)
            return sandbox

        await self._transition(sandbox, SandboxState.PROVISIONING)
        async with self._recording_failure(sandbox):
            await self.ensure_keypair(sandbox)
            await self.create_infrastructure(
                sandbox,
                target=SANDBOX_TARGET,
                labels={"purpose": "sandbox", "sandbox_slug": sandbox.slug},
            )
            await self.install_software(sandbox)
            await self.setup_application(sandbox)
            if sandbox.exposed and self.tunnels.configured:
                await self.tunnels.setup_compose_tunnel(sandbox)
            await self._transition(sandbox, SandboxState.RUNNING)
        await self.engine.log_step(sandbox, "ready")
        return sandbox

    async def deprovision(self, sandbox: Sandbox) -> Sandbox:
        """Destroy every resource of a sandbox and mark it stopped.

        The sandbox row is kept.
        """
        if sandbox.destroyed:
            logger.info("Sandbox already stopped", workload=sandbox.slug)
            return sandbox

        await self._transition(sandbox, SandboxState.STOPPING)
        async with self._recording_failure(sandbox):
            if self.tunnels.configured:
                await self.tunnels.teardown(sandbox)
            if sandbox.server_ip and await self.compute.find_server(sandbox.resource_name):
                await self.compose(sandbox, "down", category="stop_containers", raise_on_error=False)
            await self.delete_infrastructure(sandbox)
            await self._transition(sandbox, SandboxState.STOPPED)
        await self.engine.log_step(sandbox, "stopped")
        return sandbox

    async def install_software(self, sandbox: Sandbox) -> None:
        await self.run(
            sandbox,
            f"sudo apt-get update && sudo apt-get install -y {APT_PACKAGES}",
            category="apt_packages",
        )
        await self.run(
            sandbox, "sudo systemctl enable docker && sudo systemctl start docker", category="docker"
        )
        for binary, category, install in TOOLS:
            if not await self.command_exists(sandbox, binary):
                await self.run(sandbox, install, category=category)
        await self.configure_git(sandbox)

    async def configure_git(self, sandbox: Sandbox) -> None:
        git = self.settings.git
        if git.pat:
            await self.run(sandbox, f"echo {quote(git.pat)} | gh auth login --with-token", category="gh_auth")
        await self.run(
            sandbox,
            f"git config --global user.name {quote(git.username)} "
            f"&& git config --global user.email {quote(git.email)}",
            category="git_config",
        )

    async def setup_application(self, sandbox: Sandbox) -> None:
        await self.sync_repo(sandbox, self.settings.git.default_branch)
        await self.run(
            sandbox,
            in_dir(WORKSPACE, f"git checkout -B {quote(sandbox.branch or '')}"),
            category="branch",
        )
        await self.write_environment(sandbox)

        compose = ComposeGenerator(self.settings, slug=sandbox.slug).generate()
        await self.run(
            sandbox, feed(f"cat > {WORKSPACE}/{COMPOSE_FILE}", compose, "COMPOSEEOF"), category="compose_generate"
        )
        await self.run(sandbox, gitignore_command(COMPOSE_FILE))
        await self.start_services(sandbox)

    async def write_environment(self, sandbox: Sandbox) -> None:
        """Write ``.env`` from the sandbox-resolved env settings."""
        values = self.settings.env_for(SANDBOX_TARGET)
        if not values:
            return
        await self.run(
            sandbox, feed(f"cat > {WORKSPACE}/.env", env_file(values), "ENVEOF"), category="environment"
        )
        await self.run(sandbox, gitignore_command(".env"))

    async def start_services(self, sandbox: Sandbox) -> None:
        """Start databases, run setup commands, then start everything."""
        await self.engine.log_step(sandbox, "compose_setup")
        if self.settings.database("postgres"):
            await self.compose(sandbox, "up -d postgres", raise_on_error=False)
        elif self.settings.database("mysql"):
            await self.compose(sandbox, "up -d mysql", raise_on_error=False)
        if self.settings.database("redis") or "redis" in self.settings.services:
            await self.compose(sandbox, "up -d redis", raise_on_error=False)
        for command in self.settings.setup:
            if command.strip():
                await self.compose(sandbox, f"run --rm web sh -c {quote(command)}")
        await self.compose(sandbox, "up -d")

    async def compose(
        self,
        sandbox: Sandbox,
        args: str,
        category: str | None = None,
        raise_on_error: bool = True,
    ) -> CommandExecution:
        return await self.run(
            sandbox,
            in_dir(WORKSPACE, f"docker compose -f {COMPOSE_FILE} {args}"),
            category=category,
            timeout=COMPOSE_TIMEOUT,
            raise_on_error=raise_on_error,
        )
