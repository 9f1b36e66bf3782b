"""burrow command line interface."""

import asyncio
from collections.abc import Coroutine
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from burrow import jobs
from burrow.config import load_settings
from burrow.core.exceptions import BurrowError, ConfigurationError
from burrow.core.runtime import RuntimeConfig
from burrow.core.types import Settings
from burrow.execution.database_ops import DatabaseOps
from burrow.execution.events import LogBus
from burrow.execution.steps import category_label
from burrow.git_ops import GitOps
from burrow.inspector import ResourceInspector
from burrow.logging import configure_logging, state_color
from burrow.models import ClaudeSession, LogLine, Release, Sandbox, Workload


T = TypeVar("T")

STUCK_AFTER = timedelta(minutes=30)
GIT_ACTIONS = ("status", "log", "pull", "checkout")

console = Console()

app = typer.Typer(help="Provision sandboxes and releases on cloud servers.", no_args_is_help=True)
sandbox_app = typer.Typer(help="Development sandboxes running docker compose.", no_args_is_help=True)
release_app = typer.Typer(help="Releases running on single-node k3s.", no_args_is_help=True)
app.add_typer(sandbox_app, name="sandbox")
app.add_typer(release_app, name="release")


@app.callback()
def main_callback() -> None:
    """
    burrow: sandboxes and releases on your own cloud servers.
    """
    configure_logging(RuntimeConfig().log_level)


def _load_settings() -> Settings:
    """Load settings, exiting with a message when they are missing or invalid.

    Raises:
        typer.Exit: If the settings file is missing or fails validation.
    """
    try:
        return load_settings()
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from None
    except Exception as e:
        console.print(f"[red]Error loading settings:[/red] {e}")
        raise typer.Exit(code=1) from None


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning burrow errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except BurrowError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from None


def _streaming_bus() -> LogBus:
    """Log bus echoing every persisted line to the console."""
    bus = LogBus()

    def echo(line: LogLine) -> None:
        console.print(f"[dim]{line.content}[/dim]", markup=True, highlight=False)

    bus.subscribe(echo)
    return bus


def is_stuck(workload: Workload, now: datetime | None = None) -> bool:
    """In-flight workload that failed or has not moved for a while.

    Nothing reconciles these automatically; ``status`` flags them so an
    operator can re-run the job.
    """
    if not workload.in_flight:
        return False
    if workload.last_error:
        return True
    now = now or datetime.now(UTC)
    return now - workload.updated_at > STUCK_AFTER


def _state_cell(workload: Workload) -> str:
    state = str(workload.state)  # type: ignore[attr-defined]
    cell = f"[{state_color(state)}]{state}[/]"
    if is_stuck(workload):
        cell += " [red]stuck?[/red]"
    return cell


async def _sandbox_by_slug(ctx: jobs.JobContext, slug: str) -> Sandbox:
    sandbox = await ctx.workloads.get_sandbox_by_slug(slug)
    if sandbox is None:
        raise BurrowError(f"Sandbox {slug} not found")
    return sandbox


async def _release_for(ctx: jobs.JobContext, env: str) -> Release:
    release = await ctx.workloads.latest_release(env)
    if release is None or release.destroyed:
        raise BurrowError(f"No release for environment {env}")
    return release


SlugOption = Annotated[str, typer.Option("--slug", "-s", help="Sandbox slug (6 hex characters)")]
EnvOption = Annotated[str, typer.Option("--env", "-e", help="Release environment")]


# Sandboxes


@sandbox_app.command("deploy")
def sandbox_deploy(
    slug: Annotated[
        str | None, typer.Option("--slug", "-s", help="Reuse or create the sandbox with this slug")
    ] = None,
    branch: Annotated[str | None, typer.Option("--branch", "-b", help="Working branch")] = None,
    expose: Annotated[bool, typer.Option("--expose", help="Publish a preview URL")] = False,
) -> None:
    """Create a sandbox, or resume one, and provision it until it is running."""
    settings = _load_settings()

    async def _deploy() -> tuple[Sandbox, str | None]:
        if expose and not settings.cloudflare_configured:
            raise ConfigurationError("Cloudflare is not configured; cannot expose sandbox")
        settings.validate_all()
        async with jobs.job_context(settings, bus=_streaming_bus()) as ctx:
            sandbox = await ctx.workloads.get_sandbox_by_slug(slug) if slug else None
            if sandbox is None:
                fields: dict[str, Any] = {"branch": branch, "exposed": expose}
                if slug:
                    fields["slug"] = slug
                sandbox = await ctx.workloads.create(Sandbox(**fields))
                console.print(f"[green]✓[/green] Sandbox created: [bold]{sandbox.slug}[/bold]")
            sandbox = await jobs.provision_sandbox(sandbox.id, ctx)  # type: ignore[arg-type]
            url = ctx.tunnels.preview_url(sandbox) if sandbox.exposed and ctx.tunnels.configured else None
            return sandbox, url

    sandbox, url = _run(_deploy())
    console.print(f"[green]✓[/green] Sandbox [bold]{sandbox.slug}[/bold] is {sandbox.state}")
    console.print(f"  Server: {sandbox.server_ip}")
    console.print(f"  Branch: {sandbox.branch}")
    if url:
        console.print(f"  Preview: {url}")


@sandbox_app.command("destroy")
def sandbox_destroy(slug: SlugOption) -> None:
    """Delete every remote resource of a sandbox."""
    settings = _load_settings()

    async def _destroy() -> Sandbox:
        async with jobs.job_context(settings, bus=_streaming_bus()) as ctx:
            sandbox = await _sandbox_by_slug(ctx, slug)
            return await jobs.deprovision_sandbox(sandbox.id, ctx)  # type: ignore[arg-type]

    sandbox = _run(_destroy())
    console.print(f"[yellow]✗[/yellow] Sandbox [bold]{sandbox.slug}[/bold] {sandbox.state}")


@sandbox_app.command("expose")
def sandbox_expose(
    slug: SlugOption,
    off: Annotated[bool, typer.Option("--off", help="Remove the public preview")] = False,
) -> None:
    """Publish or unpublish a sandbox preview."""
    settings = _load_settings()

    async def _expose() -> tuple[Sandbox, str | None]:
        async with jobs.job_context(settings) as ctx:
            sandbox = await ctx.tunnels.set_exposed(await _sandbox_by_slug(ctx, slug), not off)
            return sandbox, ctx.tunnels.preview_url(sandbox) if sandbox.exposed else None

    sandbox, url = _run(_expose())
    if url:
        console.print(f"[green]✓[/green] Preview: {url}")
        if not sandbox.running:
            console.print("[dim]Published when the sandbox is deployed[/dim]")
    else:
        console.print(f"[yellow]✗[/yellow] Sandbox [bold]{sandbox.slug}[/bold] is no longer exposed")


@sandbox_app.command("logs")
def sandbox_logs(
    slug: SlugOption,
    full: Annotated[bool, typer.Option("--full", help="Include every command, not just steps")] = False,
) -> None:
    """Show the recorded provisioning steps of a sandbox."""
    settings = _load_settings()

    async def _logs() -> None:
        async with jobs.job_context(settings) as ctx:
            sandbox = await _sandbox_by_slug(ctx, slug)
            executions = await ctx.executions.list_for_workload(
                "sandbox", sandbox.id, steps_only=not full, with_logs=True  # type: ignore[arg-type]
            )
            for execution in executions:
                if execution.failed:
                    marker = f"[red]✗ {execution.exit_code}[/red]"
                elif execution.success:
                    marker = "[green]✓[/green]"
                else:
                    marker = "[dim]·[/dim]"
                console.print(f"{marker} [bold]{category_label(execution.category, execution.command)}[/bold]")
                for line in execution.lines:
                    console.print(f"    [dim]{line.content}[/dim]", highlight=False)

    _run(_logs())


@sandbox_app.command("ssh")
def sandbox_ssh(slug: SlugOption) -> None:
    """Open a shell on the sandbox server."""
    settings = _load_settings()

    async def _ssh() -> int:
        async with jobs.job_context(settings) as ctx:
            sandbox = await _sandbox_by_slug(ctx, slug)
            return await ctx.engine.ssh(sandbox).interactive()

    raise typer.Exit(code=_run(_ssh()))


@sandbox_app.command("claude")
def sandbox_claude(
    slug: SlugOption,
    prompt: Annotated[str, typer.Argument(help="Prompt for claude")],
    session_id: Annotated[
        int | None, typer.Option("--session", help="Continue this session instead of starting one")
    ] = None,
) -> None:
    """Run a claude prompt in the sandbox workspace."""
    settings = _load_settings()

    async def _claude() -> tuple[ClaudeSession, bool]:
        async with jobs.job_context(settings, bus=_streaming_bus()) as ctx:
            sandbox = await _sandbox_by_slug(ctx, slug)
            if session_id is None:
                session = await ctx.session_runner().create_session(sandbox, title=prompt[:60])
            else:
                existing = await ctx.sessions.get(session_id)
                if existing is None or existing.sandbox_id != sandbox.id:
                    raise BurrowError(f"Session {session_id} not found for sandbox {slug}")
                session = existing
            execution = await jobs.run_claude(session.id, prompt, ctx)  # type: ignore[arg-type]
            return await ctx.sessions.get(session.id) or session, execution.success  # type: ignore[arg-type]

    session, success = _run(_claude())
    mark = "[green]✓[/green]" if success else "[red]✗[/red]"
    console.print(f"{mark} Session [bold]{session.id}[/bold] ({session.session_uuid})")
    if session.git_diff:
        console.print(f"  Diff: {len(session.git_diff.splitlines())} lines")


@sandbox_app.command("git")
def sandbox_git(
    slug: SlugOption,
    action: Annotated[str, typer.Argument(help="status, log, pull or checkout")],
    ref: Annotated[str | None, typer.Argument(help="Ref for checkout")] = None,
    count: Annotated[int, typer.Option("--count", "-n", help="Commits shown by log")] = 5,
) -> None:
    """Run a git operation in the sandbox workspace."""
    if action not in GIT_ACTIONS:
        console.print(f"[red]Error:[/red] Unknown git action {action!r}")
        raise typer.Exit(code=1)
    if action == "checkout" and not ref:
        console.print("[red]Error:[/red] checkout needs a ref")
        raise typer.Exit(code=1)
    settings = _load_settings()

    async def _git() -> str:
        async with jobs.job_context(settings) as ctx:
            git = GitOps(ctx.engine, await _sandbox_by_slug(ctx, slug), settings.git)
            if action == "status":
                return await git.status()
            if action == "log":
                return await git.log(count)
            if action == "pull":
                return await git.pull(settings.git.pat)
            return await git.checkout(ref or "")

    console.print(_run(_git()), highlight=False)


@sandbox_app.command("sql")
def sandbox_sql(
    slug: SlugOption,
    query: Annotated[str, typer.Argument(help="SQL statement")],
) -> None:
    """Run a SQL statement against the sandbox database."""
    settings = _load_settings()

    async def _sql() -> str:
        async with jobs.job_context(settings) as ctx:
            sandbox = await _sandbox_by_slug(ctx, slug)
            execution = await DatabaseOps(ctx.engine, settings).sql(sandbox, query)
            return execution.output

    console.print(_run(_sql()), highlight=False)


# Releases


@release_app.command("deploy")
def release_deploy(
    env: Annotated[str, typer.Option("--env", "-e", help="Release environment")] = "production",
    branch: Annotated[str, typer.Option("--branch", "-b", help="Branch to deploy")] = "main",
) -> None:
    """Create the release for an environment, or resume one that did not finish."""
    settings = _load_settings()

    async def _deploy() -> Release:
        settings.validate_all()
        settings.validate_for_target(env)
        async with jobs.job_context(settings, bus=_streaming_bus()) as ctx:
            release = await ctx.workloads.latest_release(env)
            if release is None or release.destroyed:
                release = await ctx.workloads.create(Release(environment=env, branch=branch))
                console.print(f"[green]✓[/green] Release created: [bold]{release.slug}[/bold]")
            elif release.deployed:
                console.print(f"[dim]Release {release.slug} already deployed; use 'release redeploy'[/dim]")
            return await jobs.provision_release(release.id, ctx)  # type: ignore[arg-type]

    release = _run(_deploy())
    console.print(f"[green]✓[/green] Release [bold]{release.slug}[/bold] ({release.environment}) is {release.state}")
    console.print(f"  Server: {release.server_ip}")
    if release.registry_tag:
        console.print(f"  Image: {release.registry_tag}")


@release_app.command("redeploy")
def release_redeploy(env: EnvOption = "production") -> None:
    """Rebuild and re-apply the deployed release of an environment."""
    settings = _load_settings()

    async def _redeploy() -> Release:
        async with jobs.job_context(settings, bus=_streaming_bus()) as ctx:
            release = await _release_for(ctx, env)
            return await jobs.redeploy_release(release.id, ctx)  # type: ignore[arg-type]

    release = _run(_redeploy())
    console.print(f"[green]✓[/green] Release [bold]{release.slug}[/bold] redeployed ({release.registry_tag})")


@release_app.command("destroy")
def release_destroy(env: EnvOption = "production") -> None:
    """Tear down the release of an environment."""
    settings = _load_settings()

    async def _destroy() -> Release:
        async with jobs.job_context(settings, bus=_streaming_bus()) as ctx:
            release = await _release_for(ctx, env)
            return await jobs.teardown_release(release.id, ctx)  # type: ignore[arg-type]

    release = _run(_destroy())
    console.print(f"[yellow]✗[/yellow] Release [bold]{release.slug}[/bold] {release.state}")


@release_app.command("scale")
def release_scale(
    process: Annotated[str, typer.Argument(help="App process name, e.g. web")],
    replicas: Annotated[int, typer.Argument(help="Replica count")],
    env: EnvOption = "production",
) -> None:
    """Scale an app process of a release."""
    settings = _load_settings()

    async def _scale() -> bool:
        async with jobs.job_context(settings) as ctx:
            release = await _release_for(ctx, env)
            provisioner = ctx.release_provisioner()
            deployment = f"{provisioner.prefix(release)}-{process}"
            return (await provisioner.kubectl(release).scale(deployment, replicas)).success

    if not _run(_scale()):
        console.print(f"[red]Error:[/red] Scaling {process} failed")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] {process} scaled to {replicas}")


@release_app.command("restart")
def release_restart(
    process: Annotated[str, typer.Argument(help="App process name, e.g. web")],
    env: EnvOption = "production",
) -> None:
    """Restart the pods of an app process."""
    settings = _load_settings()

    async def _restart() -> bool:
        async with jobs.job_context(settings) as ctx:
            release = await _release_for(ctx, env)
            provisioner = ctx.release_provisioner()
            kubectl = provisioner.kubectl(release)
            deployment = f"{provisioner.prefix(release)}-{process}"
            if not (await kubectl.rollout_restart(deployment)).success:
                return False
            return (await kubectl.rollout_status(deployment)).success

    if not _run(_restart()):
        console.print(f"[red]Error:[/red] Restarting {process} failed")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] {process} restarted")


@release_app.command("sql")
def release_sql(
    query: Annotated[str, typer.Argument(help="SQL statement")],
    env: EnvOption = "production",
) -> None:
    """Run a SQL statement in the release's web container."""
    settings = _load_settings()

    async def _sql() -> str:
        async with jobs.job_context(settings) as ctx:
            release = await _release_for(ctx, env)
            execution = await ctx.release_provisioner().database_ops(release).sql(release, query)
            return execution.output

    console.print(_run(_sql()), highlight=False)


# Overview


@app.command("status")
def status_command(
    all_workloads: Annotated[bool, typer.Option("--all", "-a", help="Include stopped and torn down")] = False,
) -> None:
    """Show sandboxes and releases with their state."""
    settings = _load_settings()

    async def _status() -> tuple[list[Sandbox], list[Release]]:
        async with jobs.job_context(settings) as ctx:
            return (
                await ctx.workloads.list_sandboxes(include_stopped=all_workloads),
                await ctx.workloads.list_releases(include_torn_down=all_workloads),
            )

    sandboxes, releases = _run(_status())
    if not sandboxes and not releases:
        console.print("[dim]No sandboxes or releases.[/dim]")
        return

    table = Table(title="Sandboxes")
    table.add_column("Slug", style="bold")
    table.add_column("State")
    table.add_column("Branch")
    table.add_column("Server")
    table.add_column("Exposed")
    table.add_column("Error", style="red")
    for sandbox in sandboxes:
        table.add_row(
            sandbox.slug,
            _state_cell(sandbox),
            sandbox.branch,
            sandbox.server_ip or "-",
            "yes" if sandbox.exposed else "no",
            sandbox.last_error or "",
        )
    console.print(table)

    table = Table(title="Releases")
    table.add_column("Slug", style="bold")
    table.add_column("Environment")
    table.add_column("State")
    table.add_column("Branch")
    table.add_column("Server")
    table.add_column("Image")
    table.add_column("Error", style="red")
    for release in releases:
        table.add_row(
            release.slug,
            release.environment,
            _state_cell(release),
            release.branch,
            release.server_ip or "-",
            release.registry_tag or "-",
            release.last_error or "",
        )
    console.print(table)


@app.command("resources")
def resources_command(
    show_all: Annotated[bool, typer.Option("--all", "-a", help="List every resource, not only orphans")] = False,
) -> None:
    """Report provider and Cloudflare resources left behind by gone workloads."""
    settings = _load_settings()

    async def _inspect() -> list:
        async with jobs.job_context(settings) as ctx:
            inspector = ResourceInspector(settings, ctx.workloads)
            return await (inspector.all() if show_all else inspector.orphans())

    resources = _run(_inspect())
    if not resources:
        console.print("[green]✓[/green] No orphaned resources" if not show_all else "[dim]No resources.[/dim]")
        return

    table = Table(title="Resources" if show_all else "Orphaned resources")
    table.add_column("Kind")
    table.add_column("Name", style="bold")
    table.add_column("Slug")
    table.add_column("ID")
    table.add_column("Detail")
    for resource in resources:
        table.add_row(resource.kind, resource.name, resource.slug or "-", resource.id, resource.detail or "")
    console.print(table)


if __name__ == "__main__":
    app()
