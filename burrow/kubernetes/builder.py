"""Image builds for releases, pushed to the in-cluster registry."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, NamedTuple

from loguru import logger

from burrow.core.shell import in_dir, join, quote


if TYPE_CHECKING:
    from burrow.execution.engine import ExecutionEngine
    from burrow.models import Release


REGISTRY_PORT = 30500
KEEP_IMAGES = 3
BUILD_TIMEOUT = 1200
PUSH_TIMEOUT = 300


class BuildResult(NamedTuple):
    local_tag: str
    registry_tag: str
    timestamp: str


class DockerBuilder:
    """Builds the app image on the release's server and pushes it.

    The server's docker daemon builds from the synced workspace; the image
    is pushed to the registry NodePort on localhost.

    Args:
        engine: Execution engine.
        release: Release whose server builds the image.
        prefix: Image repository name.
    """

    def __init__(self, engine: ExecutionEngine, release: Release, prefix: str):
        self.engine = engine
        self.release = release
        self.prefix = prefix

    @staticmethod
    def timestamp() -> str:
        return datetime.now(UTC).strftime("%Y%m%d%H%M%S")

    def local_tag(self, ts: str) -> str:
        return f"{self.prefix}:{ts}"

    def registry_tag(self, ts: str) -> str:
        return f"localhost:{REGISTRY_PORT}/{self.prefix}:{ts}"

    async def build(
        self,
        context_path: str,
        dockerfile: str = "Dockerfile",
        platform: str = "linux/amd64",
        category: str | None = None,
    ) -> BuildResult:
        """Build and tag an image for the registry.

        Raises:
            RemoteCommandError: If the build fails.
        """
        ts = self.timestamp()
        local = self.local_tag(ts)
        registry = self.registry_tag(ts)
        build = join(["docker", "build", "--platform", platform, "--pull", "-f", dockerfile, "-t", local, "."])
        await self.engine.exec(
            self.release,
            in_dir(context_path, build),
            category=category,
            timeout=BUILD_TIMEOUT,
            raise_on_error=True,
        )
        await self.engine.exec(self.release, join(["docker", "tag", local, registry]), raise_on_error=True)
        return BuildResult(local, registry, ts)

    async def push(self, registry_tag: str) -> None:
        await self.engine.exec(
            self.release,
            join(["docker", "push", registry_tag]),
            timeout=PUSH_TIMEOUT,
            raise_on_error=True,
        )

    async def tag_latest(self, local_tag: str) -> None:
        await self.engine.exec(
            self.release,
            join(["docker", "tag", local_tag, f"{self.prefix}:latest"]),
            raise_on_error=True,
        )

    async def cleanup_old_images(self, keep: int = KEEP_IMAGES) -> list[str]:
        """Remove all but the newest ``keep`` timestamped images.

        Returns:
            Tags removed.
        """
        listing = await self.engine.exec(
            self.release,
            f"docker images {quote(self.prefix)} --format '{{{{.Tag}}}}'",
        )
        if not listing.success:
            return []
        tags = sorted(
            (t.strip() for t in listing.output.splitlines()),
            reverse=True,
        )
        stale = [t for t in tags if t and t not in ("latest", "<none>")][keep:]
        for tag in stale:
            await self.engine.exec(self.release, join(["docker", "rmi", f"{self.prefix}:{tag}"]))
            await self.engine.exec(
                self.release,
                f"sudo crictl rmi {quote(self.registry_tag(tag))} 2>/dev/null || true",
            )
        if stale:
            logger.info("Removed old images", prefix=self.prefix, count=len(stale))
        return stale

    async def build_and_push(
        self,
        context_path: str,
        dockerfile: str = "Dockerfile",
        platform: str = "linux/amd64",
        category: str | None = None,
    ) -> BuildResult:
        result = await self.build(context_path, dockerfile, platform, category=category)
        await self.push(result.registry_tag)
        await self.tag_latest(result.local_tag)
        await self.cleanup_old_images()
        logger.info("Image pushed", registry_tag=result.registry_tag)
        return result
