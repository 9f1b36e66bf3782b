"""Git operations in a running sandbox's workspace."""

from __future__ import annotations

from typing import TYPE_CHECKING

from burrow.core.exceptions import InvalidStateError, RemoteCommandError
from burrow.core.shell import in_dir, quote, redact
from burrow.provisioners.common import WORKSPACE


if TYPE_CHECKING:
    from burrow.core.types import GitConfig
    from burrow.execution.engine import ExecutionEngine, LineCallback
    from burrow.models import Sandbox


GIT_TAG = "git"


class GitOps:
    """Runs git in a sandbox's workspace as tagged executions.

    Every operation requires the sandbox to be running and raises
    :class:`RemoteCommandError` when git exits nonzero.
    """

    def __init__(self, engine: ExecutionEngine, sandbox: Sandbox, git: GitConfig):
        self.engine = engine
        self.sandbox = sandbox
        self.git = git

    def _ensure_running(self) -> None:
        if not self.sandbox.running:
            raise InvalidStateError(
                f"Sandbox not running (state: {self.sandbox.state})",
                workload_id=self.sandbox.id,
                current_state=self.sandbox.state,
            )

    async def _git(self, args: str, on_line: LineCallback | None = None, token: str | None = None) -> str:
        self._ensure_running()
        execution = await self.engine.exec(
            self.sandbox,
            in_dir(WORKSPACE, f"git {args}"),
            tag=GIT_TAG,
            on_line=on_line,
            secrets=(token, self.git.pat),
        )
        if not execution.success:
            raise RemoteCommandError(
                f"Git command failed: {redact(args, token, self.git.pat)}",
                exit_code=execution.exit_code if execution.exit_code is not None else -1,
                output=execution.output,
            )
        return execution.output

    async def pull(self, token: str | None = None, on_line: LineCallback | None = None) -> str:
        """Pull the current branch, switching origin to a token URL first if given."""
        if token:
            url = f"https://{token}@github.com/{self.git.repo}.git"
            await self._git(f"remote set-url origin {quote(url)}", on_line, token=token)
        return await self._git("pull origin HEAD", on_line)

    async def status(self, on_line: LineCallback | None = None) -> str:
        return await self._git("status --short", on_line)

    async def log(self, count: int = 5, on_line: LineCallback | None = None) -> str:
        return await self._git(f"log --oneline -{int(count)}", on_line)

    async def checkout(self, ref: str, on_line: LineCallback | None = None) -> str:
        return await self._git(f"checkout {quote(ref)}", on_line)


async def git_pull(engine: ExecutionEngine, sandbox: Sandbox, git: GitConfig, token: str | None = None) -> str:
    return await GitOps(engine, sandbox, git).pull(token)


async def git_status(engine: ExecutionEngine, sandbox: Sandbox, git: GitConfig) -> str:
    return await GitOps(engine, sandbox, git).status()


async def git_log(engine: ExecutionEngine, sandbox: Sandbox, git: GitConfig, count: int = 5) -> str:
    return await GitOps(engine, sandbox, git).log(count)


async def git_checkout(engine: ExecutionEngine, sandbox: Sandbox, git: GitConfig, ref: str) -> str:
    return await GitOps(engine, sandbox, git).checkout(ref)
