# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Runs claude CLI prompts inside a running sandbox."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from loguru import logger

from burrow.core.exceptions import ConfigurationError, InvalidStateError
from burrow.core.shell import in_dir, quote
from burrow.models import ClaudeSession, ExecutionKind
from burrow.provisioners.common import WORKSPACE


if TYPE_CHECKING:
    from burrow.core.types import Settings
    from burrow.execution.engine import ExecutionEngine, LineCallback
    from burrow.models import CommandExecution, Sandbox
    from burrow.store import SessionRepository, WorkloadRepository


CLAUDE_BIN = "claude"
CLAUDE_FLAGS = "-p --dangerously-skip-permissions --output-format=stream-json --verbose"

DiffCapture = Callable[["Sandbox"], Awaitable["str | None"]]


def build_command(session: ClaudeSession, resumable: bool) -> str:
    """claude invocation for a session.

    A session that has completed a run is resumed; otherwise its UUID
    starts a new conversation.
    """
    flag = "--resume" if resumable else "--session-id"
    return f"{CLAUDE_BIN} {flag} {session.session_uuid} {CLAUDE_FLAGS}"


def prompt_line(prompt: str) -> str:
    """First log line of a run: the user's prompt as compact JSON."""
    return json.dumps({"type": "user", "text": prompt}, separators=(",", ":"), ensure_ascii=False)


class SessionRunner:
    """Creates claude sessions and runs prompts in them.

    Args:
        settings: Claude credentials.
        engine: Runs the CLI over SSH and records its output.
        sessions: Session repository.
        workloads: Loads the session's sandbox.
        diff_capture: Returns the workspace diff after a run. Defaults to
            ``git diff`` over SSH.
    """

    def __init__(
        self,
        settings: Settings,
        engine: ExecutionEngine,
        sessions: SessionRepository,
        workloads: WorkloadRepository,
        diff_capture: DiffCapture | None = None,
    ):
        self.settings = settings
        self.engine = engine
        self.sessions = sessions
        self.workloads = workloads
        self._diff_capture = diff_capture or self._git_diff

    async def _git_diff(self, sandbox: Sandbox) -> str | None:
        result = await self.engine.ssh(sandbox).run(
            in_dir(WORKSPACE, "git diff 2>/dev/null"), raise_on_error=False
        )
        return result.output or None

    async def create_session(self, sandbox: Sandbox, title: str | None = None) -> ClaudeSession:
        if sandbox.id is None:
            raise ValueError("Sandbox must be saved before starting a session")
        return await self.sessions.create(ClaudeSession(sandbox_id=sandbox.id, title=title))

    async def run(
        self,
        session: ClaudeSession,
        prompt: str,
        on_line: LineCallback | None = None,
    ) -> CommandExecution:
        """Run one prompt and capture the resulting workspace diff.

        Args:
            session: Session to run in.
            prompt: User prompt, passed as one quoted argument.
            on_line: Called with the prompt line and each output line.

        Returns:
            The finished execution. A nonzero exit code is not raised.

        Raises:
            ConfigurationError: If claude credentials are missing.
            InvalidStateError: If the sandbox is not running.
        """
        claude = self.settings.claude
        if not claude.configured:
            raise ConfigurationError("Claude not configured")
        sandbox = await self.workloads.get_sandbox(session.sandbox_id)
        if sandbox is None or not sandbox.running:
            raise InvalidStateError(
                "Sandbox not running",
                workload_id=session.sandbox_id,
                current_state=sandbox.state if sandbox else None,
            )
        if session.id is None:
            raise ValueError("Session must be saved before running prompts")

        command = build_command(session, await self.sessions.resumable(session.id))
        execution = await self.engine.start(
            sandbox, command, kind=ExecutionKind.CLAUDE, session_id=session.id
        )
        await self.engine.append(execution, prompt_line(prompt), on_line=on_line)

        remote = in_dir(
            WORKSPACE,
            f"ANTHROPIC_API_KEY={quote(claude.auth_token or '')} "
            f"ANTHROPIC_BASE_URL={quote(claude.base_url)} {command} {quote(prompt)}",
        )
        await self.engine.run(
            execution,
            sandbox,
            command=remote,
            on_line=on_line,
            timeout=self.engine.runtime.claude_timeout,
        )
        logger.info(
            "Claude run finished",
            workload=sandbox.slug,
            session=session.session_uuid,
            exit_code=execution.exit_code,
        )

        await self.capture_diff(session, sandbox)
        return execution

    async def capture_diff(self, session: ClaudeSession, sandbox: Sandbox) -> None:
        """Store the workspace diff on the session. Failures leave it unset."""
        try:
            diff = await self._diff_capture(sandbox)
        except Exception:
            logger.exception("Failed to capture git diff", session=session.session_uuid)
            return
        session.git_diff = diff or None
        await self.sessions.save(session)
