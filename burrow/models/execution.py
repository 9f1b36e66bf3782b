"""Command executions, their log lines, and AI sessions."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, Field

from burrow.models.workload import WorkloadType


def _now() -> datetime:
    return datetime.now(UTC)


class ExecutionKind(StrEnum):
    EXEC = "exec"
    CLAUDE = "claude"


class LogStream(StrEnum):
    OUTPUT = "output"  # Remote command output (stdout and stderr merged)
    STDERR = "stderr"  # Transport errors recorded by the engine


class CommandLog(BaseModel):
    """One persisted output line.

    Attributes:
        execution_id: Owning execution.
        line_number: Position in the execution, starting at 1, gap-free.
        stream: Which stream produced the line.
        content: Line text without trailing newline.
    """

    execution_id: int
    line_number: int = Field(ge=1)
    stream: LogStream = LogStream.OUTPUT
    content: str
    created_at: datetime = Field(default_factory=_now)


class CommandExecution(BaseModel):
    """One remote command run for a workload.

    Attributes:
        workload_type: "sandbox" or "release".
        workload_id: Owning workload.
        session_id: Owning AI session, if the command belongs to one.
        command: Command as sent, or the step key for step markers.
        kind: Plain exec or a claude CLI run.
        category: Provisioning step key.
        tag: Free-form grouping (e.g. "git").
        exit_code: Exit status, -1 for transport failure, 124 for timeout.
        lines: Log lines loaded or appended during execution.
    """

    id: int | None = None
    workload_type: WorkloadType
    workload_id: int
    session_id: int | None = None
    command: str
    kind: ExecutionKind = ExecutionKind.EXEC
    category: str | None = None
    tag: str | None = None
    exit_code: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime = Field(default_factory=_now)
    lines: list[CommandLog] = Field(default_factory=list, exclude=True)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def failed(self) -> bool:
        return self.exit_code is not None and self.exit_code != 0

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    @property
    def last_line_number(self) -> int:
        return max((line.line_number for line in self.lines), default=0)

    @property
    def output(self) -> str:
        ordered = sorted(self.lines, key=lambda line: line.line_number)
        return "\n".join(line.content for line in ordered)


class ClaudeSession(BaseModel):
    """A resumable claude CLI conversation inside a sandbox.

    Attributes:
        sandbox_id: Sandbox the session runs in.
        session_uuid: UUID passed to ``--session-id``/``--resume``.
        title: Optional display title.
        git_diff: Workspace diff captured after the last run.
    """

    id: int | None = None
    sandbox_id: int
    session_uuid: str = Field(default_factory=lambda: str(uuid4()))
    title: str | None = None
    git_diff: str | None = None
    created_at: datetime = Field(default_factory=_now)


class LogLine(BaseModel):
    """Log line as delivered to live subscribers."""

    workload_type: WorkloadType
    workload_id: int
    session_id: int | None = None
    execution_id: int
    line_number: int
    stream: LogStream = LogStream.OUTPUT
    content: str
