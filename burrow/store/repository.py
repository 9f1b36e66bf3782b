"""Repositories for workloads, command executions and AI sessions."""

from datetime import datetime
from typing import Any, overload

import aiosqlite

from burrow.models import (
    ClaudeSession,
    CommandExecution,
    CommandLog,
    Release,
    ReleaseState,
    Sandbox,
    SandboxState,
    Workload,
    WorkloadType,
)
from burrow.store.connection import Database


_TABLES: dict[WorkloadType, str] = {"sandbox": "sandboxes", "release": "releases"}
_MODELS: dict[WorkloadType, type[Sandbox] | type[Release]] = {
    "sandbox": Sandbox,
    "release": Release,
}


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class WorkloadRepository:
    """Persistence for sandboxes and releases.

    Each row keeps the full model as JSON plus indexed columns for slug,
    state and (for releases) environment.
    """

    def __init__(self, db: Database):
        self._db = db

    async def create(self, workload: Workload) -> Workload:
        """Insert a workload and assign its id."""
        kind = workload.workload_type
        if kind == "release":
            workload.id = await self._db.execute_insert(
                """
                INSERT INTO releases (slug, environment, state, data_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    workload.slug,
                    workload.environment,  # type: ignore[attr-defined]
                    workload.state,  # type: ignore[attr-defined]
                    workload.model_dump_json(),
                    _ts(workload.created_at),
                    _ts(workload.updated_at),
                ),
            )
        else:
            workload.id = await self._db.execute_insert(
                """
                INSERT INTO sandboxes (slug, state, data_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    workload.slug,
                    workload.state,  # type: ignore[attr-defined]
                    workload.model_dump_json(),
                    _ts(workload.created_at),
                    _ts(workload.updated_at),
                ),
            )
        return workload

    async def save(self, workload: Workload) -> None:
        """Write back every field of an existing workload.

        Raises:
            ValueError: If the workload has never been created.
        """
        if workload.id is None:
            raise ValueError("Cannot save a workload without an id")
        table = _TABLES[workload.workload_type]
        await self._db.execute(
            f"UPDATE {table} SET state = ?, data_json = ?, updated_at = ? WHERE id = ?",
            (
                workload.state,  # type: ignore[attr-defined]
                workload.model_dump_json(),
                _ts(workload.updated_at),
                workload.id,
            ),
        )

    def _load(self, kind: WorkloadType, row: aiosqlite.Row | None) -> Any:
        if row is None:
            return None
        workload = _MODELS[kind].model_validate_json(row["data_json"])
        workload.id = row["id"]
        return workload

    @overload
    async def get(self, kind: type[Sandbox], workload_id: int) -> Sandbox | None: ...

    @overload
    async def get(self, kind: type[Release], workload_id: int) -> Release | None: ...

    async def get(self, kind: type[Workload], workload_id: int) -> Workload | None:
        workload_type = kind.workload_type
        row = await self._db.fetch_one(
            f"SELECT id, data_json FROM {_TABLES[workload_type]} WHERE id = ?",
            (workload_id,),
        )
        return self._load(workload_type, row)

    async def get_sandbox(self, sandbox_id: int) -> Sandbox | None:
        return await self.get(Sandbox, sandbox_id)

    async def get_release(self, release_id: int) -> Release | None:
        return await self.get(Release, release_id)

    async def get_sandbox_by_slug(self, slug: str) -> Sandbox | None:
        row = await self._db.fetch_one(
            "SELECT id, data_json FROM sandboxes WHERE slug = ?", (slug,)
        )
        return self._load("sandbox", row)

    async def latest_release(self, environment: str) -> Release | None:
        """Most recent release for an environment that is not torn down."""
        row = await self._db.fetch_one(
            """
            SELECT id, data_json FROM releases
            WHERE environment = ? AND state != ?
            ORDER BY id DESC LIMIT 1
            """,
            (environment, ReleaseState.TORN_DOWN),
        )
        return self._load("release", row)

    async def list_sandboxes(self, include_stopped: bool = False) -> list[Sandbox]:
        sql = "SELECT id, data_json FROM sandboxes"
        params: tuple[str, ...] = ()
        if not include_stopped:
            sql += " WHERE state != ?"
            params = (SandboxState.STOPPED,)
        rows = await self._db.fetch_all(sql + " ORDER BY id", params)
        return [self._load("sandbox", row) for row in rows]

    async def list_releases(self, include_torn_down: bool = False) -> list[Release]:
        sql = "SELECT id, data_json FROM releases"
        params: tuple[str, ...] = ()
        if not include_torn_down:
            sql += " WHERE state != ?"
            params = (ReleaseState.TORN_DOWN,)
        rows = await self._db.fetch_all(sql + " ORDER BY id", params)
        return [self._load("release", row) for row in rows]

    async def live_slugs(self) -> set[str]:
        """Slugs of every sandbox and release that is not destroyed."""
        rows = await self._db.fetch_all(
            """
            SELECT slug FROM sandboxes WHERE state != ?
            UNION SELECT slug FROM releases WHERE state != ?
            """,
            (SandboxState.STOPPED, ReleaseState.TORN_DOWN),
        )
        return {row["slug"] for row in rows}


class ExecutionRepository:
    """Persistence for command executions and their append-only logs."""

    def __init__(self, db: Database):
        self._db = db

    async def create(self, execution: CommandExecution) -> CommandExecution:
        execution.id = await self._db.execute_insert(
            """
            INSERT INTO command_executions (
                workload_type, workload_id, session_id, command, kind,
                category, tag, exit_code, started_at, finished_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                execution.workload_type,
                execution.workload_id,
                execution.session_id,
                execution.command,
                execution.kind,
                execution.category,
                execution.tag,
                execution.exit_code,
                _ts(execution.started_at),
                _ts(execution.finished_at),
                _ts(execution.created_at),
            ),
        )
        return execution

    async def update(self, execution: CommandExecution) -> None:
        """Persist exit code and timestamps."""
        await self._db.execute(
            """
            UPDATE command_executions
            SET exit_code = ?, started_at = ?, finished_at = ?
            WHERE id = ?
            """,
            (
                execution.exit_code,
                _ts(execution.started_at),
                _ts(execution.finished_at),
                execution.id,
            ),
        )

    async def append_log(self, log: CommandLog) -> None:
        """Insert one log line.

        Raises:
            sqlite3.IntegrityError: If the line number is already taken.
        """
        await self._db.execute(
            """
            INSERT INTO command_logs (execution_id, line_number, stream, content, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (log.execution_id, log.line_number, log.stream, log.content, _ts(log.created_at)),
        )

    async def last_line_number(self, execution_id: int) -> int:
        value = await self._db.fetch_scalar(
            "SELECT MAX(line_number) FROM command_logs WHERE execution_id = ?",
            (execution_id,),
        )
        return int(value) if value is not None else 0

    async def logs(self, execution_id: int) -> list[CommandLog]:
        rows = await self._db.fetch_all(
            """
            SELECT execution_id, line_number, stream, content, created_at
            FROM command_logs WHERE execution_id = ? ORDER BY line_number
            """,
            (execution_id,),
        )
        return [
            CommandLog(
                execution_id=row["execution_id"],
                line_number=row["line_number"],
                stream=row["stream"],
                content=row["content"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def _to_execution(self, row: aiosqlite.Row) -> CommandExecution:
        return CommandExecution(
            id=row["id"],
            workload_type=row["workload_type"],
            workload_id=row["workload_id"],
            session_id=row["session_id"],
            command=row["command"],
            kind=row["kind"],
            category=row["category"],
            tag=row["tag"],
            exit_code=row["exit_code"],
            started_at=_parse_ts(row["started_at"]),
            finished_at=_parse_ts(row["finished_at"]),
            created_at=_parse_ts(row["created_at"]),
        )

    async def get(self, execution_id: int, with_logs: bool = True) -> CommandExecution | None:
        row = await self._db.fetch_one(
            "SELECT * FROM command_executions WHERE id = ?", (execution_id,)
        )
        if row is None:
            return None
        execution = self._to_execution(row)
        if with_logs:
            execution.lines = await self.logs(execution_id)
        return execution

    async def list_for_workload(
        self,
        workload_type: WorkloadType,
        workload_id: int,
        steps_only: bool = False,
        with_logs: bool = False,
    ) -> list[CommandExecution]:
        """Executions of a workload in creation order.

        Args:
            steps_only: Only return executions recorded for a provisioning step.
            with_logs: Load log lines for each execution.
        """
        sql = "SELECT * FROM command_executions WHERE workload_type = ? AND workload_id = ?"
        if steps_only:
            sql += " AND category IS NOT NULL"
        rows = await self._db.fetch_all(sql + " ORDER BY id", (workload_type, workload_id))
        executions = [self._to_execution(row) for row in rows]
        if with_logs:
            for execution in executions:
                execution.lines = await self.logs(execution.id)  # type: ignore[arg-type]
        return executions

    async def list_for_session(self, session_id: int, with_logs: bool = False) -> list[CommandExecution]:
        rows = await self._db.fetch_all(
            "SELECT * FROM command_executions WHERE session_id = ? ORDER BY id",
            (session_id,),
        )
        executions = [self._to_execution(row) for row in rows]
        if with_logs:
            for execution in executions:
                execution.lines = await self.logs(execution.id)  # type: ignore[arg-type]
        return executions


class SessionRepository:
    """Persistence for claude sessions."""

    def __init__(self, db: Database):
        self._db = db

    async def create(self, session: ClaudeSession) -> ClaudeSession:
        session.id = await self._db.execute_insert(
            """
            INSERT INTO claude_sessions (sandbox_id, session_uuid, title, git_diff, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                session.sandbox_id,
                session.session_uuid,
                session.title,
                session.git_diff,
                _ts(session.created_at),
            ),
        )
        return session

    async def save(self, session: ClaudeSession) -> None:
        await self._db.execute(
            "UPDATE claude_sessions SET title = ?, git_diff = ? WHERE id = ?",
            (session.title, session.git_diff, session.id),
        )

    @staticmethod
    def _to_session(row: aiosqlite.Row) -> ClaudeSession:
        return ClaudeSession(
            id=row["id"],
            sandbox_id=row["sandbox_id"],
            session_uuid=row["session_uuid"],
            title=row["title"],
            git_diff=row["git_diff"],
            created_at=row["created_at"],
        )

    async def get(self, session_id: int) -> ClaudeSession | None:
        row = await self._db.fetch_one(
            "SELECT * FROM claude_sessions WHERE id = ?", (session_id,)
        )
        return self._to_session(row) if row else None

    async def list_for_sandbox(self, sandbox_id: int) -> list[ClaudeSession]:
        rows = await self._db.fetch_all(
            "SELECT * FROM claude_sessions WHERE sandbox_id = ? ORDER BY id",
            (sandbox_id,),
        )
        return [self._to_session(row) for row in rows]

    async def resumable(self, session_id: int) -> bool:
        """A session is resumable once one of its executions succeeded."""
        value = await self._db.fetch_scalar(
            """
            SELECT EXISTS(
                SELECT 1 FROM command_executions WHERE session_id = ? AND exit_code = 0
            )
            """,
            (session_id,),
        )
        return bool(value)
