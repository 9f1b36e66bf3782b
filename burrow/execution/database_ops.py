"""Database convenience commands run inside a workload's app container."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from burrow.core import naming
from burrow.core.exceptions import ConfigurationError
from burrow.core.shell import quote, sq_escape


if TYPE_CHECKING:
    from burrow.core.types import Settings
    from burrow.execution.engine import ExecutionEngine, LineCallback
    from burrow.models import CommandExecution, Workload


ContainerExec = Callable[
    ["Workload", str, "LineCallback | None"], Awaitable["CommandExecution"]
]

MYSQL_CONNECT = "mysql -h $MYSQL_HOST -u $MYSQL_USER -p$MYSQL_PASSWORD $MYSQL_DATABASE"
DEFAULT_DUMP_PATH = "/tmp/dump.sql"

_TEMPLATES: dict[str, dict[str, str]] = {
    "postgres": {
        "sql": "psql $DATABASE_URL -c '{query}'",
        "shell": "psql $DATABASE_URL",
        "dump": "pg_dump $DATABASE_URL -f {path}",
        "restore": "psql $DATABASE_URL -f {path}",
    },
    "mysql": {
        "sql": MYSQL_CONNECT + " -e '{query}'",
        "shell": MYSQL_CONNECT,
        "dump": "mysqldump -h $MYSQL_HOST -u $MYSQL_USER -p$MYSQL_PASSWORD $MYSQL_DATABASE > {path}",
        "restore": MYSQL_CONNECT + " < {path}",
    },
}


class DatabaseOps:
    """psql/mysql operations for the configured database type.

    Args:
        engine: Engine the commands run through.
        settings: Supplies the database type.
        container_exec: Runs a command in the workload's app container.
            Defaults to ``docker exec`` into the sandbox ``app`` container;
            releases pass :meth:`burrow.kubernetes.kubectl.Kubectl.container_exec`.
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        settings: Settings,
        container_exec: ContainerExec | None = None,
    ):
        self.engine = engine
        self.settings = settings
        self._container_exec = container_exec or self._docker_exec

    async def _docker_exec(
        self, workload: Workload, command: str, on_line: LineCallback | None
    ) -> CommandExecution:
        container = naming.container(workload.slug, "app")
        return await self.engine.container_exec(workload, command, container, on_line=on_line)

    def command_for(self, operation: str, **values: str) -> str:
        """Render the shell command for ``sql``, ``shell``, ``dump`` or ``restore``.

        ``path`` is quoted here. ``query`` must already be escaped with
        :func:`sq_escape`, since the templates single-quote it.

        Raises:
            ConfigurationError: If no database is configured or it has no
                template.
        """
        db_type = self.settings.database_type
        if db_type is None:
            raise ConfigurationError("No database configured")
        if db_type not in _TEMPLATES:
            raise ConfigurationError(f"Unsupported database type: {db_type}")
        if "path" in values:
            values["path"] = quote(values["path"])
        return _TEMPLATES[db_type][operation].format(**values)

    async def sql(self, workload: Workload, query: str, on_line: LineCallback | None = None) -> CommandExecution:
        """Run one SQL statement.

        Raises:
            ConfigurationError: If no SQL database is configured.
        """
        command = self.command_for("sql", query=sq_escape(query))
        return await self._container_exec(workload, command, on_line)

    async def db_shell(self, workload: Workload, on_line: LineCallback | None = None) -> CommandExecution:
        return await self._container_exec(workload, self.command_for("shell"), on_line)

    async def db_dump(
        self,
        workload: Workload,
        output_path: str = DEFAULT_DUMP_PATH,
        on_line: LineCallback | None = None,
    ) -> CommandExecution:
        return await self._container_exec(workload, self.command_for("dump", path=output_path), on_line)

    async def db_restore(
        self,
        workload: Workload,
        input_path: str = DEFAULT_DUMP_PATH,
        on_line: LineCallback | None = None,
    ) -> CommandExecution:
        return await self._container_exec(workload, self.command_for("restore", path=input_path), on_line)
