"""PostgreSQL dump and restore via pg_dump, pg_restore and psql."""

import shlex

from ...constants import PGDUMP_CUSTOM_MAGIC
from ...models.database import DatabaseInstance
from ...models.enums import DatabaseKind
from ..config_loader import ServerHost
from ..safety import sql_string_list, validate_identifier
from .base import StructureItem, TransferStrategy, parse_int


class PostgresqlStrategy(TransferStrategy):
    """Full dumps use the custom format; table-scoped dumps are plain SQL."""

    kind = DatabaseKind.POSTGRESQL
    option_key = "tables"

    def dump_file_extension(self) -> str:
        return "dump"

    def _user(self, database: DatabaseInstance) -> str:
        return validate_identifier(database.user or "postgres", "user")

    def _dbname(self, database: DatabaseInstance) -> str:
        return validate_identifier(database.database_name or "postgres", "database name")

    def _env(self, database: DatabaseInstance) -> dict[str, str | None]:
        return {"PGPASSWORD": database.password}

    async def _dump(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        args = ["pg_dump", "--username", self._user(database), "--no-owner", "--no-acl"]
        if units:
            args.extend(["--format=plain", "--clean", "--if-exists"])
            for table in units:
                args.extend(["--table", table])
        else:
            args.append("--format=custom")
        args.append(self._dbname(database))

        command = self.docker_exec(database, args, env=self._env(database))
        await self.executor.run(
            [f"{command} > {shlex.quote(path)}"],
            host,
            timeout=self.settings.dump_timeout,
            disable_multiplexing=True,
        )

    async def _restore(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        magic = await self.read_magic(host, path, len(PGDUMP_CUSTOM_MAGIC))
        user = self._user(database)
        dbname = self._dbname(database)

        if magic == PGDUMP_CUSTOM_MAGIC:
            args = [
                "pg_restore",
                "--username", user,
                "--dbname", dbname,
                "--clean",
                "--if-exists",
                "--no-owner",
                "--no-acl",
            ]
        else:
            args = ["psql", "--username", user, "--dbname", dbname, "--quiet",
                    "-v", "ON_ERROR_STOP=1"]

        self.logger.debug(
            "Restore format detected",
            binary=magic == PGDUMP_CUSTOM_MAGIC,
            database=database.uuid,
        )
        command = self.docker_exec(database, args, interactive=True, env=self._env(database))
        await self.executor.run(
            [f"{command} < {shlex.quote(path)}"],
            host,
            timeout=self.settings.restore_timeout,
            disable_multiplexing=True,
        )

    async def _query(
        self, database: DatabaseInstance, host: ServerHost, query: str, timeout: int
    ) -> str:
        args = [
            "psql",
            "--username", self._user(database),
            "--dbname", self._dbname(database),
            "--no-align",
            "--tuples-only",
            "--field-separator", "|",
            "--command", query,
        ]
        command = self.docker_exec(database, args, env=self._env(database))
        return await self.executor.run([command], host, timeout=timeout)

    async def _estimate_size(
        self, database: DatabaseInstance, host: ServerHost, units: list[str]
    ) -> int:
        if units:
            names = sql_string_list(units)
            query = (
                "SELECT COALESCE(SUM(pg_total_relation_size(c.oid)), 0) "
                "FROM pg_class c JOIN pg_namespace n ON n.oid = c.relnamespace "
                "WHERE c.relkind IN ('r', 'p') "
                f"AND (c.relname IN ({names}) OR n.nspname || '.' || c.relname IN ({names}))"
            )
        else:
            query = "SELECT pg_database_size(current_database())"
        output = await self._query(database, host, query, self.settings.estimate_timeout)
        return parse_int(output)

    async def _get_structure(
        self, database: DatabaseInstance, host: ServerHost
    ) -> list[StructureItem]:
        query = (
            "SELECT CASE WHEN schemaname = 'public' THEN relname "
            "ELSE schemaname || '.' || relname END, pg_total_relation_size(relid) "
            "FROM pg_catalog.pg_statio_user_tables"
        )
        output = await self._query(database, host, query, self.settings.structure_timeout)

        items = []
        for line in output.splitlines():
            name, _, size = line.strip().rpartition("|")
            if name and size.isdigit():
                items.append(StructureItem(name=name, size_bytes=int(size)))
        return items

    def container_environment(self, database: DatabaseInstance) -> dict[str, str]:
        env = {
            "POSTGRES_USER": database.user or "postgres",
            "POSTGRES_DB": database.database_name or "postgres",
        }
        if database.password:
            env["POSTGRES_PASSWORD"] = database.password
        else:
            env["POSTGRES_HOST_AUTH_METHOD"] = "trust"
        return env

    def readiness_command(self, database: DatabaseInstance) -> str:
        return self.docker_exec(
            database,
            ["pg_isready", "--username", self._user(database), "--dbname", self._dbname(database)],
        )
