"""MySQL and MariaDB dump and restore via mysqldump / mariadb-dump."""

import shlex

from ...models.database import DatabaseInstance
from ...models.enums import DatabaseKind
from ..config_loader import ServerHost
from ..exceptions import TransferEngineError
from ..safety import sql_string_list, validate_identifier
from .base import StructureItem, TransferStrategy, parse_int


class MysqlStrategy(TransferStrategy):
    """Full dumps are gzip-compressed; table-scoped dumps stay plain SQL."""

    kind = DatabaseKind.MYSQL
    option_key = "tables"
    dump_binary = "mysqldump"
    client_binary = "mysql"
    admin_binary = "mysqladmin"
    env_prefix = "MYSQL"

    def dump_file_extension(self) -> str:
        return "sql"

    def _user(self, database: DatabaseInstance) -> str:
        return validate_identifier(database.user or "root", "user")

    def _dbname(self, database: DatabaseInstance) -> str:
        if not database.database_name:
            raise TransferEngineError(
                f"{self.kind.label} database {database.name} has no database name configured"
            )
        return validate_identifier(database.database_name, "database name")

    def _env(self, database: DatabaseInstance) -> dict[str, str | None]:
        # Keeps the password off the command line
        return {"MYSQL_PWD": database.password}

    async def _dump(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        args = [
            self.dump_binary,
            "--user", self._user(database),
            "--single-transaction",
            "--quick",
        ]
        if units:
            args.extend([self._dbname(database), *units])
            redirect = f"> {shlex.quote(path)}"
        else:
            args.extend(["--routines", "--triggers", "--events", self._dbname(database)])
            redirect = f"| gzip > {shlex.quote(path)}"

        command = self.docker_exec(database, args, env=self._env(database))
        await self.executor.run(
            [f"{command} {redirect}"],
            host,
            timeout=self.settings.dump_timeout,
            disable_multiplexing=True,
        )

    async def _restore(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        client = self.docker_exec(
            database,
            [self.client_binary, "--user", self._user(database), self._dbname(database)],
            interactive=True,
            env=self._env(database),
        )
        if await self.is_gzipped(host, path):
            script = f"gunzip -c {shlex.quote(path)} | {client}"
        else:
            script = f"{client} < {shlex.quote(path)}"

        await self.executor.run(
            [script], host, timeout=self.settings.restore_timeout, disable_multiplexing=True
        )

    async def _query(
        self, database: DatabaseInstance, host: ServerHost, query: str, timeout: int
    ) -> str:
        args = [
            self.client_binary,
            "--user", self._user(database),
            "--skip-column-names",
            "--batch",
            "--execute", query,
        ]
        command = self.docker_exec(database, args, env=self._env(database))
        return await self.executor.run([command], host, timeout=timeout)

    async def _estimate_size(
        self, database: DatabaseInstance, host: ServerHost, units: list[str]
    ) -> int:
        query = (
            "SELECT COALESCE(SUM(data_length + index_length), 0) "
            "FROM information_schema.tables "
            f"WHERE table_schema = '{self._dbname(database)}'"
        )
        if units:
            query += f" AND table_name IN ({sql_string_list(units)})"
        output = await self._query(database, host, query, self.settings.estimate_timeout)
        return parse_int(output)

    async def _get_structure(
        self, database: DatabaseInstance, host: ServerHost
    ) -> list[StructureItem]:
        query = (
            "SELECT table_name, COALESCE(data_length + index_length, 0) "
            "FROM information_schema.tables "
            f"WHERE table_schema = '{self._dbname(database)}' AND table_type = 'BASE TABLE'"
        )
        output = await self._query(database, host, query, self.settings.structure_timeout)

        items = []
        for line in output.splitlines():
            parts = line.split("\t")
            if len(parts) == 2 and parts[1].strip().isdigit():
                items.append(StructureItem(name=parts[0], size_bytes=int(parts[1])))
        return items

    def container_environment(self, database: DatabaseInstance) -> dict[str, str]:
        prefix = self.env_prefix
        env = {}
        if database.password:
            env[f"{prefix}_ROOT_PASSWORD"] = database.password
        else:
            env[f"{prefix}_ALLOW_EMPTY_ROOT_PASSWORD"] = "yes"
        if database.database_name:
            env[f"{prefix}_DATABASE"] = database.database_name
        if database.user and database.user != "root":
            env[f"{prefix}_USER"] = database.user
            if database.password:
                env[f"{prefix}_PASSWORD"] = database.password
        return env

    def readiness_command(self, database: DatabaseInstance) -> str:
        return self.docker_exec(
            database,
            [self.admin_binary, "--user", self._user(database), "ping", "--silent"],
            env=self._env(database),
        )


class MariadbStrategy(MysqlStrategy):
    kind = DatabaseKind.MARIADB
    dump_binary = "mariadb-dump"
    client_binary = "mariadb"
    admin_binary = "mariadb-admin"
    env_prefix = "MARIADB"
