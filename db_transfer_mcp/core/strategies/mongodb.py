"""MongoDB dump and restore via mongodump / mongorestore archives."""

import shlex
from urllib.parse import quote

from ...models.database import DatabaseInstance
from ...models.enums import DatabaseKind, TransferMode
from ...models.transfer import TransferRecord
from ..config_loader import ServerHost
from ..exceptions import TransferEngineError
from ..safety import validate_identifier
from .base import StructureItem, TransferStrategy, ValidationResult, parse_int


class MongodbStrategy(TransferStrategy):
    """Gzip archives; collection-scoped dumps need a configured database name."""

    kind = DatabaseKind.MONGODB
    option_key = "collections"

    def dump_file_extension(self) -> str:
        return "archive"

    def _uri(self, database: DatabaseInstance) -> str:
        if database.user:
            credentials = quote(database.user, safe="")
            if database.password:
                credentials += ":" + quote(database.password, safe="")
            return f"mongodb://{credentials}@127.0.0.1:27017/?authSource=admin"
        return "mongodb://127.0.0.1:27017/"

    def _dbname(self, database: DatabaseInstance) -> str:
        if not database.database_name:
            raise TransferEngineError(
                f"MongoDB database {database.name} has no database name configured; "
                "collection-scoped transfers need one"
            )
        return validate_identifier(database.database_name, "database name")

    async def _eval(
        self, database: DatabaseInstance, host: ServerHost, script: str, timeout: int
    ) -> str:
        command = self.docker_exec(
            database, ["mongosh", self._uri(database), "--quiet", "--eval", script]
        )
        return await self.executor.run([command], host, timeout=timeout)

    async def list_collections(self, database: DatabaseInstance, host: ServerHost) -> list[str]:
        script = (
            f'db.getSiblingDB("{self._dbname(database)}").getCollectionNames()'
            ".forEach(function (name) { print(name); })"
        )
        output = await self._eval(database, host, script, self.settings.structure_timeout)
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def _dump(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        args = ["mongodump", f"--uri={self._uri(database)}", "--gzip", "--archive"]

        if database.database_name:
            args.extend(["--db", self._dbname(database)])
        if units:
            dbname = self._dbname(database)
            if len(units) == 1:
                args.extend(["--collection", units[0]])
            else:
                # mongodump accepts a single --collection, so exclude everything else
                existing = await self.list_collections(database, host)
                missing = sorted(set(units) - set(existing))
                if missing:
                    raise TransferEngineError(
                        f"Collections not found in {dbname}: {', '.join(missing)}"
                    )
                for name in sorted(set(existing) - set(units)):
                    args.extend(["--excludeCollection", name])

        command = self.docker_exec(database, args)
        await self.executor.run(
            [f"{command} > {shlex.quote(path)}"],
            host,
            timeout=self.settings.dump_timeout,
            disable_multiplexing=True,
        )

    async def _restore(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        args = ["mongorestore", f"--uri={self._uri(database)}", "--archive", "--drop"]
        if await self.is_gzipped(host, path):
            args.append("--gzip")
        for collection in units:
            args.extend(["--nsInclude", f"*.{collection}"])
        if database.database_name:
            # Archives hold a single database when the source names one
            target_db = self._dbname(database)
            args.extend(["--nsFrom", "$db$.$coll$", "--nsTo", f"{target_db}.$coll$"])

        command = self.docker_exec(database, args, interactive=True)
        await self.executor.run(
            [f"{command} < {shlex.quote(path)}"],
            host,
            timeout=self.settings.restore_timeout,
            disable_multiplexing=True,
        )

    async def _estimate_size(
        self, database: DatabaseInstance, host: ServerHost, units: list[str]
    ) -> int:
        if units:
            names = ", ".join(f'"{name}"' for name in units)
            script = (
                f'let total = 0; const target = db.getSiblingDB("{self._dbname(database)}"); '
                f"[{names}].forEach(function (name) "
                "{ total += target.getCollection(name).stats().size || 0; }); print(total)"
            )
        elif database.database_name:
            script = f'print(db.getSiblingDB("{self._dbname(database)}").stats().dataSize)'
        else:
            script = (
                "let total = 0; db.adminCommand({ listDatabases: 1 }).databases"
                ".forEach(function (d) { total += d.sizeOnDisk; }); print(total)"
            )
        output = await self._eval(database, host, script, self.settings.estimate_timeout)
        return parse_int(output)

    async def _get_structure(
        self, database: DatabaseInstance, host: ServerHost
    ) -> list[StructureItem]:
        if not database.database_name:
            return []
        script = (
            f'const target = db.getSiblingDB("{self._dbname(database)}"); '
            "target.getCollectionNames().forEach(function (name) "
            '{ print(name + "\\t" + (target.getCollection(name).stats().size || 0)); })'
        )
        output = await self._eval(database, host, script, self.settings.structure_timeout)

        items = []
        for line in output.splitlines():
            name, _, size = line.strip().rpartition("\t")
            if name and size.isdigit():
                items.append(StructureItem(name=name, size_bytes=int(size)))
        return items

    async def validate_transfer(
        self,
        source: DatabaseInstance,
        target: DatabaseInstance | None,
        record: TransferRecord,
    ) -> ValidationResult:
        result = await super().validate_transfer(source, target, record)
        if record.transfer_mode is TransferMode.PARTIAL and not source.database_name:
            result.add_error("Partial MongoDB transfers require a database name on the source")
        if target and target.database_name and not source.database_name:
            result.add_error(
                "MongoDB source needs a database name to restore into database "
                f"{target.database_name}"
            )
        return result

    def container_environment(self, database: DatabaseInstance) -> dict[str, str]:
        env = {}
        if database.user and database.password:
            env["MONGO_INITDB_ROOT_USERNAME"] = database.user
            env["MONGO_INITDB_ROOT_PASSWORD"] = database.password
        if database.database_name:
            env["MONGO_INITDB_DATABASE"] = database.database_name
        return env

    def readiness_command(self, database: DatabaseInstance) -> str:
        return self.docker_exec(
            database,
            ["mongosh", self._uri(database), "--quiet", "--eval", "db.adminCommand('ping').ok"],
        )
