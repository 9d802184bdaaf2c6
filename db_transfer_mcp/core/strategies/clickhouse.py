"""ClickHouse table-by-table textual dumps.

Artifact layout::

    -- db-transfer clickhouse v1
    -- SCHEMA <table>
    <single-line create_table_query>
    -- DATA <table> rows=<N>
    <N TabSeparated rows>
    ... repeated per table

Row counts make the layout unambiguous even when row content looks like a
marker; restore only ever reads markers at the positions the counts imply.
"""

import re
import shlex
from dataclasses import dataclass

from ...constants import CLICKHOUSE_DATA_MARKER, CLICKHOUSE_HEADER, CLICKHOUSE_SCHEMA_MARKER
from ...models.database import DatabaseInstance
from ...models.enums import DatabaseKind
from ..config_loader import ServerHost
from ..exceptions import DumpFormatError, TransferEngineError, UnsafeIdentifierError
from ..safety import sql_string_list, validate_identifier
from .base import StructureItem, TransferStrategy, parse_int

_DATA_MARKER_RE = re.compile(rf"^{re.escape(CLICKHOUSE_DATA_MARKER)}(\S+) rows=(\d+)$")
_CREATE_RE = re.compile(
    r"^(CREATE\s+(?:OR\s+REPLACE\s+)?(?:TABLE|MATERIALIZED\s+VIEW|VIEW|DICTIONARY))\s+\S+",
    re.IGNORECASE,
)
_VIEW_ENGINES = {"View", "MaterializedView", "LiveView", "WindowView", "Dictionary"}


@dataclass
class ClickhouseSection:
    """Line positions (1-based, inclusive) of one table in a dump artifact."""

    name: str
    create_line: int
    data_start: int
    data_end: int
    rows: int


def parse_clickhouse_index(index_output: str, total_lines: int) -> list[ClickhouseSection]:
    """Map ``grep -n`` marker output of an artifact to table sections.

    Args:
        index_output: ``<line>:<text>`` lines for every marker-looking line
        total_lines: Line count of the whole artifact

    Raises:
        DumpFormatError: If markers are missing, misplaced or the file is truncated
    """
    entries: dict[int, str] = {}
    for line in index_output.splitlines():
        number, sep, text = line.partition(":")
        if sep and number.isdigit():
            entries[int(number)] = text.rstrip("\r")

    if entries.get(1) != CLICKHOUSE_HEADER:
        raise DumpFormatError("Missing ClickHouse dump header")

    sections = []
    line = 2
    while line <= total_lines:
        schema = entries.get(line, "")
        if not schema.startswith(CLICKHOUSE_SCHEMA_MARKER):
            raise DumpFormatError(f"Expected schema marker at line {line}")
        name = schema[len(CLICKHOUSE_SCHEMA_MARKER):].strip()

        match = _DATA_MARKER_RE.match(entries.get(line + 2, ""))
        if not match or match.group(1) != name:
            raise DumpFormatError(f"Expected data marker for {name} at line {line + 2}")

        rows = int(match.group(2))
        data_end = line + 2 + rows
        if data_end > total_lines:
            raise DumpFormatError(f"Dump truncated inside data of {name}")

        sections.append(
            ClickhouseSection(
                name=name,
                create_line=line + 1,
                data_start=line + 3,
                data_end=data_end,
                rows=rows,
            )
        )
        line = data_end + 1

    return sections


def unqualify_create(statement: str, table: str) -> str:
    """Point a create statement at ``table`` in the current database."""
    rewritten, count = _CREATE_RE.subn(lambda m: f"{m.group(1)} `{table}`", statement, count=1)
    if not count:
        raise DumpFormatError(f"Unrecognized create statement for {table}")
    return rewritten


class ClickhouseStrategy(TransferStrategy):
    kind = DatabaseKind.CLICKHOUSE
    option_key = "tables"

    def dump_file_extension(self) -> str:
        return "sql"

    def _client_args(self, database: DatabaseInstance) -> list[str]:
        args = ["clickhouse-client", "--user", database.user or "default"]
        if database.password:
            args.extend(["--password", database.password])
        args.extend(
            ["--database", validate_identifier(database.database_name or "default", "database")]
        )
        return args

    def _client(
        self, database: DatabaseInstance, query: str, interactive: bool = False
    ) -> str:
        return self.docker_exec(
            database, [*self._client_args(database), "--query", query], interactive=interactive
        )

    async def _query(
        self, database: DatabaseInstance, host: ServerHost, query: str, timeout: int
    ) -> str:
        return await self.executor.run([self._client(database, query)], host, timeout=timeout)

    async def list_tables(self, database: DatabaseInstance, host: ServerHost) -> list[str]:
        """Tables a full dump copies.

        Views, materialized views and dictionaries are not copied; the inner
        tables backing materialized views are never listed. Names that are not
        safe identifiers are skipped with a warning.
        """
        output = await self._query(
            database,
            host,
            "SELECT name, engine FROM system.tables WHERE database = currentDatabase() "
            "AND NOT is_temporary AND NOT startsWith(name, '.inner') "
            "ORDER BY name FORMAT TSVRaw",
            self.settings.validate_timeout,
        )
        tables, skipped_views = [], []
        for line in output.splitlines():
            name, _, engine = line.strip().partition("\t")
            if not name:
                continue
            if engine in _VIEW_ENGINES:
                skipped_views.append(name)
                continue
            try:
                tables.append(validate_identifier(name, "table"))
            except UnsafeIdentifierError as e:
                self.logger.warning("Skipping table", database=database.uuid, error=str(e))

        if skipped_views:
            self.logger.warning(
                "Views are not copied", database=database.uuid, views=skipped_views
            )
        return tables

    async def _dump(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        tables = units or await self.list_tables(database, host)
        target = shlex.quote(path)
        rows_file = shlex.quote(f"{path}.rows")

        commands = [
            f"trap 'rm -f {rows_file}' EXIT",
            f"printf '%s\\n' {shlex.quote(CLICKHOUSE_HEADER)} > {target}",
        ]
        for table in tables:
            schema_query = (
                "SELECT create_table_query FROM system.tables "
                f"WHERE database = currentDatabase() AND name = '{table}' FORMAT TSVRaw"
            )
            commands.extend(
                [
                    f"printf '%s\\n' {shlex.quote(CLICKHOUSE_SCHEMA_MARKER + table)} >> {target}",
                    f"{self._client(database, schema_query)} | tr '\\n' ' ' >> {target}",
                    f"printf '\\n' >> {target}",
                    f"{self._client(database, f'SELECT * FROM `{table}` FORMAT TabSeparated')}"
                    f" > {rows_file}",
                    f"printf '%s rows=%s\\n' {shlex.quote(CLICKHOUSE_DATA_MARKER + table)} "
                    f'"$(wc -l < {rows_file} | tr -d \' \')" >> {target}',
                    f"cat {rows_file} >> {target}",
                ]
            )

        self.logger.debug("Dumping tables", database=database.uuid, tables=len(tables))
        await self.executor.run(
            commands, host, timeout=self.settings.dump_timeout, disable_multiplexing=True
        )

    async def _restore(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        source = shlex.quote(path)
        timeout = self.settings.validate_timeout
        total_lines = parse_int(await self.executor.run([f"wc -l < {source}"], host, timeout=timeout))
        index = await self.executor.run(
            [
                "grep -n -E "
                f"{shlex.quote('^-- (db-transfer clickhouse|SCHEMA|DATA) ')} {source} || true"
            ],
            host,
            timeout=timeout,
        )
        sections = parse_clickhouse_index(index, total_lines)

        if units:
            present = {section.name for section in sections}
            missing = sorted(set(units) - present)
            if missing:
                raise TransferEngineError(f"Tables missing from dump: {', '.join(missing)}")
            sections = [section for section in sections if section.name in units]

        if not sections:
            self.logger.info("Dump contains no tables", path=path)
            return

        create_lines = ";".join(f"{section.create_line}p" for section in sections)
        creates = (
            await self.executor.run(
                [f"sed -n {shlex.quote(create_lines)} {source}"], host, timeout=timeout
            )
        ).splitlines()
        if len(creates) != len(sections):
            raise DumpFormatError("Create statements do not match dump sections")

        commands = []
        for section, create in zip(sections, creates, strict=True):
            name = validate_identifier(section.name, "table")
            commands.append(self._client(database, f"DROP TABLE IF EXISTS `{name}`"))
            commands.append(self._client(database, unqualify_create(create.strip(), name)))
            if section.rows:
                insert = self._client(
                    database, f"INSERT INTO `{name}` FORMAT TabSeparated", interactive=True
                )
                commands.append(
                    f"sed -n {shlex.quote(f'{section.data_start},{section.data_end}p')} "
                    f"{source} | {insert}"
                )

        await self.executor.run(
            commands, host, timeout=self.settings.restore_timeout, disable_multiplexing=True
        )

    async def _estimate_size(
        self, database: DatabaseInstance, host: ServerHost, units: list[str]
    ) -> int:
        query = (
            "SELECT sum(bytes_on_disk) FROM system.parts "
            "WHERE active AND database = currentDatabase()"
        )
        if units:
            query += f" AND table IN ({sql_string_list(units)})"
        output = await self._query(
            database, host, query + " FORMAT TSVRaw", self.settings.estimate_timeout
        )
        return parse_int(output)

    async def _get_structure(
        self, database: DatabaseInstance, host: ServerHost
    ) -> list[StructureItem]:
        output = await self._query(
            database,
            host,
            "SELECT name, ifNull(total_bytes, 0) FROM system.tables "
            "WHERE database = currentDatabase() AND NOT is_temporary FORMAT TSVRaw",
            self.settings.structure_timeout,
        )
        items = []
        for line in output.splitlines():
            name, _, size = line.rpartition("\t")
            if name and size.strip().isdigit():
                items.append(StructureItem(name=name, size_bytes=int(size)))
        return items

    def container_environment(self, database: DatabaseInstance) -> dict[str, str]:
        env = {"CLICKHOUSE_USER": database.user or "default"}
        if database.password:
            env["CLICKHOUSE_PASSWORD"] = database.password
        if database.database_name:
            env["CLICKHOUSE_DB"] = database.database_name
        return env

    def readiness_command(self, database: DatabaseInstance) -> str:
        return self._client(database, "SELECT 1")
