"""Tests for the ClickHouse transfer strategy and its dump layout."""

import pytest

from db_transfer_mcp.core.exceptions import DumpFormatError
from db_transfer_mcp.core.strategies.clickhouse import (
    ClickhouseStrategy,
    parse_clickhouse_index,
    unqualify_create,
)
from db_transfer_mcp.models import DatabaseKind, TransferOptions

from .conftest import SCRATCH_DIR, make_database

PATH = f"{SCRATCH_DIR}/abc-20240101_120000.sql"
LIST_TABLES = "SELECT name, engine FROM system.tables"

# Marker lines of a two-table dump:
#   1 header, 2-6 events (2 rows), 7-9 empty (0 rows)
INDEX = """1:-- db-transfer clickhouse v1
2:-- SCHEMA events
4:-- DATA events rows=2
7:-- SCHEMA empty
9:-- DATA empty rows=0
"""

CREATES = (
    "CREATE TABLE shop.events (`id` UInt64, `name` String) ENGINE = MergeTree ORDER BY id\n"
    "CREATE TABLE shop.empty (`id` UInt64) ENGINE = MergeTree ORDER BY id\n"
)


@pytest.fixture
def strategy(executor, settings) -> ClickhouseStrategy:
    return ClickhouseStrategy(executor, settings)


@pytest.fixture
def database():
    return make_database(DatabaseKind.CLICKHOUSE)


class TestParseIndex:
    def test_sections(self):
        events, empty = parse_clickhouse_index(INDEX, 9)

        assert (events.name, events.create_line, events.data_start, events.data_end) == (
            "events", 3, 5, 6
        )
        assert events.rows == 2
        assert empty.name == "empty"
        assert empty.create_line == 8
        assert empty.rows == 0

    def test_rows_that_look_like_markers_are_ignored(self):
        index = INDEX.replace(
            "4:-- DATA events rows=2\n", "4:-- DATA events rows=2\n5:-- SCHEMA fake\n"
        )
        sections = parse_clickhouse_index(index, 9)
        assert [s.name for s in sections] == ["events", "empty"]

    def test_missing_header(self):
        with pytest.raises(DumpFormatError, match="header"):
            parse_clickhouse_index(INDEX.replace("1:-- db-transfer clickhouse v1\n", ""), 9)

    def test_truncated_data(self):
        with pytest.raises(DumpFormatError, match="truncated"):
            parse_clickhouse_index(
                "1:-- db-transfer clickhouse v1\n2:-- SCHEMA t\n4:-- DATA t rows=5\n", 6
            )

    def test_data_marker_for_another_table(self):
        index = "1:-- db-transfer clickhouse v1\n2:-- SCHEMA a\n4:-- DATA b rows=0\n"
        with pytest.raises(DumpFormatError, match="data marker"):
            parse_clickhouse_index(index, 4)

    def test_trailing_garbage(self):
        with pytest.raises(DumpFormatError, match="schema marker"):
            parse_clickhouse_index(INDEX, 10)

    def test_header_only(self):
        assert parse_clickhouse_index("1:-- db-transfer clickhouse v1\n", 1) == []


class TestUnqualifyCreate:
    def test_database_prefix_is_dropped(self):
        statement = "CREATE TABLE shop.events (`id` UInt64) ENGINE = MergeTree ORDER BY id"
        assert unqualify_create(statement, "events") == (
            "CREATE TABLE `events` (`id` UInt64) ENGINE = MergeTree ORDER BY id"
        )

    def test_unknown_statement(self):
        with pytest.raises(DumpFormatError):
            unqualify_create("DROP TABLE events", "events")


class TestClickhouseDump:
    @pytest.mark.asyncio
    async def test_dumps_every_table(self, strategy, executor, database, host_a):
        executor.on(LIST_TABLES, "events\tMergeTree\nmetrics\tReplacingMergeTree\n")
        result = await strategy.create_dump(database, host_a, PATH)

        assert result.success
        script = executor.find("trap")
        assert "'-- SCHEMA events'" in script
        assert "'-- SCHEMA metrics'" in script
        assert "SELECT * FROM `metrics` FORMAT TabSeparated" in script
        assert f"trap 'rm -f {PATH}.rows' EXIT" in script

    @pytest.mark.asyncio
    async def test_materialized_view_database(self, strategy, executor, database, host_a):
        executor.on(
            LIST_TABLES,
            "events\tMergeTree\n"
            "events_daily\tMaterializedView\n"
            "recent\tView\n"
            "odd name\tMergeTree\n"
            ".inner_id.5f3a9c1e\tAggregatingMergeTree\n",
        )
        result = await strategy.create_dump(database, host_a, PATH)

        assert result.success
        script = executor.find("trap")
        assert "'-- SCHEMA events'" in script
        assert "events_daily" not in script
        assert "SCHEMA recent" not in script
        assert "odd name" not in script
        assert ".inner_id" not in script
        assert "startsWith(name, " in executor.find(LIST_TABLES)

    @pytest.mark.asyncio
    async def test_dumps_selected_tables_only(self, strategy, executor, database, host_a):
        await strategy.create_dump(database, host_a, PATH, TransferOptions(tables=["events"]))

        script = executor.find("trap")
        assert "'-- SCHEMA events'" in script
        assert not any(LIST_TABLES in s for s in executor.scripts())


class TestClickhouseRestore:
    @pytest.fixture(autouse=True)
    def artifact(self, executor):
        executor.on("wc -l <", "9")
        executor.on("grep -n -E", INDEX)
        executor.on("'3p;8p'", CREATES)
        executor.on("sed -n 3p", CREATES.splitlines()[0])

    @pytest.mark.asyncio
    async def test_recreates_and_loads_tables(self, strategy, executor, database, host_b):
        result = await strategy.restore_dump(database, host_b, PATH)

        assert result.success
        script = executor.find("DROP TABLE IF EXISTS")
        assert "DROP TABLE IF EXISTS `events`" in script
        assert "CREATE TABLE `events` (`id` UInt64, `name` String)" in script
        assert "CREATE TABLE `empty`" in script
        assert f"sed -n 5,6p {PATH} | docker exec -i clickhouse-container" in script
        assert "INSERT INTO `events` FORMAT TabSeparated" in script
        assert "INSERT INTO `empty`" not in script

    @pytest.mark.asyncio
    async def test_restores_selected_tables(self, strategy, executor, database, host_b):
        result = await strategy.restore_dump(
            database, host_b, PATH, TransferOptions(tables=["events"])
        )

        assert result.success
        script = executor.find("DROP TABLE IF EXISTS")
        assert "`empty`" not in script

    @pytest.mark.asyncio
    async def test_missing_table(self, strategy, executor, database, host_b):
        result = await strategy.restore_dump(
            database, host_b, PATH, TransferOptions(tables=["events", "ghosts"])
        )

        assert not result.success
        assert "ghosts" in result.error


class TestClickhouseIntrospection:
    @pytest.mark.asyncio
    async def test_structure(self, strategy, executor, database, host_a):
        executor.on("total_bytes", "events\t4096\nempty\t0\n")
        items = await strategy.get_structure(database, host_a)
        assert [(i.name, i.size_bytes) for i in items] == [("events", 4096), ("empty", 0)]

    @pytest.mark.asyncio
    async def test_estimate(self, strategy, executor, database, host_a):
        executor.on("bytes_on_disk", "65536")
        assert await strategy.estimate_size(database, host_a) == 65536

    def test_client_arguments(self, strategy, database):
        assert strategy.readiness_command(database) == (
            "docker exec clickhouse-container clickhouse-client --user app "
            "--password s3cret --database shop --query 'SELECT 1'"
        )
