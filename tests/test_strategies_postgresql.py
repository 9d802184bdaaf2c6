"""Tests for the PostgreSQL transfer strategy."""

import shlex

import pytest

from db_transfer_mcp.core.exceptions import RemoteCommandError
from db_transfer_mcp.core.strategies.postgresql import PostgresqlStrategy
from db_transfer_mcp.models import DatabaseKind, TransferOptions

from .conftest import SCRATCH_DIR, make_database

PATH = f"{SCRATCH_DIR}/abc-20240101_120000.dump"


@pytest.fixture
def strategy(executor, settings) -> PostgresqlStrategy:
    return PostgresqlStrategy(executor, settings)


class TestPostgresqlDump:
    @pytest.mark.asyncio
    async def test_full_dump_uses_custom_format(self, strategy, executor, pg_source, host_a):
        result = await strategy.create_dump(pg_source, host_a, PATH)

        assert result.success
        assert result.size_bytes == 2048
        script = executor.find("pg_dump")
        assert script.startswith(
            "docker exec -e PGPASSWORD=s3cret postgresql-container pg_dump --username app"
        )
        assert "--format=custom shop > " + PATH in script
        dump_call = next(call for call in executor.calls if "pg_dump" in call.script)
        assert dump_call.disable_multiplexing is True

    @pytest.mark.asyncio
    async def test_partial_dump_selects_tables(self, strategy, executor, pg_source, host_a):
        options = TransferOptions(tables=["orders", "billing.invoices"])
        result = await strategy.create_dump(pg_source, host_a, PATH, options)

        assert result.success
        script = executor.find("pg_dump")
        assert "--format=plain --clean --if-exists" in script
        assert "--table orders --table billing.invoices shop" in script

    @pytest.mark.asyncio
    async def test_empty_dump_is_a_failure(self, strategy, executor, pg_source, host_a):
        executor.on("stat -c %s", "0")
        result = await strategy.create_dump(pg_source, host_a, PATH)

        assert not result.success
        assert "empty" in result.error

    @pytest.mark.asyncio
    async def test_pg_dump_error_is_reported(self, strategy, executor, pg_source, host_a):
        executor.on("pg_dump", RemoteCommandError("pg_dump: permission denied", exit_code=1))
        result = await strategy.create_dump(pg_source, host_a, PATH)

        assert not result.success
        assert "permission denied" in result.error

    @pytest.mark.asyncio
    async def test_defaults_without_user_and_database(self, strategy, executor, host_a):
        database = make_database(DatabaseKind.POSTGRESQL, user=None, database_name=None)
        await strategy.create_dump(database, host_a, PATH)

        script = executor.find("pg_dump")
        assert "--username postgres" in script
        assert script.split(" > ")[0].endswith("--format=custom postgres")


class TestPostgresqlRestore:
    @pytest.mark.asyncio
    async def test_custom_format_uses_pg_restore(self, strategy, executor, pg_target, host_b):
        executor.on("head -c 5", "PGDMP")
        result = await strategy.restore_dump(pg_target, host_b, PATH)

        assert result.success
        script = executor.find("pg_restore")
        assert script.startswith("docker exec -i -e PGPASSWORD=s3cret postgresql-staging")
        assert "--dbname shop --clean --if-exists --no-owner --no-acl < " + PATH in script

    @pytest.mark.asyncio
    async def test_plain_sql_uses_psql(self, strategy, executor, pg_target, host_b):
        executor.on("head -c 5", "--\n-")
        result = await strategy.restore_dump(pg_target, host_b, PATH)

        assert result.success
        script = executor.find("ON_ERROR_STOP=1")
        assert "psql --username app --dbname shop --quiet" in script
        assert not any("pg_restore" in s for s in executor.scripts())

    @pytest.mark.asyncio
    async def test_restore_error(self, strategy, executor, pg_target, host_b):
        executor.on("head -c 5", "PGDMP")
        executor.on("pg_restore", RemoteCommandError("pg_restore: error", exit_code=1))
        result = await strategy.restore_dump(pg_target, host_b, PATH)

        assert not result.success
        assert "pg_restore: error" in result.error


class TestPostgresqlIntrospection:
    @pytest.mark.asyncio
    async def test_full_estimate(self, strategy, executor, pg_source, host_a):
        executor.on("pg_database_size", "73400320\n")
        assert await strategy.estimate_size(pg_source, host_a) == 73400320

    @pytest.mark.asyncio
    async def test_partial_estimate_names_tables(self, strategy, executor, pg_source, host_a):
        executor.on("pg_total_relation_size", "8192")
        size = await strategy.estimate_size(
            pg_source, host_a, TransferOptions(tables=["orders", "items"])
        )

        assert size == 8192
        args = shlex.split(executor.find("pg_total_relation_size"))
        assert "IN ('orders', 'items')" in args[args.index("--command") + 1]

    @pytest.mark.asyncio
    async def test_estimate_failure_returns_zero(self, strategy, executor, pg_source, host_a):
        executor.on("pg_database_size", RemoteCommandError("connection refused"))
        assert await strategy.estimate_size(pg_source, host_a) == 0

    @pytest.mark.asyncio
    async def test_structure_sorted_by_size(self, strategy, executor, pg_source, host_a):
        executor.on("pg_statio_user_tables", "orders|1024\nbilling.invoices|4096\nbroken\n")
        items = await strategy.get_structure(pg_source, host_a)

        assert [(i.name, i.size_bytes) for i in items] == [
            ("billing.invoices", 4096),
            ("orders", 1024),
        ]

    @pytest.mark.asyncio
    async def test_structure_failure_returns_empty(self, strategy, executor, pg_source, host_a):
        executor.on("pg_statio_user_tables", RemoteCommandError("timeout"))
        assert await strategy.get_structure(pg_source, host_a) == []


def test_container_environment(strategy, pg_source):
    env = strategy.container_environment(pg_source)
    assert env == {"POSTGRES_USER": "app", "POSTGRES_DB": "shop", "POSTGRES_PASSWORD": "s3cret"}

    trust = strategy.container_environment(make_database(DatabaseKind.POSTGRESQL, password=None))
    assert trust["POSTGRES_HOST_AUTH_METHOD"] == "trust"


def test_readiness_command(strategy, pg_source):
    assert strategy.readiness_command(pg_source) == (
        "docker exec postgresql-container pg_isready --username app --dbname shop"
    )
