"""Tests for the Redis, KeyDB and Dragonfly transfer strategies."""

import pytest

from db_transfer_mcp.constants import REDIS_KEYS_HEADER
from db_transfer_mcp.core.strategies.redis import (
    DragonflyStrategy,
    KeydbStrategy,
    RedisStrategy,
)
from db_transfer_mcp.models import DatabaseKind, TransferOptions

from .conftest import SCRATCH_DIR, make_database

PATH = f"{SCRATCH_DIR}/abc-20240101_120000.rdb"


@pytest.fixture
def strategy(executor, settings) -> RedisStrategy:
    return RedisStrategy(executor, settings)


@pytest.fixture
def source():
    return make_database(DatabaseKind.REDIS, database_name=None, user=None)


@pytest.fixture
def target():
    return make_database(
        DatabaseKind.REDIS, database_name=None, user=None, container_name="redis-staging"
    )


class TestSnapshotDump:
    @pytest.mark.asyncio
    async def test_bgsave_then_copy(self, strategy, executor, source, host_a):
        executor.on_sequence("LASTSAVE", ["1700000000", "1700000000", "1700000042"])
        result = await strategy.create_dump(source, host_a, PATH)

        assert result.success
        assert "redis-cli -a s3cret --no-auth-warning --raw BGSAVE" in executor.find("BGSAVE")
        assert len([s for s in executor.scripts() if "LASTSAVE" in s]) == 3
        assert executor.find("docker cp") == f"docker cp redis-container:/data/dump.rdb {PATH}"

    @pytest.mark.asyncio
    async def test_configured_rdb_location(self, strategy, executor, source, host_a):
        executor.on_sequence("LASTSAVE", ["1", "2"])
        executor.on("CONFIG GET dir", "dir\n/var/lib/redis")
        executor.on("CONFIG GET dbfilename", "dbfilename\nsnapshot.rdb")
        await strategy.create_dump(source, host_a, PATH)

        assert "redis-container:/var/lib/redis/snapshot.rdb" in executor.find("docker cp")

    @pytest.mark.asyncio
    async def test_bgsave_never_finishes(self, strategy, executor, source, host_a):
        executor.on("LASTSAVE", "1700000000")
        result = await strategy.create_dump(source, host_a, PATH)

        assert not result.success
        assert "BGSAVE did not finish after 3 checks" in result.error
        assert not any("docker cp" in s for s in executor.scripts())

    @pytest.mark.asyncio
    async def test_dragonfly_requests_rdb_format(self, executor, settings, host_a):
        strategy = DragonflyStrategy(executor, settings)
        source = make_database(DatabaseKind.DRAGONFLY, user=None, password=None)
        executor.on_sequence("LASTSAVE", ["1", "2"])
        executor.on("CONFIG GET dbfilename", "dbfilename\ndump")
        await strategy.create_dump(source, host_a, PATH)

        assert "redis-cli --raw BGSAVE RDB" in executor.find("BGSAVE")
        assert "dragonfly-container:/data/dump.rdb" in executor.find("docker cp")


class TestKeyPatternDump:
    @pytest.mark.asyncio
    async def test_scans_each_pattern(self, strategy, executor, source, host_a):
        executor.on("grep -c", "12")
        result = await strategy.create_dump(
            source, host_a, PATH, TransferOptions(key_patterns=["session:*", "user:?"])
        )

        assert result.success
        script = executor.find("--scan")
        assert "--scan --pattern 'session:*'" in script
        assert "--scan --pattern 'user:?'" in script
        assert "sort -u" in script
        assert REDIS_KEYS_HEADER in script
        assert "DUMP" in script and "base64 -w0" in script

    @pytest.mark.asyncio
    async def test_no_matching_keys_fails(self, strategy, executor, source, host_a):
        executor.on("grep -c", "0")
        result = await strategy.create_dump(
            source, host_a, PATH, TransferOptions(key_patterns=["nothing:*"])
        )

        assert not result.success
        assert "No keys matched" in result.error


class TestRestore:
    @pytest.mark.asyncio
    async def test_snapshot_restore_restarts_container(self, strategy, executor, target, host_b):
        executor.on("head -c 5", "REDIS")
        executor.on("CONFIG GET appendonly", "appendonly\nno")
        executor.on("PING", "PONG")
        result = await strategy.restore_dump(target, host_b, PATH)

        assert result.success
        script = executor.find("docker stop")
        assert script == (
            "docker stop redis-staging\n"
            f"docker cp {PATH} redis-staging:/data/dump.rdb\n"
            "docker start redis-staging"
        )

    @pytest.mark.asyncio
    async def test_snapshot_restore_refuses_appendonly(self, strategy, executor, target, host_b):
        executor.on("head -c 5", "REDIS")
        executor.on("CONFIG GET appendonly", "appendonly\nyes")
        result = await strategy.restore_dump(target, host_b, PATH)

        assert not result.success
        assert "appendonly" in result.error
        assert not any("docker stop" in s for s in executor.scripts())

    @pytest.mark.asyncio
    async def test_target_never_answers_ping(self, strategy, executor, target, host_b):
        executor.on("head -c 5", "REDIS")
        executor.on("PING", "LOADING")
        result = await strategy.restore_dump(target, host_b, PATH)

        assert not result.success
        assert "did not answer PING" in result.error

    @pytest.mark.asyncio
    async def test_key_dump_is_replayed(self, strategy, executor, target, host_b):
        executor.on("head -c 5", "# db-")
        executor.on("head -n 1", REDIS_KEYS_HEADER)
        executor.on("restored=0", "3")
        result = await strategy.restore_dump(target, host_b, PATH)

        assert result.success
        script = executor.find("restored=0")
        assert "--raw -x RESTORE" in script
        assert "docker exec -i redis-staging redis-cli" in script
        assert script.endswith('echo "$restored"')
        assert f"done < {PATH}" in script

    @pytest.mark.asyncio
    async def test_unknown_artifact_format(self, strategy, executor, target, host_b):
        executor.on("head -c 5", "hello")
        executor.on("head -n 1", "hello world")
        result = await strategy.restore_dump(target, host_b, PATH)

        assert not result.success
        assert "neither an RDB snapshot nor a key dump" in result.error


class TestIntrospection:
    @pytest.mark.asyncio
    async def test_full_estimate_uses_used_memory(self, strategy, executor, source, host_a):
        executor.on("INFO memory", "# Memory\r\nused_memory:1048576\r\nused_memory_human:1.00M\r\n")
        assert await strategy.estimate_size(source, host_a) == 1048576

    @pytest.mark.asyncio
    async def test_pattern_estimate_sums_memory_usage(self, strategy, executor, source, host_a):
        executor.on("awk", "4096")
        size = await strategy.estimate_size(
            source, host_a, TransferOptions(key_patterns=["cache:*"])
        )
        assert size == 4096

    @pytest.mark.asyncio
    async def test_structure_groups_by_prefix(self, strategy, executor, source, host_a):
        executor.on(
            "--count 1000",
            "session:1\t100\nsession:2\t50\nuser:1\t10\nplain\t5\nbad key:x\t7\n",
        )
        items = await strategy.get_structure(source, host_a)

        assert [(i.name, i.size_bytes) for i in items] == [
            ("session:*", 150),
            ("user:*", 10),
            ("plain", 5),
        ]
        assert "set +o pipefail" in executor.find("--count 1000")


class TestProvisioningHooks:
    def test_requirepass(self, strategy, source):
        assert strategy.container_command(source) == ["redis-server", "--requirepass", "s3cret"]
        assert strategy.container_command(source.model_copy(update={"password": None})) == []

    def test_keydb_binaries(self, executor, settings):
        strategy = KeydbStrategy(executor, settings)
        database = make_database(DatabaseKind.KEYDB, password=None)
        assert strategy.readiness_command(database) == "docker exec keydb-container keydb-cli PING"
        assert strategy.option_key == "key_patterns"
