"""Redis-compatible key-value stores: RDB snapshots and key-pattern dumps.

Full transfers copy the RDB file produced by ``BGSAVE``. Key-pattern
transfers write a line-oriented artifact::

    # db-transfer redis-keys v1
    KEY <base64 key> <pttl in ms, -1 for none>
    <base64 DUMP payload>

which is replayed with ``RESTORE``.
"""

import asyncio
import shlex

from ...constants import REDIS_KEY_MARKER, REDIS_KEYS_HEADER, REDIS_RDB_MAGIC
from ...models.database import DatabaseInstance
from ...models.enums import DatabaseKind
from ..config_loader import ServerHost
from ..exceptions import (
    DumpFormatError,
    RemoteCommandError,
    TransferEngineError,
    UnsafeIdentifierError,
)
from ..safety import validate_key_pattern
from .base import StructureItem, TransferStrategy, parse_int

DEFAULT_RDB_DIR = "/data"
DEFAULT_RDB_FILENAME = "dump.rdb"
STRUCTURE_SCAN_LIMIT = 10000


class RedisStrategy(TransferStrategy):
    kind = DatabaseKind.REDIS
    option_key = "key_patterns"
    cli_binary = "redis-cli"
    server_binary = "redis-server"
    bgsave_args = ["BGSAVE"]

    def dump_file_extension(self) -> str:
        return "rdb"

    def _cli(self, database: DatabaseInstance, args: list[str], interactive: bool = False) -> str:
        cli = [self.cli_binary]
        if database.password:
            cli.extend(["-a", database.password, "--no-auth-warning"])
        return self.docker_exec(database, cli + args, interactive=interactive)

    async def _call(
        self, database: DatabaseInstance, host: ServerHost, args: list[str], timeout: int
    ) -> str:
        return await self.executor.run([self._cli(database, ["--raw", *args])], host, timeout=timeout)

    async def _config_value(
        self, database: DatabaseInstance, host: ServerHost, name: str
    ) -> str | None:
        output = await self._call(
            database, host, ["CONFIG", "GET", name], self.settings.validate_timeout
        )
        lines = [line.strip() for line in output.splitlines()]
        if len(lines) >= 2 and lines[1]:
            return lines[1]
        return None

    async def rdb_location(self, database: DatabaseInstance, host: ServerHost) -> str:
        """Path of the snapshot file inside the container."""
        try:
            directory = await self._config_value(database, host, "dir") or DEFAULT_RDB_DIR
            filename = (
                await self._config_value(database, host, "dbfilename") or DEFAULT_RDB_FILENAME
            )
        except RemoteCommandError as e:
            self.logger.warning("CONFIG GET failed, using default RDB location", error=str(e))
            directory, filename = DEFAULT_RDB_DIR, DEFAULT_RDB_FILENAME
        return f"{directory.rstrip('/')}/{filename}"

    # Dump

    async def _dump(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        if units:
            await self._dump_keys(database, host, path, units)
        else:
            await self._dump_snapshot(database, host, path)

    async def _dump_snapshot(
        self, database: DatabaseInstance, host: ServerHost, path: str
    ) -> None:
        timeout = self.settings.validate_timeout
        before = parse_int(await self._call(database, host, ["LASTSAVE"], timeout))
        await self._call(database, host, self.bgsave_args, timeout)

        attempts = self.settings.redis_bgsave_poll_attempts
        for _ in range(attempts):
            await asyncio.sleep(self.settings.redis_bgsave_poll_interval)
            if parse_int(await self._call(database, host, ["LASTSAVE"], timeout)) != before:
                break
        else:
            raise TransferEngineError(f"BGSAVE did not finish after {attempts} checks")

        location = await self.rdb_location(database, host)
        await self.executor.run(
            [f"docker cp {shlex.quote(f'{database.container}:{location}')} {shlex.quote(path)}"],
            host,
            timeout=self.settings.dump_timeout,
        )

    async def _dump_keys(
        self, database: DatabaseInstance, host: ServerHost, path: str, patterns: list[str]
    ) -> None:
        target = shlex.quote(path)
        scans = "; ".join(
            self._cli(database, ["--scan", "--pattern", pattern]) for pattern in patterns
        )
        pttl = self._cli(database, ["--raw", "PTTL"])
        dump = self._cli(database, ["--raw", "DUMP"])

        commands = [
            f"printf '%s\\n' {shlex.quote(REDIS_KEYS_HEADER)} > {target}",
            f"{{ {scans}; }} | sort -u | while IFS= read -r key; do",
            f'  ttl=$({pttl} "$key")',
            # Key expired between SCAN and PTTL
            '  if [ "$ttl" = "-2" ]; then continue; fi',
            f"  printf '{REDIS_KEY_MARKER} %s %s\\n' "
            "\"$(printf '%s' \"$key\" | base64 -w0)\" \"$ttl\"",
            # --raw appends a newline to the payload
            f'  {dump} "$key" | head -c -1 | base64 -w0',
            "  printf '\\n'",
            f"done >> {target}",
            f"grep -c '^{REDIS_KEY_MARKER} ' {target} || true",
        ]
        output = await self.executor.run(
            commands, host, timeout=self.settings.dump_timeout, disable_multiplexing=True
        )
        count = parse_int(output)
        if count == 0:
            raise TransferEngineError(
                f"No keys matched the requested patterns: {', '.join(patterns)}"
            )
        self.logger.info("Keys dumped", database=database.uuid, keys=count)

    # Restore

    async def _restore(
        self, database: DatabaseInstance, host: ServerHost, path: str, units: list[str]
    ) -> None:
        if await self.read_magic(host, path, len(REDIS_RDB_MAGIC)) == REDIS_RDB_MAGIC:
            await self._restore_snapshot(database, host, path)
            return

        header = await self.executor.run(
            [f"head -n 1 {shlex.quote(path)}"], host, timeout=self.settings.validate_timeout
        )
        if header.strip() != REDIS_KEYS_HEADER:
            raise DumpFormatError(f"{path} is neither an RDB snapshot nor a key dump")
        await self._restore_keys(database, host, path)

    async def _restore_snapshot(
        self, database: DatabaseInstance, host: ServerHost, path: str
    ) -> None:
        if await self._config_value(database, host, "appendonly") == "yes":
            raise TransferEngineError(
                "Target has appendonly enabled; the server would ignore the restored RDB file"
            )

        location = await self.rdb_location(database, host)
        container = shlex.quote(database.container)
        await self.executor.run(
            [
                f"docker stop {container}",
                f"docker cp {shlex.quote(path)} {shlex.quote(f'{database.container}:{location}')}",
                f"docker start {container}",
            ],
            host,
            timeout=self.settings.restore_timeout,
        )
        await self.wait_until_ready(database, host)

    async def wait_until_ready(self, database: DatabaseInstance, host: ServerHost) -> None:
        attempts = self.settings.redis_bgsave_poll_attempts
        for _ in range(attempts):
            try:
                output = await self._call(database, host, ["PING"], self.settings.validate_timeout)
            except RemoteCommandError:
                output = ""
            if output.strip() == "PONG":
                return
            await asyncio.sleep(self.settings.redis_bgsave_poll_interval)
        raise TransferEngineError(f"{database.name} did not answer PING after restart")

    async def _restore_keys(
        self, database: DatabaseInstance, host: ServerHost, path: str
    ) -> None:
        delete = self._cli(database, ["--raw", "DEL"])
        # -x supplies the payload as the final argument, so REPLACE cannot be used
        restore = self._cli(database, ["--raw", "-x", "RESTORE"], interactive=True)

        commands = [
            "restored=0",
            "while IFS=' ' read -r marker key ttl; do",
            f'  if [ "$marker" != "{REDIS_KEY_MARKER}" ]; then continue; fi',
            "  IFS= read -r payload",
            # Key vanished between PTTL and DUMP
            '  if [ -z "$payload" ]; then continue; fi',
            "  name=$(printf '%s' \"$key\" | base64 -d)",
            '  if [ "$ttl" -lt 0 ]; then ttl=0; fi',
            f'  {delete} "$name" > /dev/null',
            f"  result=$(printf '%s' \"$payload\" | base64 -d | {restore} \"$name\" \"$ttl\")",
            '  if [ "$result" != "OK" ]; then',
            '    echo "RESTORE failed for $name: $result" >&2',
            "    exit 1",
            "  fi",
            "  restored=$((restored + 1))",
            f"done < {shlex.quote(path)}",
            'echo "$restored"',
        ]
        output = await self.executor.run(
            commands, host, timeout=self.settings.restore_timeout, disable_multiplexing=True
        )
        self.logger.info("Keys restored", database=database.uuid, keys=parse_int(output))

    # Introspection

    async def _estimate_size(
        self, database: DatabaseInstance, host: ServerHost, units: list[str]
    ) -> int:
        if not units:
            output = await self._call(
                database, host, ["INFO", "memory"], self.settings.estimate_timeout
            )
            for line in output.splitlines():
                if line.startswith("used_memory:"):
                    return int(line.split(":", 1)[1].strip())
            raise TransferEngineError("used_memory missing from INFO output")

        scans = "; ".join(
            self._cli(database, ["--scan", "--pattern", pattern]) for pattern in units
        )
        usage = self._cli(database, ["--raw", "MEMORY", "USAGE"])
        commands = [
            f"{{ {scans}; }} | sort -u | while IFS= read -r key; do",
            f'  {usage} "$key"',
            "done | awk '{ total += $1 } END { print total + 0 }'",
        ]
        output = await self.executor.run(commands, host, timeout=self.settings.estimate_timeout)
        return parse_int(output)

    async def _get_structure(
        self, database: DatabaseInstance, host: ServerHost
    ) -> list[StructureItem]:
        scan = self._cli(database, ["--scan", "--count", "1000"])
        usage = self._cli(database, ["--raw", "MEMORY", "USAGE"])
        commands = [
            # head closes the pipe early on large keyspaces
            "set +o pipefail",
            f"{scan} | head -n {STRUCTURE_SCAN_LIMIT} | while IFS= read -r key; do",
            f"  printf '%s\\t%s\\n' \"$key\" \"$({usage} \"$key\")\"",
            "done",
        ]
        output = await self.executor.run(commands, host, timeout=self.settings.structure_timeout)

        sizes: dict[str, int] = {}
        for line in output.splitlines():
            key, _, size = line.rpartition("\t")
            if not key:
                continue
            name = f"{key.split(':', 1)[0]}:*" if ":" in key else key
            try:
                validate_key_pattern(name)
            except UnsafeIdentifierError:
                continue
            sizes[name] = sizes.get(name, 0) + (int(size) if size.strip().isdigit() else 0)

        return [StructureItem(name=name, size_bytes=size) for name, size in sizes.items()]

    # Provisioning

    def container_command(self, database: DatabaseInstance) -> list[str]:
        if database.password:
            return [self.server_binary, "--requirepass", database.password]
        return []

    def readiness_command(self, database: DatabaseInstance) -> str:
        return self._cli(database, ["PING"])


class KeydbStrategy(RedisStrategy):
    kind = DatabaseKind.KEYDB
    cli_binary = "keydb-cli"
    server_binary = "keydb-server"


class DragonflyStrategy(RedisStrategy):
    kind = DatabaseKind.DRAGONFLY
    server_binary = "dragonfly"
    # Dragonfly defaults to its own snapshot format
    bgsave_args = ["BGSAVE", "RDB"]

    async def rdb_location(self, database: DatabaseInstance, host: ServerHost) -> str:
        location = await super().rdb_location(database, host)
        if "." not in location.rsplit("/", 1)[-1]:
            location += ".rdb"
        return location
