"""Shared pytest fixtures for transfer engine tests."""

from dataclasses import dataclass
from typing import Any

import pytest

from db_transfer_mcp.core.config_loader import ServerHost, TransferEngineConfig
from db_transfer_mcp.core.settings import TransferSettings
from db_transfer_mcp.core.store import TransferStore
from db_transfer_mcp.models import DatabaseInstance, DatabaseKind, EnvironmentConfig

SCRATCH_DIR = "/var/lib/db-transfer/scratch"


@dataclass
class RemoteCall:
    host_id: str
    script: str
    timeout: float | None
    disable_multiplexing: bool
    raise_on_error: bool


class FakeExecutor:
    """Stands in for RemoteExecutor; answers scripts by substring rules.

    Later rules win, so tests can override the defaults. A response may be a
    string, an exception to raise, or a callable taking the script.
    """

    def __init__(self):
        self.calls: list[RemoteCall] = []
        self.rules: list[tuple[str, Any]] = []

    def on(self, substring: str, response: Any) -> "FakeExecutor":
        self.rules.append((substring, response))
        return self

    def on_sequence(self, substring: str, responses: list[Any]) -> "FakeExecutor":
        """Answer successive matching calls from ``responses``, repeating the last one."""
        remaining = list(responses)

        def respond(script: str) -> Any:
            return remaining.pop(0) if len(remaining) > 1 else remaining[0]

        return self.on(substring, respond)

    async def run(
        self,
        commands: list[str],
        host: ServerHost,
        raise_on_error: bool = True,
        timeout: float | None = None,
        disable_multiplexing: bool = False,
    ) -> str:
        script = "\n".join(commands)
        self.calls.append(
            RemoteCall(host.id, script, timeout, disable_multiplexing, raise_on_error)
        )

        for substring, response in reversed(self.rules):
            if substring in script:
                if callable(response):
                    response = response(script)
                if isinstance(response, Exception):
                    if raise_on_error:
                        raise response
                    return ""
                return response
        return ""

    def scripts(self, host_id: str | None = None) -> list[str]:
        return [call.script for call in self.calls if host_id is None or call.host_id == host_id]

    def find(self, substring: str) -> str:
        """The first script containing ``substring``."""
        for script in self.scripts():
            if substring in script:
                return script
        raise AssertionError(f"No remote script contains {substring!r}")


@pytest.fixture
def settings() -> TransferSettings:
    return TransferSettings(
        scratch_dir=SCRATCH_DIR,
        redis_bgsave_poll_attempts=3,
        redis_bgsave_poll_interval=0,
        provision_ready_attempts=3,
        provision_ready_interval=0,
    )


@pytest.fixture
def executor() -> FakeExecutor:
    executor = FakeExecutor()
    executor.on("stat -c %s", "2048")
    return executor


@pytest.fixture
def host_a() -> ServerHost:
    return ServerHost(id="server-a", hostname="a.example.com", user="deploy")


@pytest.fixture
def host_b() -> ServerHost:
    return ServerHost(
        id="server-b",
        hostname="b.example.com",
        user="deploy",
        port=2222,
        identity_file="/home/deploy/.ssh/transfer_ed25519",
    )


def make_database(kind: DatabaseKind, **overrides: Any) -> DatabaseInstance:
    data: dict[str, Any] = {
        "uuid": f"{kind.value}-source",
        "name": f"{kind.value}-main",
        "kind": kind,
        "server_id": "server-a",
        "environment_id": "production",
        "team_id": "team-1",
        "container_name": f"{kind.value}-container",
        "database_name": "shop",
        "user": "app",
        "password": "s3cret",
        "image": f"{kind.value}:latest",
        "status": "running:healthy",
    }
    data.update(overrides)
    return DatabaseInstance(**data)


@pytest.fixture
def pg_source() -> DatabaseInstance:
    return make_database(DatabaseKind.POSTGRESQL)


@pytest.fixture
def pg_target() -> DatabaseInstance:
    return make_database(
        DatabaseKind.POSTGRESQL,
        uuid="postgresql-target",
        name="postgresql-staging",
        server_id="server-b",
        environment_id="staging",
        container_name="postgresql-staging",
    )


@pytest.fixture
def environments() -> dict[str, EnvironmentConfig]:
    return {
        "production": EnvironmentConfig(id="production", name="Production", team_id="team-1"),
        "staging": EnvironmentConfig(id="staging", name="Staging", team_id="team-1"),
    }


@pytest.fixture
def engine_config(host_a, host_b, environments, pg_source, pg_target) -> TransferEngineConfig:
    return TransferEngineConfig(
        hosts={host_a.id: host_a, host_b.id: host_b},
        environments=environments,
        databases={pg_source.uuid: pg_source, pg_target.uuid: pg_target},
    )


@pytest.fixture
async def store(tmp_path) -> TransferStore:
    store = TransferStore(tmp_path / "transfers.db")
    await store.initialize()
    return store
