"""Lookup of transfer strategies by database kind."""

from ...models.enums import DatabaseKind
from ..remote import RemoteExecutor
from ..settings import TransferSettings
from .base import TransferStrategy
from .clickhouse import ClickhouseStrategy
from .mongodb import MongodbStrategy
from .mysql import MariadbStrategy, MysqlStrategy
from .postgresql import PostgresqlStrategy
from .redis import DragonflyStrategy, KeydbStrategy, RedisStrategy

DEFAULT_STRATEGIES: list[type[TransferStrategy]] = [
    PostgresqlStrategy,
    MysqlStrategy,
    MariadbStrategy,
    MongodbStrategy,
    RedisStrategy,
    KeydbStrategy,
    DragonflyStrategy,
    ClickhouseStrategy,
]


class StrategyRegistry:
    """Maps each DatabaseKind to the strategy that can move its data."""

    def __init__(self):
        self._strategies: dict[DatabaseKind, TransferStrategy] = {}

    def register(self, strategy: TransferStrategy) -> None:
        self._strategies[strategy.kind] = strategy

    def get(self, kind: DatabaseKind | str) -> TransferStrategy | None:
        if isinstance(kind, str):
            try:
                kind = DatabaseKind(kind)
            except ValueError:
                return None
        return self._strategies.get(kind)

    def supports(self, kind: DatabaseKind | str) -> bool:
        return self.get(kind) is not None

    def kinds(self) -> list[DatabaseKind]:
        return list(self._strategies)


def build_default_registry(
    executor: RemoteExecutor, settings: TransferSettings | None = None
) -> StrategyRegistry:
    registry = StrategyRegistry()
    for strategy_class in DEFAULT_STRATEGIES:
        registry.register(strategy_class(executor, settings))
    return registry
