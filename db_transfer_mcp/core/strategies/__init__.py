"""Engine-specific transfer strategies."""

from .base import (  # noqa: F401
    DumpResult,
    RestoreResult,
    StructureItem,
    TransferStrategy,
    ValidationResult,
)
from .clickhouse import ClickhouseStrategy, parse_clickhouse_index  # noqa: F401
from .mongodb import MongodbStrategy  # noqa: F401
from .mysql import MariadbStrategy, MysqlStrategy  # noqa: F401
from .postgresql import PostgresqlStrategy  # noqa: F401
from .redis import DragonflyStrategy, KeydbStrategy, RedisStrategy  # noqa: F401
from .registry import StrategyRegistry, build_default_registry  # noqa: F401

__all__ = [
    "DumpResult",
    "RestoreResult",
    "StructureItem",
    "TransferStrategy",
    "ValidationResult",
    "PostgresqlStrategy",
    "MysqlStrategy",
    "MariadbStrategy",
    "MongodbStrategy",
    "RedisStrategy",
    "KeydbStrategy",
    "DragonflyStrategy",
    "ClickhouseStrategy",
    "parse_clickhouse_index",
    "StrategyRegistry",
    "build_default_registry",
]
