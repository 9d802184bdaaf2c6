"""Enum definitions for the transfer engine."""

from enum import Enum


class DatabaseKind(Enum):
    """Database engines a transfer can read from and write to."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    MONGODB = "mongodb"
    REDIS = "redis"
    KEYDB = "keydb"
    DRAGONFLY = "dragonfly"
    CLICKHOUSE = "clickhouse"

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]


_KIND_LABELS = {
    DatabaseKind.POSTGRESQL: "PostgreSQL",
    DatabaseKind.MYSQL: "MySQL",
    DatabaseKind.MARIADB: "MariaDB",
    DatabaseKind.MONGODB: "MongoDB",
    DatabaseKind.REDIS: "Redis",
    DatabaseKind.KEYDB: "KeyDB",
    DatabaseKind.DRAGONFLY: "Dragonfly",
    DatabaseKind.CLICKHOUSE: "ClickHouse",
}


class TransferMode(Enum):
    """How much of the source database a transfer copies."""

    CLONE = "clone"
    DATA_ONLY = "data_only"
    PARTIAL = "partial"


class TransferStatus(Enum):
    """Lifecycle states of a transfer record."""

    PENDING = "pending"
    VALIDATING = "validating"
    TRANSFERRING = "transferring"
    RESTORING = "restoring"
    COMPLETED = "completed"
    FAILED = "failed"


IN_PROGRESS_STATUSES = (
    TransferStatus.PENDING,
    TransferStatus.VALIDATING,
    TransferStatus.TRANSFERRING,
    TransferStatus.RESTORING,
)

TERMINAL_STATUSES = (TransferStatus.COMPLETED, TransferStatus.FAILED)
