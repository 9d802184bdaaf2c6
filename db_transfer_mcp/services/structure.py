"""Introspection of selectable units for partial transfers."""

from enum import Enum

import structlog
from pydantic import BaseModel, Field

from ..core.config_loader import TransferEngineConfig
from ..core.strategies.base import StructureItem
from ..core.strategies.registry import StrategyRegistry
from ..models.database import DatabaseInstance

logger = structlog.get_logger()


class StructureFailureReason(Enum):
    UNSUPPORTED_ENGINE = "unsupported_engine"
    SERVER_NOT_FOUND = "server_not_found"
    NOT_RUNNING = "not_running"


class StructureResult(BaseModel):
    kind: str
    supports_partial: bool
    items: list[StructureItem] = Field(default_factory=list)
    total_bytes: int = 0


class StructureFailure(BaseModel):
    reason: StructureFailureReason
    message: str


class StructureInspector:
    def __init__(self, config: TransferEngineConfig, registry: StrategyRegistry):
        self.config = config
        self.registry = registry
        self.logger = logger.bind(component="structure_inspector")

    async def inspect(self, database: DatabaseInstance) -> StructureResult | StructureFailure:
        """List tables, collections or key prefixes of ``database`` with their sizes.

        An empty item list means introspection found nothing or failed; the
        strategy does not distinguish the two.
        """
        strategy = self.registry.get(database.kind)
        if strategy is None:
            return StructureFailure(
                reason=StructureFailureReason.UNSUPPORTED_ENGINE,
                message=f"{database.kind.label} databases cannot be inspected",
            )

        host = self.config.get_host(database.server_id)
        if host is None or not host.enabled:
            return StructureFailure(
                reason=StructureFailureReason.SERVER_NOT_FOUND,
                message=f"Server {database.server_id} not found",
            )

        if database.exposes_running_check() and not database.is_running():
            return StructureFailure(
                reason=StructureFailureReason.NOT_RUNNING,
                message=f"Database {database.name} is not running",
            )

        items = await strategy.get_structure(database, host)
        self.logger.debug("Structure inspected", database=database.uuid, items=len(items))
        return StructureResult(
            kind=strategy.database_kind(),
            supports_partial=strategy.supports_partial_transfer(),
            items=items,
            total_bytes=sum(item.size_bytes for item in items),
        )
