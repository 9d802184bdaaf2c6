"""Data models for the transfer engine."""

from .database import (  # noqa: F401
    DatabaseInstance,
    EnvironmentConfig,
    Initiator,
)
from .enums import (  # noqa: F401
    DatabaseKind,
    TransferMode,
    TransferStatus,
)
from .transfer import (  # noqa: F401
    TransferErrorPayload,
    TransferOptions,
    TransferRecord,
)

__all__ = [
    # Topology models
    "DatabaseInstance",
    "EnvironmentConfig",
    "Initiator",
    # Enums
    "DatabaseKind",
    "TransferMode",
    "TransferStatus",
    # Transfer models
    "TransferErrorPayload",
    "TransferOptions",
    "TransferRecord",
]
