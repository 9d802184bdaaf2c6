"""Service layer: admission, orchestration, introspection and tool-facing operations."""

from .admission import Rejection, RejectionReason, TransferAdmissionController
from .orchestrator import TransferOrchestrator
from .structure import StructureFailure, StructureInspector, StructureResult
from .transfer_service import TransferService

__all__ = [
    "Rejection",
    "RejectionReason",
    "TransferAdmissionController",
    "TransferOrchestrator",
    "StructureFailure",
    "StructureInspector",
    "StructureResult",
    "TransferService",
]
