"""Admission control: decide whether a transfer request becomes a record."""

import asyncio
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from ..core.config_loader import ServerHost, TransferEngineConfig
from ..core.exceptions import TransferAlreadyInProgressError
from ..core.store import TransferStore
from ..core.strategies.registry import StrategyRegistry
from ..models.database import DatabaseInstance, EnvironmentConfig, Initiator
from ..models.enums import TransferMode
from ..models.transfer import TransferOptions, TransferRecord
from .orchestrator import TransferOrchestrator

logger = structlog.get_logger()

Authorizer = Callable[[Initiator, DatabaseInstance, EnvironmentConfig], bool]


class RejectionReason(Enum):
    UNSUPPORTED_ENGINE = "unsupported_engine"
    INVALID_MODE = "invalid_mode"
    UNAUTHORIZED = "unauthorized"
    NO_TEAM = "no_team"
    TARGET_NOT_FOUND = "target_not_found"
    TARGET_KIND_MISMATCH = "target_kind_mismatch"
    TARGET_ENVIRONMENT_MISMATCH = "target_environment_mismatch"
    TARGET_IS_SOURCE = "target_is_source"
    UNEXPECTED_TARGET = "unexpected_target"
    SERVER_UNAVAILABLE = "server_unavailable"
    OPTIONS_REQUIRED = "options_required"
    OPTIONS_NOT_ALLOWED = "options_not_allowed"
    PARTIAL_NOT_SUPPORTED = "partial_not_supported"
    OPTIONS_KIND_MISMATCH = "options_kind_mismatch"
    ALREADY_IN_PROGRESS = "already_in_progress"


class Rejection(BaseModel):
    """Why a transfer request was turned down. No record exists for it."""

    reason: RejectionReason
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "reason": self.reason.value}


def team_membership_authorizer(
    initiator: Initiator, source: DatabaseInstance, environment: EnvironmentConfig
) -> bool:
    """Allow when the initiator belongs to the teams owning the source and the target."""
    for team_id in (source.team_id, environment.team_id):
        if team_id is not None and team_id not in initiator.team_ids:
            return False
    return True


class TransferAdmissionController:
    """Validates transfer requests, persists accepted ones and starts them."""

    def __init__(
        self,
        config: TransferEngineConfig,
        store: TransferStore,
        registry: StrategyRegistry,
        orchestrator: TransferOrchestrator,
        authorizer: Authorizer | None = None,
    ):
        self.config = config
        self.store = store
        self.registry = registry
        self.orchestrator = orchestrator
        self.authorizer = authorizer or team_membership_authorizer
        self.logger = logger.bind(component="transfer_admission")
        self._tasks: set[asyncio.Task] = set()

    async def create(
        self,
        source: DatabaseInstance,
        target_environment: EnvironmentConfig,
        target_server: ServerHost,
        mode: TransferMode | str,
        initiator: Initiator,
        options: TransferOptions | dict[str, Any] | None = None,
        existing_target_uuid: str | None = None,
    ) -> TransferRecord | Rejection:
        """Admit or reject a transfer request.

        Checks run in a fixed order and the first failing one decides the
        rejection. An accepted request is stored as ``pending`` and its
        pipeline is started in the background before this returns.
        """
        strategy = self.registry.get(source.kind)
        if strategy is None:
            return self._reject(
                RejectionReason.UNSUPPORTED_ENGINE,
                f"Transfers are not supported for {source.kind.label} databases",
            )

        try:
            mode = TransferMode(mode.value if isinstance(mode, TransferMode) else mode)
        except ValueError:
            return self._reject(
                RejectionReason.INVALID_MODE,
                f"Invalid transfer mode {mode!r}; expected one of "
                f"{', '.join(m.value for m in TransferMode)}",
            )

        if not self.authorizer(initiator, source, target_environment):
            return self._reject(
                RejectionReason.UNAUTHORIZED,
                "Not authorized to read the source database or the target environment",
            )

        team_id = source.team_id or initiator.current_team_id
        if not team_id:
            return self._reject(RejectionReason.NO_TEAM, "No owning team could be resolved")

        if mode is TransferMode.DATA_ONLY:
            rejection = self._check_existing_target(
                source, target_environment, target_server, existing_target_uuid
            )
            if rejection:
                return rejection
        elif existing_target_uuid:
            return self._reject(
                RejectionReason.UNEXPECTED_TARGET,
                "An existing target database can only be given for data_only transfers",
            )

        if not target_server.enabled or not target_server.functional:
            return self._reject(
                RejectionReason.SERVER_UNAVAILABLE,
                f"Target server {target_server.id or target_server.hostname} is not available",
            )
        source_server = self.config.get_host(source.server_id)
        if source_server is None or not source_server.enabled:
            return self._reject(
                RejectionReason.SERVER_UNAVAILABLE,
                f"Source server {source.server_id} is not available",
            )

        try:
            if isinstance(options, dict):
                options = TransferOptions(**options)
        except ValidationError as e:
            return self._reject(RejectionReason.OPTIONS_KIND_MISMATCH, str(e))

        if mode is TransferMode.PARTIAL:
            if options is None or options.is_empty():
                return self._reject(
                    RejectionReason.OPTIONS_REQUIRED,
                    "Partial transfers require a non-empty list of units",
                )
            if not strategy.supports_partial_transfer():
                return self._reject(
                    RejectionReason.PARTIAL_NOT_SUPPORTED,
                    f"{source.kind.label} does not support partial transfers",
                )
            if options.unit_key != strategy.option_key:
                return self._reject(
                    RejectionReason.OPTIONS_KIND_MISMATCH,
                    f"{source.kind.label} partial transfers select {strategy.option_key}, "
                    f"not {options.unit_key}",
                )
        elif options is not None and not options.is_empty():
            return self._reject(
                RejectionReason.OPTIONS_NOT_ALLOWED,
                f"Transfer options only apply to partial transfers, not {mode.value}",
            )
        else:
            options = None

        record = TransferRecord(
            source_kind=source.kind,
            source_id=source.uuid,
            source_server_id=source.server_id,
            target_environment_id=target_environment.id,
            target_server_id=target_server.id,
            team_id=team_id,
            user_id=initiator.user_id,
            transfer_mode=mode,
            transfer_options=options,
            existing_target_uuid=existing_target_uuid if mode is TransferMode.DATA_ONLY else None,
        )
        record.append_log(f"Transfer requested by {initiator.user_id} ({mode.value})")

        try:
            await self.store.create(record)
        except TransferAlreadyInProgressError:
            return self._reject(
                RejectionReason.ALREADY_IN_PROGRESS,
                f"A transfer for {source.name} is already in progress",
            )

        self.logger.info(
            "Transfer admitted",
            transfer_uuid=record.uuid,
            source=source.uuid,
            mode=mode.value,
            target_server=target_server.id,
        )
        self._schedule(record.uuid)
        return record

    def _check_existing_target(
        self,
        source: DatabaseInstance,
        environment: EnvironmentConfig,
        server: ServerHost,
        target_uuid: str | None,
    ) -> Rejection | None:
        target = self.config.get_database(target_uuid) if target_uuid else None
        if target is None:
            return self._reject(
                RejectionReason.TARGET_NOT_FOUND,
                "data_only transfers require an existing target database",
            )
        if target.uuid == source.uuid:
            return self._reject(
                RejectionReason.TARGET_IS_SOURCE, "Target database cannot be the source itself"
            )
        if target.kind is not source.kind:
            return self._reject(
                RejectionReason.TARGET_KIND_MISMATCH,
                f"Target is {target.kind.label}, source is {source.kind.label}",
            )
        if target.environment_id != environment.id:
            return self._reject(
                RejectionReason.TARGET_ENVIRONMENT_MISMATCH,
                f"Target database {target.name} is not in environment {environment.name}",
            )
        if target.server_id != server.id:
            return self._reject(
                RejectionReason.TARGET_ENVIRONMENT_MISMATCH,
                f"Target database {target.name} runs on server {target.server_id}, not {server.id}",
            )
        return None

    def _reject(self, reason: RejectionReason, message: str) -> Rejection:
        self.logger.info("Transfer rejected", reason=reason.value, message=message)
        return Rejection(reason=reason, message=message)

    def _schedule(self, record_uuid: str) -> None:
        task = asyncio.create_task(self.orchestrator.execute(record_uuid))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(self._log_task_failure)

    def _log_task_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self.logger.warning("Transfer pipeline cancelled")
            return
        if error := task.exception():
            self.logger.error(
                "Transfer pipeline crashed", error=str(error), error_type=type(error).__name__
            )

    async def wait_for_all(self) -> None:
        """Wait for every scheduled pipeline (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
