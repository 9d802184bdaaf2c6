"""Transfer pipeline: validate, estimate, dump, relocate, restore, clean up."""

import posixpath
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from ..constants import DUMP_TIMESTAMP_FORMAT
from ..core.config_loader import ServerHost, TransferEngineConfig
from ..core.exceptions import TransferEngineError, TransferStoreError
from ..core.notifications import LoggingNotificationSink, NotificationSink
from ..core.provisioning import DatabaseProvisioner
from ..core.relocation import DumpRelocator
from ..core.settings import TransferSettings, transfer_settings
from ..core.store import TransferStore
from ..core.strategies.base import TransferStrategy
from ..core.strategies.registry import StrategyRegistry
from ..models.database import DatabaseInstance
from ..models.enums import TransferStatus
from ..models.transfer import TransferRecord, format_bytes

logger = structlog.get_logger()


@dataclass
class _PipelineState:
    record: TransferRecord
    phase: str = "validation"
    strategy: TransferStrategy | None = None
    source: DatabaseInstance | None = None
    target: DatabaseInstance | None = None
    source_host: ServerHost | None = None
    target_host: ServerHost | None = None
    provisioned: bool = False
    # (host, path) pairs that may hold an artifact
    artifacts: list[tuple[ServerHost, str]] = field(default_factory=list)


class TransferOrchestrator:
    """Runs one transfer record through the pipeline.

    The orchestrator is the only writer of a record's status and progress.
    Every change is persisted before the matching notification goes out.
    """

    def __init__(
        self,
        config: TransferEngineConfig,
        store: TransferStore,
        registry: StrategyRegistry,
        relocator: DumpRelocator,
        provisioner: DatabaseProvisioner | None = None,
        notifier: NotificationSink | None = None,
        settings: TransferSettings | None = None,
    ):
        self.config = config
        self.store = store
        self.registry = registry
        self.relocator = relocator
        self.provisioner = provisioner
        self.notifier = notifier or LoggingNotificationSink()
        self.settings = settings or transfer_settings
        self.logger = logger.bind(component="transfer_orchestrator")

    def dump_path(self, record: TransferRecord, strategy: TransferStrategy) -> str:
        timestamp = datetime.now(UTC).strftime(DUMP_TIMESTAMP_FORMAT)
        filename = f"{record.uuid}-{timestamp}.{strategy.dump_file_extension()}"
        return posixpath.join(self.settings.scratch_dir, filename)

    async def execute(
        self, record_uuid: str, target_database_uuid: str | None = None
    ) -> TransferRecord:
        """Run the pipeline for ``record_uuid`` to a terminal status.

        Args:
            record_uuid: Transfer record to run
            target_database_uuid: Existing target overriding the record's own

        Returns:
            The record in its terminal state

        Raises:
            TransferStoreError: If the record does not exist
        """
        record = await self.store.get(record_uuid)
        if record is None:
            raise TransferStoreError(f"Transfer {record_uuid} not found")
        if record.is_terminal:
            self.logger.warning(
                "Transfer already finished", transfer_uuid=record.uuid, status=record.status.value
            )
            return record

        state = _PipelineState(record=record)
        try:
            if await self._run(state, target_database_uuid):
                await self._complete(state)
        except Exception as e:
            self.logger.error(
                "Transfer failed with exception",
                transfer_uuid=record.uuid,
                phase=state.phase,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._fail(state, str(e), error_type=type(e).__name__)
        return state.record

    async def _run(self, state: _PipelineState, target_database_uuid: str | None) -> bool:
        """Run every step; returns False when a step failed and the record was failed."""
        record = state.record

        # Resolve + validate
        record.transition(TransferStatus.VALIDATING, "Validating transfer")
        record.append_log("Transfer started")
        await self._publish(record)

        problems = self._resolve(state, target_database_uuid)
        if problems:
            await self._fail(
                state,
                "; ".join(problems),
                error_type="ResolutionError",
                details={"errors": problems},
            )
            return False

        validation = await state.strategy.validate_transfer(state.source, state.target, record)
        if not validation.valid:
            await self._fail(
                state,
                "; ".join(validation.errors),
                error_type="ValidationError",
                details={"errors": validation.errors},
            )
            return False
        await self._progress(state, 5, "Validation passed")

        # Estimate
        state.phase = "estimation"
        try:
            total = await state.strategy.estimate_size(
                state.source, state.source_host, record.transfer_options
            )
        except Exception as e:
            self.logger.warning("Size estimation failed", transfer_uuid=record.uuid, error=str(e))
            total = 0
        record.total_bytes = total
        await self._progress(state, 10, f"Estimated size: {format_bytes(total)}")

        # Dump
        state.phase = "dump"
        path = self.dump_path(record, state.strategy)
        record.transition(TransferStatus.TRANSFERRING)
        state.artifacts.append((state.source_host, path))
        await self._progress(state, 20, f"Creating {state.source.kind.label} dump")

        dump = await state.strategy.create_dump(
            state.source, state.source_host, path, record.transfer_options
        )
        if not dump.success:
            await self._fail(state, dump.error or "Dump failed", error_type="DumpError")
            return False
        record.transferred_bytes = dump.size_bytes
        await self._progress(state, 50, f"Dump created ({format_bytes(dump.size_bytes)})")

        # Relocate
        state.phase = "relocation"
        if record.source_server_id == record.target_server_id:
            record.append_log("Source and target share a server, skipping copy")
        else:
            state.artifacts.append((state.target_host, path))
            await self._progress(
                state, 55, f"Copying dump to {state.target_host.hostname}"
            )
            await self.relocator.relocate(state.source_host, state.target_host, path)
        await self._progress(state, 80, "Dump available on target server")

        # Restore
        state.phase = "restore"
        record.transition(TransferStatus.RESTORING)
        if state.target is None:
            await self._progress(state, 82, "Creating target database")
            state.target = await self._provision_target(state)
            state.provisioned = True
        record.target_id = state.target.uuid
        await self._progress(state, 85, f"Restoring into {state.target.name}")

        restore = await state.strategy.restore_dump(
            state.target, state.target_host, path, record.transfer_options
        )
        if not restore.success:
            await self._fail(state, restore.error or "Restore failed", error_type="RestoreError")
            return False
        await self._progress(state, 92, "Data restored")

        # Cleanup
        state.phase = "cleanup"
        await self._progress(state, 95, "Cleaning up temporary files")
        await self._cleanup(state)
        return True

    def _resolve(self, state: _PipelineState, target_database_uuid: str | None) -> list[str]:
        """Look up strategy, databases and hosts. Returns what could not be found."""
        record = state.record
        problems = []

        state.strategy = self.registry.get(record.source_kind)
        if state.strategy is None:
            problems.append(f"No transfer strategy for {record.source_kind.label}")

        state.source = self.config.get_database(record.source_id)
        if state.source is None:
            problems.append(f"Source database {record.source_id} not found")

        state.source_host = self.config.get_host(record.source_server_id)
        if state.source_host is None:
            problems.append(f"Source server {record.source_server_id} not found")

        state.target_host = self.config.get_host(record.target_server_id)
        if state.target_host is None:
            problems.append(f"Target server {record.target_server_id} not found")

        target_uuid = target_database_uuid or record.existing_target_uuid
        if target_uuid:
            state.target = self.config.get_database(target_uuid)

        return problems

    async def _provision_target(self, state: _PipelineState) -> DatabaseInstance:
        if self.provisioner is None:
            raise TransferEngineError("No provisioner configured for new target databases")
        return await self.provisioner.provision(
            state.source, state.record, state.target_host, state.strategy
        )

    async def _discard_target(self, state: _PipelineState) -> None:
        """Drop a clone target whose restore never finished."""
        target = state.target
        if await self.provisioner.remove(target, state.target_host):
            state.record.append_log(f"Removed unfinished target {target.name}")
        else:
            state.record.append_log(
                f"Could not remove unfinished target container {target.container}"
            )
        state.record.target_id = None
        state.provisioned = False

    async def _progress(self, state: _PipelineState, progress: int, step: str) -> None:
        state.record.update_progress(progress, step)
        state.record.append_log(step)
        await self._publish(state.record)

    async def _publish(self, record: TransferRecord) -> None:
        await self.store.save(record)
        try:
            await self.notifier.publish(record)
        except Exception as e:
            self.logger.warning(
                "Failed to publish transfer notification", transfer_uuid=record.uuid, error=str(e)
            )

    async def _complete(self, state: _PipelineState) -> None:
        record = state.record
        record.mark_completed()
        record.append_log("Transfer completed")
        await self._publish(record)
        self.logger.info(
            "Transfer completed",
            transfer_uuid=record.uuid,
            source=record.source_id,
            target=record.target_id,
            transferred_bytes=record.transferred_bytes,
        )

    async def _fail(
        self,
        state: _PipelineState,
        message: str,
        error_type: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        record = state.record
        await self._cleanup(state)
        if state.provisioned and state.phase == "restore":
            await self._discard_target(state)

        if not record.is_terminal:
            record.mark_failed(
                message,
                error_type=error_type,
                details={"phase": state.phase, **(details or {})},
                step=f"Transfer failed during {state.phase}",
            )
            record.append_log(f"Transfer failed: {message}")
        await self._publish(record)
        self.logger.error(
            "Transfer failed", transfer_uuid=record.uuid, phase=state.phase, error=message
        )

    async def _cleanup(self, state: _PipelineState) -> None:
        """Remove every known artifact. Failures are logged, never raised."""
        if state.strategy is None:
            return

        seen = set()
        for host, path in state.artifacts:
            if (host.id, host.hostname, path) in seen:
                continue
            seen.add((host.id, host.hostname, path))
            try:
                await state.strategy.cleanup(host, path)
                state.record.append_log(f"Removed {path} on {host.hostname}")
            except Exception as e:
                self.logger.warning(
                    "Artifact cleanup failed",
                    transfer_uuid=state.record.uuid,
                    host=host.hostname,
                    path=path,
                    error=str(e),
                )
        state.artifacts.clear()
