"""
Transfer Service

Tool-facing operations for database transfers with formatted output.
"""

from typing import Any

import structlog
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent

from ..constants import TRANSFER_UUID
from ..core.config_loader import TransferEngineConfig
from ..core.error_response import TransferErrorResponse
from ..core.store import TransferStore
from ..models.database import Initiator
from ..models.enums import TransferStatus
from ..models.transfer import TransferRecord, format_bytes
from .admission import Rejection, TransferAdmissionController
from .structure import StructureFailure, StructureInspector


def _result(text: str, structured: dict[str, Any]) -> ToolResult:
    return ToolResult(content=[TextContent(type="text", text=text)], structured_content=structured)


def _error(payload: dict[str, Any]) -> ToolResult:
    return _result(f"❌ {payload['error']}", payload)


class TransferService:
    """Service for creating, inspecting and listing database transfers."""

    def __init__(
        self,
        config: TransferEngineConfig,
        store: TransferStore,
        admission: TransferAdmissionController,
        inspector: StructureInspector,
    ):
        self.config = config
        self.store = store
        self.admission = admission
        self.inspector = inspector
        self.logger = structlog.get_logger()

    async def create_transfer(
        self,
        source_uuid: str,
        target_environment_id: str,
        target_server_id: str,
        transfer_mode: str,
        transfer_options: dict[str, list[str]] | None = None,
        target_uuid: str | None = None,
        user_id: str = "mcp",
        team_id: str | None = None,
    ) -> ToolResult:
        source = self.config.get_database(source_uuid)
        if source is None:
            return _error(
                TransferErrorResponse.not_found("database", source_uuid, list(self.config.databases))
            )
        environment = self.config.get_environment(target_environment_id)
        if environment is None:
            return _error(
                TransferErrorResponse.not_found(
                    "environment", target_environment_id, list(self.config.environments)
                )
            )
        server = self.config.get_host(target_server_id)
        if server is None:
            return _error(
                TransferErrorResponse.not_found("server", target_server_id, list(self.config.hosts))
            )

        initiator = Initiator(
            user_id=user_id,
            team_ids=[team_id] if team_id else [],
            current_team_id=team_id,
        )
        outcome = await self.admission.create(
            source,
            environment,
            server,
            transfer_mode,
            initiator,
            options=transfer_options,
            existing_target_uuid=target_uuid,
        )

        if isinstance(outcome, Rejection):
            return _error(
                TransferErrorResponse.rejected(outcome.reason.value, outcome.message, source_uuid)
            )

        text = (
            f"✅ Transfer {outcome.uuid} started\n"
            f"  {source.name} ({source.kind.label}) → {environment.name} on {server.hostname}\n"
            f"  Mode: {outcome.mode_label}"
        )
        return _result(
            text,
            {"success": True, TRANSFER_UUID: outcome.uuid, "transfer": outcome.to_summary()},
        )

    async def get_transfer(self, transfer_uuid: str) -> ToolResult:
        record = await self.store.get(transfer_uuid)
        if record is None:
            return _error(TransferErrorResponse.not_found("transfer", transfer_uuid))

        summary = record.to_summary()
        summary["estimated_time_remaining"] = record.estimated_time_remaining()
        return _result(
            "\n".join(self._format_record(record, include_logs=True)),
            {"success": True, "transfer": summary},
        )

    async def list_transfers(
        self, team_id: str | None = None, status: str | None = None, limit: int = 20
    ) -> ToolResult:
        try:
            status_filter = TransferStatus(status) if status else None
        except ValueError:
            return _error(
                TransferErrorResponse.validation_error(
                    "status", status, f"expected one of {', '.join(s.value for s in TransferStatus)}"
                )
            )

        records = await self.store.list(team_id=team_id, status=status_filter, limit=limit)
        lines = [f"Transfers ({len(records)})"]
        for record in records:
            lines.append(
                f"  {record.uuid[:12]}  {record.status_label:<12} {record.formatted_progress:<24}"
                f" {record.source_kind.label} {record.source_id} ({record.mode_label})"
            )
        return _result(
            "\n".join(lines),
            {"success": True, "transfers": [record.to_summary() for record in records]},
        )

    async def database_structure(self, database_uuid: str) -> ToolResult:
        database = self.config.get_database(database_uuid)
        if database is None:
            return _error(TransferErrorResponse.not_found("database", database_uuid))

        outcome = await self.inspector.inspect(database)
        if isinstance(outcome, StructureFailure):
            return _error(
                TransferErrorResponse.structure_unavailable(
                    database_uuid, outcome.reason.value, outcome.message
                )
            )

        lines = [f"{database.name} ({database.kind.label}): {format_bytes(outcome.total_bytes)}"]
        lines.extend(
            f"  {item.name:<40} {format_bytes(item.size_bytes)}" for item in outcome.items
        )
        if not outcome.items:
            lines.append("  (no selectable units found)")
        return _result("\n".join(lines), {"success": True, **outcome.model_dump(mode="json")})

    async def transfer_targets(self, source_uuid: str) -> ToolResult:
        """Environments, servers and same-engine databases a source can be transferred to."""
        source = self.config.get_database(source_uuid)
        if source is None:
            return _error(TransferErrorResponse.not_found("database", source_uuid))

        servers = [
            {"id": host.id, "hostname": host.hostname, "description": host.description}
            for host in self.config.hosts.values()
            if host.enabled and host.functional
        ]
        environments = []
        for environment in self.config.environments.values():
            existing = [
                {"uuid": db.uuid, "name": db.name, "server_id": db.server_id}
                for db in self.config.databases.values()
                if db.environment_id == environment.id
                and db.kind is source.kind
                and db.uuid != source.uuid
            ]
            environments.append(
                {
                    "id": environment.id,
                    "name": environment.name,
                    "project": environment.project,
                    "existing_databases": existing,
                }
            )

        lines = [f"Targets for {source.name} ({source.kind.label})", "Servers:"]
        lines.extend(f"  {server['id']}: {server['hostname']}" for server in servers)
        lines.append("Environments:")
        for environment in environments:
            lines.append(f"  {environment['id']}: {environment['name']}")
            lines.extend(
                f"    ↳ {db['name']} ({db['uuid']})" for db in environment["existing_databases"]
            )

        return _result(
            "\n".join(lines),
            {
                "success": True,
                "source_uuid": source.uuid,
                "servers": servers,
                "environments": environments,
            },
        )

    def _format_record(self, record: TransferRecord, include_logs: bool = False) -> list[str]:
        lines = [
            f"Transfer {record.uuid}",
            f"  Status:   {record.status_label} ({record.formatted_progress})",
            f"  Step:     {record.current_step}",
            f"  Mode:     {record.mode_label}",
            f"  Source:   {record.source_kind.label} {record.source_id}",
        ]
        if record.target_id:
            lines.append(f"  Target:   {record.target_id}")
        remaining = record.estimated_time_remaining()
        if remaining and record.is_in_progress:
            lines.append(f"  ETA:      {remaining}")
        if record.error:
            lines.append(f"  Error:    {record.error.message}")
        if include_logs and record.logs:
            lines.append("  Log:")
            lines.extend(f"    {line}" for line in record.logs[-20:])
        return lines
