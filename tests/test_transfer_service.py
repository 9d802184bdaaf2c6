"""Tests for the tool-facing transfer service."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from db_transfer_mcp.core.strategies.registry import build_default_registry
from db_transfer_mcp.models import TransferStatus
from db_transfer_mcp.services import (
    StructureInspector,
    TransferAdmissionController,
    TransferService,
)


@pytest.fixture
def service(engine_config, store, executor, settings) -> TransferService:
    registry = build_default_registry(executor, settings)
    orchestrator = MagicMock()
    orchestrator.execute = AsyncMock()
    admission = TransferAdmissionController(engine_config, store, registry, orchestrator)
    return TransferService(
        engine_config, store, admission, StructureInspector(engine_config, registry)
    )


class TestCreateTransfer:
    @pytest.mark.asyncio
    async def test_started(self, service):
        result = await service.create_transfer(
            "postgresql-source", "staging", "server-b", "clone", team_id="team-1"
        )
        await service.admission.wait_for_all()

        data = result.structured_content
        assert data["success"] is True
        assert data["transfer"]["status"] == "pending"
        assert data["transfer_uuid"] in result.content[0].text

    @pytest.mark.asyncio
    async def test_unknown_source(self, service):
        result = await service.create_transfer("nope", "staging", "server-b", "clone")

        data = result.structured_content
        assert data["success"] is False
        assert data["type"] == "/problems/database-not-found"
        assert "postgresql-source" in data["available_databases"]
        assert result.content[0].text.startswith("❌")

    @pytest.mark.asyncio
    async def test_unknown_environment(self, service):
        result = await service.create_transfer("postgresql-source", "qa", "server-b", "clone")
        assert result.structured_content["type"] == "/problems/environment-not-found"

    @pytest.mark.asyncio
    async def test_unknown_server(self, service):
        result = await service.create_transfer("postgresql-source", "staging", "server-z", "clone")
        assert result.structured_content["type"] == "/problems/server-not-found"

    @pytest.mark.asyncio
    async def test_rejection_carries_reason(self, service):
        result = await service.create_transfer(
            "postgresql-source",
            "staging",
            "server-b",
            "partial",
            transfer_options={"collections": ["users"]},
            team_id="team-1",
        )

        data = result.structured_content
        assert data["success"] is False
        assert data["reason"] == "options_kind_mismatch"
        assert data["instance"] == "/databases/postgresql-source/transfers"


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_transfer(self, service):
        created = await service.create_transfer(
            "postgresql-source", "staging", "server-b", "clone", team_id="team-1"
        )
        await service.admission.wait_for_all()
        uuid = created.structured_content["transfer_uuid"]

        result = await service.get_transfer(uuid)
        assert result.structured_content["transfer"]["uuid"] == uuid
        assert "Status:   Pending" in result.content[0].text
        assert "Log:" in result.content[0].text

    @pytest.mark.asyncio
    async def test_get_unknown_transfer(self, service):
        result = await service.get_transfer("missing")
        assert result.structured_content["type"] == "/problems/transfer-not-found"

    @pytest.mark.asyncio
    async def test_list_transfers(self, service):
        await service.create_transfer(
            "postgresql-source", "staging", "server-b", "clone", team_id="team-1"
        )
        await service.admission.wait_for_all()

        result = await service.list_transfers(team_id="team-1", status="pending")
        assert len(result.structured_content["transfers"]) == 1
        assert result.content[0].text.startswith("Transfers (1)")

        failed = await service.list_transfers(status=TransferStatus.FAILED.value)
        assert failed.structured_content["transfers"] == []

    @pytest.mark.asyncio
    async def test_list_with_invalid_status(self, service):
        result = await service.list_transfers(status="paused")
        assert result.structured_content["type"] == "/problems/validation-error"

    @pytest.mark.asyncio
    async def test_database_structure(self, service, executor):
        executor.on("pg_statio_user_tables", "orders|2048\n")
        result = await service.database_structure("postgresql-source")

        data = result.structured_content
        assert data["success"] is True
        assert data["items"] == [{"name": "orders", "size_bytes": 2048}]
        assert "orders" in result.content[0].text

    @pytest.mark.asyncio
    async def test_database_structure_not_running(self, service, engine_config):
        engine_config.databases["postgresql-source"].status = "exited"
        result = await service.database_structure("postgresql-source")

        data = result.structured_content
        assert data["type"] == "/problems/structure-unavailable"
        assert data["reason"] == "not_running"

    @pytest.mark.asyncio
    async def test_transfer_targets(self, service):
        result = await service.transfer_targets("postgresql-source")

        data = result.structured_content
        assert {server["id"] for server in data["servers"]} == {"server-a", "server-b"}
        staging = next(env for env in data["environments"] if env["id"] == "staging")
        assert [db["uuid"] for db in staging["existing_databases"]] == ["postgresql-target"]
        production = next(env for env in data["environments"] if env["id"] == "production")
        assert production["existing_databases"] == []
