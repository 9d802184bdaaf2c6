"""SQLite persistence for transfer records."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import aiosqlite
import structlog

from ..models.enums import IN_PROGRESS_STATUSES, DatabaseKind, TransferStatus
from ..models.transfer import TransferRecord
from .exceptions import TransferAlreadyInProgressError, TransferStoreError

logger = structlog.get_logger()

_IN_PROGRESS_SQL = ", ".join(f"'{status.value}'" for status in IN_PROGRESS_STATUSES)

# sqlite waits this long for a competing writer before raising "database is locked"
CONNECT_TIMEOUT = 30.0


class TransferStore:
    """Transfer records keyed by uuid, one JSON document per row.

    A partial unique index over ``(source_kind, source_id)`` restricted to
    in-progress statuses makes the insert itself the single-flight check:
    a second non-terminal record for the same source fails with
    ``TransferAlreadyInProgressError`` no matter how many callers race.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = logger.bind(component="transfer_store")

    def _connect(self):
        return aiosqlite.connect(self.db_path, timeout=CONNECT_TIMEOUT)

    async def initialize(self) -> None:
        """Initialize database schema."""
        async with self._connect() as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS transfers (
                    uuid TEXT PRIMARY KEY,
                    source_kind TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    team_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,  -- ISO timestamp
                    data TEXT NOT NULL  -- JSON serialized TransferRecord
                )
            """)
            await db.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_transfers_single_flight "
                "ON transfers(source_kind, source_id) "
                f"WHERE status IN ({_IN_PROGRESS_SQL})"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_transfers_team_created "
                "ON transfers(team_id, created_at)"
            )
            await db.commit()

        self.logger.info("Transfer store initialized", db_path=str(self.db_path))

    async def create(self, record: TransferRecord) -> TransferRecord:
        """Insert a new record.

        Raises:
            TransferAlreadyInProgressError: If a non-terminal record exists for the source
        """
        try:
            async with self._connect() as db:
                await db.execute(
                    "INSERT INTO transfers "
                    "(uuid, source_kind, source_id, team_id, status, created_at, data) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.uuid,
                        record.source_kind.value,
                        record.source_id,
                        record.team_id,
                        record.status.value,
                        record.created_at.isoformat(),
                        record.model_dump_json(),
                    ),
                )
                await db.commit()
        except sqlite3.IntegrityError as e:
            raise TransferAlreadyInProgressError(
                f"A transfer for {record.source_kind.value} {record.source_id} is already in progress"
            ) from e
        except sqlite3.Error as e:
            raise TransferStoreError(f"Failed to create transfer {record.uuid}: {e}") from e

        self.logger.debug("Transfer record created", transfer_uuid=record.uuid)
        return record

    async def save(self, record: TransferRecord) -> None:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "UPDATE transfers SET status = ?, data = ? WHERE uuid = ?",
                    (record.status.value, record.model_dump_json(), record.uuid),
                )
                await db.commit()
        except sqlite3.Error as e:
            raise TransferStoreError(f"Failed to save transfer {record.uuid}: {e}") from e

        if cursor.rowcount == 0:
            raise TransferStoreError(f"Transfer {record.uuid} does not exist")

    async def get(self, uuid: str) -> TransferRecord | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT data FROM transfers WHERE uuid = ?", (uuid,))
            row = await cursor.fetchone()
        return TransferRecord.model_validate_json(row[0]) if row else None

    async def list(
        self,
        team_id: str | None = None,
        status: TransferStatus | None = None,
        limit: int = 50,
    ) -> list[TransferRecord]:
        """Most recent records first, optionally filtered by team and status."""
        query = "SELECT data FROM transfers"
        conditions = []
        params: list = []
        if team_id is not None:
            conditions.append("team_id = ?")
            params.append(team_id)
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        async with self._connect() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [TransferRecord.model_validate_json(row[0]) for row in rows]

    async def find_in_progress(
        self, source_kind: DatabaseKind, source_id: str
    ) -> TransferRecord | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT data FROM transfers WHERE source_kind = ? AND source_id = ? "
                f"AND status IN ({_IN_PROGRESS_SQL})",
                (source_kind.value, source_id),
            )
            row = await cursor.fetchone()
        return TransferRecord.model_validate_json(row[0]) if row else None

    async def fail_interrupted(self) -> list[TransferRecord]:
        """Mark records a previous process left in progress as failed.

        Run once at startup, before any pipeline is scheduled, so the
        single-flight index stops blocking their sources.
        """
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT data FROM transfers WHERE status IN ({_IN_PROGRESS_SQL})"
            )
            rows = await cursor.fetchall()

        records = [TransferRecord.model_validate_json(row[0]) for row in rows]
        for record in records:
            phase = record.status.value
            record.mark_failed(
                "Transfer interrupted before it finished",
                error_type="Interrupted",
                details={"status": phase},
                step=f"Transfer interrupted during {phase}",
            )
            record.append_log("Marked failed at startup: the engine stopped mid-transfer")
            await self.save(record)
            self.logger.warning(
                "Interrupted transfer marked failed", transfer_uuid=record.uuid, status=phase
            )
        return records
