"""Transfer record model and its status state machine."""

import math
import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from ..core.exceptions import InvalidTransitionError
from .enums import (
    IN_PROGRESS_STATUSES,
    TERMINAL_STATUSES,
    DatabaseKind,
    TransferMode,
    TransferStatus,
)

LOG_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

ALLOWED_TRANSITIONS: dict[TransferStatus, set[TransferStatus]] = {
    TransferStatus.PENDING: {TransferStatus.VALIDATING, TransferStatus.FAILED},
    TransferStatus.VALIDATING: {TransferStatus.TRANSFERRING, TransferStatus.FAILED},
    TransferStatus.TRANSFERRING: {TransferStatus.RESTORING, TransferStatus.FAILED},
    TransferStatus.RESTORING: {TransferStatus.COMPLETED, TransferStatus.FAILED},
    TransferStatus.COMPLETED: set(),
    TransferStatus.FAILED: set(),
}

_STATUS_LABELS = {
    TransferStatus.PENDING: "Pending",
    TransferStatus.VALIDATING: "Validating",
    TransferStatus.TRANSFERRING: "Transferring",
    TransferStatus.RESTORING: "Restoring",
    TransferStatus.COMPLETED: "Completed",
    TransferStatus.FAILED: "Failed",
}

_MODE_LABELS = {
    TransferMode.CLONE: "Full Clone",
    TransferMode.DATA_ONLY: "Data Only",
    TransferMode.PARTIAL: "Partial",
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TransferOptions(BaseModel):
    """Partial transfer filter: exactly one unit list per engine family."""

    tables: list[str] | None = None
    collections: list[str] | None = None
    key_patterns: list[str] | None = None

    @model_validator(mode="after")
    def _single_unit_kind(self) -> "TransferOptions":
        provided = [
            name
            for name in ("tables", "collections", "key_patterns")
            if getattr(self, name) is not None
        ]
        if len(provided) > 1:
            raise ValueError(
                f"transfer options accept only one of tables, collections, key_patterns "
                f"(got {', '.join(provided)})"
            )
        return self

    @property
    def unit_key(self) -> str | None:
        for name in ("tables", "collections", "key_patterns"):
            if getattr(self, name) is not None:
                return name
        return None

    @property
    def units(self) -> list[str]:
        key = self.unit_key
        return list(getattr(self, key)) if key else []

    def is_empty(self) -> bool:
        return not self.units


class TransferErrorPayload(BaseModel):
    """Structured failure detail stored on a failed record."""

    message: str
    type: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class TransferRecord(BaseModel):
    """Durable state of one attempt to move one database's data."""

    uuid: str = Field(default_factory=lambda: uuid.uuid4().hex)
    source_kind: DatabaseKind
    source_id: str
    source_server_id: str
    target_environment_id: str
    target_server_id: str
    team_id: str
    user_id: str

    transfer_mode: TransferMode
    transfer_options: TransferOptions | None = None
    existing_target_uuid: str | None = None
    target_id: str | None = None

    status: TransferStatus = TransferStatus.PENDING
    progress: int = 0
    current_step: str = "Waiting to start"

    total_bytes: int = 0
    transferred_bytes: int = 0

    logs: list[str] = Field(default_factory=list)
    error: TransferErrorPayload | None = None

    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_in_progress(self) -> bool:
        return self.status in IN_PROGRESS_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def status_label(self) -> str:
        return _STATUS_LABELS[self.status]

    @property
    def mode_label(self) -> str:
        return _MODE_LABELS[self.transfer_mode]

    def transition(self, status: TransferStatus, step: str | None = None) -> None:
        """Move the record to ``status``, enforcing the linear pipeline order.

        Raises:
            InvalidTransitionError: If the move is not a legal transition
        """
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cannot move transfer {self.uuid} from {self.status.value} to {status.value}"
            )
        self.status = status
        if step is not None:
            self.current_step = step
        if status is TransferStatus.VALIDATING and self.started_at is None:
            self.started_at = _utcnow()
        if status in TERMINAL_STATUSES:
            self.completed_at = _utcnow()

    def update_progress(
        self,
        progress: int,
        step: str | None = None,
        transferred_bytes: int | None = None,
    ) -> None:
        """Clamp to [0, 100] and never move backwards."""
        self.progress = max(self.progress, min(100, max(0, progress)))
        if step is not None:
            self.current_step = step
        if transferred_bytes is not None:
            self.transferred_bytes = transferred_bytes

    def mark_completed(self) -> None:
        self.transition(TransferStatus.COMPLETED, "Transfer completed")
        self.progress = 100

    def mark_failed(
        self,
        message: str,
        error_type: str | None = None,
        details: dict[str, Any] | None = None,
        step: str | None = None,
    ) -> None:
        self.transition(TransferStatus.FAILED, step or "Transfer failed")
        self.error = TransferErrorPayload(message=message, type=error_type, details=details or {})

    def append_log(self, message: str) -> None:
        timestamp = _utcnow().strftime(LOG_TIMESTAMP_FORMAT)
        self.logs.append(f"[{timestamp}] {message}")

    @property
    def formatted_progress(self) -> str:
        if self.total_bytes > 0:
            transferred = format_bytes(self.transferred_bytes)
            total = format_bytes(self.total_bytes)
            return f"{transferred} / {total} ({self.progress}%)"
        return f"{self.progress}%"

    def estimated_time_remaining(self, now: datetime | None = None) -> str | None:
        """Estimate remaining time from the observed transfer speed."""
        if not self.total_bytes or not self.transferred_bytes or not self.started_at:
            return None

        remaining = self.total_bytes - self.transferred_bytes
        if remaining <= 0:
            return None

        elapsed = ((now or _utcnow()) - self.started_at).total_seconds()
        if elapsed <= 0:
            return None

        speed = self.transferred_bytes / elapsed
        seconds_remaining = int(remaining / speed)

        if seconds_remaining < 60:
            return f"{seconds_remaining} seconds"
        if seconds_remaining < 3600:
            return f"{seconds_remaining // 60} minutes"
        return f"{seconds_remaining // 3600}h {(seconds_remaining % 3600) // 60}m"

    def to_summary(self) -> dict[str, Any]:
        """Snapshot used by tool responses and notifications."""
        data = self.model_dump(mode="json")
        data.update(
            {
                "status_label": self.status_label,
                "mode_label": self.mode_label,
                "source_type_name": self.source_kind.label,
                "formatted_progress": self.formatted_progress,
            }
        )
        return data


def format_bytes(size: int) -> str:
    """Format bytes to human-readable string."""
    units = ["B", "KB", "MB", "GB", "TB"]
    power = int(math.floor(math.log(size, 1024))) if size > 0 else 0
    power = min(power, len(units) - 1)
    return f"{size / (1024**power):.2f} {units[power]}"
