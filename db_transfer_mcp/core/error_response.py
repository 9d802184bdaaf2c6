"""RFC 7807 compliant error response helpers.

Problem Details (RFC 7807) shaped payloads for MCP tool responses.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """RFC 7807 error detail.

    Required fields:
    - success: Always False for error responses
    - error: Human-readable error message

    Optional RFC 7807 fields:
    - type: URI reference that identifies the problem type
    - title: Short, human-readable summary of the problem type
    - detail: Human-readable explanation specific to this occurrence
    - instance: URI reference that identifies the specific occurrence
    """

    success: bool = Field(default=False, description="Always False for errors")
    error: str = Field(description="Human-readable error message")
    type: str | None = Field(default=None, description="Problem type URI")
    title: str | None = Field(default=None, description="Problem type summary")
    detail: str | None = Field(default=None, description="Specific problem details")
    instance: str | None = Field(default=None, description="Problem occurrence URI")
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())


class TransferErrorResponse:
    """Factory for transfer tool error responses."""

    PROBLEM_TYPES: dict[str, dict[str, str]] = {
        "database-not-found": {
            "type": "/problems/database-not-found",
            "title": "Database Not Found",
        },
        "environment-not-found": {
            "type": "/problems/environment-not-found",
            "title": "Environment Not Found",
        },
        "server-not-found": {
            "type": "/problems/server-not-found",
            "title": "Server Not Found",
        },
        "transfer-not-found": {
            "type": "/problems/transfer-not-found",
            "title": "Transfer Not Found",
        },
        "transfer-rejected": {
            "type": "/problems/transfer-rejected",
            "title": "Transfer Rejected",
        },
        "structure-unavailable": {
            "type": "/problems/structure-unavailable",
            "title": "Structure Unavailable",
        },
        "validation-error": {
            "type": "/problems/validation-error",
            "title": "Input Validation Failed",
        },
    }

    @classmethod
    def create_error(
        cls,
        error_message: str,
        problem_type: str | None = None,
        detail: str | None = None,
        instance: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create a standardized error response.

        Args:
            error_message: Primary error message
            problem_type: Standard problem type key or custom type URI
            detail: Additional problem-specific details
            instance: Identifier for this specific occurrence
            context: Additional context fields (database_uuid, reason, etc.)

        Returns:
            RFC 7807 compliant error response dictionary
        """
        error_detail = ErrorDetail(error=error_message, detail=detail, instance=instance)

        if problem_type and problem_type in cls.PROBLEM_TYPES:
            problem_info = cls.PROBLEM_TYPES[problem_type]
            error_detail.type = problem_info["type"]
            error_detail.title = problem_info["title"]
        elif problem_type:
            error_detail.type = problem_type

        response = error_detail.model_dump(exclude_none=True)

        if context:
            # Context never overwrites RFC 7807 fields
            reserved_fields = set(ErrorDetail.model_fields)
            response.update({k: v for k, v in context.items() if k not in reserved_fields})

        return response

    @classmethod
    def not_found(cls, what: str, identifier: str, available: list[str] | None = None) -> dict[str, Any]:
        """``what`` is one of database, environment, server or transfer."""
        context: dict[str, Any] = {f"{what}_id": identifier}
        if available:
            context[f"available_{what}s"] = available
        return cls.create_error(
            error_message=f"{what.capitalize()} '{identifier}' not found",
            problem_type=f"{what}-not-found",
            instance=f"/{what}s/{identifier}",
            context=context,
        )

    @classmethod
    def rejected(cls, reason: str, message: str, source_uuid: str) -> dict[str, Any]:
        return cls.create_error(
            error_message=message,
            problem_type="transfer-rejected",
            instance=f"/databases/{source_uuid}/transfers",
            context={"reason": reason},
        )

    @classmethod
    def structure_unavailable(cls, database_uuid: str, reason: str, message: str) -> dict[str, Any]:
        return cls.create_error(
            error_message=message,
            problem_type="structure-unavailable",
            instance=f"/databases/{database_uuid}/structure",
            context={"database_uuid": database_uuid, "reason": reason},
        )

    @classmethod
    def validation_error(cls, field: str, value: Any, reason: str) -> dict[str, Any]:
        return cls.create_error(
            error_message=f"Validation failed for '{field}': {reason}",
            problem_type="validation-error",
            detail=f"The value '{value}' for field '{field}' is invalid: {reason}",
            instance=f"/validation/{field}",
            context={"field": field, "value": str(value), "reason": reason},
        )
