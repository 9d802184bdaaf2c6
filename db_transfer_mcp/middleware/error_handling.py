"""Error handling middleware for the transfer MCP server."""

from collections import defaultdict
from typing import Any

from fastmcp.server.middleware import Middleware, MiddlewareContext

from ..constants import SECURITY_FIELDS
from ..core.exceptions import TransferEngineError
from ..core.logging_config import get_middleware_logger


class ErrorHandlingMiddleware(Middleware):
    """Logs every failed MCP request with its context and keeps per-method counts."""

    def __init__(self, include_traceback: bool = True, track_error_stats: bool = True):
        self.logger = get_middleware_logger()
        self.include_traceback = include_traceback
        self.track_error_stats = track_error_stats

        self.error_stats: dict[str, int] = defaultdict(int)
        self.method_errors: dict[str, int] = defaultdict(int)

    async def on_message(self, context: MiddlewareContext, call_next):
        try:
            return await call_next(context)
        except Exception as e:
            self._handle_error(e, context)
            raise  # FastMCP turns it into the protocol error

    def _handle_error(self, error: Exception, context: MiddlewareContext) -> None:
        error_type = type(error).__name__
        method = context.method

        if self.track_error_stats:
            self.error_stats[f"{error_type}:{method}"] += 1
            self.method_errors[method] += 1

        error_data: dict[str, Any] = {
            "error_type": error_type,
            "error_message": str(error),
            "method": method,
            "source": context.source,
            "message_type": context.type,
        }
        if self.track_error_stats:
            error_data["method_error_count"] = self.method_errors[method]

        arguments = getattr(context.message, "arguments", None)
        if isinstance(arguments, dict):
            error_data["arguments"] = {
                key: str(value)[:100]
                for key, value in arguments.items()
                if not self._is_sensitive_field(key)
            }

        if isinstance(error, TransferEngineError):
            # Expected domain failures: no traceback
            self.logger.warning("Transfer error in MCP request", **error_data)
        else:
            self.logger.error(
                "Error in MCP request", **error_data, exc_info=self.include_traceback
            )

    def _is_sensitive_field(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        return any(sensitive in field_lower for sensitive in SECURITY_FIELDS)

    def get_error_statistics(self) -> dict[str, Any]:
        if not self.track_error_stats:
            return {"error_tracking": "disabled"}

        top_errors = sorted(self.error_stats.items(), key=lambda x: x[1], reverse=True)[:10]
        return {
            "total_errors": sum(self.error_stats.values()),
            "unique_error_types": len(self.error_stats),
            "top_errors": top_errors,
            "error_distribution": dict(self.error_stats),
        }
