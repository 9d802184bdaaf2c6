"""FastMCP middleware for the transfer server."""

from .error_handling import ErrorHandlingMiddleware

__all__ = ["ErrorHandlingMiddleware"]
