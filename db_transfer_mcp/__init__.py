"""Database transfer engine exposed as a FastMCP server."""

__version__ = "0.1.0"
