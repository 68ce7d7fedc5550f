"""FastMCP server and tool definitions for checklist synchronisation."""

from foundry_mcp.mcp.server import create_server

__all__ = ["create_server"]
