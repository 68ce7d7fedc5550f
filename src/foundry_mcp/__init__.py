"""Foundry MCP - Markdown task checklists synchronised into Linear sub-issues."""

__version__ = "0.1.0"

from foundry_mcp.config import FoundryConfig, LinearConfig

__all__ = ["FoundryConfig", "LinearConfig", "__version__"]
