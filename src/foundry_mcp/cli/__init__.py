"""Click CLI commands for synchronising checklists from the terminal.

Provides the ``foundry`` CLI entry point with subcommands:
- ``foundry status`` -- Show configuration and tracker credentials.
- ``foundry plan``   -- Compute the plan for a Markdown checklist.
- ``foundry sync``   -- Plan and apply against a Linear parent issue.
- ``foundry serve``  -- Run the MCP server on stdio.
"""

from foundry_mcp.cli.main import cli, plan_checklist, serve, status, sync_checklist

__all__ = ["cli", "plan_checklist", "serve", "status", "sync_checklist"]
