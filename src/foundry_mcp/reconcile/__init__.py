"""Task reconciliation engine: parse, key, plan and apply checklist changes."""

from foundry_mcp.reconcile.applier import CancellationToken, PlanApplier, RetryPolicy
from foundry_mcp.reconcile.humanize import humanize_title
from foundry_mcp.reconcile.identity import assign_task_keys, task_key
from foundry_mcp.reconcile.parser import parse_task_list
from foundry_mcp.reconcile.planner import compute_plan, plan_from_markdown
from foundry_mcp.reconcile.sync import SyncResult, synchronize

__all__ = [
    "CancellationToken",
    "PlanApplier",
    "RetryPolicy",
    "SyncResult",
    "assign_task_keys",
    "compute_plan",
    "humanize_title",
    "parse_task_list",
    "plan_from_markdown",
    "synchronize",
    "task_key",
]
