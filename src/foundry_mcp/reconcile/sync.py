"""End-to-end synchronisation of one checklist into one parent issue.

Glues the pieces together: list the parent's sub-issues, parse the
Markdown, compute the plan, and (unless this is a dry run) apply it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from foundry_mcp.models.plan import ReconciliationPlan
from foundry_mcp.models.report import ApplyReport
from foundry_mcp.models.tasks import ExistingSubIssue
from foundry_mcp.reconcile.applier import CancellationToken, PlanApplier
from foundry_mcp.reconcile.markers import fqid
from foundry_mcp.reconcile.planner import plan_from_markdown

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """What one synchronisation observed, planned and (maybe) applied."""

    parent_id: str
    existing: list[ExistingSubIssue]
    plan: ReconciliationPlan
    report: Optional[ApplyReport] = None
    dry_run: bool = False

    def exit_code(self) -> int:
        if self.report is None:
            return 0
        return self.report.exit_code()

    def to_dict(self) -> dict:
        return {
            "parent_id": self.parent_id,
            "external_id": fqid(self.parent_id),
            "dry_run": self.dry_run,
            "existing_count": len(self.existing),
            "plan": self.plan.to_json_dict(),
            "plan_counts": self.plan.counts(),
            "report": self.report.to_json_dict() if self.report is not None else None,
            "exit_code": self.exit_code(),
        }


def synchronize(
    applier: PlanApplier,
    parent_id: str,
    markdown: str,
    *,
    dry_run: bool = False,
    strict: Optional[bool] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> SyncResult:
    """Converge *parent_id*'s sub-issues to the checklist in *markdown*.

    Raises
    ------
    TrackerError
        If the current sub-issues cannot be listed.  Mutation failures never
        raise; they are reported in ``SyncResult.report``.
    """
    existing = applier.fetch_children(parent_id, cancel_token=cancel_token)
    plan = plan_from_markdown(markdown, existing)

    logger.info(
        "Planned %d operation(s) for %s against %d existing sub-issue(s).",
        plan.operation_count(),
        fqid(parent_id),
        len(existing),
    )

    result = SyncResult(parent_id=parent_id, existing=existing, plan=plan, dry_run=dry_run)
    if dry_run:
        return result

    if plan.is_empty():
        result.report = ApplyReport()
        return result

    result.report = applier.apply(parent_id, plan, cancel_token=cancel_token, strict=strict)
    return result
