"""MarkdownRenderer -- human-readable summaries of plans and apply reports.

- **Plan**: the operations a sync would perform, grouped by kind.
- **Report**: what an apply actually did, with failures listed first.
- **Sync**: plan and report together for one parent issue.

The renderer is pure.  Output is deterministic given the same input and
no I/O is performed.

Typical usage::

    from foundry_mcp.mcp.markdown import MarkdownRenderer

    renderer = MarkdownRenderer()
    md = renderer.render_plan(plan, parent_id="ENG-42")
"""

from __future__ import annotations

from typing import Optional

from foundry_mcp.models.plan import ReconciliationPlan
from foundry_mcp.models.report import ApplyReport, OutcomeStatus
from foundry_mcp.reconcile.markers import fqid
from foundry_mcp.reconcile.sync import SyncResult


class MarkdownRenderer:
    """Renders plans, reports and sync results as Markdown strings."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def render_plan(
        self,
        plan: ReconciliationPlan,
        parent_id: Optional[str] = None,
    ) -> str:
        """Render *plan* as a Markdown document.

        Parameters
        ----------
        plan:
            The plan to describe.
        parent_id:
            Parent issue the plan targets, shown in the heading when given.

        Returns
        -------
        str
            The formatted markdown string.
        """
        sections: list[str] = []

        if parent_id:
            sections.append(f"# Sync Plan: {fqid(parent_id)}\n")
        else:
            sections.append("# Sync Plan\n")

        if plan.is_empty():
            sections.append("Nothing to do. The tracker already matches the checklist.\n")
        else:
            sections.append("| Operation | Count |")
            sections.append("| --- | --- |")
            for name, count in plan.counts().items():
                if count:
                    sections.append(f"| {name} | {count} |")
            sections.append("")

        if plan.to_create:
            sections.append("## Create\n")
            for item in plan.to_create:
                state = "x" if item.completed else " "
                sections.append(f"- [{state}] **{item.title}** (`{item.task_key}`)")
            sections.append("")

        if plan.to_update:
            sections.append("## Retitle\n")
            for update in plan.to_update:
                sections.append(f"- `{update.id}` -> **{update.new_title}**")
            sections.append("")

        for heading, ids in (
            ("Reopen", plan.to_reopen),
            ("Uncomplete", plan.to_uncomplete),
            ("Complete", plan.to_complete),
            ("Close", plan.to_close),
        ):
            if ids:
                sections.append(f"## {heading}\n")
                sections.extend(f"- `{issue_id}`" for issue_id in ids)
                sections.append("")

        if plan.diagnostics:
            sections.append("## Diagnostics\n")
            for diagnostic in plan.diagnostics:
                sections.append(f"- **{diagnostic.kind.value}**: {diagnostic.message}")
            sections.append("")

        return "\n".join(sections)

    def render_report(self, report: ApplyReport) -> str:
        """Render an apply *report* as a Markdown document."""
        sections: list[str] = []

        sections.append(f"# Apply Report: {self._status_badge(report)}\n")
        sections.append("| Status | Count |")
        sections.append("| --- | --- |")
        for status in OutcomeStatus:
            sections.append(f"| {status.value} | {report.count(status)} |")
        sections.append(f"| exit code | {report.exit_code()} |")
        sections.append("")

        failures = report.failures
        if failures:
            sections.append("## Failures\n")
            sections.append("| Operation | Target | Kind | Message |")
            sections.append("| --- | --- | --- | --- |")
            for failure in failures:
                message = self._truncate(failure.message, 120)
                sections.append(
                    f"| {failure.operation_kind.value} | `{failure.target}` "
                    f"| {failure.error_kind.value} | {message} |"
                )
            sections.append("")

        created = report.created_ids()
        if created:
            sections.append("## Created\n")
            for key, issue_id in created.items():
                sections.append(f"- `{key}` -> {fqid(issue_id)}")
            sections.append("")

        return "\n".join(sections)

    def render_sync(self, result: SyncResult) -> str:
        """Render a full sync result: the plan, then the report if applied."""
        parts = [self.render_plan(result.plan, parent_id=result.parent_id)]
        if result.report is not None:
            parts.append(self.render_report(result.report))
        elif result.dry_run:
            parts.append("_Dry run: no changes were applied._\n")
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _status_badge(report: ApplyReport) -> str:
        if report.cancelled:
            return "CANCELLED"
        if report.aborted:
            return "ABORTED"
        if report.has_failures():
            return "PARTIAL"
        return "OK"

    @staticmethod
    def _truncate(text: str, limit: int) -> str:
        text = " ".join(text.split()).replace("|", "\\|")
        return text[:limit] + "..." if len(text) > limit else text
