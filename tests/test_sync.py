"""Tests for end-to-end synchronisation against the in-memory tracker."""

from __future__ import annotations

import pytest

from foundry_mcp.models.report import EXIT_FAILURES, EXIT_OK
from foundry_mcp.models.tasks import IssueState
from foundry_mcp.reconcile.applier import PlanApplier, RetryPolicy
from foundry_mcp.reconcile.sync import SyncResult, synchronize
from foundry_mcp.tracker.base import PermanentTrackerError, TransientTrackerError
from foundry_mcp.tracker.memory import InMemoryTracker

PARENT = "PARENT-1"

SPEC = """\
# Login

- [ ] Add login flow
- [x] Write API docs
- [ ] Deploy
  - [ ] Deploy
"""


@pytest.fixture()
def tracker() -> InMemoryTracker:
    tracker = InMemoryTracker()
    tracker.add_issue(PARENT, "Someone else's issue", issue_id="F1")
    return tracker


@pytest.fixture()
def applier(tracker: InMemoryTracker) -> PlanApplier:
    return PlanApplier(tracker, retry_policy=RetryPolicy(jitter=0.0), sleeper=lambda _: None)


class TestSynchronize:
    def test_fresh_parent(self, applier, tracker) -> None:
        result = synchronize(applier, PARENT, SPEC)
        assert result.exit_code() == EXIT_OK
        assert len(result.report.created_ids()) == 4
        titles = sorted(i.title for i in tracker.issues.values() if i.id != "F1")
        assert titles == ["Add login flow", "Deploy", "Deploy", "Write API docs"]
        keys = {i.task_key: i.state for i in tracker.issues.values() if i.task_key}
        assert keys["write-api-docs"] == IssueState.COMPLETED
        assert set(keys) == {"add-login-flow", "write-api-docs", "deploy", "deploy-2"}

    def test_second_run_is_a_no_op(self, applier, tracker) -> None:
        synchronize(applier, PARENT, SPEC)
        calls_before = len(tracker.calls)
        result = synchronize(applier, PARENT, SPEC)
        assert result.plan.is_empty()
        assert result.report.outcomes == []
        # Only the listing call was made.
        assert tracker.calls[calls_before:] == [("list_children", PARENT)]

    def test_edit_checklist_then_resync(self, applier, tracker) -> None:
        synchronize(applier, PARENT, SPEC)
        edited = "- [x] Add login flow\n- [ ] Write API docs\n"
        result = synchronize(applier, PARENT, edited)
        counts = result.plan.counts()
        assert counts["complete"] == 1
        assert counts["uncomplete"] == 1
        assert counts["close"] == 2
        assert tracker.issues["F1"].state == IssueState.OPEN

    def test_dry_run_changes_nothing(self, applier, tracker) -> None:
        result = synchronize(applier, PARENT, SPEC, dry_run=True)
        assert result.report is None
        assert result.dry_run is True
        assert result.exit_code() == EXIT_OK
        assert len(result.plan.to_create) == 4
        assert [c[0] for c in tracker.calls] == ["list_children"]

    def test_failures_surface_in_exit_code(self, applier, tracker) -> None:
        tracker.fail_next("create_subissue", PermanentTrackerError("quota"))
        result = synchronize(applier, PARENT, SPEC)
        assert result.exit_code() == EXIT_FAILURES
        assert len(result.report.created_ids()) == 3

    def test_listing_failure_raises(self, applier, tracker) -> None:
        tracker.fail_next("list_children", PermanentTrackerError("no such issue"))
        with pytest.raises(PermanentTrackerError):
            synchronize(applier, PARENT, SPEC)

    def test_transient_listing_failure_retried(self, applier, tracker) -> None:
        tracker.fail_next("list_children", TransientTrackerError("503"))
        result = synchronize(applier, PARENT, SPEC, dry_run=True)
        assert len(result.existing) == 1


class TestSyncResult:
    def test_to_dict(self, applier) -> None:
        result = synchronize(applier, PARENT, SPEC)
        data = result.to_dict()
        assert data["parent_id"] == PARENT
        assert data["external_id"] == "linear:PARENT-1"
        assert data["dry_run"] is False
        assert data["existing_count"] == 1
        assert data["plan_counts"]["create"] == 4
        assert data["report"]["succeeded"] == 4
        assert data["exit_code"] == EXIT_OK

    def test_dry_run_dict_has_no_report(self, applier) -> None:
        data = synchronize(applier, PARENT, SPEC, dry_run=True).to_dict()
        assert data["report"] is None
        assert data["exit_code"] == 0

    def test_exit_code_without_report(self) -> None:
        from foundry_mcp.models.plan import ReconciliationPlan

        result = SyncResult(parent_id=PARENT, existing=[], plan=ReconciliationPlan())
        assert result.exit_code() == EXIT_OK
