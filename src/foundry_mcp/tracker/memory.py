"""InMemoryTracker -- a Tracker kept entirely in process memory.

Used by the test suite and by dry runs against a snapshot.  Issues are plain
records keyed by id; ids are allocated sequentially (``MEM-1``, ``MEM-2``,
...) so that runs are reproducible.

Faults can be scripted per operation to exercise the applier's retry and
failure handling::

    tracker = InMemoryTracker()
    tracker.fail_next("update_title", TransientTrackerError("503"), times=2)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from foundry_mcp.models.tasks import ExistingSubIssue, IssueState, TerminalState
from foundry_mcp.reconcile.markers import FOUNDRY_LABEL
from foundry_mcp.tracker.base import PermanentTrackerError, TrackerError

logger = logging.getLogger(__name__)


@dataclass
class MemoryIssue:
    """One issue stored by the in-memory tracker."""

    id: str
    parent_id: str
    title: str
    state: IssueState = IssueState.OPEN
    task_key: Optional[str] = None
    labels: set[str] = field(default_factory=set)

    def snapshot(self) -> ExistingSubIssue:
        terminal = None
        if self.state == IssueState.COMPLETED:
            terminal = TerminalState.COMPLETED
        elif self.state == IssueState.CANCELED:
            terminal = TerminalState.CANCELED
        return ExistingSubIssue(
            id=self.id,
            title=self.title,
            open=self.state == IssueState.OPEN,
            task_key=self.task_key,
            has_foundry_label=FOUNDRY_LABEL in self.labels,
            terminal_state=terminal,
        )


class InMemoryTracker:
    """A fake tracker satisfying the Tracker protocol.

    Parameters
    ----------
    id_prefix:
        Prefix for allocated issue ids.
    """

    def __init__(self, id_prefix: str = "MEM") -> None:
        self._id_prefix = id_prefix
        self._next_id = 1
        self.issues: dict[str, MemoryIssue] = {}
        self.calls: list[tuple] = []
        self._faults: dict[str, list[TrackerError]] = {}

    # ------------------------------------------------------------------
    # Seeding and fault injection
    # ------------------------------------------------------------------

    def add_issue(
        self,
        parent_id: str,
        title: str,
        *,
        issue_id: Optional[str] = None,
        state: IssueState = IssueState.OPEN,
        task_key: Optional[str] = None,
        labels: Iterable[str] = (),
    ) -> MemoryIssue:
        """Seed an issue directly, bypassing call recording."""
        if issue_id is None:
            issue_id = self._allocate_id()
        issue = MemoryIssue(
            id=issue_id,
            parent_id=parent_id,
            title=title,
            state=state,
            task_key=task_key,
            labels=set(labels),
        )
        self.issues[issue_id] = issue
        return issue

    def fail_next(self, operation: str, error: TrackerError, times: int = 1) -> None:
        """Make the next *times* calls to *operation* raise *error*."""
        self._faults.setdefault(operation, []).extend([error] * times)

    # ------------------------------------------------------------------
    # Tracker protocol
    # ------------------------------------------------------------------

    def list_children(self, parent_id: str) -> list[ExistingSubIssue]:
        self._enter("list_children", parent_id)
        return [
            issue.snapshot()
            for issue in sorted(self.issues.values(), key=lambda i: i.id)
            if issue.parent_id == parent_id
        ]

    def create_subissue(
        self,
        parent_id: str,
        title: str,
        task_key: str,
        completed: bool,
    ) -> str:
        self._enter("create_subissue", parent_id, title, task_key, completed)
        issue = self.add_issue(
            parent_id,
            title,
            state=IssueState.COMPLETED if completed else IssueState.OPEN,
            task_key=task_key,
            labels={FOUNDRY_LABEL},
        )
        return issue.id

    def update_title(self, issue_id: str, new_title: str) -> None:
        self._enter("update_title", issue_id, new_title)
        self._get(issue_id).title = new_title

    def set_state(self, issue_id: str, state: IssueState) -> None:
        self._enter("set_state", issue_id, state)
        self._get(issue_id).state = IssueState(state)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _enter(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        pending = self._faults.get(operation)
        if pending:
            error = pending.pop(0)
            logger.debug("Injected %s on %s%r", type(error).__name__, operation, args)
            raise error

    def _get(self, issue_id: str) -> MemoryIssue:
        issue = self.issues.get(issue_id)
        if issue is None:
            raise PermanentTrackerError(f"Issue not found: {issue_id}")
        return issue

    def _allocate_id(self) -> str:
        while True:
            issue_id = f"{self._id_prefix}-{self._next_id}"
            self._next_id += 1
            if issue_id not in self.issues:
                return issue_id
