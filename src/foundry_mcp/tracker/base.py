"""The Tracker capability -- the engine's only view of the issue tracker.

A tracker is any object providing the four operations of :class:`Tracker`.
Failures are raised as :class:`TrackerError` subclasses, classified at the
adapter boundary:

- :class:`TransientTrackerError` -- timeouts, network errors, HTTP 5xx,
  rate limiting.  The applier retries these.
- :class:`PermanentTrackerError` -- authorisation, schema mismatches,
  unknown ids.  Recorded and never retried.
"""

from __future__ import annotations

from typing import Optional, Protocol

from foundry_mcp.models.tasks import ExistingSubIssue, IssueState


class TrackerError(Exception):
    """Base class for failures reported by a tracker."""

    transient = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TransientTrackerError(TrackerError):
    """A failure worth retrying.

    ``retry_after`` is the server-requested delay in seconds, when known.
    """

    transient = True

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class PermanentTrackerError(TrackerError):
    """A failure that retrying will not fix."""


class Tracker(Protocol):
    """Operations the reconciliation engine needs from an issue tracker."""

    def list_children(self, parent_id: str) -> list[ExistingSubIssue]:
        """Return every sub-issue currently under *parent_id*."""
        ...

    def create_subissue(
        self,
        parent_id: str,
        title: str,
        task_key: str,
        completed: bool,
    ) -> str:
        """Create a labelled, key-stamped sub-issue and return its id."""
        ...

    def update_title(self, issue_id: str, new_title: str) -> None:
        ...

    def set_state(self, issue_id: str, state: IssueState) -> None:
        ...
