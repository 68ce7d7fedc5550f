"""ApplyReport -- the structured result of applying a plan.

The applier never raises: every success, failure and skipped operation is
recorded here as data, ready to be rendered by the CLI or returned over MCP.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# CLI exit codes derived from a report.
EXIT_OK = 0
EXIT_FAILURES = 2
EXIT_CANCELLED = 3


class OperationKind(str, Enum):
    """Kinds of tracker mutation, in the order the applier runs them."""

    CREATE = "create"
    UPDATE = "update"
    REOPEN = "reopen"
    UNCOMPLETE = "uncomplete"
    COMPLETE = "complete"
    CLOSE = "close"


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class ErrorKind(str, Enum):
    """Terminal error classification of a failed operation."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class Failure(BaseModel):
    """One failed operation: ``(operation_kind, target, error_kind, message)``."""

    operation_kind: OperationKind
    target: str
    error_kind: ErrorKind
    message: str


class OperationOutcome(BaseModel):
    """The recorded result of one planned operation.

    ``target`` is the task key for creates and the issue id otherwise.
    ``issue_id`` is the tracker id the operation touched (for creates, the
    id the tracker assigned).
    """

    kind: OperationKind
    target: str
    status: OutcomeStatus
    attempts: int = Field(default=0, ge=0)
    issue_id: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None


class ApplyReport(BaseModel):
    """Per-operation results of one apply call."""

    outcomes: list[OperationOutcome] = Field(default_factory=list)
    cancelled: bool = Field(
        default=False,
        description="The caller cancelled the apply before it finished.",
    )
    aborted: bool = Field(
        default=False,
        description="Strict mode stopped after a permanent failure.",
    )

    def record(self, outcome: OperationOutcome) -> OperationOutcome:
        self.outcomes.append(outcome)
        return outcome

    @property
    def failures(self) -> list[Failure]:
        return [
            Failure(
                operation_kind=o.kind,
                target=o.target,
                error_kind=o.error_kind or ErrorKind.PERMANENT,
                message=o.message or "",
            )
            for o in self.outcomes
            if o.status == OutcomeStatus.FAILED
        ]

    def counts(self) -> dict[str, dict[str, int]]:
        """Per operation kind, how many succeeded, failed or were skipped."""
        counts: dict[str, dict[str, int]] = {
            kind.value: {status.value: 0 for status in OutcomeStatus}
            for kind in OperationKind
        }
        for outcome in self.outcomes:
            counts[outcome.kind.value][outcome.status.value] += 1
        return counts

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def has_failures(self) -> bool:
        return any(o.status == OutcomeStatus.FAILED for o in self.outcomes)

    def created_ids(self) -> dict[str, str]:
        """Map of task key to the id assigned by the tracker on create."""
        return {
            o.target: o.issue_id
            for o in self.outcomes
            if o.kind == OperationKind.CREATE
            and o.status == OutcomeStatus.SUCCEEDED
            and o.issue_id is not None
        }

    def exit_code(self) -> int:
        """0 when everything succeeded, 3 when cancelled, 2 on any failure."""
        if self.cancelled:
            return EXIT_CANCELLED
        if self.has_failures():
            return EXIT_FAILURES
        return EXIT_OK

    def to_json_dict(self) -> dict:
        return {
            "counts": self.counts(),
            "succeeded": self.count(OutcomeStatus.SUCCEEDED),
            "failed": self.count(OutcomeStatus.FAILED),
            "skipped": self.count(OutcomeStatus.SKIPPED),
            "cancelled": self.cancelled,
            "aborted": self.aborted,
            "failures": [f.model_dump(mode="json") for f in self.failures],
            "outcomes": [o.model_dump(mode="json") for o in self.outcomes],
            "exit_code": self.exit_code(),
        }
