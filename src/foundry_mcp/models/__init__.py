"""Pydantic data models for desired tasks, observed sub-issues, plans and reports."""

from foundry_mcp.models.plan import (
    Diagnostic,
    DiagnosticKind,
    ReconciliationPlan,
    TaskCreate,
    TitleUpdate,
)
from foundry_mcp.models.report import (
    ApplyReport,
    ErrorKind,
    Failure,
    OperationKind,
    OperationOutcome,
    OutcomeStatus,
)
from foundry_mcp.models.tasks import (
    DesiredTask,
    ExistingSubIssue,
    IssueState,
    TerminalState,
)

__all__ = [
    "ApplyReport",
    "DesiredTask",
    "Diagnostic",
    "DiagnosticKind",
    "ErrorKind",
    "ExistingSubIssue",
    "Failure",
    "IssueState",
    "OperationKind",
    "OperationOutcome",
    "OutcomeStatus",
    "ReconciliationPlan",
    "TaskCreate",
    "TerminalState",
    "TitleUpdate",
]
