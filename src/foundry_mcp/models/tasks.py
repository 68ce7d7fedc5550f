"""Task models -- the desired checklist items and the observed sub-issues.

A :class:`DesiredTask` is one checklist line authored in a Markdown
document.  An :class:`ExistingSubIssue` is a snapshot of one child issue of
the checklist's parent issue, as reported by the tracker.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# Upper bound on a task's text, in characters.
MAX_TASK_TEXT_LENGTH = 512


class IssueState(str, Enum):
    """Workflow state a tracker issue can be moved to."""

    OPEN = "open"
    COMPLETED = "completed"
    CANCELED = "canceled"


class TerminalState(str, Enum):
    """Flavour of a closed issue, when the tracker reports it."""

    COMPLETED = "completed"
    CANCELED = "canceled"


class DesiredTask(BaseModel):
    """One checklist item parsed from Markdown.

    ``order`` is the zero-based position in the list.  It is informational
    only; identity never depends on it.
    """

    text: str = Field(
        ...,
        min_length=1,
        max_length=MAX_TASK_TEXT_LENGTH,
        description="Checklist item text, trimmed.",
    )
    completed: bool = Field(
        default=False,
        description="True for '[x]' / '[X]', False for '[ ]'.",
    )
    order: int = Field(
        default=0,
        ge=0,
        description="Zero-based index in the Markdown list.",
    )

    @field_validator("text", mode="before")
    @classmethod
    def strip_text(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class ExistingSubIssue(BaseModel):
    """Snapshot of a child issue currently present under a parent issue."""

    id: str = Field(
        ...,
        min_length=1,
        description="Tracker-assigned opaque identifier.",
    )
    title: str = Field(
        default="",
        description="Current title in the tracker.",
    )
    open: bool = Field(
        default=True,
        description="True iff the issue is not in a terminal workflow state.",
    )
    task_key: Optional[str] = Field(
        default=None,
        description="Slug stamped on the issue at creation, if still present.",
    )
    has_foundry_label: bool = Field(
        default=False,
        description="Whether the tool's ownership label is attached.",
    )
    terminal_state: Optional[TerminalState] = Field(
        default=None,
        description="How a closed issue was closed, when known.",
    )

    @field_validator("task_key", mode="before")
    @classmethod
    def blank_key_is_absent(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def open_has_no_terminal_state(self) -> "ExistingSubIssue":
        if self.open:
            self.terminal_state = None
        return self

    def is_owned(self) -> bool:
        """True when the issue carries both the ownership label and a task key."""
        return self.has_foundry_label and self.task_key is not None
