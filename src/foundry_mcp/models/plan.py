"""ReconciliationPlan -- the immutable output of the plan computer.

A plan lists the tracker mutations needed to converge the sub-issues of a
parent issue to a desired checklist.  Plans are ephemeral values: they are
never persisted, only rendered, returned over MCP, or applied.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DiagnosticKind(str, Enum):
    """Non-fatal findings reported alongside a plan."""

    INVALID_INPUT = "invalid_input"
    EMPTY_SLUG = "empty_slug"
    DUPLICATE_TASK = "duplicate_task"
    DUPLICATE_OWNED_KEY = "duplicate_owned_key"
    UNRECOVERED_ISSUE = "unrecovered_issue"


class Diagnostic(BaseModel):
    """A warning produced while planning.  Never an exception."""

    model_config = ConfigDict(frozen=True)

    kind: DiagnosticKind
    message: str
    task_key: Optional[str] = None
    issue_id: Optional[str] = None


class TaskCreate(BaseModel):
    """A sub-issue to create for a desired task with no owned counterpart."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Raw checklist text.")
    title: str = Field(..., description="Humanised title for the new issue.")
    task_key: str = Field(..., description="Key stamped on the new issue.")
    completed: bool = Field(default=False, description="Initial completion state.")
    order: int = Field(default=0, description="Position in the Markdown list.")


class TitleUpdate(BaseModel):
    """A title drift correction on an owned issue."""

    model_config = ConfigDict(frozen=True)

    id: str
    task_key: str
    new_title: str


class ReconciliationPlan(BaseModel):
    """The mutations needed to converge the tracker to the desired checklist.

    ``to_update``, ``to_reopen``, ``to_close``, ``to_complete`` and
    ``to_uncomplete`` never share an issue id, and ``to_close`` only ever
    names issues that carry the ownership label.
    """

    to_create: list[TaskCreate] = Field(default_factory=list)
    to_update: list[TitleUpdate] = Field(default_factory=list)
    to_reopen: list[str] = Field(default_factory=list)
    to_close: list[str] = Field(default_factory=list)
    to_complete: list[str] = Field(default_factory=list)
    to_uncomplete: list[str] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    def is_empty(self) -> bool:
        """True when the plan carries no operations (diagnostics aside)."""
        return self.operation_count() == 0

    def operation_count(self) -> int:
        return (
            len(self.to_create)
            + len(self.to_update)
            + len(self.to_reopen)
            + len(self.to_close)
            + len(self.to_complete)
            + len(self.to_uncomplete)
        )

    def referenced_ids(self) -> list[str]:
        """Every existing issue id named by an operation, in list order."""
        ids = [u.id for u in self.to_update]
        ids.extend(self.to_reopen)
        ids.extend(self.to_close)
        ids.extend(self.to_complete)
        ids.extend(self.to_uncomplete)
        return ids

    def counts(self) -> dict[str, int]:
        return {
            "create": len(self.to_create),
            "update": len(self.to_update),
            "reopen": len(self.to_reopen),
            "close": len(self.to_close),
            "complete": len(self.to_complete),
            "uncomplete": len(self.to_uncomplete),
        }

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        """Canonical JSON encoding: identical plans encode to identical bytes."""
        return json.dumps(self.to_json_dict(), sort_keys=True, separators=(",", ":"))
