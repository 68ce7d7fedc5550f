"""Plan computer -- the diff engine between a checklist and its sub-issues.

Given the desired tasks parsed from a Markdown document and a snapshot of the
sub-issues under its parent issue, :func:`compute_plan` produces a
:class:`ReconciliationPlan` that converges the tracker to the checklist:

- desired tasks with no owned counterpart are **created**;
- owned issues whose task is gone are **closed** (only if still open);
- matched issues get their workflow state aligned (**reopen**,
  **complete**, **uncomplete**) and, when a human has not renamed them,
  their title corrected (**update**).

Only issues that carry the ``foundry`` label are ever considered.  Foreign
issues are never matched, updated or closed.

Matching is by ``task_key``.  A labelled issue whose key was stripped gets a
one-time chance to be recovered by title.  Two owned issues sharing a key
(a create race) are resolved by keeping the lowest id and closing the rest.

The computation is pure and deterministic: no I/O, no hidden state, and the
same inputs always yield the same plan, byte for byte.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from foundry_mcp.models.plan import (
    Diagnostic,
    DiagnosticKind,
    ReconciliationPlan,
    TaskCreate,
    TitleUpdate,
)
from foundry_mcp.models.tasks import DesiredTask, ExistingSubIssue, TerminalState
from foundry_mcp.reconcile.humanize import humanize_title, normalize_title
from foundry_mcp.reconcile.identity import assign_task_keys, task_key
from foundry_mcp.reconcile.parser import parse_task_list

logger = logging.getLogger(__name__)


def compute_plan(
    desired: Sequence[DesiredTask],
    existing: Iterable[ExistingSubIssue],
) -> ReconciliationPlan:
    """Compute the reconciliation plan for *desired* against *existing*.

    Parameters
    ----------
    desired:
        Checklist items in Markdown order.
    existing:
        Snapshot of every sub-issue under the parent, owned or not.

    Returns
    -------
    ReconciliationPlan
        The operations to apply plus any diagnostics.  Never raises.
    """
    diagnostics: list[Diagnostic] = []

    desired_by_key = _index_desired(desired, diagnostics)

    # Foreign issues (no label) are dropped here and never looked at again.
    by_id: dict[str, ExistingSubIssue] = {}
    for issue in existing:
        if issue.has_foundry_label:
            by_id.setdefault(issue.id, issue)
    labelled = [by_id[issue_id] for issue_id in sorted(by_id)]

    owned_by_key: dict[str, ExistingSubIssue] = {}
    redundant: list[ExistingSubIssue] = []
    keyless: list[ExistingSubIssue] = []

    for issue in labelled:
        if issue.task_key is None:
            keyless.append(issue)
            continue
        canonical = owned_by_key.get(issue.task_key)
        if canonical is not None:
            redundant.append(issue)
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.DUPLICATE_OWNED_KEY,
                    message=(
                        f"Issue {issue.id} shares task key {issue.task_key!r} "
                        f"with {canonical.id}; keeping {canonical.id}."
                    ),
                    task_key=issue.task_key,
                    issue_id=issue.id,
                )
            )
            continue
        owned_by_key[issue.task_key] = issue

    _recover_keyless(keyless, desired_by_key, owned_by_key, diagnostics)

    plan = ReconciliationPlan(diagnostics=diagnostics)

    for key, task in desired_by_key.items():
        if key in owned_by_key:
            continue
        plan.to_create.append(
            TaskCreate(
                text=task.text,
                title=humanize_title(task.text),
                task_key=key,
                completed=task.completed,
                order=task.order,
            )
        )

    to_close = [
        issue
        for key, issue in owned_by_key.items()
        if key not in desired_by_key and issue.open
    ]
    to_close.extend(issue for issue in redundant if issue.open)
    plan.to_close.extend(sorted(issue.id for issue in to_close))

    for key in sorted(k for k in owned_by_key if k in desired_by_key):
        issue = owned_by_key[key]
        task = desired_by_key[key]

        new_title = humanize_title(task.text)
        title_update = None
        if new_title != issue.title and task_key(issue.title) == key:
            title_update = TitleUpdate(id=issue.id, task_key=key, new_title=new_title)

        # An issue appears in one list only.  Reopening beats a title fix;
        # a title fix beats completion mirroring, which waits a run.
        if not task.completed and not issue.open:
            if issue.terminal_state != TerminalState.COMPLETED:
                plan.to_reopen.append(issue.id)
            elif title_update is not None:
                plan.to_update.append(title_update)
            else:
                plan.to_uncomplete.append(issue.id)
            continue
        if task.completed and issue.open and title_update is None:
            plan.to_complete.append(issue.id)
            continue
        if title_update is not None:
            plan.to_update.append(title_update)

    for diagnostic in diagnostics:
        logger.warning("Plan diagnostic [%s]: %s", diagnostic.kind.value, diagnostic.message)

    return plan


def plan_from_markdown(
    markdown: str,
    existing: Iterable[ExistingSubIssue],
) -> ReconciliationPlan:
    """Parse *markdown* and compute the plan against *existing*."""
    desired = parse_task_list(markdown)
    plan = compute_plan(desired, existing)
    if not desired and markdown and markdown.strip():
        diagnostic = Diagnostic(
            kind=DiagnosticKind.INVALID_INPUT,
            message="Markdown contains no checklist items.",
        )
        logger.warning("Plan diagnostic [%s]: %s", diagnostic.kind.value, diagnostic.message)
        plan.diagnostics.insert(0, diagnostic)
    return plan


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _index_desired(
    desired: Sequence[DesiredTask],
    diagnostics: list[Diagnostic],
) -> dict[str, DesiredTask]:
    """Key every desired task, in Markdown order, dropping empty slugs."""
    by_key: dict[str, DesiredTask] = {}
    keys = assign_task_keys(task.text for task in desired)

    for task, key in zip(desired, keys):
        if not key:
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.EMPTY_SLUG,
                    message=f"Task {task.text!r} has no usable identity; skipped.",
                )
            )
            continue
        if key != task_key(task.text):
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.DUPLICATE_TASK,
                    message=(
                        f"Task key for {task.text!r} collides with an earlier item; "
                        f"keyed as {key!r}."
                    ),
                    task_key=key,
                )
            )
        by_key[key] = task

    return by_key


def _recover_keyless(
    keyless: list[ExistingSubIssue],
    desired_by_key: dict[str, DesiredTask],
    owned_by_key: dict[str, ExistingSubIssue],
    diagnostics: list[Diagnostic],
) -> None:
    """Adopt labelled issues that lost their key, matching them by title.

    Each unmatched desired key can recover at most one issue; candidates are
    tried in Markdown order and issues in id order.
    """
    if not keyless:
        return

    candidates = [
        (key, normalize_title(humanize_title(task.text)))
        for key, task in desired_by_key.items()
        if key not in owned_by_key
    ]

    for issue in keyless:
        wanted = normalize_title(issue.title)
        for index, (key, title) in enumerate(candidates):
            if title == wanted:
                owned_by_key[key] = issue
                del candidates[index]
                logger.info("Recovered issue %s as task key %r by title.", issue.id, key)
                break
        else:
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.UNRECOVERED_ISSUE,
                    message=(
                        f"Labelled issue {issue.id} has no task key and matches "
                        f"no checklist item; left untouched."
                    ),
                    issue_id=issue.id,
                )
            )
