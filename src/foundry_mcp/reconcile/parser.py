"""Task parser -- turns a Markdown checklist into an ordered list of DesiredTask.

Recognised item shape (one per line)::

    - [ ] Open task
    * [x] Completed task
    + [X] Also completed

Indented (nested) items are flattened into the same list.  Lines inside
fenced code blocks are never tasks.  Everything else is skipped silently:
the parser never fails, and an unparseable document yields an empty list.
"""

from __future__ import annotations

import re

from foundry_mcp.models.tasks import MAX_TASK_TEXT_LENGTH, DesiredTask

TASK_LINE_RE = re.compile(r"^\s*[-*+]\s+\[( |x|X)\]\s+(.+)$")

_FENCE_RE = re.compile(r"^\s*(```|~~~)")


def parse_task_list(markdown: str) -> list[DesiredTask]:
    """Parse every checklist item in *markdown*, in document order.

    The captured text is trimmed but otherwise kept verbatim; cosmetic
    normalisation is the humaniser's job.  Text longer than
    :data:`MAX_TASK_TEXT_LENGTH` characters is truncated.
    """
    tasks: list[DesiredTask] = []
    if not markdown:
        return tasks

    fence: str | None = None
    for line in markdown.splitlines():
        fence_match = _FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(1)
            if fence is None:
                fence = marker
            elif fence == marker:
                fence = None
            continue
        if fence is not None:
            continue

        match = TASK_LINE_RE.match(line)
        if match is None:
            continue

        text = match.group(2).strip()
        if not text:
            continue
        if len(text) > MAX_TASK_TEXT_LENGTH:
            text = text[:MAX_TASK_TEXT_LENGTH].rstrip()

        tasks.append(
            DesiredTask(
                text=text,
                completed=match.group(1) in ("x", "X"),
                order=len(tasks),
            )
        )

    return tasks
