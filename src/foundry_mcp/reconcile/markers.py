"""Ownership markers and identifier conventions.

Issues created by the tool carry two fingerprints:

- the ``foundry`` label, and
- the task key, stored in a hidden description footer
  ``<!-- task_key: add-login-flow -->``.

Older issues may carry the hidden marker
``<!-- foundry:specId=...; type=task; v=1; taskKey=add-login-flow -->``
instead; both forms are recognised.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

FOUNDRY_LABEL = "foundry"

# Colour used when the label has to be created in the tracker.
FOUNDRY_LABEL_COLOR = "#4A90E2"

IDENTITY_PREFIX = "linear"

_FOOTER_RE = re.compile(r"<!--\s*task_key:\s*([^\s>]+?)\s*-->")
_COMMENT_RE = re.compile(r"<!--(.*?)-->", re.DOTALL)


def fqid(issue_id: str) -> str:
    """Fully-qualified external identifier, e.g. ``linear:abc123``."""
    return f"{IDENTITY_PREFIX}:{issue_id}"


def task_key_footer(key: str) -> str:
    return f"<!-- task_key: {key} -->"


def render_task_description(key: str, body: str = "") -> str:
    """Description for a new sub-issue: optional body, then the key footer."""
    body = body.rstrip()
    if body:
        return f"{body}\n\n{task_key_footer(key)}\n"
    return f"{task_key_footer(key)}\n"


def parse_task_key(description: Optional[str]) -> Optional[str]:
    """Extract the task key from an issue description, if any marker is present."""
    if not description:
        return None

    footer = _FOOTER_RE.search(description)
    if footer:
        return footer.group(1)

    for comment in _COMMENT_RE.findall(description):
        fields = _marker_fields(comment)
        if fields.get("type") != "task":
            continue
        key = fields.get("taskKey", "")
        if key:
            return key
    return None


def has_foundry_label(label_names: Iterable[str]) -> bool:
    return any(name.strip().lower() == FOUNDRY_LABEL for name in label_names)


def _marker_fields(comment: str) -> dict[str, str]:
    """Split ``foundry:specId=a; type=task; taskKey=b`` into a field dict."""
    fields: dict[str, str] = {}
    for part in comment.split(";"):
        token = part.strip()
        if token.startswith("foundry:"):
            token = token[len("foundry:"):]
        name, sep, value = token.partition("=")
        if sep and name.strip():
            fields[name.strip()] = value.strip()
    return fields
