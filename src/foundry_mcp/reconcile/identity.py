"""Identity deriver -- the stable ``task_key`` slug of a task's text.

The key is the durable cross-run identity of a checklist item.  It is a pure
function of the text: lowercase, every run of non-alphanumeric characters
replaced by a single ``-``, leading and trailing dashes stripped, at most
:data:`MAX_TASK_KEY_LENGTH` characters.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

logger = logging.getLogger(__name__)

MAX_TASK_KEY_LENGTH = 64

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def task_key(text: str) -> str:
    """Return the slug of *text*, or ``""`` when nothing alphanumeric remains."""
    slug = _NON_ALNUM_RE.sub("-", text.lower()).strip("-")
    return _clip(slug, MAX_TASK_KEY_LENGTH)


def assign_task_keys(texts: Iterable[str]) -> list[str]:
    """Derive one key per text, disambiguating collisions in input order.

    The first occurrence of a slug keeps it; later occurrences get ``-2``,
    ``-3``, ... appended so that keys are unique within one call.  Texts
    whose slug is empty map to ``""`` and take no part in disambiguation.
    """
    keys: list[str] = []
    seen: set[str] = set()
    next_suffix: dict[str, int] = {}

    for text in texts:
        base = task_key(text)
        if not base:
            keys.append("")
            continue

        key = base
        if key in seen:
            suffix = next_suffix.get(base, 2)
            while True:
                tail = f"-{suffix}"
                key = _clip(base, MAX_TASK_KEY_LENGTH - len(tail)) + tail
                suffix += 1
                if key not in seen:
                    break
            next_suffix[base] = suffix
            logger.warning(
                "Task key %r for %r is already taken; using %r.",
                base,
                text,
                key,
            )

        seen.add(key)
        keys.append(key)

    return keys


def _clip(slug: str, limit: int) -> str:
    if len(slug) <= limit:
        return slug
    return slug[:limit].rstrip("-")
