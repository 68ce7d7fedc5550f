"""Title humaniser -- cosmetic normalisation of raw task text.

Used only to produce titles for create and update operations.  It is never
used to derive identity, since a human editing a title would otherwise make
the engine oscillate.
"""

from __future__ import annotations

import re

ACRONYMS = ("API", "HTTP", "TCP", "UI", "UX", "CLI", "SDK", "ID", "URL")

_ACRONYM_RE = re.compile(
    r"\b(" + "|".join(a.lower() for a in ACRONYMS) + r")\b",
    re.IGNORECASE,
)


def humanize_title(raw: str) -> str:
    """Turn raw task text into a presentable sentence-case title.

    >>> humanize_title("  build__API_client  ")
    'Build API client'
    """
    collapsed = " ".join(raw.strip().replace("_", " ").split())
    if not collapsed:
        return ""
    sentence = collapsed[0].upper() + collapsed[1:].lower()
    return _ACRONYM_RE.sub(lambda m: m.group(0).upper(), sentence)


def normalize_title(title: str) -> str:
    """Case- and whitespace-insensitive form used to compare titles."""
    return " ".join(title.split()).casefold()
