# ==============================
# Text Helpers
# ==============================
"""
String normalization and edit distance shared by dedup and fuzzy search.

No side effects.
"""

from __future__ import annotations

import re
from typing import Optional

_WS_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, trim, collapse runs of whitespace to one space."""
    return _WS_RE.sub(" ", (text or "").lower()).strip()


def levenshtein(a: str, b: str, *, max_distance: Optional[int] = None) -> int:
    """
    Edit distance (insert/delete/substitute, unit cost).

    With max_distance set, returns max_distance + 1 as soon as the distance is
    known to exceed it.
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if max_distance is not None and len(a) - len(b) > max_distance:
        return max_distance + 1
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        row_min = i
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            value = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
            current.append(value)
            if value < row_min:
                row_min = value
        if max_distance is not None and row_min > max_distance:
            return max_distance + 1
        previous = current
    return previous[-1]


def similarity_ratio(a: str, b: str, *, min_ratio: Optional[float] = None) -> float:
    """
    1 - distance / max(len(a), len(b)), in [0, 1]. Two empty strings are
    identical (1.0).

    min_ratio lets the distance computation stop early; anything below it is
    reported as 0.0.
    """
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    bound = None
    if min_ratio is not None:
        # epsilon keeps 0.2 * 10 from flooring to 1
        bound = int((1.0 - min_ratio) * longest + 1e-9)
    distance = levenshtein(a, b, max_distance=bound)
    if bound is not None and distance > bound:
        return 0.0
    return 1.0 - distance / float(longest)
