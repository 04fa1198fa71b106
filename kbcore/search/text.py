# ==============================
# Tokenizer
# ==============================
"""
Tokenization shared by indexing and querying.

Rules:
- Lowercase, split on anything that is not a letter or digit.
- Drop single characters and stopwords.
- Optional suffix stemming (entities -> entity, models -> model). The keyword
  index turns it on for both the indexed text and the query, so inflected
  forms meet on the same posting.
- Positions are the token's index in the filtered stream, so two adjacent
  content words are always 1 apart.
"""

from __future__ import annotations

import re
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple

_SPLIT_RE = re.compile(r"[^0-9a-z]+")

DEFAULT_STOPWORDS: FrozenSet[str] = frozenset(
    """
    a an and are as at be been but by can do does for from has have how i if in
    into is it its me my no not of on or our over so than that the their them
    then there these they this to too was we what when where which while who
    why will with would you your about after all also any both each just more
    most only other same should some such under up very via
    """.split()
)

# (suffix, replacement), first match wins
DEFAULT_STEM_RULES: Tuple[Tuple[str, str], ...] = (
    ("ies", "y"),
    ("es", ""),
    ("s", ""),
    ("ing", ""),
    ("ed", ""),
    ("tion", "t"),
    ("ation", ""),
)

# words shorter than this are never stemmed
MIN_STEM_LENGTH = 4


def stem_word(word: str, rules: Sequence[Tuple[str, str]] = DEFAULT_STEM_RULES) -> str:
    """Strip the first matching suffix, keeping a stem of at least 3 characters."""
    if len(word) < MIN_STEM_LENGTH:
        return word
    for suffix, replacement in rules:
        if word.endswith(suffix) and len(word) > len(suffix) + 2:
            return word[: -len(suffix)] + replacement
    return word


class Tokenizer:
    def __init__(
        self,
        stopwords: Optional[Iterable[str]] = None,
        *,
        min_length: int = 2,
        stemming: bool = False,
        stem_rules: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> None:
        self.stopwords = frozenset(w.lower() for w in stopwords) if stopwords is not None else DEFAULT_STOPWORDS
        self.min_length = min_length
        self.stemming = stemming
        self.stem_rules = tuple(tuple(r) for r in stem_rules) if stem_rules is not None else DEFAULT_STEM_RULES

    def stem(self, word: str) -> str:
        return stem_word(word, self.stem_rules) if self.stemming else word

    def tokens(self, text: str, *, stem: bool = True) -> List[str]:
        """stem=False returns the surface words even when stemming is on."""
        out: List[str] = []
        for raw in _SPLIT_RE.split((text or "").lower()):
            if len(raw) < self.min_length or raw in self.stopwords:
                continue
            out.append(self.stem(raw) if stem else raw)
        return out

    def positioned(self, text: str) -> List[Tuple[str, int]]:
        return [(tok, pos) for pos, tok in enumerate(self.tokens(text))]

    def unique_terms(self, text: str, *, stem: bool = True) -> List[str]:
        """Distinct tokens in first-seen order."""
        return list(dict.fromkeys(self.tokens(text, stem=stem)))
