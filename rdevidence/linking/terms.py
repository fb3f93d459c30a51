"""
Term extraction and rule scoring.

Pure term frequency (no IDF): lowercase, punctuation stripped, short words
and stopwords dropped, most frequent first with ties in first-seen order.
The rule score between two term lists is their Jaccard similarity.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable

from rdevidence.linking.term_data import MIN_TERM_LENGTH, STOPWORDS

_PUNCTUATION = re.compile(r"[^\w\s]")

DEFAULT_MAX_TERMS = 5


def extract_top_terms(text: str | None, max_terms: int = DEFAULT_MAX_TERMS) -> list[str]:
    if not text or max_terms <= 0:
        return []

    words = _PUNCTUATION.sub(" ", text.lower()).split()
    counts = Counter(w for w in words if len(w) >= MIN_TERM_LENGTH and w not in STOPWORDS)

    # sorted() is stable, so equal counts keep first-seen order
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [word for word, _ in ranked[:max_terms]]


def jaccard_similarity(terms_a: Iterable[str], terms_b: Iterable[str]) -> float:
    set_a = set(terms_a)
    set_b = set(terms_b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)
