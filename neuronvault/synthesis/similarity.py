"""
NeuronVault Synthesis - Text similarity.

Answers are compared as sets of normalized content words (lowercase,
alphanumeric, stopwords and very short tokens removed) with the Jaccard
index |A & B| / |A | B|.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Sequence

_WORD_RE = re.compile(r"[a-z0-9][a-z0-9_'-]*")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")

STOPWORDS = frozenset(
    """
    a an and are as at be been being but by can could did do does doing for from had
    has have having he her here hers him his how i if in into is it its itself just
    me more most my no nor not of off on once only or other our ours out over own
    same she should so some such than that the their theirs them then there these
    they this those through to too under until up very was we were what when where
    which while who whom why will with would you your yours also may might must
    shall about above after again against all any because before below between both
    down during each few further let lets one ones use used using well
    """.split()
)


def content_terms(text: str) -> frozenset[str]:
    """Normalized content words of a text."""
    words = _WORD_RE.findall(text.lower())
    return frozenset(w.strip("'-") for w in words if len(w) > 2 and w not in STOPWORDS)


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    """Jaccard index; two empty sets are considered identical."""
    if not a and not b:
        return 1.0
    union = a | b
    return len(a & b) / len(union)


def cluster(term_sets: Sequence[frozenset[str]], threshold: float) -> list[list[int]]:
    """
    Greedy single-link clustering in arrival order.

    Each item joins the earliest-created cluster containing any member
    at least `threshold` similar to it, or starts a new cluster.

    Returns:
        Clusters as lists of item indexes, in creation order.
    """
    clusters: list[list[int]] = []
    for index, terms in enumerate(term_sets):
        for members in clusters:
            if any(jaccard(terms, term_sets[m]) >= threshold for m in members):
                members.append(index)
                break
        else:
            clusters.append([index])
    return clusters


def agreement_points(term_sets: Sequence[frozenset[str]], limit: int = 8) -> list[str]:
    """
    Terms shared by at least half of the texts (and by at least two).

    Ordered by how many texts share them, then alphabetically.
    """
    if len(term_sets) < 2:
        return []
    needed = max(2, math.ceil(len(term_sets) / 2))
    counts = Counter(term for terms in term_sets for term in terms)
    shared = [term for term, count in counts.items() if count >= needed]
    shared.sort(key=lambda term: (-counts[term], term))
    return shared[:limit]


def first_sentences(text: str, count: int = 2) -> str:
    """The first `count` sentences of a text, whitespace-collapsed."""
    flat = " ".join(text.split())
    sentences = [s for s in _SENTENCE_RE.split(flat) if s]
    return " ".join(sentences[:count])
