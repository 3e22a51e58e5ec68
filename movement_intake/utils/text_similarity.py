"""
Text similarity helpers for matching extracted party names against registries.
"""

from typing import List, Sequence, Tuple

from rapidfuzz import fuzz

from ..normalize import normalize_name, normalize_vat, vat_key

__all__ = [
    "normalize_name",
    "normalize_vat",
    "vat_key",
    "contains_name",
    "name_similarity",
    "rank_by_similarity",
]


def contains_name(needle: str, haystack: str) -> bool:
    """Case-insensitive substring test; a blank needle never matches."""
    needle = normalize_name(needle)
    if not needle:
        return False
    return needle in normalize_name(haystack)


def name_similarity(a: str, b: str) -> float:
    """Token-set similarity in [0, 1]."""
    a = normalize_name(a)
    b = normalize_name(b)
    if not a or not b:
        return 0.0
    return fuzz.token_set_ratio(a, b) / 100.0


def rank_by_similarity(query: str, names: Sequence[str]) -> List[Tuple[int, float]]:
    """
    Rank candidate names by similarity to a query.

    Returns (index, score) tuples, best first. Ties keep input order.
    """
    scored = [(i, name_similarity(query, name)) for i, name in enumerate(names)]
    # sort is stable, so equal scores keep registry order
    scored.sort(key=lambda x: x[1], reverse=True)
    return scored
