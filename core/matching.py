"""
Fuzzy text search over transaction and invoice fields.
Uses substring containment first and Levenshtein similarity per word as a
fallback, so small typos in a search term still find the record.
"""
from typing import Any, Dict, Iterable, List, Optional

import Levenshtein

from core.config import get_settings
from core.logger import setup_logger

logger = setup_logger(__name__)


def normalize_string(text: Optional[str]) -> str:
    """
    Normalize string for matching: lowercase, trim, collapse whitespace.

    Args:
        text: Input string

    Returns:
        Normalized string
    """
    if not text or not isinstance(text, str):
        return ""

    return " ".join(text.lower().strip().split())


def calculate_similarity(s1: str, s2: str) -> float:
    """
    Levenshtein similarity ratio between two strings (0.0 to 1.0).
    """
    s1_norm = normalize_string(s1)
    s2_norm = normalize_string(s2)
    if not s1_norm or not s2_norm:
        return 0.0
    return Levenshtein.ratio(s1_norm, s2_norm)


def match_score(query: str, text: Optional[str]) -> float:
    """
    Score how well ``query`` matches ``text``.

    A substring hit scores 1.0. Otherwise the best ratio of the query against
    the whole text and against each word of the text is returned.

    Args:
        query: Search term
        text: Field value

    Returns:
        Similarity score (0.0 to 1.0)
    """
    query_norm = normalize_string(query)
    text_norm = normalize_string(text)
    if not query_norm or not text_norm:
        return 0.0

    if query_norm in text_norm:
        return 1.0

    best = Levenshtein.ratio(query_norm, text_norm)
    for word in text_norm.split():
        best = max(best, Levenshtein.ratio(query_norm, word))
    return best


def fuzzy_filter(
    records: Iterable[Dict[str, Any]],
    query: Optional[str],
    fields: List[str],
    threshold: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """
    Keep records where any of ``fields`` matches ``query``.

    Args:
        records: Rows as dicts
        query: Search term; blank keeps every record
        fields: Field names to search
        threshold: Minimum similarity (defaults to FUZZY_MATCH_THRESHOLD)

    Returns:
        Matching records, best match first (stable for ties)
    """
    records = list(records)
    if not normalize_string(query):
        return records

    if threshold is None:
        threshold = get_settings().fuzzy_match_threshold

    scored = []
    for record in records:
        score = max((match_score(query, record.get(field)) for field in fields), default=0.0)
        if score >= threshold:
            scored.append((score, record))

    scored.sort(key=lambda item: item[0], reverse=True)
    logger.debug(f"Search '{query}' matched {len(scored)}/{len(records)} records")
    return [record for _, record in scored]
