"""Fuzzy title matching for grouping releases into shows."""

import logging
from collections.abc import Iterable

from rapidfuzz.distance import JaroWinkler

from .models import ShowGroup
from .title_parser import normalize

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.85
# Merging into an existing group needs more confidence than searching
GROUP_THRESHOLD = 0.9
SEARCH_THRESHOLD = DEFAULT_THRESHOLD


def similarity(a: str, b: str) -> float:
    """Jaro-Winkler similarity of the normalized titles (0.0 when either is empty)."""
    left = normalize(a)
    right = normalize(b)
    if not left or not right:
        return 0.0
    return JaroWinkler.normalized_similarity(left, right)


def similar(a: str, b: str, threshold: float = DEFAULT_THRESHOLD) -> bool:
    """Check whether two titles describe the same show."""
    score = similarity(a, b)
    logger.debug(f"Similarity {score:.4f} for {a!r} vs {b!r} (threshold {threshold})")
    return score >= threshold


def find_matching_group(
    groups: Iterable[ShowGroup],
    base_title: str,
    year: int | None,
    season: int,
    threshold: float = GROUP_THRESHOLD,
) -> ShowGroup | None:
    """
    Find the single existing group a new title should merge into.

    Candidates must share the year and already list the season. Similarity
    never arbitrates between candidates: when more than one passes the
    threshold, no group is returned and the caller keeps its own key.

    Args:
        groups: Existing catalog groups
        base_title: Base show name of the incoming thread
        year: Parsed year, if any
        season: Parsed season number
        threshold: Minimum similarity of the base titles

    Returns:
        The unique matching group, or None
    """
    matches = [
        group
        for group in groups
        if group.year == year
        and season in group.seasons
        and similar(group.base_title, base_title, threshold)
    ]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        logger.info(
            f"{len(matches)} groups resemble {base_title!r}; not merging into any of them"
        )
    return None


def search_groups(
    groups: Iterable[ShowGroup], query: str, threshold: float = SEARCH_THRESHOLD
) -> list[ShowGroup]:
    """
    Free-text catalog search over group titles.

    A group matches when the query is a substring of its normalized title
    or the titles are similar enough. Results are sorted best match first.
    """
    needle = normalize(query)
    if not needle:
        return []

    scored = []
    for group in groups:
        haystack = normalize(group.base_title or group.display_title)
        if needle in haystack:
            score = 1.0
        else:
            score = similarity(query, group.base_title or group.display_title)
        if score >= threshold:
            scored.append((score, group))

    scored.sort(key=lambda item: (-item[0], item[1].display_title))
    return [group for _, group in scored]
