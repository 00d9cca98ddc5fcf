"""
Title/artist similarity for cross-catalog matching.

Catalogs spell the same song differently: extra spaces, full-width
brackets, "(Live)" suffixes, "A/B" versus "A, B" artist lists. The
matcher compares normalized strings and only needs to be good enough to
pick the right song out of five search results.

Scoring:
    calculate_similarity(a, b)
        1. Normalize both (lowercase; drop whitespace and punctuation,
           which covers - _ ( ) [ ] and their full-width forms)
        2. Equal -> 1.0
        3. One contains the other -> 0.8
        4. Otherwise Jaccard similarity of the character sets

    calculate_song_match_score(...)
        0.6 * name similarity + 0.4 * artist similarity

Usage:
    from song_resolver.matching.similarity import select_best_match

    best = select_best_match("Love Story", "Taylor Swift", candidates, threshold=0.5)
    if best:
        candidate, score = best
"""

import unicodedata
from typing import Sequence

from song_resolver.catalog.models import SearchCandidate


# Score weights
NAME_WEIGHT = 0.6
ARTIST_WEIGHT = 0.4

# Fixed score when one normalized string contains the other
CONTAINMENT_SCORE = 0.8

# Separator used to flatten artist lists
ARTIST_SEPARATOR = "/"


def normalize(text: str) -> str:
    """
    Lowercase and strip whitespace and punctuation.

    Examples:
        "Love Story (Taylor's Version)" -> "lovestorytaylorsversion"
        "晴天（Live）"                    -> "晴天live"
    """
    return "".join(
        ch for ch in text.lower()
        if not ch.isspace() and not unicodedata.category(ch).startswith("P")
    )


def calculate_similarity(a: str, b: str) -> float:
    """
    Similarity of two strings in [0, 1].

    Two empty strings are equal (1.0). An empty string is contained in
    any other string, so it scores the containment value against it.
    """
    s1 = normalize(a or "")
    s2 = normalize(b or "")

    if s1 == s2:
        return 1.0
    if s1 in s2 or s2 in s1:
        return CONTAINMENT_SCORE

    set1, set2 = set(s1), set(s2)
    return len(set1 & set2) / len(set1 | set2)


def calculate_song_match_score(
    target_name: str,
    target_artist: str,
    candidate_name: str,
    candidate_artist: str | Sequence[str]
) -> float:
    """
    Weighted match score of a candidate against the wanted song.

    Args:
        target_name: Wanted title.
        target_artist: Wanted artist (a single name).
        candidate_name: Candidate title.
        candidate_artist: Candidate artist name or list of names.
                          Lists are joined with "/".

    Returns:
        Score in [0, 1].
    """
    if not isinstance(candidate_artist, str):
        candidate_artist = ARTIST_SEPARATOR.join(candidate_artist)

    name_score = calculate_similarity(target_name, candidate_name)
    artist_score = calculate_similarity(target_artist, candidate_artist)
    return NAME_WEIGHT * name_score + ARTIST_WEIGHT * artist_score


def select_best_match(
    target_name: str,
    target_artist: str,
    candidates: Sequence[SearchCandidate],
    threshold: float
) -> tuple[SearchCandidate, float] | None:
    """
    Pick the best candidate scoring strictly above threshold.

    Ties keep the earlier candidate (original listing order).

    Returns:
        (candidate, score), or None if no candidate qualifies.
    """
    best: tuple[SearchCandidate, float] | None = None

    for candidate in candidates:
        score = calculate_song_match_score(
            target_name, target_artist, candidate.name, candidate.artists
        )
        if score <= threshold:
            continue
        if best is None or score > best[1]:
            best = (candidate, score)

    return best
