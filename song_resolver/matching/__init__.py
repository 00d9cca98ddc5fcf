"""
Matching module for song-resolver.

    - similarity: Title/artist fuzzy scoring and best-candidate selection
    - ranking: Per-source success counters and fallback ordering
"""

from song_resolver.matching.ranking import STATS_KEY, SourceStats
from song_resolver.matching.similarity import (
    calculate_similarity,
    calculate_song_match_score,
    normalize,
    select_best_match,
)

__all__ = [
    "STATS_KEY",
    "SourceStats",
    "calculate_similarity",
    "calculate_song_match_score",
    "normalize",
    "select_best_match",
]
