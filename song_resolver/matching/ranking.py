"""
Fallback source ranking.

Tracks how often each fallback catalog produced a full-length URL during
cross-catalog sweeps and orders the roster by it, so the sources that
usually work are tried (and selected) first.

Persistence:
    Both counter maps are stored as one JSON value under STATS_KEY in the
    state database:

        {"success": {"kuwo": 12, ...}, "fail": {"joox": 3, ...}}

    Loading and saving never raise. A missing, unreadable or corrupt
    entry only resets the ranking to roster order.

Usage:
    stats = SourceStats(StateDatabase(config.storage.state_db), config.fallback.sources)
    stats.load()

    for source in stats.get_sorted_fallback_sources(exclude_source="netease"):
        ...
    stats.record_success("kuwo")
    stats.save()
"""

import json
from typing import Any, Iterable

from song_resolver.core.config import FALLBACK_SOURCES
from song_resolver.core.database import StateDatabase
from song_resolver.core.exceptions import DatabaseError
from song_resolver.core.logger import get_logger


logger = get_logger(__name__)


# State database key holding the serialized counters
STATS_KEY = "api_source_stats"


class SourceStats:
    """
    Per-source success/failure counters.

    Counters only ever grow; they are reset by wiping the state database.

    Attributes:
        roster: Fallback sources in default priority order.
    """

    def __init__(
        self,
        store: StateDatabase | None = None,
        roster: Iterable[str] = FALLBACK_SOURCES
    ) -> None:
        self._store = store
        self.roster: tuple[str, ...] = tuple(roster)
        self._success: dict[str, int] = {}
        self._fail: dict[str, int] = {}

    def success_count(self, source: str) -> int:
        """Recorded successes for source."""
        return self._success.get(source, 0)

    def fail_count(self, source: str) -> int:
        """Recorded failures for source."""
        return self._fail.get(source, 0)

    def record_success(self, source: str) -> None:
        self._success[source] = self._success.get(source, 0) + 1

    def record_failure(self, source: str) -> None:
        self._fail[source] = self._fail.get(source, 0) + 1

    def get_sorted_fallback_sources(self, exclude_source: str | None = None) -> list[str]:
        """
        Roster minus exclude_source, most successful first.

        sorted() is stable, so equal counts keep roster order.
        """
        candidates = [s for s in self.roster if s != exclude_source]
        return sorted(candidates, key=lambda s: -self.success_count(s))

    def snapshot(self) -> dict[str, dict[str, int]]:
        """Copy of both counter maps in the persisted format."""
        return {"success": dict(self._success), "fail": dict(self._fail)}

    def save(self) -> None:
        """Persist counters. Failures are logged, never raised."""
        if self._store is None:
            return
        try:
            self._store.set_value(STATS_KEY, json.dumps(self.snapshot()))
        except DatabaseError as e:
            logger.error(f"Failed to save source stats: {e}")

    def load(self) -> None:
        """
        Restore counters from the store.

        Loaded counts replace in-memory counts for the sources present in
        the stored entry. Missing or corrupt data leaves counters untouched.
        """
        if self._store is None:
            return
        try:
            raw = self._store.get_value(STATS_KEY)
        except DatabaseError as e:
            logger.debug(f"Failed to load source stats: {e}")
            return

        if raw is None:
            logger.debug("No saved source stats, using roster order")
            return

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.debug(f"Saved source stats are corrupt, ignoring: {e}")
            return

        if not isinstance(data, dict):
            logger.debug("Saved source stats are not an object, ignoring")
            return

        self._success.update(_parse_counts(data.get("success")))
        self._fail.update(_parse_counts(data.get("fail")))
        logger.debug(f"Loaded source stats: {self.snapshot()}")


def _parse_counts(raw: Any) -> dict[str, int]:
    """Keep only well-formed non-negative integer entries."""
    if not isinstance(raw, dict):
        return {}
    return {
        str(source): count
        for source, count in raw.items()
        if isinstance(count, int) and not isinstance(count, bool) and count >= 0
    }
