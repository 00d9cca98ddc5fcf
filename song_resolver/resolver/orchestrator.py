"""
Song resolution orchestrator.

Turns a SongRef into a playable full-length URL, falling back across
catalogs when the obvious source only offers a preview clip.

get_song_url() Workflow:
    1. Primary catalog songs: direct lookup. A full track is returned
       immediately. A preview is stashed and, with proactive_check, a
       background cross-catalog search starts right away.
    2. Aggregator lookup (circuit-breaker guarded, single attempt) at the
       requested quality. The song's known duration also feeds the
       preview check here. Full track -> return. Preview -> stash, start
       the background search if it is not running yet.
    3. Join the background search. A full track from it beats any
       stashed preview.
    4. Otherwise the first stashed preview, otherwise the empty sentinel.

Cross-catalog sweep:
    Every fallback source is queried concurrently (search, fuzzy match,
    then bitrate tiers 128 -> 320). After all sources finish, each one's
    success/fail counter is updated and the stats saved once. The result
    is the first success in the ranked order computed when the sweep
    started, not the fastest one.

Error Handling:
    Upstream failures never escape: every step catches SourceError and
    moves on to the next fallback. parse_playlist() is the exception,
    it raises ValidationError for malformed input.

Usage:
    resolver = create_resolver(load_config())
    try:
        result = await resolver.get_song_url(song, "320")
        if result.found:
            play(result.url)
    finally:
        await resolver.close()
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Callable

import aiohttp

from song_resolver.catalog.aggregator import DEFAULT_SEARCH_COUNT, AggregatorClient
from song_resolver.catalog.meting import MetingClient
from song_resolver.catalog.models import LyricLine, LyricResult, Playlist, SongRef, SongUrlResult
from song_resolver.catalog.primary import PrimaryCatalogClient
from song_resolver.core.circuit_breaker import CircuitBreaker
from song_resolver.core.config import (
    PRIMARY_SOURCE,
    Config,
    FallbackConfig,
    PreviewConfig,
)
from song_resolver.core.database import StateDatabase
from song_resolver.core.exceptions import DatabaseError, SourceError, ValidationError
from song_resolver.core.http import HttpClient
from song_resolver.core.logger import get_logger, log_resolution_failure
from song_resolver.lyrics.parser import parse_lyrics
from song_resolver.matching.ranking import SourceStats
from song_resolver.matching.similarity import select_best_match
from song_resolver.resolver.preview import is_probably_preview


logger = get_logger(__name__)


# Bitrates tried by the unblock path before the requested one
UNBLOCK_BITRATES = ("128", "192", "320")

# Full passes over the unblock bitrate queue
UNBLOCK_ROUNDS = 2

# Tracks fetched per playlist from the primary catalog
PLAYLIST_TRACK_LIMIT = 50

DEFAULT_PLAYLIST_NAME = "Netease playlist"

# Cover URLs on this CDN accept a ?param=WxH resize suffix
PRIMARY_CDN_HOST = "music.126.net"

PLAYLIST_ID_PATTERNS = (
    re.compile(r"id=(\d+)"),
    re.compile(r"playlist/(\d+)"),
)


# =============================================================================
# Shared state
# =============================================================================

@dataclass
class ResolverContext:
    """
    Mutable state shared by resolution calls.

    Kept outside SongResolver so tests can build isolated instances and
    a host can share one breaker between several resolvers.

    Attributes:
        breaker: Aggregator circuit breaker.
        stats: Fallback source counters.
        in_flight: (catalog_id, source) keys with a cross-catalog search
                   currently running.
    """
    breaker: CircuitBreaker
    stats: SourceStats
    in_flight: set[tuple[str, str]] = field(default_factory=set)

    @classmethod
    def create(
        cls,
        config: Config,
        store: StateDatabase | None = None,
        clock: Callable[[], float] = time.monotonic
    ) -> "ResolverContext":
        """Build a fresh context from config and load persisted stats."""
        stats = SourceStats(store, config.fallback.sources)
        stats.load()
        return cls(
            breaker=CircuitBreaker.from_config("aggregator", config.circuit_breaker, clock=clock),
            stats=stats,
        )


def extract_playlist_id(url_or_id: str) -> str:
    """
    Extract a numeric playlist id from a link or a bare id.

    Examples:
        "https://music.163.com/#/playlist?id=24381616" -> "24381616"
        "https://y.music.163.com/m/playlist/123"       -> "123"
        " 123 "                                        -> "123"

    Raises:
        ValidationError: If no numeric id can be found.
    """
    candidate = (url_or_id or "").strip()
    for pattern in PLAYLIST_ID_PATTERNS:
        match = pattern.search(candidate)
        if match:
            candidate = match.group(1)
            break

    if not candidate.isdigit() or not candidate.isascii():
        raise ValidationError(
            "Invalid playlist id: expected a numeric id or a link containing one",
            details={"input": url_or_id}
        )
    return candidate


# =============================================================================
# Resolver
# =============================================================================

class SongResolver:
    """
    Resolves songs to stream URLs, lyrics and cover art.

    Attributes:
        context: Shared breaker, stats and in-flight set.
        preview: Preview detection thresholds.
        fallback: Cross-catalog sweep settings.
    """

    def __init__(
        self,
        primary: PrimaryCatalogClient,
        aggregator: AggregatorClient,
        meting: MetingClient,
        context: ResolverContext,
        preview: PreviewConfig | None = None,
        fallback: FallbackConfig | None = None,
        http: HttpClient | None = None,
        store: StateDatabase | None = None
    ) -> None:
        self.primary = primary
        self.aggregator = aggregator
        self.meting = meting
        self.context = context
        self.preview = preview or PreviewConfig()
        self.fallback = fallback or FallbackConfig()
        self._http = http
        self._store = store

    async def close(self) -> None:
        """Release the HTTP session and state database owned by this resolver."""
        if self._http is not None:
            await self._http.close()
        if self._store is not None:
            self._store.close()

    async def __aenter__(self) -> "SongResolver":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Stream URLs
    # -------------------------------------------------------------------------

    async def get_song_url(self, song: SongRef, quality: str = "320") -> SongUrlResult:
        """
        Resolve a playable URL for song.

        Args:
            song: Song to resolve.
            quality: Requested bitrate label ("128", "320", ...).

        Returns:
            The best result found: a full track if any path produced one,
            else the first preview seen, else SongUrlResult.empty(quality).
            Never raises for upstream failures.
        """
        candidates: list[SongUrlResult] = []
        background: asyncio.Task | None = None

        try:
            if song.is_primary:
                result = await self._lookup_primary(song)
                if result is not None:
                    if not is_probably_preview(result.url, result.size, settings=self.preview):
                        return result
                    logger.debug(f"Primary catalog returned a preview for '{song.name}'")
                    candidates.append(result)
                    if self.preview.proactive_check:
                        background = self._start_background_search(song, quality)

            result = await self._lookup_aggregator(song, quality)
            if result is not None:
                if not is_probably_preview(
                    result.url, result.size, song.duration_ms, settings=self.preview
                ):
                    return result
                logger.debug(f"Aggregator returned a preview for '{song.name}'")
                candidates.append(result)
                if background is None and self.preview.proactive_check:
                    background = self._start_background_search(song, quality)

            if background is not None:
                task, background = background, None
                full = await task
                if full is not None:
                    return full
        finally:
            if background is not None:
                background.cancel()

        if candidates:
            log_resolution_failure(
                logger, song.name, song.primary_artist, song.catalog_id, song.source,
                quality, "only a preview clip was found"
            )
            return candidates[0]

        log_resolution_failure(
            logger, song.name, song.primary_artist, song.catalog_id, song.source,
            quality, "no source returned a URL"
        )
        return SongUrlResult.empty(quality)

    def _start_background_search(self, song: SongRef, quality: str) -> asyncio.Task:
        logger.debug(f"Starting cross-catalog search for '{song.name}'")
        return asyncio.create_task(
            self.search_song_from_other_sources(
                song.name, song.primary_artist, song.source, quality
            )
        )

    async def _lookup_primary(self, song: SongRef) -> SongUrlResult | None:
        try:
            return await self.primary.get_song_url(song.catalog_id)
        except SourceError as e:
            logger.debug(f"Primary lookup failed for {song.catalog_id}: {e}")
            return None

    async def _lookup_aggregator(self, song: SongRef, quality: str) -> SongUrlResult | None:
        try:
            return await self.aggregator.get_song_url(song.catalog_id, song.source, quality)
        except SourceError as e:
            logger.debug(f"Aggregator lookup failed for {song.source}:{song.catalog_id}: {e}")
            return None

    # -------------------------------------------------------------------------
    # Cross-catalog sweep
    # -------------------------------------------------------------------------

    async def search_song_from_other_sources(
        self,
        name: str,
        artist: str,
        exclude_source: str,
        quality: str
    ) -> SongUrlResult | None:
        """
        Search every fallback source for a full-length copy of a song.

        Args:
            name: Song title.
            artist: Primary artist.
            exclude_source: Catalog the song came from (not searched).
            quality: Requested quality. The sweep always walks the
                     configured bitrate tiers instead.

        Returns:
            The first success in ranked order, tagged with its source,
            or None.
        """
        sources = self.context.stats.get_sorted_fallback_sources(exclude_source)
        if not sources:
            return None

        logger.debug(f"Sweeping {len(sources)} sources for '{name}' ({quality}): {sources}")
        results = await asyncio.gather(
            *(self._search_single_source(source, name, artist) for source in sources)
        )

        stats = self.context.stats
        for source, result in zip(sources, results):
            if result is not None:
                stats.record_success(source)
            else:
                stats.record_failure(source)
        stats.save()

        for source, result in zip(sources, results):
            if result is not None:
                logger.info(f"Found full version of '{name}' on {source}")
                return result

        logger.debug(f"No fallback source had a full version of '{name}'")
        return None

    async def _search_single_source(
        self,
        source: str,
        name: str,
        artist: str
    ) -> SongUrlResult | None:
        """Search one source, pick the best match, try its bitrate tiers."""
        keyword = f"{name} {artist}".strip()
        try:
            candidates = await self.aggregator.search(
                keyword, source, count=self.fallback.search_count
            )
            best = select_best_match(name, artist, candidates, self.preview.similarity_threshold)
            if best is None:
                logger.debug(f"{source}: no candidate above threshold for '{keyword}'")
                return None

            candidate, score = best
            logger.debug(f"{source}: best match '{candidate.name}' (score {score:.2f})")

            for br in self.fallback.bitrate_tiers:
                result = await self.aggregator.get_song_url(candidate.id, source, br)
                if result is not None and not is_probably_preview(
                    result.url, result.size, settings=self.preview
                ):
                    return result.with_source(source)
        except SourceError as e:
            logger.debug(f"{source}: search failed: {e}")
        except Exception as e:
            logger.error(f"{source}: unexpected error during search: {e}", exc_info=True)

        return None

    async def try_get_full_version_from_other_sources(
        self,
        song: SongRef,
        quality: str
    ) -> SongUrlResult | None:
        """
        Deduplicated cross-catalog search for song.

        Returns None immediately if a search for the same
        (catalog_id, source) is already running.
        """
        key = (song.catalog_id, song.source)
        in_flight = self.context.in_flight
        if key in in_flight:
            logger.debug(f"Cross-catalog search already running for {song.source}:{song.catalog_id}")
            return None

        in_flight.add(key)
        try:
            return await self.search_song_from_other_sources(
                song.name, song.primary_artist, song.source, quality
            )
        finally:
            in_flight.discard(key)

    async def try_get_full_version_from_primary_unblock(
        self,
        song: SongRef,
        quality: str
    ) -> SongUrlResult | None:
        """
        Ask the primary catalog's unblock endpoint for a full version.

        Only applies to primary catalog songs. Bitrates 128, 192, 320 and
        then the requested quality are tried, twice over, single attempt
        each. The first URL returned wins.
        """
        if not song.is_primary:
            return None

        bitrates = list(dict.fromkeys((*UNBLOCK_BITRATES, quality)))

        for attempt in range(UNBLOCK_ROUNDS):
            for br in bitrates:
                try:
                    result = await self.primary.get_song_url(
                        song.catalog_id, br=br, max_retries=0, unblock=True
                    )
                except SourceError as e:
                    logger.debug(f"Unblock attempt {attempt + 1} @{br} failed: {e}")
                    continue
                if result is not None:
                    return result

        return None

    # -------------------------------------------------------------------------
    # Lyrics, covers, search, playlists
    # -------------------------------------------------------------------------

    async def get_lyrics(self, song: SongRef) -> LyricResult:
        """
        Fetch raw lyrics: primary catalog first, then the aggregator.

        Returns:
            LyricResult, empty when no source had lyrics.
        """
        if song.is_primary:
            try:
                result = await self.primary.get_lyrics(song.catalog_id)
                if result is not None:
                    return result
            except SourceError as e:
                logger.debug(f"Primary lyrics failed for {song.catalog_id}: {e}")

        try:
            result = await self.aggregator.get_lyrics(song.lyric_id or song.catalog_id, song.source)
            if result is not None:
                return result
        except SourceError as e:
            logger.debug(f"Aggregator lyrics failed for {song.source}:{song.catalog_id}: {e}")

        return LyricResult()

    async def get_lyric_lines(self, song: SongRef) -> list[LyricLine]:
        """get_lyrics() parsed into timed lines."""
        lyrics = await self.get_lyrics(song)
        return parse_lyrics(lyrics.lyric, lyrics.tlyric)

    async def get_album_cover_url(self, song: SongRef, size: int = 300) -> str:
        """
        Resolve a cover image URL.

        Order: the song's own pic_url, aggregator, Meting.

        Returns:
            Image URL, "" if none was found.
        """
        if song.pic_url:
            if PRIMARY_CDN_HOST in song.pic_url:
                return f"{song.pic_url}?param={size}y{size}"
            return song.pic_url

        if not song.pic_id:
            return ""

        try:
            url = await self.aggregator.get_cover_url(song.pic_id, song.source, size)
            if url:
                return url
        except SourceError as e:
            logger.warning(f"Aggregator cover lookup failed: {e}")

        try:
            url = await self.meting.get_cover_url(song.pic_id)
            if url:
                return url
        except SourceError as e:
            logger.warning(f"Meting cover lookup failed: {e}")

        return ""

    async def search_music(self, keyword: str, source: str = PRIMARY_SOURCE) -> list[SongRef]:
        """
        Keyword search: aggregator first, primary catalog as fallback.

        Returns:
            Matching songs, [] when every source failed or found nothing.
        """
        try:
            candidates = await self.aggregator.search(keyword, source, count=DEFAULT_SEARCH_COUNT)
            if candidates:
                return [candidate.to_song_ref() for candidate in candidates]
        except SourceError as e:
            logger.debug(f"Aggregator search failed: {e}")

        if source == PRIMARY_SOURCE:
            try:
                ids = await self.primary.search_ids(keyword)
                if ids:
                    return await self.primary.song_details(ids)
            except SourceError as e:
                logger.debug(f"Primary search failed: {e}")

        return []

    async def parse_playlist(self, url_or_id: str) -> Playlist:
        """
        Load a playlist from a link or numeric id.

        Raises:
            ValidationError: If no numeric id can be extracted.
            SourceError: If neither the primary catalog nor Meting
                         could provide the playlist.
        """
        playlist_id = extract_playlist_id(url_or_id)

        try:
            detail = await self.primary.playlist_detail(playlist_id)
            if detail is not None:
                name, track_ids = detail
                songs = await self.primary.song_details(track_ids[:PLAYLIST_TRACK_LIMIT])
                return Playlist(playlist_id=playlist_id, name=name, songs=tuple(songs))
        except SourceError as e:
            logger.warning(f"Primary catalog could not load playlist {playlist_id}: {e}")

        try:
            songs = await self.meting.get_playlist(playlist_id)
            if songs is not None:
                return Playlist(playlist_id=playlist_id, name=DEFAULT_PLAYLIST_NAME, songs=tuple(songs))
        except SourceError as e:
            logger.warning(f"Meting could not load playlist {playlist_id}: {e}")

        raise SourceError(
            f"Failed to load playlist {playlist_id}",
            details={"playlist_id": playlist_id}
        )


def create_resolver(
    config: Config | None = None,
    session: aiohttp.ClientSession | None = None,
    store: StateDatabase | None = None
) -> SongResolver:
    """
    Wire a SongResolver from configuration.

    Args:
        config: Library configuration (defaults when None).
        session: Optional aiohttp session to share with the host.
        store: Optional state database. Defaults to config.storage.state_db.

    Returns:
        A SongResolver that owns its HttpClient (and the store, when it
        opened it). Close it with `await resolver.close()`.
    """
    config = config or Config()
    owns_store = store is None
    if store is None:
        try:
            store = StateDatabase(config.storage.state_db)
        except DatabaseError as e:
            # Stats only affect fallback order; run without persistence
            logger.error(f"State database unavailable, source stats will not persist: {e}")
            store = None

    http = HttpClient.from_config(config.http, session=session)
    context = ResolverContext.create(config, store)

    return SongResolver(
        primary=PrimaryCatalogClient(http, config.endpoints.primary, config.endpoints.unblock_url),
        aggregator=AggregatorClient(http, config.endpoints.aggregator, context.breaker),
        meting=MetingClient(http, config.endpoints.meting),
        context=context,
        preview=config.preview,
        fallback=config.fallback,
        http=http,
        store=store if owns_store else None,
    )
