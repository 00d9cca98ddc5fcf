"""
Catalog module for song-resolver.

Clients for the three upstream APIs and the models their payloads are
parsed into:
    - primary: NeteaseCloudMusicApi-compatible primary catalog
    - aggregator: Multi-catalog aggregator (circuit-breaker guarded)
    - meting: Meting API (cover art and playlist fallback)
    - sources: Probe roster and find_working_source()
    - models: SongRef, SongUrlResult, LyricResult, LyricLine, SearchCandidate, Playlist

Usage:
    from song_resolver.catalog import PrimaryCatalogClient, SongRef
"""

from song_resolver.catalog.aggregator import AggregatorClient
from song_resolver.catalog.meting import MetingClient
from song_resolver.catalog.models import (
    LyricLine,
    LyricResult,
    Playlist,
    SearchCandidate,
    SongRef,
    SongUrlResult,
)
from song_resolver.catalog.primary import PrimaryCatalogClient
from song_resolver.catalog.sources import (
    ApiSource,
    ApiType,
    default_api_sources,
    find_working_source,
    probe_source,
)

__all__ = [
    # Clients
    "AggregatorClient",
    "MetingClient",
    "PrimaryCatalogClient",
    # Models
    "LyricLine",
    "LyricResult",
    "Playlist",
    "SearchCandidate",
    "SongRef",
    "SongUrlResult",
    # Sources
    "ApiSource",
    "ApiType",
    "default_api_sources",
    "find_working_source",
    "probe_source",
]
