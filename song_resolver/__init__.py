"""
song-resolver: Resolve full-length stream URLs and synced lyrics across music catalogs.

This package takes a song reference from a UI shell and finds something
playable for it, even when the catalog the song came from only serves a
30 second preview, is temporarily offline, or knows the song under a
different id than its neighbours.

Architecture:
    The resolution pipeline is built from small, separately testable parts:

    core/ - Ambient services
        - Retrying HTTP fetch (aiohttp) with backoff and jitter
        - Circuit breaker guarding the aggregator API
        - YAML configuration, logging, SQLite state store, exceptions

    catalog/ - Upstream clients
        - Primary catalog (NeteaseCloudMusicApi compatible)
        - Aggregator (multi-catalog, selected via `source`)
        - Meting (cover art and playlist fallback)
        - Payload models with strict `from_*` parsers

    matching/ - Cross-catalog matching
        - Title/artist similarity scoring
        - Fallback source ranking by recorded success

    resolver/ - Orchestration
        - Preview clip detection
        - get_song_url(): primary -> aggregator -> cross-catalog sweep
        - Lyrics, cover art, search and playlist helpers

    lyrics/ - LRC parsing with translation merge

Usage:
    from song_resolver import SongRef, create_resolver, load_config, setup_logging

    config = load_config()
    setup_logging()

    resolver = create_resolver(config)
    try:
        song = SongRef(catalog_id="19292984", name="Love Story", artists=("Taylor Swift",))
        result = await resolver.get_song_url(song, "320")
        lines = await resolver.get_lyric_lines(song)
    finally:
        await resolver.close()

Configuration:
    Optional song_resolver.yaml in the current directory (see
    song_resolver.core.config for every key). Endpoint URLs can also be
    overridden through SONG_RESOLVER_* environment variables or a .env file.

Dependencies:
    - aiohttp: Async HTTP client
    - pyyaml: Configuration file parsing
    - python-dotenv: .env loading for endpoint overrides
    - tqdm: Progress-bar friendly console logging
"""

__version__ = "0.1.0"
__author__ = "song-resolver"
__license__ = "MIT"

# Convenience imports for common usage
from song_resolver.catalog import LyricLine, LyricResult, Playlist, SongRef, SongUrlResult
from song_resolver.core import (
    Config,
    ConfigError,
    DatabaseError,
    ParseError,
    SongResolverError,
    SourceError,
    SourceUnavailableError,
    TerminalHttpError,
    TransientNetworkError,
    ValidationError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from song_resolver.lyrics import format_lrc, parse_lyrics
from song_resolver.resolver import ResolverContext, SongResolver, create_resolver

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "setup_logging",
    "shutdown_logging",
    "get_logger",
    # Exceptions
    "SongResolverError",
    "ConfigError",
    "DatabaseError",
    "ValidationError",
    "SourceError",
    "TransientNetworkError",
    "TerminalHttpError",
    "SourceUnavailableError",
    "ParseError",
    # Models
    "SongRef",
    "SongUrlResult",
    "LyricLine",
    "LyricResult",
    "Playlist",
    # Resolver
    "SongResolver",
    "ResolverContext",
    "create_resolver",
    # Lyrics
    "parse_lyrics",
    "format_lrc",
]
