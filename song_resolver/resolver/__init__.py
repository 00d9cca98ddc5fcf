"""
Resolver module for song-resolver.

    - orchestrator: SongResolver, ResolverContext, create_resolver()
    - preview: Preview clip detection heuristic

Usage:
    from song_resolver.resolver import create_resolver

    resolver = create_resolver(config)
    result = await resolver.get_song_url(song, "320")
"""

from song_resolver.resolver.orchestrator import (
    ResolverContext,
    SongResolver,
    create_resolver,
    extract_playlist_id,
)
from song_resolver.resolver.preview import is_probably_preview

__all__ = [
    "ResolverContext",
    "SongResolver",
    "create_resolver",
    "extract_playlist_id",
    "is_probably_preview",
]
