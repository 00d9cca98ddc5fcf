"""
Lyrics module for song-resolver.

Usage:
    from song_resolver.lyrics import parse_lyrics, format_lrc
"""

from song_resolver.lyrics.parser import format_lrc, format_timestamp, parse_lyrics

__all__ = [
    "format_lrc",
    "format_timestamp",
    "parse_lyrics",
]
