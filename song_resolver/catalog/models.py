"""
Data models for catalog entities.

This module defines immutable dataclasses for songs, resolved stream
URLs, lyrics and playlists, plus the `from_*` parsers that turn upstream
JSON payloads into them.

Design Decisions:
    - All dataclasses are frozen (immutable) to prevent accidental modification
    - Every payload goes through a `from_*` classmethod. A payload of the
      wrong shape raises ParseError; a well-formed "nothing here" answer
      (code != 200, empty url, empty lyric) returns None
    - Identifiers are always strings, whatever the upstream JSON used

Usage:
    from song_resolver.catalog.models import SongRef, SongUrlResult

    song = SongRef(catalog_id="19292984", name="Love Story", artists=("Taylor Swift",), album="Fearless")
    result = SongUrlResult.from_primary_response(payload, requested_br="320")
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from song_resolver.core.config import PRIMARY_SOURCE
from song_resolver.core.exceptions import ParseError, SourceError


T = TypeVar("T")

# Aggregator reports file sizes in KiB
AGGREGATOR_SIZE_UNIT = 1024


def _require_dict(payload: Any, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ParseError(
            f"{what} is not an object",
            details={"payload_type": type(payload).__name__}
        )
    return payload


def _to_id(value: Any) -> str:
    """Normalize an upstream id (int or str) to a string. None -> ""."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, (int, str)):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    raise ParseError(
        "Identifier has an unexpected type",
        details={"value_type": type(value).__name__}
    )


def _to_optional_int(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    # json.loads accepts Infinity, NaN and 1e400
    if not math.isfinite(number):
        return None
    return int(number)


def parse_payload(parse: Callable[[Any], T], payload: Any, what: str) -> T:
    """Run a payload parser. Any non-SourceError it raises becomes ParseError."""
    try:
        return parse(payload)
    except SourceError:
        raise
    except Exception as e:
        raise ParseError(
            f"Unreadable {what}: {e}",
            details={"error_type": type(e).__name__}
        ) from e


def _to_artists(value: Any) -> tuple[str, ...]:
    """
    Aggregator artist fields are either a list of names or one name.

    Examples:
        ["A", "B"] -> ("A", "B")
        "A"        -> ("A",)
        None       -> ()
    """
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    if isinstance(value, list):
        return tuple(str(a) for a in value if a)
    raise ParseError(
        "Artist field has an unexpected type",
        details={"value_type": type(value).__name__}
    )


def _listing_items(payload: Any, what: str) -> list[Any]:
    """Aggregator/Meting listings come back as an array or an index-keyed object."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return list(payload.values())
    raise ParseError(
        f"{what} is neither an array nor an object",
        details={"payload_type": type(payload).__name__}
    )


@dataclass(frozen=True)
class SongRef:
    """
    Immutable reference to a song in some catalog.

    Passed between layers; nothing mutates it after creation.

    Attributes:
        catalog_id: Song id within `source`.
                    Example: "19292984"

        name: Song title.
              Example: "Love Story"

        artists: All artist names, in the order the catalog lists them.
                 Example: ("Taylor Swift",)

        album: Album name, "" if unknown.

        source: Catalog tag. "netease" for the primary catalog, otherwise
                one of the aggregator sources ("kuwo", "kugou", ...).

        duration_ms: Track length from catalog metadata, if known.
                     Feeds the duration check of preview detection.

        pic_id: Cover art id for aggregator/Meting cover lookups.

        pic_url: Direct cover URL, when the catalog already supplied one.

        lyric_id: Lyric id when it differs from catalog_id.
    """

    catalog_id: str
    name: str
    artists: tuple[str, ...] = ()
    album: str = ""
    source: str = PRIMARY_SOURCE

    # Optional fields
    duration_ms: int | None = None
    pic_id: str | None = None
    pic_url: str | None = None
    lyric_id: str | None = None

    @property
    def primary_artist(self) -> str:
        """First listed artist, or "" for songs without artist data."""
        return self.artists[0] if self.artists else ""

    @property
    def artist_display(self) -> str:
        """All artists joined with "/" (the form fuzzy matching compares against)."""
        return "/".join(self.artists)

    @property
    def is_primary(self) -> bool:
        """True for songs that live in the primary catalog."""
        return self.source == PRIMARY_SOURCE

    @classmethod
    def from_primary_detail(cls, song: Any) -> "SongRef":
        """
        Create a SongRef from one entry of the primary `/song/detail` response.

        Args:
            song: Dictionary with `id`, `name`, `ar` (artists), `al` (album)
                  and `dt` (duration in ms).

        Raises:
            ParseError: If the entry is not an object or lacks an id.
        """
        song = _require_dict(song, "Song detail entry")
        catalog_id = _to_id(song.get("id"))
        if not catalog_id:
            raise ParseError("Song detail entry has no id", details={"keys": sorted(song)})

        album = song.get("al") or {}
        if not isinstance(album, dict):
            album = {}
        artists_data = song.get("ar") or []
        if not isinstance(artists_data, list):
            artists_data = []

        artists = tuple(
            a["name"] for a in artists_data
            if isinstance(a, dict) and a.get("name")
        )
        pic_id = _to_id(album.get("picId") or album.get("id") or "")

        return cls(
            catalog_id=catalog_id,
            name=str(song.get("name") or ""),
            artists=artists,
            album=str(album.get("name") or ""),
            source=PRIMARY_SOURCE,
            duration_ms=_to_optional_int(song.get("dt")),
            pic_id=pic_id or None,
            pic_url=album.get("picUrl") or None,
            lyric_id=catalog_id,
        )

    @classmethod
    def from_meting_item(cls, item: Any) -> "SongRef":
        """Create a SongRef from one entry of a Meting `type=playlist` listing."""
        item = _require_dict(item, "Meting playlist entry")
        catalog_id = _to_id(item.get("id"))
        if not catalog_id:
            # Meting only embeds the id inside its own url field
            url = str(item.get("url") or "")
            if "id=" in url:
                catalog_id = url.rsplit("id=", 1)[1].split("&", 1)[0]
        if not catalog_id:
            raise ParseError("Meting playlist entry has no id", details={"keys": sorted(item)})

        return cls(
            catalog_id=catalog_id,
            name=str(item.get("name") or item.get("title") or ""),
            artists=_to_artists(item.get("artist") or item.get("author")),
            album=str(item.get("album") or ""),
            source=PRIMARY_SOURCE,
            pic_url=item.get("pic") or None,
            lyric_id=catalog_id,
        )


@dataclass(frozen=True)
class SearchCandidate:
    """
    One entry of an aggregator search listing.

    Attributes:
        id: Song id within `source`.
        name: Song title.
        artists: Artist names.
        album: Album name.
        source: Catalog tag the aggregator reported (or the one queried).
        pic_id: Cover art id.
        lyric_id: Lyric id (falls back to `id`).
    """

    id: str
    name: str
    artists: tuple[str, ...]
    album: str
    source: str
    pic_id: str = ""
    lyric_id: str = ""

    @classmethod
    def from_aggregator_item(cls, item: Any, default_source: str) -> "SearchCandidate":
        """
        Create a SearchCandidate from one aggregator search entry.

        Raises:
            ParseError: If the entry is not an object or has no id.
        """
        item = _require_dict(item, "Aggregator search entry")
        song_id = _to_id(item.get("id"))
        if not song_id:
            raise ParseError("Aggregator search entry has no id", details={"keys": sorted(item)})

        return cls(
            id=song_id,
            name=str(item.get("name") or ""),
            artists=_to_artists(item.get("artist")),
            album=str(item.get("album") or ""),
            source=str(item.get("source") or default_source),
            pic_id=_to_id(item.get("pic_id")),
            lyric_id=_to_id(item.get("lyric_id")) or song_id,
        )

    @classmethod
    def list_from_aggregator(cls, payload: Any, default_source: str) -> list["SearchCandidate"]:
        """Parse a whole aggregator search listing, preserving its order."""
        return [
            cls.from_aggregator_item(item, default_source)
            for item in _listing_items(payload, "Aggregator search listing")
        ]

    def to_song_ref(self) -> SongRef:
        """Convert to a SongRef for callers of search_music()."""
        return SongRef(
            catalog_id=self.id,
            name=self.name,
            artists=self.artists,
            album=self.album,
            source=self.source,
            pic_id=self.pic_id or None,
            lyric_id=self.lyric_id or self.id,
        )


@dataclass(frozen=True)
class SongUrlResult:
    """
    Outcome of a stream URL lookup.

    Produced once and never mutated. The "nothing found" case is the
    empty sentinel: url == "" and found is False.

    Attributes:
        url: Playable stream URL, "" for the sentinel.
        br: Bitrate label as reported (or as requested).
        size: File size in bytes, if the upstream reported one.
        source: Catalog tag that produced the URL. None for the primary
                catalog's direct lookup.
    """

    url: str
    br: str
    size: int | None = None
    source: str | None = None

    @property
    def found(self) -> bool:
        """Check if this result carries a URL."""
        return bool(self.url)

    @classmethod
    def empty(cls, br: str) -> "SongUrlResult":
        """Create the sentinel returned when every path failed."""
        return cls(url="", br=br)

    def with_source(self, source: str) -> "SongUrlResult":
        """Copy of this result tagged with the catalog that produced it."""
        return SongUrlResult(url=self.url, br=self.br, size=self.size, source=source)

    @classmethod
    def from_primary_response(
        cls,
        payload: Any,
        requested_br: str = ""
    ) -> "SongUrlResult | None":
        """
        Parse a primary catalog `/song/url/match` response.

        Args:
            payload: `{code, data: [{url, br, size}]}`. `data` may also be a
                     single object on some deployments.
            requested_br: Bitrate label used when the entry has no `br`.

        Returns:
            SongUrlResult, or None when code != 200 or no url was returned.

        Raises:
            ParseError: If the payload is not an object or `data` has the
                        wrong shape.
        """
        payload = _require_dict(payload, "Primary url response")
        if payload.get("code") != 200:
            return None

        data = payload.get("data")
        if data is None:
            return None
        if isinstance(data, list):
            if not data:
                return None
            entry = data[0]
        else:
            entry = data
        entry = _require_dict(entry, "Primary url entry")

        url = entry.get("url")
        if not url:
            return None
        if not isinstance(url, str):
            raise ParseError("Primary url entry has a non-string url")

        br = entry.get("br")
        return cls(
            url=url,
            br=str(br) if br else requested_br,
            size=_to_optional_int(entry.get("size")),
        )

    @classmethod
    def from_aggregator_response(
        cls,
        payload: Any,
        requested_br: str,
        source: str | None = None
    ) -> "SongUrlResult | None":
        """
        Parse an aggregator `types=url` response.

        The aggregator reports `size` in KiB; it is converted to bytes here
        so every SongUrlResult carries bytes.

        Returns:
            SongUrlResult, or None when no url was returned.

        Raises:
            ParseError: If the payload is not an object.
        """
        if isinstance(payload, list) and not payload:
            return None
        payload = _require_dict(payload, "Aggregator url response")

        url = payload.get("url")
        if not url:
            return None
        if not isinstance(url, str):
            raise ParseError("Aggregator url response has a non-string url")

        size_kib = _to_optional_int(payload.get("size"))
        br = payload.get("br")
        return cls(
            url=url,
            br=str(br) if br else requested_br,
            size=size_kib * AGGREGATOR_SIZE_UNIT if size_kib else None,
            source=source,
        )


@dataclass(frozen=True)
class LyricLine:
    """
    One timed lyric line.

    Attributes:
        time: Offset from the start of the track, in seconds.
        text: Lyric text (never empty).
        translation: Translated text merged from the tlyric track, if any.
    """

    time: float
    text: str
    translation: str | None = None


@dataclass(frozen=True)
class LyricResult:
    """
    Raw lyrics as returned by a catalog.

    Attributes:
        lyric: LRC text, "" when nothing was found.
        tlyric: LRC text of the translation, if any.
    """

    lyric: str = ""
    tlyric: str | None = None

    @property
    def found(self) -> bool:
        """Check if any lyric text was returned."""
        return bool(self.lyric)

    @classmethod
    def from_primary_response(cls, payload: Any) -> "LyricResult | None":
        """
        Parse a primary catalog `/lyric` response.

        Returns:
            LyricResult, or None when code != 200 or `lrc.lyric` is empty.
        """
        payload = _require_dict(payload, "Primary lyric response")
        if payload.get("code") != 200:
            return None

        lrc = payload.get("lrc") or {}
        lyric = lrc.get("lyric") if isinstance(lrc, dict) else None
        if not lyric:
            return None

        tlrc = payload.get("tlyric") or {}
        tlyric = tlrc.get("lyric") if isinstance(tlrc, dict) else None
        return cls(lyric=str(lyric), tlyric=str(tlyric) if tlyric else None)

    @classmethod
    def from_aggregator_response(cls, payload: Any) -> "LyricResult | None":
        """
        Parse an aggregator `types=lyric` response: `{lyric, tlyric}`.

        Returns:
            LyricResult, or None when `lyric` is empty.
        """
        if isinstance(payload, list) and not payload:
            return None
        payload = _require_dict(payload, "Aggregator lyric response")
        lyric = payload.get("lyric")
        if not lyric:
            return None
        tlyric = payload.get("tlyric")
        return cls(lyric=str(lyric), tlyric=str(tlyric) if tlyric else None)


@dataclass(frozen=True)
class Playlist:
    """
    A parsed playlist.

    Attributes:
        playlist_id: Numeric playlist id (as a string).
        name: Playlist title.
        songs: Songs in playlist order.
    """

    playlist_id: str
    name: str
    songs: tuple[SongRef, ...] = ()

    @property
    def song_count(self) -> int:
        """Number of songs in the playlist."""
        return len(self.songs)
