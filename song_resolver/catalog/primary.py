"""
Client for the primary catalog API.

The primary catalog is a NeteaseCloudMusicApi-compatible deployment. It
is the authoritative source for songs tagged "netease": stream URLs,
lyrics, search, song details and playlists.

Endpoints used:
    /song/url/match?id=&br=&randomCNIP=true   Stream URL
    /lyric?id=                                LRC lyrics + translation
    /search?keywords=&limit=                  Keyword search (ids only)
    /song/detail?ids=                         Full song metadata
    /playlist/detail?id=                      Playlist name and track ids

All methods raise SourceError subclasses on network or payload
problems; the resolver decides how to degrade.
"""

import time
from typing import Any, Callable

from song_resolver.catalog.models import LyricResult, SongRef, SongUrlResult, parse_payload
from song_resolver.core.exceptions import ParseError
from song_resolver.core.http import HttpClient
from song_resolver.core.logger import get_logger


logger = get_logger(__name__)


# Maximum number of results requested from /search
SEARCH_LIMIT = 30


class PrimaryCatalogClient:
    """
    Primary catalog API wrapper.

    Attributes:
        base_url: Primary API base URL (no trailing slash).
        unblock_url: Base URL of the "unblock" deployment. Same as
                     base_url unless configured otherwise.
    """

    def __init__(
        self,
        http: HttpClient,
        base_url: str,
        unblock_url: str | None = None,
        clock: Callable[[], float] = time.time
    ) -> None:
        self._http = http
        self.base_url = base_url.rstrip("/")
        self.unblock_url = (unblock_url or base_url).rstrip("/")
        self._clock = clock

    async def get_song_url(
        self,
        song_id: str,
        br: str | None = None,
        max_retries: int | None = None,
        unblock: bool = False
    ) -> SongUrlResult | None:
        """
        Look up the stream URL of a primary catalog song.

        Args:
            song_id: Primary catalog song id.
            br: Requested bitrate label. None lets the server pick.
            max_retries: Retry budget (None = client default).
            unblock: Query the unblock endpoint with a cache-busting
                     timestamp instead of the regular one.

        Returns:
            SongUrlResult, or None when the catalog has no URL for the song.
        """
        params: dict[str, Any] = {"id": song_id}
        if br:
            params["br"] = br
        params["randomCNIP"] = "true"

        base = self.base_url
        if unblock:
            base = self.unblock_url
            params["t"] = str(int(self._clock() * 1000))

        payload = await self._http.get_json(
            f"{base}/song/url/match", params=params, max_retries=max_retries
        )
        return parse_payload(
            lambda data: SongUrlResult.from_primary_response(data, requested_br=br or ""),
            payload,
            "primary url response"
        )

    async def get_lyrics(self, song_id: str) -> LyricResult | None:
        """Fetch the LRC text (and translation) of a primary catalog song."""
        payload = await self._http.get_json(f"{self.base_url}/lyric", params={"id": song_id})
        return parse_payload(LyricResult.from_primary_response, payload, "primary lyric response")

    async def search_ids(self, keyword: str, limit: int = SEARCH_LIMIT) -> list[str]:
        """
        Keyword search.

        The search endpoint returns abbreviated entries; callers follow up
        with song_details() for full metadata.

        Returns:
            Song ids in result order, [] when nothing matched.
        """
        payload = await self._http.get_json(
            f"{self.base_url}/search", params={"keywords": keyword, "limit": limit}
        )
        if not isinstance(payload, dict):
            raise ParseError("Primary search response is not an object")
        if payload.get("code") != 200:
            return []

        result = payload.get("result") or {}
        songs = result.get("songs") if isinstance(result, dict) else None
        if not songs:
            return []
        if not isinstance(songs, list):
            raise ParseError("Primary search 'songs' is not an array")

        return [str(s["id"]) for s in songs if isinstance(s, dict) and s.get("id") is not None]

    async def song_details(self, song_ids: list[str]) -> list[SongRef]:
        """
        Fetch full metadata for the given ids.

        Returns:
            SongRefs in the order the catalog returned them.
        """
        if not song_ids:
            return []

        payload = await self._http.get_json(
            f"{self.base_url}/song/detail", params={"ids": ",".join(song_ids)}
        )
        if not isinstance(payload, dict):
            raise ParseError("Primary song detail response is not an object")
        if payload.get("code") != 200:
            return []

        songs = payload.get("songs") or []
        if not isinstance(songs, list):
            raise ParseError("Primary song detail 'songs' is not an array")
        return parse_payload(
            lambda entries: [SongRef.from_primary_detail(song) for song in entries],
            songs,
            "primary song detail"
        )

    async def playlist_detail(self, playlist_id: str) -> tuple[str, list[str]] | None:
        """
        Fetch a playlist's name and track ids.

        Returns:
            (name, track_ids), or None when the catalog does not know the
            playlist.
        """
        payload = await self._http.get_json(
            f"{self.base_url}/playlist/detail", params={"id": playlist_id}
        )
        if not isinstance(payload, dict):
            raise ParseError("Primary playlist response is not an object")
        if payload.get("code") != 200:
            return None

        playlist = payload.get("playlist")
        if not isinstance(playlist, dict):
            return None

        track_ids = playlist.get("trackIds") or []
        if not isinstance(track_ids, list):
            raise ParseError("Primary playlist 'trackIds' is not an array")

        ids = [
            str(t["id"]) for t in track_ids
            if isinstance(t, dict) and t.get("id") is not None
        ]
        logger.debug(f"Playlist {playlist_id} has {len(ids)} tracks")
        return str(playlist.get("name") or ""), ids
