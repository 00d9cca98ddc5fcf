"""
Client for the Meting API.

Meting is only used as a last resort: for cover art when the aggregator
has none, and for playlists when the primary catalog cannot serve them.
"""

from typing import Any

from song_resolver.catalog.models import SongRef, parse_payload
from song_resolver.core.exceptions import ParseError
from song_resolver.core.http import HttpClient


class MetingClient:
    """Meting API wrapper."""

    def __init__(self, http: HttpClient, base_url: str) -> None:
        self._http = http
        self.base_url = base_url.rstrip("/")

    async def get_cover_url(self, pic_id: str) -> str | None:
        """Resolve a cover art id. Meting answers with `url` or `pic`."""
        payload = await self._http.get_json(f"{self.base_url}/", params={"type": "pic", "id": pic_id})
        if not isinstance(payload, dict):
            return None
        url = payload.get("url") or payload.get("pic")
        return str(url) if url else None

    async def get_playlist(self, playlist_id: str) -> list[SongRef] | None:
        """
        Fetch a playlist's songs.

        Returns:
            SongRefs in playlist order, or None when Meting returned
            something other than a listing (usually an error object).
        """
        payload: Any = await self._http.get_json(
            f"{self.base_url}/", params={"type": "playlist", "id": playlist_id}
        )
        if not isinstance(payload, list):
            if isinstance(payload, dict):
                return None
            raise ParseError(
                "Meting playlist response is not an array",
                details={"payload_type": type(payload).__name__}
            )
        return parse_payload(
            lambda items: [SongRef.from_meting_item(item) for item in items],
            payload,
            "Meting playlist"
        )
