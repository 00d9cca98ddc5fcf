"""
Client for the aggregator API.

The aggregator multiplexes several catalogs behind one endpoint, selected
with the `source` parameter (netease, kuwo, kugou, migu, tencent, ...).
It is the least reliable upstream, so every call goes through a circuit
breaker:

    - Breaker OPEN: SourceUnavailableError, no request is made
    - Parsed response: record_success()
    - Transient failure, HTTP 403, malformed payload: record_failure()
    - Other 4xx: the server answered, so it counts as reachable
    - Cancelled call: its HALF_OPEN trial slot is handed back

Endpoints used:
    ?types=url&source=&id=&br=          Stream URL (size in KiB)
    ?types=search&source=&name=&count=  Keyword search
    ?types=lyric&source=&id=            Lyrics
    ?types=pic&source=&id=&size=        Cover art URL
"""

from typing import Any, Callable, TypeVar

from song_resolver.catalog.models import LyricResult, SearchCandidate, SongUrlResult, parse_payload
from song_resolver.core.circuit_breaker import CircuitBreaker
from song_resolver.core.exceptions import (
    ParseError,
    SourceUnavailableError,
    TerminalHttpError,
    TransientNetworkError,
)
from song_resolver.core.http import HttpClient
from song_resolver.core.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

HTTP_FORBIDDEN = 403

# Candidates requested by search_music()
DEFAULT_SEARCH_COUNT = 20


class AggregatorClient:
    """
    Circuit-breaker guarded aggregator API wrapper.

    Attributes:
        base_url: Aggregator endpoint URL.
        breaker: Breaker shared by every aggregator call.
    """

    def __init__(self, http: HttpClient, base_url: str, breaker: CircuitBreaker) -> None:
        self._http = http
        self.base_url = base_url
        self.breaker = breaker

    async def _request(
        self,
        params: dict[str, Any],
        parse: Callable[[Any], T],
        max_retries: int | None = None
    ) -> T:
        """
        Perform one guarded request and parse the payload.

        Raises:
            SourceUnavailableError: Breaker rejected the call.
            SourceError: Any other upstream failure (after bookkeeping).
        """
        if not self.breaker.can_execute():
            raise SourceUnavailableError(
                "Aggregator circuit is open",
                details={"types": params.get("types"), "source": params.get("source")},
                url=self.base_url
            )

        try:
            payload = await self._http.get_json(self.base_url, params=params, max_retries=max_retries)
            result = parse_payload(parse, payload, f"aggregator {params.get('types')} response")
        except (TransientNetworkError, ParseError):
            self.breaker.record_failure()
            raise
        except TerminalHttpError as e:
            if e.status_code == HTTP_FORBIDDEN:
                self.breaker.record_failure()
            else:
                self.breaker.record_success()
            raise
        except BaseException:
            # Cancelled or failed without an upstream verdict
            self.breaker.release_trial()
            raise

        self.breaker.record_success()
        return result

    async def get_song_url(self, song_id: str, source: str, br: str) -> SongUrlResult | None:
        """
        Look up a stream URL in `source`.

        Fail-fast (max_retries=0): the resolver's fallback chain already
        provides redundancy.

        Returns:
            SongUrlResult with size in bytes, or None when no URL was returned.
        """
        logger.debug(f"Aggregator url lookup: {source}:{song_id} @{br}")
        return await self._request(
            {"types": "url", "source": source, "id": song_id, "br": br},
            lambda payload: SongUrlResult.from_aggregator_response(payload, br),
            max_retries=0
        )

    async def search(
        self,
        keyword: str,
        source: str,
        count: int = DEFAULT_SEARCH_COUNT
    ) -> list[SearchCandidate]:
        """
        Keyword search in `source` (fail-fast).

        Returns:
            Candidates in listing order.
        """
        logger.debug(f"Aggregator search in {source}: '{keyword}' (count={count})")
        return await self._request(
            {"types": "search", "source": source, "name": keyword, "count": count},
            lambda payload: SearchCandidate.list_from_aggregator(payload, source),
            max_retries=0
        )

    async def get_lyrics(self, lyric_id: str, source: str) -> LyricResult | None:
        """Fetch lyrics from `source`."""
        return await self._request(
            {"types": "lyric", "source": source, "id": lyric_id},
            LyricResult.from_aggregator_response
        )

    async def get_cover_url(self, pic_id: str, source: str, size: int = 300) -> str | None:
        """
        Resolve a cover art id to an image URL.

        Returns:
            Image URL, or None when the aggregator has none.
        """
        return await self._request(
            {"types": "pic", "source": source, "id": pic_id, "size": size},
            _parse_pic_response
        )


def _parse_pic_response(payload: Any) -> str | None:
    if isinstance(payload, list) and not payload:
        return None
    if not isinstance(payload, dict):
        raise ParseError(
            "Aggregator pic response is not an object",
            details={"payload_type": type(payload).__name__}
        )
    url = payload.get("url")
    return str(url) if url else None
