"""Test catalog API clients against a fake HTTP layer"""

import asyncio

import pytest

from song_resolver.catalog import (
    AggregatorClient,
    ApiSource,
    ApiType,
    MetingClient,
    PrimaryCatalogClient,
    default_api_sources,
    find_working_source,
    probe_source,
)
from song_resolver.core.circuit_breaker import CircuitBreaker, CircuitState
from song_resolver.core.config import EndpointConfig
from song_resolver.core.exceptions import (
    ParseError,
    SourceUnavailableError,
    TerminalHttpError,
    TransientNetworkError,
)

from tests.conftest import AGGREGATOR_URL, METING_URL, PRIMARY_URL, FakeHttp


def _aggregator(handler, clock, threshold=3):
    http = FakeHttp(handler)
    breaker = CircuitBreaker("aggregator", failure_threshold=threshold, recovery_timeout=30, clock=clock)
    return AggregatorClient(http, AGGREGATOR_URL, breaker), http, breaker


class TestAggregatorClient:
    """Test AggregatorClient and its breaker bookkeeping"""

    @pytest.mark.asyncio
    async def test_url_lookup(self, clock):
        """Test a url lookup is single-attempt and parsed"""
        client, http, breaker = _aggregator(lambda url, params: {"url": "https://a.test/s.mp3", "size": 4000}, clock)
        result = await client.get_song_url("42", "kuwo", "320")
        assert result.url == "https://a.test/s.mp3"
        assert result.size == 4000 * 1024
        assert http.calls == [
            (AGGREGATOR_URL, {"types": "url", "source": "kuwo", "id": "42", "br": "320"}, 0)
        ]

    @pytest.mark.asyncio
    async def test_transient_failures_open_circuit(self, clock):
        """Test transient failures count against the breaker"""
        client, http, breaker = _aggregator(lambda url, params: TransientNetworkError("down"), clock)
        for _ in range(3):
            with pytest.raises(TransientNetworkError):
                await client.get_song_url("1", "kuwo", "320")
        assert breaker.get_state() is CircuitState.OPEN

        with pytest.raises(SourceUnavailableError):
            await client.get_song_url("1", "kuwo", "320")
        assert len(http.calls) == 3

    @pytest.mark.asyncio
    async def test_forbidden_counts_as_failure(self, clock):
        """Test HTTP 403 counts against the breaker"""
        client, _, breaker = _aggregator(
            lambda url, params: TerminalHttpError("forbidden", status_code=403), clock
        )
        with pytest.raises(TerminalHttpError):
            await client.search("x", "kuwo")
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_not_found_keeps_circuit_closed(self, clock):
        """Test other 4xx responses do not count as failures"""
        client, _, breaker = _aggregator(
            lambda url, params: TerminalHttpError("not found", status_code=404), clock
        )
        with pytest.raises(TerminalHttpError):
            await client.get_lyrics("1", "kuwo")
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_parse_error_counts_as_failure(self, clock):
        """Test malformed payloads count against the breaker"""
        client, _, breaker = _aggregator(lambda url, params: "garbage", clock)
        with pytest.raises(ParseError):
            await client.get_song_url("1", "kuwo", "320")
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, clock):
        """Test a parsed response records success"""
        responses = iter([TransientNetworkError("blip"), {"url": ""}])
        client, _, breaker = _aggregator(lambda url, params: next(responses), clock)
        with pytest.raises(TransientNetworkError):
            await client.get_song_url("1", "kuwo", "320")
        assert await client.get_song_url("1", "kuwo", "320") is None
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_trial_frees_slot(self, clock):
        """Test a cancelled HALF_OPEN trial leaves the trial available"""
        blocked = asyncio.Event()

        async def handler(url, params):
            await blocked.wait()
            return {"url": "https://a.test/s.mp3"}

        client, _, breaker = _aggregator(handler, clock, threshold=1)
        breaker.record_failure()
        clock.advance(30)

        task = asyncio.create_task(client.get_song_url("1", "kuwo", "320"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        clock.advance(3600)
        assert breaker.get_state() is CircuitState.HALF_OPEN
        assert breaker.can_execute() is True

    @pytest.mark.asyncio
    async def test_unexpected_parser_error_counts_as_failure(self, clock):
        """Test a parser crash surfaces as ParseError and is recorded"""
        client, _, breaker = _aggregator(lambda url, params: {"url": "x"}, clock)
        with pytest.raises(ParseError):
            await client._request({"types": "url"}, lambda payload: payload["missing"])
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_infinite_size_is_not_an_error(self, clock):
        """Test size=1e400 yields a result with unknown size"""
        client, _, breaker = _aggregator(lambda url, params: {"url": "https://a.test/s.mp3", "size": 1e400}, clock)
        result = await client.get_song_url("1", "kuwo", "320")
        assert result.url == "https://a.test/s.mp3"
        assert result.size is None
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_search_and_cover(self, clock):
        """Test search listing and cover lookups"""
        def handler(url, params):
            if params["types"] == "search":
                return [{"id": "9", "name": "Song", "artist": ["A"]}]
            return {"url": "https://img.test/c.jpg"}

        client, http, _ = _aggregator(handler, clock)
        candidates = await client.search("Song A", "migu", count=5)
        assert [c.id for c in candidates] == ["9"]
        assert candidates[0].source == "migu"
        assert await client.get_cover_url("p1", "migu", 500) == "https://img.test/c.jpg"
        assert http.calls[1][1] == {"types": "pic", "source": "migu", "id": "p1", "size": 500}


class TestPrimaryCatalogClient:
    """Test PrimaryCatalogClient"""

    @pytest.mark.asyncio
    async def test_song_url_params(self):
        """Test the regular lookup parameters"""
        http = FakeHttp(lambda url, params: {"code": 200, "data": [{"url": "https://a.test/x.mp3", "br": 128000}]})
        client = PrimaryCatalogClient(http, PRIMARY_URL)
        result = await client.get_song_url("7")
        assert result.url == "https://a.test/x.mp3"
        assert http.calls == [(f"{PRIMARY_URL}/song/url/match", {"id": "7", "randomCNIP": "true"}, None)]

    @pytest.mark.asyncio
    async def test_unblock_endpoint(self):
        """Test the unblock path uses its own base and a cache buster"""
        http = FakeHttp(lambda url, params: {"code": 200, "data": [{"url": ""}]})
        client = PrimaryCatalogClient(http, PRIMARY_URL, "https://unblock.test/", clock=lambda: 12.5)
        assert await client.get_song_url("7", br="192", max_retries=0, unblock=True) is None
        url, params, retries = http.calls[0]
        assert url == "https://unblock.test/song/url/match"
        assert params == {"id": "7", "br": "192", "randomCNIP": "true", "t": "12500"}
        assert retries == 0

    @pytest.mark.asyncio
    async def test_search_and_details(self):
        """Test search ids followed by song details"""
        def handler(url, params):
            if url.endswith("/search"):
                return {"code": 200, "result": {"songs": [{"id": 1}, {"id": 2}]}}
            return {"code": 200, "songs": [
                {"id": 1, "name": "A", "ar": [{"name": "X"}], "al": {"name": "L"}},
                {"id": 2, "name": "B", "ar": [], "al": None},
            ]}

        http = FakeHttp(handler)
        client = PrimaryCatalogClient(http, PRIMARY_URL)
        ids = await client.search_ids("query")
        assert ids == ["1", "2"]
        songs = await client.song_details(ids)
        assert [s.name for s in songs] == ["A", "B"]
        assert http.calls[1][1] == {"ids": "1,2"}

    @pytest.mark.asyncio
    async def test_playlist_detail(self):
        """Test playlist name and track ids"""
        http = FakeHttp(lambda url, params: {
            "code": 200,
            "playlist": {"name": "Mix", "trackIds": [{"id": 5}, {"id": 6}]},
        })
        client = PrimaryCatalogClient(http, PRIMARY_URL)
        assert await client.playlist_detail("99") == ("Mix", ["5", "6"])

    @pytest.mark.asyncio
    async def test_lyrics(self):
        """Test lyric lookups"""
        http = FakeHttp(lambda url, params: {"code": 200, "lrc": {"lyric": "[00:01.00]a"}})
        client = PrimaryCatalogClient(http, PRIMARY_URL)
        result = await client.get_lyrics("7")
        assert result.lyric == "[00:01.00]a"
        assert result.tlyric is None


class TestMetingClient:
    """Test MetingClient"""

    @pytest.mark.asyncio
    async def test_cover_url_or_pic(self):
        """Test both cover field names"""
        http = FakeHttp(lambda url, params: {"pic": "https://img.test/p.jpg"})
        client = MetingClient(http, METING_URL)
        assert await client.get_cover_url("1") == "https://img.test/p.jpg"
        assert http.calls[0][:2] == (f"{METING_URL}/", {"type": "pic", "id": "1"})

    @pytest.mark.asyncio
    async def test_playlist(self):
        """Test playlist listings and error objects"""
        client = MetingClient(FakeHttp(lambda url, params: [{"id": 1, "name": "A", "artist": "X"}]), METING_URL)
        songs = await client.get_playlist("5")
        assert [s.catalog_id for s in songs] == ["1"]

        failing = MetingClient(FakeHttp(lambda url, params: {"error": "not found"}), METING_URL)
        assert await failing.get_playlist("5") is None


class TestSources:
    """Test API probing"""

    def test_default_roster(self):
        """Test roster order follows preference"""
        sources = default_api_sources(EndpointConfig())
        assert [s.api_type for s in sources] == [
            ApiType.AGGREGATOR, ApiType.PRIMARY, ApiType.METING, ApiType.METING,
        ]

    @pytest.mark.asyncio
    async def test_probe_never_raises(self):
        """Test probe failures report unhealthy"""
        http = FakeHttp(lambda url, params: TransientNetworkError("down"))
        api = ApiSource("Primary", PRIMARY_URL, ApiType.PRIMARY)
        assert await probe_source(http, api) is False

    @pytest.mark.asyncio
    async def test_find_working_source(self):
        """Test the first healthy source is returned"""
        def handler(url, params):
            if url == AGGREGATOR_URL:
                return []
            return {"code": 200}

        sources = (
            ApiSource("Aggregator", AGGREGATOR_URL, ApiType.AGGREGATOR),
            ApiSource("Primary", PRIMARY_URL, ApiType.PRIMARY),
        )
        working = await find_working_source(FakeHttp(handler), sources)
        assert working.name == "Primary"

    @pytest.mark.asyncio
    async def test_nothing_working(self):
        """Test None when every probe fails"""
        http = FakeHttp(lambda url, params: {"error": "x"})
        sources = (ApiSource("Meting", METING_URL, ApiType.METING),)
        assert await find_working_source(http, sources) is None
