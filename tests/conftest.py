"""Test configuration and fixtures"""

import inspect
import tempfile
from pathlib import Path
from typing import Any, Callable

import pytest

from song_resolver.catalog import AggregatorClient, MetingClient, PrimaryCatalogClient, SongRef
from song_resolver.core.circuit_breaker import CircuitBreaker
from song_resolver.core.config import FallbackConfig, PreviewConfig
from song_resolver.core.database import StateDatabase
from song_resolver.matching.ranking import SourceStats
from song_resolver.resolver import ResolverContext, SongResolver


PRIMARY_URL = "https://primary.test"
AGGREGATOR_URL = "https://aggregator.test/api.php"
METING_URL = "https://meting.test/api"

FULL_SIZE_KIB = 8000          # 8 MB track as reported by the aggregator
FULL_SIZE_BYTES = 8_000_000   # 8 MB track as reported by the primary catalog


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHttp:
    """
    Stand-in for HttpClient.

    Every get_json() call is recorded and answered by `handler(url, params)`.
    The handler returns a payload, returns/raises an exception, or is a
    coroutine function (to simulate slow upstreams).
    """

    def __init__(self, handler: Callable[[str, dict], Any]):
        self.handler = handler
        self.calls: list[tuple[str, dict, int | None]] = []
        self.closed = False

    async def get_json(self, url: str, params: dict | None = None, max_retries: int | None = None) -> Any:
        params = dict(params or {})
        self.calls.append((url, params, max_retries))
        result = self.handler(url, params)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self) -> None:
        self.closed = True

    def calls_to(self, url: str, **params: Any) -> list[tuple[str, dict, int | None]]:
        """Recorded calls to url whose params include all of `params`."""
        return [
            call for call in self.calls
            if call[0] == url and all(call[1].get(k) == v for k, v in params.items())
        ]


class FakeResponse:
    """Minimal aiohttp response used through `async with session.get(...)`"""

    def __init__(self, status: int = 200, body: bytes = b"{}", url: str = "https://x.test/"):
        self.status = status
        self._body = body
        self.url = url
        self.headers = {"Content-Type": "application/json"}

    async def read(self) -> bytes:
        return self._body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class FakeSession:
    """
    Minimal aiohttp.ClientSession replacement.

    `outcomes` is consumed one item per request: a FakeResponse or an
    exception instance to raise.
    """

    def __init__(self, outcomes: list[Any]):
        self.outcomes = list(outcomes)
        self.requests: list[tuple[str, dict | None]] = []
        self.closed = False

    def get(self, url: str, params: dict | None = None, timeout: Any = None) -> FakeResponse:
        self.requests.append((url, params))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def clock():
    """Manually advanced clock starting at t=1000"""
    return FakeClock()


@pytest.fixture
def memory_store():
    """In-memory state database"""
    store = StateDatabase(":memory:")
    yield store
    store.close()


@pytest.fixture
def primary_song():
    """A primary catalog song with full metadata"""
    return SongRef(
        catalog_id="19292984",
        name="Love Story",
        artists=("Taylor Swift",),
        album="Fearless",
        source="netease",
        duration_ms=235000,
        pic_id="109951163",
        lyric_id="19292984",
    )


@pytest.fixture
def kuwo_song():
    """A song that lives in a fallback catalog"""
    return SongRef(
        catalog_id="MUSIC_42",
        name="晴天",
        artists=("周杰伦",),
        album="叶惠美",
        source="kuwo",
    )


@pytest.fixture
def make_resolver(clock, memory_store):
    """
    Factory building a SongResolver wired to a FakeHttp.

    Usage:
        resolver, http = make_resolver(handler, preview=PreviewConfig(proactive_check=False))
    """
    def _make(
        handler: Callable[[str, dict], Any],
        preview: PreviewConfig | None = None,
        fallback: FallbackConfig | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> tuple[SongResolver, FakeHttp]:
        http = FakeHttp(handler)
        fallback = fallback or FallbackConfig()
        context = ResolverContext(
            breaker=breaker or CircuitBreaker("aggregator", clock=clock),
            stats=SourceStats(memory_store, fallback.sources),
        )
        resolver = SongResolver(
            primary=PrimaryCatalogClient(http, PRIMARY_URL, clock=lambda: 1_700_000_000.0),
            aggregator=AggregatorClient(http, AGGREGATOR_URL, context.breaker),
            meting=MetingClient(http, METING_URL),
            context=context,
            preview=preview or PreviewConfig(),
            fallback=fallback,
        )
        return resolver, http

    return _make
