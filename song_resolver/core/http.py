"""
Retrying HTTP fetch for song-resolver.

Every catalog client goes through HttpClient.fetch_with_retry(). It
separates failures that may go away (timeouts, connection errors, 5xx,
429) from ones that will not (other 4xx) and only retries the former.

Retry Strategy:
    - Exponential backoff: base -> 2x base -> 4x base ... capped at max
    - Jitter: ±30% randomization so concurrent sweeps do not retry in lockstep
    - Rate limit (429): 2x delay multiplier
    - max_retries=0: single attempt. Used where an outer fallback chain
      already supplies redundancy (aggregator lookups, the sweep).

Usage:
    async with HttpClient.from_config(config.http) as http:
        response = await http.fetch_with_retry(url, params={"id": "1"})
        data = response.json()

        data = await http.get_json(url, params={"id": "1"}, max_retries=0)
"""

import asyncio
import json
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import aiohttp

from song_resolver.core.config import HttpConfig
from song_resolver.core.exceptions import (
    ParseError,
    TerminalHttpError,
    TransientNetworkError,
)
from song_resolver.core.logger import get_logger


logger = get_logger(__name__)


# Jitter factor (±30%) applied to every backoff delay
RETRY_JITTER_FACTOR = 0.3

# Extra delay multiplier when rate limit is detected (429 errors)
RATE_LIMIT_DELAY_MULTIPLIER = 2.0

HTTP_TOO_MANY_REQUESTS = 429

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "Accept": "application/json, text/plain, */*",
}


@dataclass(frozen=True)
class HttpResponse:
    """
    Fully read HTTP response.

    The body is read inside the request context so the connection can be
    released before the caller parses it.

    Attributes:
        status: HTTP status code.
        url: Final request URL.
        body: Raw response body.
        headers: Response headers.
    """
    status: int
    url: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    def text(self) -> str:
        """Decode the body as UTF-8 (undecodable bytes replaced)."""
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """
        Parse the body as JSON.

        Raises:
            ParseError: If the body is empty or not valid JSON.
        """
        try:
            return json.loads(self.text())
        except json.JSONDecodeError as e:
            raise ParseError(
                f"Invalid JSON from {self.url}: {e}",
                details={"body_preview": self.text()[:200]},
                url=self.url,
                status_code=self.status
            ) from e


def compute_retry_delay(
    attempt: int,
    base: float,
    maximum: float,
    is_rate_limit: bool = False,
    rng: Callable[[], float] = random.random
) -> float:
    """
    Backoff delay before retry number `attempt` (0-based).

    Args:
        attempt: Index of the attempt that just failed.
        base: First delay in seconds.
        maximum: Cap for the delay before jitter.
        is_rate_limit: Apply RATE_LIMIT_DELAY_MULTIPLIER.
        rng: Random source returning floats in [0, 1).

    Returns:
        Delay in seconds, never negative.
    """
    delay = min(base * (2 ** attempt), maximum)
    if is_rate_limit:
        delay = min(delay * RATE_LIMIT_DELAY_MULTIPLIER, maximum)

    jitter = delay * RETRY_JITTER_FACTOR * (2 * rng() - 1)
    return max(0.0, delay + jitter)


class HttpClient:
    """
    Thin aiohttp wrapper that adds bounded retries.

    One ClientSession is shared by all catalog clients. A session may be
    injected (tests pass a fake); otherwise one is created lazily and
    closed by close() / the async context manager.

    Attributes:
        timeout: Per-attempt total timeout in seconds.
        max_retries: Default retry budget.
        retry_delay_base: First backoff delay.
        retry_delay_max: Backoff cap.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 15.0,
        max_retries: int = 2,
        retry_delay_base: float = 0.5,
        retry_delay_max: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay_base = retry_delay_base
        self.retry_delay_max = retry_delay_max
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: HttpConfig,
        session: aiohttp.ClientSession | None = None
    ) -> "HttpClient":
        """Create a client from the `http` config section."""
        return cls(
            session=session,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_delay_base=config.retry_delay_base,
            retry_delay_max=config.retry_delay_max,
        )

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(headers=DEFAULT_HEADERS)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the underlying session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _fetch_once(self, url: str, params: dict[str, Any] | None) -> HttpResponse:
        """
        Perform a single GET.

        Raises:
            TransientNetworkError: Timeout, connection error, 5xx or 429.
            TerminalHttpError: Any other non-2xx status.
        """
        session = self._get_session()
        try:
            async with session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                body = await response.read()
                status = response.status
                final_url = str(response.url)
                headers = dict(response.headers)
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(
                f"Request timed out after {self.timeout:.0f}s",
                details={"original_error": repr(e)},
                url=url
            ) from e
        except aiohttp.ClientError as e:
            raise TransientNetworkError(
                f"Network error: {e}",
                details={"original_error": str(e)},
                url=url
            ) from e

        if status == HTTP_TOO_MANY_REQUESTS or status >= 500:
            raise TransientNetworkError(
                f"HTTP {status} from upstream",
                url=final_url,
                status_code=status,
                is_rate_limit=status == HTTP_TOO_MANY_REQUESTS
            )
        if status >= 400:
            raise TerminalHttpError(
                f"HTTP {status} from upstream",
                url=final_url,
                status_code=status
            )

        return HttpResponse(status=status, url=final_url, body=body, headers=headers)

    async def fetch_with_retry(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        max_retries: int | None = None
    ) -> HttpResponse:
        """
        GET url, retrying transient failures.

        Args:
            url: Request URL.
            params: Query parameters.
            max_retries: Retry budget for this call. None uses the client
                         default; 0 means a single attempt.

        Returns:
            HttpResponse with a 2xx/3xx status.

        Raises:
            TerminalHttpError: Immediately, on a non-retryable 4xx.
            TransientNetworkError: After all attempts failed transiently.
        """
        retries = self.max_retries if max_retries is None else max(0, max_retries)
        attempts = retries + 1

        for attempt in range(attempts):
            try:
                return await self._fetch_once(url, params)
            except TransientNetworkError as e:
                if attempt >= attempts - 1:
                    if retries:
                        logger.debug(f"Giving up on {url} after {attempts} attempts: {e}")
                    raise

                delay = compute_retry_delay(
                    attempt,
                    self.retry_delay_base,
                    self.retry_delay_max,
                    is_rate_limit=e.is_rate_limit
                )
                log_msg = (
                    f"Attempt {attempt + 1}/{attempts} for {url} failed: {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                if e.is_rate_limit:
                    logger.warning(log_msg + " (rate limit detected)")
                else:
                    logger.debug(log_msg)
                await self._sleep(delay)

        # Unreachable: the loop either returns or raises
        raise TransientNetworkError(f"No attempt made for {url}", url=url)

    async def get_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        max_retries: int | None = None
    ) -> Any:
        """fetch_with_retry() followed by HttpResponse.json()."""
        response = await self.fetch_with_retry(url, params=params, max_retries=max_retries)
        return response.json()
