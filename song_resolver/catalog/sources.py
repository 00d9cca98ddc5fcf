"""
API source roster and health probing.

A host application can probe the configured upstreams at startup and
show which one is usable. Probing never raises: any failure means
"not healthy".

Usage:
    sources = default_api_sources(config.endpoints)
    working = await find_working_source(http, sources)
    if working is None:
        logger.error("No music API reachable")
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from song_resolver.core.config import EndpointConfig
from song_resolver.core.exceptions import SourceError
from song_resolver.core.http import HttpClient
from song_resolver.core.logger import get_logger


logger = get_logger(__name__)


# Known public Meting mirror, probed before the configured one
INJAHOW_METING_URL = "https://api.injahow.cn/meting"

# Well-known song used by the probes
PROBE_KEYWORD = "海阔天空"
PROBE_SONG_ID = "139774"


class ApiType(Enum):
    """Upstream API flavour."""
    AGGREGATOR = "aggregator"
    PRIMARY = "primary"
    METING = "meting"


@dataclass(frozen=True)
class ApiSource:
    """
    One probe-able upstream.

    Attributes:
        name: Display name.
        url: Base URL.
        api_type: Which request/response dialect it speaks.
        supports_search: Whether keyword search is available.
    """
    name: str
    url: str
    api_type: ApiType
    supports_search: bool = True


def default_api_sources(endpoints: EndpointConfig) -> tuple[ApiSource, ...]:
    """Build the probe roster, in preference order, from the endpoint config."""
    sources = [
        ApiSource("Aggregator API", endpoints.aggregator, ApiType.AGGREGATOR),
        ApiSource("Primary catalog API", endpoints.primary, ApiType.PRIMARY),
        ApiSource("Meting API (injahow)", INJAHOW_METING_URL, ApiType.METING),
    ]
    if endpoints.meting != INJAHOW_METING_URL:
        sources.append(ApiSource("Meting API", endpoints.meting, ApiType.METING))
    return tuple(sources)


def _probe_request(api: ApiSource) -> tuple[str, dict[str, Any]]:
    if api.api_type is ApiType.PRIMARY:
        return f"{api.url}/search", {"keywords": PROBE_KEYWORD, "limit": 1}
    if api.api_type is ApiType.AGGREGATOR:
        return api.url, {"id": PROBE_SONG_ID, "source": "netease", "type": "song"}
    return api.url, {"server": "netease", "type": "search", "id": PROBE_KEYWORD}


def _is_healthy(api: ApiSource, data: Any) -> bool:
    if api.api_type is ApiType.PRIMARY:
        if not isinstance(data, dict):
            return False
        result = data.get("result")
        return data.get("code") == 200 or (isinstance(result, dict) and result.get("code") == 200)

    if isinstance(data, list):
        return len(data) > 0
    if not isinstance(data, dict):
        return False
    if api.api_type is ApiType.AGGREGATOR:
        return len(data) > 0
    return "error" not in data


async def probe_source(http: HttpClient, api: ApiSource) -> bool:
    """
    Check whether `api` answers a known query sensibly.

    Single attempt (max_retries=0). Never raises.
    """
    url, params = _probe_request(api)
    try:
        data = await http.get_json(url, params=params, max_retries=0)
    except SourceError as e:
        logger.debug(f"Probe of {api.name} failed: {e}")
        return False

    healthy = _is_healthy(api, data)
    logger.debug(f"Probe of {api.name}: {'ok' if healthy else 'unexpected response'}")
    return healthy


async def find_working_source(
    http: HttpClient,
    sources: tuple[ApiSource, ...] | list[ApiSource]
) -> ApiSource | None:
    """
    Probe sources in order and return the first healthy one.

    Returns:
        The first healthy ApiSource, or None if none responded.
    """
    for api in sources:
        if await probe_source(http, api):
            logger.info(f"Using {api.name} ({api.url})")
            return api

    logger.warning("No configured music API responded to probes")
    return None
