"""
Configuration management for song-resolver.

This module handles loading, validating, and providing access to the
library configuration stored in song_resolver.yaml.

The configuration file contains:
    - Endpoint base URLs for the primary catalog, the aggregator and Meting
    - HTTP timeout and retry budget
    - Circuit breaker thresholds for the aggregator
    - Preview detection heuristics and the fuzzy match threshold
    - The fallback roster used for cross-catalog searches
    - Location of the state database holding source statistics

Every section is optional. When no file is found in the current working
directory the built-in defaults are used.

Endpoint URLs may also be overridden through environment variables
(a .env file in the working directory is loaded automatically):
    SONG_RESOLVER_PRIMARY_URL
    SONG_RESOLVER_UNBLOCK_URL
    SONG_RESOLVER_AGGREGATOR_URL
    SONG_RESOLVER_METING_URL

Example song_resolver.yaml:
    endpoints:
      primary: "https://netease-cloud-music-api-five-roan.vercel.app"
      aggregator: "https://music-api.gdstudio.xyz/api.php"

    http:
      timeout: 15
      max_retries: 2

    circuit_breaker:
      failure_threshold: 3
      recovery_timeout: 30

    preview_detection:
      min_file_size: 102400
      similarity_threshold: 0.5

    fallback:
      sources: [kuwo, kugou, migu, tencent, ximalaya, joox]
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from song_resolver.core.exceptions import ConfigError


# Default configuration file name (looked up in current working directory)
CONFIG_FILENAME = "song_resolver.yaml"

# Catalog tag of the primary streaming service
PRIMARY_SOURCE = "netease"

DEFAULT_PRIMARY_URL = "https://netease-cloud-music-api-five-roan.vercel.app"
DEFAULT_AGGREGATOR_URL = "https://music-api.gdstudio.xyz/api.php"
DEFAULT_METING_URL = "https://api.i-meto.com/meting/api"

FALLBACK_SOURCES = ("kuwo", "kugou", "migu", "tencent", "ximalaya", "joox")

ENV_OVERRIDES = {
    "primary": "SONG_RESOLVER_PRIMARY_URL",
    "unblock": "SONG_RESOLVER_UNBLOCK_URL",
    "aggregator": "SONG_RESOLVER_AGGREGATOR_URL",
    "meting": "SONG_RESOLVER_METING_URL",
}


@dataclass(frozen=True)
class EndpointConfig:
    """
    Base URLs of the upstream catalogs.

    Attributes:
        primary: Primary catalog API (NeteaseCloudMusicApi compatible).
        aggregator: Aggregator API multiplexing several catalogs via `source`.
        meting: Meting API, used for cover art and playlist fallbacks.
        unblock: Endpoint for the primary "unblock" path.
                 None means "same as primary".
    """
    primary: str = DEFAULT_PRIMARY_URL
    aggregator: str = DEFAULT_AGGREGATOR_URL
    meting: str = DEFAULT_METING_URL
    unblock: str | None = None

    @property
    def unblock_url(self) -> str:
        """Resolved unblock endpoint."""
        return self.unblock or self.primary


@dataclass(frozen=True)
class HttpConfig:
    """
    Network behaviour of the retrying fetch.

    Attributes:
        timeout: Total timeout per request attempt, in seconds.
        max_retries: Default retry budget for transient failures.
        retry_delay_base: First backoff delay in seconds (doubles per attempt).
        retry_delay_max: Cap for a single backoff delay.
    """
    timeout: float = 15.0
    max_retries: int = 2
    retry_delay_base: float = 0.5
    retry_delay_max: float = 5.0


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """
    Thresholds for the aggregator circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        recovery_timeout: Seconds the circuit stays OPEN before a trial.
        half_open_max_calls: Trial calls allowed while HALF_OPEN.
    """
    failure_threshold: int = 3
    recovery_timeout: float = 30.0
    half_open_max_calls: int = 1


@dataclass(frozen=True)
class PreviewConfig:
    """
    Heuristics for detecting truncated trial audio.

    Attributes:
        min_file_size: Files smaller than this (bytes) are previews.
        min_duration: Lower bound (seconds) of the plausible preview range.
        max_duration: Upper bound (seconds) of the plausible preview range.
        typical_durations: Common preview lengths in seconds.
        duration_tolerance: Allowed distance (seconds) from a typical length.
        similarity_threshold: Minimum match score for cross-catalog candidates.
        proactive_check: Start the cross-catalog search as soon as a
                         preview is seen instead of waiting for all sources.
    """
    min_file_size: int = 100 * 1024
    min_duration: float = 20.0
    max_duration: float = 65.0
    typical_durations: tuple[float, ...] = (30.0, 45.0, 60.0)
    duration_tolerance: float = 2.0
    similarity_threshold: float = 0.5
    proactive_check: bool = True


@dataclass(frozen=True)
class FallbackConfig:
    """
    Cross-catalog search settings.

    Attributes:
        sources: Fallback roster, in default priority order.
        search_count: Candidates requested per source search.
        bitrate_tiers: Bitrates tried per accepted candidate, in order.
    """
    sources: tuple[str, ...] = FALLBACK_SOURCES
    search_count: int = 5
    bitrate_tiers: tuple[str, ...] = ("128", "320")


@dataclass(frozen=True)
class StorageConfig:
    """
    Attributes:
        state_db: Path of the SQLite file holding source statistics.
    """
    state_db: Path = field(
        default_factory=lambda: Path("~/.song_resolver/state.db").expanduser()
    )


@dataclass(frozen=True)
class Config:
    """
    Complete library configuration.

    Created by load_config() and treated as immutable (frozen dataclass).
    Config() with no arguments gives the built-in defaults.

    Example:
        config = load_config()
        print(f"Aggregator: {config.endpoints.aggregator}")
        print(f"Retries: {config.http.max_retries}")
    """
    endpoints: EndpointConfig = field(default_factory=EndpointConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    preview: PreviewConfig = field(default_factory=PreviewConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from song_resolver.yaml.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for song_resolver.yaml in the current
                     working directory and falls back to defaults when
                     it is not there.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If an explicit config file is not found, the YAML is
                     invalid, or a field has an invalid value.

    Behavior:
        1. Load .env (if present) for endpoint overrides
        2. Locate config file (explicit path or CWD/song_resolver.yaml)
        3. Read and parse YAML content
        4. Parse each optional section, applying defaults
        5. Apply environment overrides to endpoints
    """
    load_dotenv()

    explicit = config_path is not None
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        if explicit:
            raise ConfigError(
                f"Configuration file not found: {config_path}",
                details={"file_path": str(config_path)}
            )
        raw_config: dict[str, Any] = {}
    else:
        raw_config = _read_yaml(config_path)

    endpoints = _apply_env_overrides(_parse_endpoints(_section(raw_config, "endpoints")))

    return Config(
        endpoints=endpoints,
        http=_parse_http(_section(raw_config, "http")),
        circuit_breaker=_parse_circuit_breaker(_section(raw_config, "circuit_breaker")),
        preview=_parse_preview(_section(raw_config, "preview_detection")),
        fallback=_parse_fallback(_section(raw_config, "fallback")),
        storage=_parse_storage(_section(raw_config, "storage")),
    )


def _read_yaml(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    # An empty file parses to None
    if raw_config is None:
        return {}

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    return raw_config


def _section(raw_config: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw_config.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(
            f"Section '{name}' must be a dictionary",
            details={"section": name}
        )
    return section


def _get_url(section: dict[str, Any], key: str, default: str | None) -> str | None:
    value = section.get(key)
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(
            f"'endpoints.{key}' must be a non-empty string",
            details={"field": f"endpoints.{key}"}
        )
    return value.strip().rstrip("/")


def _get_number(
    section: dict[str, Any],
    section_name: str,
    key: str,
    default: float,
    minimum: float = 0,
    integer: bool = False
) -> Any:
    value = section.get(key)
    if value is None:
        return default

    # bool is a subclass of int; reject it explicitly
    valid_types = (int,) if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, valid_types) or value < minimum:
        kind = "integer" if integer else "number"
        raise ConfigError(
            f"'{section_name}.{key}' must be a {kind} >= {minimum}",
            details={"field": f"{section_name}.{key}", "value": value}
        )
    return value if integer else float(value)


def _get_str_list(section: dict[str, Any], section_name: str, key: str, default: tuple) -> tuple:
    value = section.get(key)
    if value is None:
        return default
    if not isinstance(value, list) or not value:
        raise ConfigError(
            f"'{section_name}.{key}' must be a non-empty list",
            details={"field": f"{section_name}.{key}"}
        )
    return tuple(str(item) for item in value)


def _parse_endpoints(section: dict[str, Any]) -> EndpointConfig:
    return EndpointConfig(
        primary=_get_url(section, "primary", DEFAULT_PRIMARY_URL),
        aggregator=_get_url(section, "aggregator", DEFAULT_AGGREGATOR_URL),
        meting=_get_url(section, "meting", DEFAULT_METING_URL),
        unblock=_get_url(section, "unblock", None),
    )


def _apply_env_overrides(endpoints: EndpointConfig) -> EndpointConfig:
    values = {
        "primary": endpoints.primary,
        "unblock": endpoints.unblock,
        "aggregator": endpoints.aggregator,
        "meting": endpoints.meting,
    }
    for key, env_name in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value and env_value.strip():
            values[key] = env_value.strip().rstrip("/")
    return EndpointConfig(**values)


def _parse_http(section: dict[str, Any]) -> HttpConfig:
    defaults = HttpConfig()
    return HttpConfig(
        timeout=_get_number(section, "http", "timeout", defaults.timeout, minimum=0.1),
        max_retries=_get_number(section, "http", "max_retries", defaults.max_retries, integer=True),
        retry_delay_base=_get_number(section, "http", "retry_delay_base", defaults.retry_delay_base),
        retry_delay_max=_get_number(section, "http", "retry_delay_max", defaults.retry_delay_max),
    )


def _parse_circuit_breaker(section: dict[str, Any]) -> CircuitBreakerConfig:
    defaults = CircuitBreakerConfig()
    name = "circuit_breaker"
    return CircuitBreakerConfig(
        failure_threshold=_get_number(
            section, name, "failure_threshold", defaults.failure_threshold, minimum=1, integer=True
        ),
        recovery_timeout=_get_number(section, name, "recovery_timeout", defaults.recovery_timeout),
        half_open_max_calls=_get_number(
            section, name, "half_open_max_calls", defaults.half_open_max_calls, minimum=1, integer=True
        ),
    )


def _parse_preview(section: dict[str, Any]) -> PreviewConfig:
    defaults = PreviewConfig()
    name = "preview_detection"

    typical = section.get("typical_durations")
    if typical is None:
        typical_durations = defaults.typical_durations
    elif isinstance(typical, list) and all(
        isinstance(t, (int, float)) and not isinstance(t, bool) for t in typical
    ):
        typical_durations = tuple(float(t) for t in typical)
    else:
        raise ConfigError(
            f"'{name}.typical_durations' must be a list of numbers",
            details={"field": f"{name}.typical_durations"}
        )

    proactive = section.get("proactive_check", defaults.proactive_check)
    if not isinstance(proactive, bool):
        raise ConfigError(
            f"'{name}.proactive_check' must be true or false",
            details={"field": f"{name}.proactive_check", "value": proactive}
        )

    threshold = _get_number(section, name, "similarity_threshold", defaults.similarity_threshold)
    if threshold > 1:
        raise ConfigError(
            f"'{name}.similarity_threshold' must be between 0 and 1",
            details={"field": f"{name}.similarity_threshold", "value": threshold}
        )

    return PreviewConfig(
        min_file_size=_get_number(section, name, "min_file_size", defaults.min_file_size, integer=True),
        min_duration=_get_number(section, name, "min_duration", defaults.min_duration),
        max_duration=_get_number(section, name, "max_duration", defaults.max_duration),
        typical_durations=typical_durations,
        duration_tolerance=_get_number(section, name, "duration_tolerance", defaults.duration_tolerance),
        similarity_threshold=threshold,
        proactive_check=proactive,
    )


def _parse_fallback(section: dict[str, Any]) -> FallbackConfig:
    defaults = FallbackConfig()
    return FallbackConfig(
        sources=_get_str_list(section, "fallback", "sources", defaults.sources),
        search_count=_get_number(
            section, "fallback", "search_count", defaults.search_count, minimum=1, integer=True
        ),
        bitrate_tiers=_get_str_list(section, "fallback", "bitrate_tiers", defaults.bitrate_tiers),
    )


def _parse_storage(section: dict[str, Any]) -> StorageConfig:
    raw_path = section.get("state_db")
    if raw_path is None:
        return StorageConfig()
    if not isinstance(raw_path, str) or not raw_path.strip():
        raise ConfigError(
            "'storage.state_db' must be a non-empty string path",
            details={"field": "storage.state_db"}
        )
    return StorageConfig(state_db=Path(raw_path.strip()).expanduser().resolve())
