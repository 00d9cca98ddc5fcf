"""
Core module for song-resolver.

This module provides the foundational components used throughout the library:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - database: Thread-safe SQLite key/value store for source statistics
    - logger: Logging system with multiple outputs
    - http: Retrying aiohttp fetch
    - circuit_breaker: Per-source availability state machine

Usage:
    from song_resolver.core import (
        Config, load_config,
        StateDatabase,
        HttpClient, CircuitBreaker,
        setup_logging, get_logger,
        SongResolverError, SourceError, ValidationError
    )
"""

from song_resolver.core.circuit_breaker import CircuitBreaker, CircuitState
from song_resolver.core.config import (
    CircuitBreakerConfig,
    Config,
    EndpointConfig,
    FallbackConfig,
    HttpConfig,
    PreviewConfig,
    StorageConfig,
    load_config,
)
from song_resolver.core.database import StateDatabase
from song_resolver.core.exceptions import (
    ConfigError,
    DatabaseError,
    ParseError,
    SongResolverError,
    SourceError,
    SourceUnavailableError,
    TerminalHttpError,
    TransientNetworkError,
    ValidationError,
)
from song_resolver.core.http import HttpClient, HttpResponse
from song_resolver.core.logger import (
    get_logger,
    log_resolution_failure,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitState",
    # Config
    "Config",
    "EndpointConfig",
    "HttpConfig",
    "CircuitBreakerConfig",
    "PreviewConfig",
    "FallbackConfig",
    "StorageConfig",
    "load_config",
    # Database
    "StateDatabase",
    # Exceptions
    "SongResolverError",
    "ConfigError",
    "DatabaseError",
    "ValidationError",
    "SourceError",
    "TransientNetworkError",
    "TerminalHttpError",
    "SourceUnavailableError",
    "ParseError",
    # HTTP
    "HttpClient",
    "HttpResponse",
    # Logger
    "setup_logging",
    "get_logger",
    "log_resolution_failure",
    "shutdown_logging",
]
