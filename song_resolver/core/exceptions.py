"""
Exception classes for song-resolver.

This module defines all custom exceptions used throughout the library.
Each exception is designed to provide a clear error message and to
distinguish between the different ways an upstream catalog can fail.

Exception Hierarchy:
    SongResolverError (base)
        ConfigError - Configuration file issues
        DatabaseError - State database issues
        ValidationError - Malformed caller input
        SourceError - Upstream catalog issues
            TransientNetworkError - Timeout, 5xx, 429, connection errors
            TerminalHttpError - 4xx responses that will not improve on retry
            SourceUnavailableError - Circuit breaker is open
            ParseError - Response body has an unexpected shape

Resolution functions never let SourceError escape: they catch it and
degrade to an empty result so the fallback chain can continue. Only
ValidationError is meant to reach the user.
"""


class SongResolverError(Exception):
    """
    Base exception for all song-resolver errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch all song-resolver errors with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., song id, URL).

    Example:
        try:
            playlist = await resolver.parse_playlist(user_input)
        except SongResolverError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'url': URL that caused the error
                     - 'source': Catalog source tag involved
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(SongResolverError):
    """
    Raised when there's an issue with the configuration file.

    Common causes:
        - Explicit config path does not exist
        - Invalid YAML syntax
        - Field with the wrong type (e.g., negative retry count)

    Example:
        raise ConfigError(
            "'http.max_retries' must be a non-negative integer",
            details={'field': 'http.max_retries', 'value': -1}
        )
    """
    pass


class DatabaseError(SongResolverError):
    """
    Raised when the state database cannot be opened, read or written.

    This is a NON-CRITICAL error for resolution: source statistics only
    affect fallback ordering, so callers log it and continue with
    zeroed counters.
    """
    pass


class ValidationError(SongResolverError):
    """
    Raised when caller input is malformed.

    This is the one error that is expected to surface to the user,
    e.g. a playlist identifier that is not numeric.

    Example:
        raise ValidationError(
            "Invalid playlist id: expected a numeric id or a link containing one",
            details={'input': 'abc'}
        )
    """
    pass


class SourceError(SongResolverError):
    """
    Base class for failures talking to an upstream catalog.

    Attributes:
        url: The request URL, if known.
        status_code: The HTTP status, if a response was received.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        url: str | None = None,
        status_code: int | None = None
    ) -> None:
        super().__init__(message, details)
        self.url = url
        self.status_code = status_code


class TransientNetworkError(SourceError):
    """
    Raised when a request failed for a reason that may go away on retry.

    Covers timeouts, connection errors, HTTP 5xx and HTTP 429. The
    retrying fetch raises this only after its retry budget is exhausted.

    Attributes:
        is_rate_limit: True if the last failure was an HTTP 429.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        url: str | None = None,
        status_code: int | None = None,
        is_rate_limit: bool = False
    ) -> None:
        super().__init__(message, details, url=url, status_code=status_code)
        self.is_rate_limit = is_rate_limit


class TerminalHttpError(SourceError):
    """
    Raised on a 4xx response (other than 429).

    Retrying will not help, so the fetch fails fast. A 403 from the
    aggregator usually means the source is blocking us and counts
    against its circuit breaker.
    """
    pass


class SourceUnavailableError(SourceError):
    """
    Raised when a circuit breaker rejects a call.

    No network request is made. Callers treat this exactly like
    "the source returned nothing".
    """
    pass


class ParseError(SourceError):
    """
    Raised when a response body is not valid JSON or has an unexpected shape.

    Example:
        raise ParseError(
            "Aggregator url response is not an object",
            details={'payload_type': 'list'}
        )
    """
    pass
