"""
Error taxonomy for the collector.

Every collection failure is raised as a CollectorError subclass so the
caller (CLI or host agent) can fail one cycle and try again on the next
tick instead of taking the whole process down. `retryable` tells the
caller whether the next tick has a reasonable chance of succeeding.
"""


class CollectorError(Exception):
    """Base class for all collector exceptions."""

    retryable = False


class ApplianceConnectionError(CollectorError):
    """Raised when the API client cannot be built or login fails."""

    retryable = True


class QueryError(CollectorError):
    """Raised when the capacity or metrics request fails or times out."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(CollectorError):
    """Raised when a response body is not the JSON shape we expect."""


class TimestampParseError(CollectorError):
    """Raised for a single record whose timestamp is not strict RFC3339."""


class SessionStateError(CollectorError):
    """Raised on lifecycle misuse, e.g. gathering before start or after stop."""


class CollectionCancelled(SessionStateError):
    """Raised when stop() lands while a collection cycle is in flight."""
