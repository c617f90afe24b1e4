"""Domain exception classes for the analytics service.

Raised by service-layer code and caught by controllers to map to HTTP
responses. Cache problems never escape the service layer: they are logged
as :class:`CacheDegradedError` and swallowed.
"""


class InvalidInputError(Exception):
    """Missing or malformed event fields (400)."""

    def __init__(self, detail: str = "Invalid input"):
        self.detail = detail
        super().__init__(detail)


class SessionNotFoundError(Exception):
    """Progress or completion for a session token the store has never seen (404).

    The client may recover by sending a fresh session-start event.
    """

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SummaryNotFoundError(Exception):
    def __init__(self, video_id: str = ""):
        self.video_id = video_id
        super().__init__(f"No analytics summary for video: {video_id}")


class CheckpointNotFoundError(Exception):
    def __init__(self, video_id: str = ""):
        self.video_id = video_id
        super().__init__(f"No resume checkpoint for video: {video_id}")


class DependencyUnavailableError(Exception):
    """The durable store is unreachable or timed out (503, retryable by the caller)."""

    def __init__(self, dependency: str = "database", reason: str = ""):
        self.dependency = dependency
        self.reason = reason
        message = f"{dependency} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CacheDegradedError(Exception):
    """A cache read, write or invalidation failed. Internal only."""

    def __init__(self, operation: str, reason: str = ""):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Cache {operation} failed: {reason}")


class CatalogUnavailableError(Exception):
    """The catalog service could not supply video metadata."""
