"""Custom exceptions for the FileTag Sync application."""


# -----------------------------------------------------------------------------
# Cloud Sync Exceptions
# -----------------------------------------------------------------------------


class CloudSyncError(Exception):
    """Base exception for cloud service errors.

    All cloud client exceptions inherit from this class,
    allowing callers to catch all cloud errors with a single handler.
    """

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class CloudUnavailableError(CloudSyncError):
    """Cloud service unreachable or temporarily failing (retryable).

    Causes:
        - Network offline or DNS failure
        - Request timeout
        - 429 rate limiting or 5xx server errors
    """

    pass


class CloudPermissionError(CloudSyncError):
    """Cloud service rejected the request on authorization/policy grounds.

    Causes:
        - Invalid or expired API key (401/403)
        - Row-level security rejection (code 42501)

    The sync engine suspends further cycles for a cooldown period.
    """

    pass


class CloudRequestError(CloudSyncError):
    """Cloud service rejected the request as malformed.

    Causes:
        - Payload validation failed (4xx other than auth/rate limit)
    """

    pass
