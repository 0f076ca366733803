"""AdPulse - Error Taxonomy.

Caller errors (InvalidRange) are raised straight back to the caller.
Upstream errors carry a ``retryable`` flag that the refresh state machine
uses to decide between backoff and giving up.
"""


class AdPulseError(Exception):
    """Base class for every AdPulse domain error."""


class InvalidRange(AdPulseError):
    """Requested date range is malformed, in the future, or past retention."""


class TenantNotFound(AdPulseError):
    """Tenant id is unknown to the tenant directory."""


class CollectionFailed(AdPulseError):
    """No cached data and the on-demand collection did not succeed."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)


# ── Upstream ──


class UpstreamError(AdPulseError):
    """Raised by a MetricsSource when the ad platform call fails."""

    retryable = False

    def __init__(self, message: str, status_code: int = 0, error_code: int = 0):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class AuthError(UpstreamError):
    """Credentials are missing, expired or revoked."""


class UpstreamPermissionError(UpstreamError):
    """Credentials are valid but lack access to the account."""


class RateLimited(UpstreamError):
    """Upstream asked us to slow down."""

    retryable = True


class TransientError(UpstreamError):
    """5xx, network failure or timeout."""

    retryable = True


# ── Parsing ──


class ParseAnomaly(UserWarning):
    """A raw funnel event type matched no known alias.

    Never raised; collected by the funnel parser and logged at WARNING.
    """

    def __init__(self, event_type: str, count: float = 0, value: float = 0):
        self.event_type = event_type
        self.count = count
        self.value = value
        super().__init__(f"Unrecognised funnel event type: {event_type!r}")
