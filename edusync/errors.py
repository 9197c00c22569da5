"""
Error taxonomy shared by the request handlers.

Every handler error carries the HTTP status it is surfaced with. Anything not
derived from EduSyncError is reported as a generic 500 by the API layer.
"""


class EduSyncError(Exception):
    """Base class for errors surfaced to callers as a JSON error body."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnauthorizedError(EduSyncError):
    """Missing or invalid caller identity."""
    status_code = 401


class ValidationError(EduSyncError):
    """Malformed request body or missing required field."""
    status_code = 400


class NotFoundError(EduSyncError):
    """A referenced row does not exist."""
    status_code = 404


class ConfigurationError(EduSyncError):
    """A required secret or endpoint is not configured."""
    status_code = 500


class UpstreamError(EduSyncError):
    """A third-party gateway answered with an undistinguished error."""
    status_code = 500

    def __init__(self, message: str, upstream_status: int = 0):
        super().__init__(message)
        self.upstream_status = upstream_status


class RateLimitedError(UpstreamError):
    status_code = 429


class PaymentRequiredError(UpstreamError):
    status_code = 402
