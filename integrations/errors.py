"""Build source error types.

Every failure at the CI API boundary is mapped to exactly one of these so
callers can show a specific message without inspecting HTTP details.
"""


class BuildSourceError(Exception):
    """Base class for classified build source failures."""

    default_message = "Failed to fetch builds."
    kind = "unclassified"

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message or self.default_message)
        self.status_code = status_code


class UnauthorizedError(BuildSourceError):
    """401: the token is missing, invalid or revoked."""

    default_message = "Invalid API token or insufficient permissions."
    kind = "unauthorized"


class ForbiddenError(BuildSourceError):
    """403: the token is valid but lacks a required scope."""

    default_message = "Access denied. Check API token permissions."
    kind = "forbidden"


class NotFoundError(BuildSourceError):
    """404: the organization or pipeline does not exist."""

    default_message = "Pipeline not found. Check organization and pipeline names."
    kind = "not_found"


class NetworkFailureError(BuildSourceError):
    """Transport-level failure, including timeouts."""

    default_message = "Failed to fetch builds. Check your network connection."
    kind = "network_failure"


class UnclassifiedError(BuildSourceError):
    """Any other server error or an unreadable response body."""


_BY_STATUS = {
    401: UnauthorizedError,
    403: ForbiddenError,
    404: NotFoundError,
}


def error_for_status(status_code: int, detail: str | None = None) -> BuildSourceError:
    """Return the classified error for an HTTP error status."""
    error_cls = _BY_STATUS.get(status_code, UnclassifiedError)
    if error_cls is UnclassifiedError:
        message = f"Build source returned HTTP {status_code}."
        if detail:
            message = f"{message} {detail}"
        return UnclassifiedError(message, status_code=status_code)
    return error_cls(status_code=status_code)
