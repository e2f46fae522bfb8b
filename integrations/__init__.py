"""CI provider clients."""

from integrations.buildkite import BuildkiteClient
from integrations.errors import (
    BuildSourceError,
    ForbiddenError,
    NetworkFailureError,
    NotFoundError,
    UnauthorizedError,
    UnclassifiedError,
)

__all__ = [
    "BuildkiteClient",
    "BuildSourceError",
    "ForbiddenError",
    "NetworkFailureError",
    "NotFoundError",
    "UnauthorizedError",
    "UnclassifiedError",
]
