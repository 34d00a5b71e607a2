"""
Classified provider errors.

Every non-2xx response and every transport failure surfaces as exactly one
ScmError subclass. The permission resolver relies on the split between
NotFoundError/PermissionDeniedError (negative evidence) and everything else.
"""

from collections.abc import Mapping


class ScmError(Exception):
    """Base exception for provider operations."""

    default_message = "provider request failed"

    def __init__(self, message: str = "", status: int = 0) -> None:
        self.message = message or self.default_message
        self.status = status
        super().__init__(self.message)


class NotFoundError(ScmError):
    default_message = "resource not found"


class PermissionDeniedError(ScmError):
    default_message = "permission denied"


class ValidationFailedError(ScmError):
    default_message = "validation failed"


class RateLimitedError(ScmError):
    default_message = "rate limit exceeded"


class UnsupportedError(ScmError):
    """The provider does not offer this operation."""

    default_message = "operation not supported by this provider"


class TransportError(ScmError):
    """Network, timeout, decode failure or an unexpected HTTP status."""

    default_message = "transport error"


NEGATIVE_EVIDENCE: tuple[type[ScmError], ...] = (NotFoundError, PermissionDeniedError)


def classify(status: int, headers: Mapping[str, str], message: str = "") -> ScmError:
    """Map a non-2xx HTTP status to its error kind."""
    if status == 404:
        return NotFoundError(message, status)
    if status == 429:
        return RateLimitedError(message, status)
    if status == 403 and headers.get("x-ratelimit-remaining") == "0":
        return RateLimitedError(message, status)
    if status in (401, 403):
        return PermissionDeniedError(message, status)
    if status in (400, 409, 422):
        return ValidationFailedError(message, status)
    return TransportError(message or f"unexpected status {status}", status)
