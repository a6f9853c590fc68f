"""Authentication errors.

This module defines the exception hierarchy for bearer-token verification
failures. All errors inherit from AuthError so the verification gate can turn
any of them into a classified Failure value.

Security Note:
    ``description`` is the only text meant for clients and is intentionally
    generic. The message passed to the constructor is the internal cause and
    belongs in server-side logs, never in a response body.
"""

from __future__ import annotations

from .models import FailureReason


class AuthError(Exception):
    """Base exception for all authentication failures.

    Attributes:
        reason: Classified failure kind, copied onto the Failure value.
        error_code: HTTP status the boundary should answer with.
        description: Client-safe message (no internal details).
    """

    reason: FailureReason = FailureReason.MALFORMED
    error_code: int = 401
    description: str = "Invalid token"


class ConfigError(ValueError):
    """Raised at startup when verifier settings are missing or invalid."""


class MissingToken(AuthError):  # noqa: N818
    """Raised when no bearer token can be found in the request.

    This occurs when:
    - The Authorization header is missing
    - The scheme is not ``Bearer``
    - The token part is empty or contains whitespace
    """

    reason = FailureReason.MISSING_CREDENTIAL
    description = "Missing token"


class MalformedToken(AuthError):  # noqa: N818
    """Raised when a token is not a structurally valid compact JWS."""

    reason = FailureReason.MALFORMED


class UnsupportedAlgorithm(AuthError):  # noqa: N818
    """Raised when the header names an algorithm outside the allow-list.

    Checked before any key lookup, so tokens using ``none`` or an
    unexpected algorithm never cost a cache access or a network call.
    """

    reason = FailureReason.UNSUPPORTED_ALGORITHM


class UnknownKey(AuthError):  # noqa: N818
    """Raised when the token's ``kid`` is not in the key set, even after one refresh."""

    reason = FailureReason.UNKNOWN_KEY


class BadSignature(AuthError):  # noqa: N818
    """Raised when the signature does not verify under the resolved key."""

    reason = FailureReason.BAD_SIGNATURE


class ClaimRejected(AuthError):  # noqa: N818
    """Raised when a verified token carries a claim that fails validation.

    Attributes:
        claim: Name of the offending claim (``iss``, ``aud``, ``exp``, ...).
    """

    reason = FailureReason.CLAIM_REJECTED

    def __init__(self, claim: str, message: str | None = None) -> None:
        super().__init__(message or f"Claim '{claim}' rejected")
        self.claim = claim


class ExpiredToken(ClaimRejected):  # noqa: N818
    """Raised when ``now`` is past the token's ``exp`` plus the clock-skew leeway.

    Treat identically to any other ClaimRejected from a security perspective.
    The distinction helps with metrics and debugging.
    """

    def __init__(self, message: str = "Token has expired") -> None:
        super().__init__("exp", message)


class KeyFetchError(AuthError):  # noqa: N818
    """Raised when the key set cannot be fetched and no usable snapshot exists.

    Attributes:
        cause: Short internal description of what went wrong.
    """

    reason = FailureReason.FETCH_ERROR

    def __init__(self, cause: str) -> None:
        super().__init__(f"Key set fetch failed: {cause}")
        self.cause = cause
