"""Protocol definitions for the JWKS verification package.

This module defines structural interfaces using Protocol (PEP 544) for:
- Key set sources
- Token verification
- Token extraction

Using protocols allows for duck-typing and easier testing/mocking without
requiring explicit inheritance. Any class that implements the required methods
satisfies the protocol.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

if TYPE_CHECKING:
    from .models import Identity, KeySet

# ============================================================================
# Type Aliases
# ============================================================================

Claims: TypeAlias = Mapping[str, Any]
"""Represents the decoded JWT payload as an immutable mapping."""

Headers: TypeAlias = Mapping[str, str]
"""Request headers as handed over by the HTTP layer."""

ViewFunc: TypeAlias = Callable[..., Any]
"""Type alias for Flask view functions (callable that takes any args and returns any)."""


# ============================================================================
# Core Protocols
# ============================================================================


class KeySource(Protocol):
    """Protocol for fetching the identity provider's published key set.

    Implementations perform exactly one fetch per call, never retry, and
    never mutate shared state: swapping snapshots is the KeyCache's job.
    """

    def fetch_key_set(self) -> KeySet:
        """Fetch and validate the current key set.

        Returns:
            A fully-populated, immutable KeySet.

        Raises:
            KeyFetchError: Network failure, malformed or untrusted response,
                or no usable keys. Never returns a partial snapshot.
        """
        ...


class TokenVerifier(Protocol):
    """Protocol for bearer-token verification implementations."""

    def verify(self, token: str) -> Identity:
        """Verify a token and return the authenticated identity.

        Args:
            token: The raw JWT string (e.g., from Authorization: Bearer <token>)

        Raises:
            AuthError: Any verification failure, classified by subclass.
        """
        ...


class Extractor(Protocol):
    """Protocol for extracting the raw token from request headers."""

    def extract(self, headers: Headers) -> str:
        """Extract the raw JWT string.

        Raises:
            MissingToken: Token not found or improperly formatted.
        """
        ...
