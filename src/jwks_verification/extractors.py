"""Bearer token extraction from request headers.

The extractor works on a plain header mapping so the core never depends on
a particular HTTP framework; Flask's ``request.headers`` satisfies it
directly.

Security Considerations:
- Bearer tokens are standard for APIs and must only travel over HTTPS
- Never extract tokens from URL query parameters (visible in logs/history)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import MissingToken

if TYPE_CHECKING:
    from .protocols import Headers


class BearerExtractor:
    """Extracts the JWT from an ``Authorization: Bearer <token>`` header.

    Example:
        ```python
        extractor = BearerExtractor()
        token = extractor.extract({"Authorization": "Bearer eyJ..."})
        ```
    """

    def __init__(self, header_name: str = "Authorization") -> None:
        if not header_name or not header_name.strip():
            raise ValueError("header_name cannot be empty")
        self._header = header_name

    def extract(self, headers: Headers) -> str:
        """Extract the raw JWT (without the "Bearer " prefix).

        Raises:
            MissingToken: If the header is missing, uses another scheme, or
                the token part is empty or contains whitespace.
        """
        auth_header = self._lookup(headers).strip()

        if not auth_header:
            raise MissingToken("Missing Authorization header")

        parts = auth_header.split(None, 1)

        if len(parts) != 2:
            raise MissingToken("Invalid Authorization header format (expected 'Bearer <token>')")

        scheme, token = parts

        if scheme.lower() != "bearer":
            raise MissingToken("Invalid authorization scheme (expected 'Bearer')")

        token = token.strip()
        if not token or any(ch.isspace() for ch in token):
            raise MissingToken("Bearer token is empty or malformed")

        return token

    def _lookup(self, headers: Headers) -> str:
        value = headers.get(self._header)
        if value is not None:
            return value
        # plain dicts are case-sensitive; HTTP header names are not
        wanted = self._header.lower()
        for name, candidate in headers.items():
            if name.lower() == wanted:
                return candidate
        return ""
