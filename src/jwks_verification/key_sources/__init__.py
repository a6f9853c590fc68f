"""
Key source implementations for fetching the provider's signing keys.

This package contains implementations of the KeySource protocol,
allowing the key cache to load key sets from different origins.
"""

from ._jwks import parse_key_set
from .oidc import OIDCKeySource
from .static import StaticKeySource

__all__ = ["OIDCKeySource", "StaticKeySource", "parse_key_set"]
