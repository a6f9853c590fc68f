"""
Bearer-token verification against an OpenID-Connect provider's rotating keys.

High-level flow (per request)
-----------------------------
1. `VerificationGate.authenticate(headers)` runs (directly, or through
   `AuthExtension.require()` in Flask).
2. `BearerExtractor` pulls the raw JWT from `Authorization: Bearer <token>`.
3. `JWTVerifier.verify(token)`:
   - Checks structure and the algorithm allow-list (no crypto, no lookups)
   - Asks the KeyCache for the key matching the header's `kid`
   - Verifies the signature, then issuer/audience/subject/expiry/not-before
4. The gate returns an `Identity`, or a `Failure` carrying a
   `FailureReason`; it never raises for expected failures.

Key handling
------------
- `KeyCache` holds one immutable `KeySet` snapshot and swaps it atomically.
- Unknown `kid` → exactly one refresh, shared by all concurrent callers.
- Stale snapshots are refreshed before use; if the provider is down a
  snapshot younger than `max_age` keeps being served.

Example usage
-------------

.. code-block:: python

    from jwks_verification import (
        AuthExtension,
        GateSettings,
        build_gate,
    )

    gate = build_gate(
        GateSettings(
            issuer_url="https://your-tenant.example.com/",
            audience="your-api-identifier",
        )
    )
    auth = AuthExtension(gate)

    @app.route("/protected")
    @auth.require()
    def protected_route():
        return {"sub": current_identity().subject}
"""

import logging

# Configuration
from .config import GateSettings, build_gate

# Errors
from .errors import (
    AuthError,
    BadSignature,
    ClaimRejected,
    ConfigError,
    ExpiredToken,
    KeyFetchError,
    MalformedToken,
    MissingToken,
    UnknownKey,
    UnsupportedAlgorithm,
)

# Extractors
from .extractors import BearerExtractor

# Flask extension
from .flask_extension import AuthExtension, current_identity

# Gate
from .gate import VerificationGate

# Key cache
from .key_cache import KeyCache

# Key sources
from .key_sources import OIDCKeySource, StaticKeySource

# Models
from .models import (
    Failure,
    FailureReason,
    Identity,
    KeySet,
    SigningKey,
    TokenClaims,
    VerificationResult,
)

# Protocols
from .protocols import Claims, Extractor, Headers, KeySource, TokenVerifier, ViewFunc

# Refresh
from .refresh_gate import RefreshGate
from .refresher import KeyRefresher
from .single_flight import FlightRejected, SingleFlight

# Verifier
from .verifier import JWTVerifier, JWTVerifyOptions

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Configuration
    "GateSettings",
    "build_gate",
    # Errors
    "AuthError",
    "BadSignature",
    "ClaimRejected",
    "ConfigError",
    "ExpiredToken",
    "KeyFetchError",
    "MalformedToken",
    "MissingToken",
    "UnknownKey",
    "UnsupportedAlgorithm",
    # Models
    "Failure",
    "FailureReason",
    "Identity",
    "KeySet",
    "SigningKey",
    "TokenClaims",
    "VerificationResult",
    # Protocols
    "Claims",
    "Extractor",
    "Headers",
    "KeySource",
    "TokenVerifier",
    "ViewFunc",
    # Extractors
    "BearerExtractor",
    # Key sources
    "OIDCKeySource",
    "StaticKeySource",
    # Key cache and refresh
    "KeyCache",
    "KeyRefresher",
    "RefreshGate",
    "SingleFlight",
    "FlightRejected",
    # Verifier
    "JWTVerifier",
    "JWTVerifyOptions",
    # Gate
    "VerificationGate",
    # Flask extension
    "AuthExtension",
    "current_identity",
]
