"""JWT verification implementation using PyJWT.

This module provides a provider-agnostic JWT verifier that:
- Rejects structurally invalid tokens and disallowed algorithms up front
- Resolves signing keys through the injected KeyCache
- Verifies the JWS signature with PyJWT
- Validates issuer, audience, subject and time claims with an explicit
  clock-skew tolerance

Ordering is part of the contract: cheap structural checks run before any key
lookup, and claims are only looked at once the signature has verified.
"""

from __future__ import annotations

import json
import math
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

import jwt
from jwt.algorithms import get_default_algorithms

from .errors import (
    BadSignature,
    ClaimRejected,
    ConfigError,
    ExpiredToken,
    MalformedToken,
    UnsupportedAlgorithm,
)
from .models import Identity, TokenClaims

if TYPE_CHECKING:
    from .key_cache import KeyCache
    from .models import SigningKey

_REGISTERED_CLAIMS: Final[frozenset[str]] = frozenset(
    {"iss", "sub", "aud", "exp", "nbf", "iat"}
)

_SYMMETRIC_ALGORITHMS: Final[frozenset[str]] = frozenset({"HS256", "HS384", "HS512"})


@dataclass(frozen=True, slots=True)
class JWTVerifyOptions:
    """Configuration for JWT validation rules.

    Attributes:
        issuer: Expected `iss` claim, compared exactly (mind trailing slashes).

        audience: Expected `aud` value. The token's `aud` may be a string or a
            list; it must contain this value.

        algorithms: Explicit allow-list of signing algorithms. The token's
            `alg` header only ever selects from this list. Default: ("RS256",)

        leeway: Clock skew tolerance in seconds applied to `exp` and `nbf`.
            Default: 0 (no leeway).

    Security Invariants:
        - 'none' and symmetric HS* algorithms are refused: keys come from a
          public key set, and an HMAC "verified" with a public key is forgeable
        - Only algorithms PyJWT can actually verify are accepted

    Raises:
        ConfigError: On an empty/unsafe allow-list, a missing issuer or
            audience, or a negative leeway.
    """

    issuer: str
    audience: str
    algorithms: tuple[str, ...] = ("RS256",)
    leeway: float = 0

    def __post_init__(self) -> None:
        if not self.issuer:
            raise ConfigError("issuer is required")
        if not self.audience:
            raise ConfigError("audience is required")
        if not self.algorithms:
            raise ConfigError("algorithms allow-list must not be empty")
        if self.leeway < 0:
            raise ConfigError(f"leeway must not be negative, got {self.leeway}")

        supported = get_default_algorithms()
        for alg in self.algorithms:
            if alg == "none" or alg in _SYMMETRIC_ALGORITHMS:
                raise ConfigError(f"Algorithm {alg!r} cannot be used with a public key set")
            if alg not in supported:
                raise ConfigError(f"Algorithm {alg!r} is not supported")


class JWTVerifier:
    """Verifies bearer tokens against keys held by a KeyCache.

    Architecture:
        1. Split the token and read its header (unverified)
        2. Enforce the algorithm allow-list and require a kid
        3. Resolve the signing key via KeyCache
        4. Verify the signature via PyJWT's PyJWS
        5. Validate claims and build the Identity

    Thread Safety:
        Stateless apart from the shared KeyCache, which is thread-safe.
        The JWTVerifyOptions are frozen and immutable.

    Attributes:
        _keys: KeyCache responsible for resolving signing keys.
        _opt: Immutable verification options.
        _jws: PyJWS instance used for signature checks only.
    """

    def __init__(self, key_cache: KeyCache, options: JWTVerifyOptions) -> None:
        self._keys = key_cache
        self._opt = options
        self._jws = jwt.PyJWS()

    @property
    def options(self) -> JWTVerifyOptions:
        return self._opt

    def verify(self, token: str) -> Identity:
        """Verify a token and return the authenticated identity.

        Raises:
            MalformedToken: Not a compact JWS, bad header/payload encoding,
                or no kid.
            UnsupportedAlgorithm: Header algorithm outside the allow-list.
            UnknownKey: kid not in the key set after one refresh.
            KeyFetchError: Keys unavailable and no usable snapshot.
            BadSignature: Signature does not verify under the resolved key.
            ClaimRejected: iss/aud/sub/exp/nbf/iat validation failed
                (ExpiredToken for exp).
        """
        # Step 1: structure and header (cheap, no crypto, no key lookup)
        header = self._read_header(token)

        alg = header.get("alg")
        if not isinstance(alg, str) or alg not in self._opt.algorithms:
            raise UnsupportedAlgorithm(f"Algorithm {alg!r} is not allowed")

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise MalformedToken("Token header missing 'kid' or 'kid' is not a string")

        # Step 2: key resolution (may refresh the key set once)
        signing_key = self._keys.get_key(kid)

        # Step 3: signature, then claims
        payload = self._verify_signature(token, signing_key, alg)
        claims = self._validate_claims(payload)

        return Identity(
            subject=claims.subject,
            issuer=claims.issuer,
            audience=claims.audience,
            claims=MappingProxyType(payload),
            token_claims=claims,
        )

    def _read_header(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str):
            raise MalformedToken("Token must be a string")

        parts = token.split(".")
        if len(parts) != 3 or not parts[0] or not parts[1]:
            raise MalformedToken("Token is not a compact JWS")

        try:
            return jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise MalformedToken(f"Token header is invalid: {e}") from e

    def _verify_signature(self, token: str, signing_key: SigningKey, alg: str) -> dict[str, Any]:
        # A key that declares its algorithm may only be used with that algorithm
        declared = signing_key.raw.get("alg")
        if declared is not None and declared != alg:
            raise BadSignature(f"Key {signing_key.kid!r} is not valid for {alg}")

        try:
            decoded = self._jws.decode_complete(
                token,
                key=signing_key.jwk.key,
                algorithms=[alg],
            )
        except jwt.InvalidSignatureError as e:
            raise BadSignature("Signature verification failed") from e
        except jwt.InvalidAlgorithmError as e:
            raise UnsupportedAlgorithm(f"Algorithm {alg!r} is not allowed") from e
        except (jwt.InvalidKeyError, TypeError, ValueError) as e:
            raise BadSignature(f"Key {signing_key.kid!r} cannot verify {alg}") from e
        except jwt.InvalidTokenError as e:
            raise MalformedToken(f"Token could not be decoded: {e}") from e

        try:
            payload = json.loads(decoded["payload"])
        except ValueError as e:
            raise MalformedToken("Token payload is not valid JSON") from e

        if not isinstance(payload, dict):
            raise MalformedToken("Token payload is not a JSON object")
        return payload

    def _validate_claims(self, payload: dict[str, Any]) -> TokenClaims:
        now = time.time()
        leeway = self._opt.leeway

        issuer = payload.get("iss")
        if not isinstance(issuer, str) or issuer != self._opt.issuer:
            raise ClaimRejected("iss", "Issuer does not match")

        audience = _audiences(payload.get("aud"))
        if audience is None or self._opt.audience not in audience:
            raise ClaimRejected("aud", "Audience does not match")

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise ClaimRejected("sub", "Subject is missing")

        expires_at = _numeric(payload.get("exp"))
        if expires_at is None:
            raise ClaimRejected("exp", "Expiration is missing or not a number")
        if now > expires_at + leeway:
            raise ExpiredToken()

        not_before = None
        if "nbf" in payload:
            not_before = _numeric(payload["nbf"])
            if not_before is None:
                raise ClaimRejected("nbf", "Not-before is not a number")
            if now < not_before - leeway:
                raise ClaimRejected("nbf", "Token is not yet valid")

        issued_at = None
        if "iat" in payload:
            issued_at = _numeric(payload["iat"])
            if issued_at is None:
                raise ClaimRejected("iat", "Issued-at is not a number")

        return TokenClaims(
            issuer=issuer,
            subject=subject,
            audience=audience,
            expires_at=expires_at,
            not_before=not_before,
            issued_at=issued_at,
            extra=MappingProxyType(
                {k: v for k, v in payload.items() if k not in _REGISTERED_CLAIMS}
            ),
        )


def _audiences(value: Any) -> tuple[str, ...] | None:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and value and all(isinstance(a, str) for a in value):
        return tuple(value)
    return None


def _numeric(value: Any) -> float | None:
    # bool is an int subclass; true/false are not timestamps
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    if not math.isfinite(number):
        return None
    return number
