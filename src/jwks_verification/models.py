"""Value types shared by the key cache, the verifier and the gate.

Everything here is immutable. Key material is owned by the KeyCache through
KeySet snapshots; identities and failures are produced fresh for every
verification call and never cached.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, TypeAlias

if TYPE_CHECKING:
    from jwt import PyJWK

    from .protocols import Claims


_EMPTY: Mapping[str, Any] = MappingProxyType({})


class FailureReason(StrEnum):
    """Classification of a rejected verification."""

    MALFORMED = "malformed"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    UNKNOWN_KEY = "unknown_key"
    BAD_SIGNATURE = "bad_signature"
    CLAIM_REJECTED = "claim_rejected"
    MISSING_CREDENTIAL = "missing_credential"
    FETCH_ERROR = "fetch_error"


@dataclass(frozen=True, slots=True)
class SigningKey:
    """A public verification key published by the identity provider.

    Attributes:
        kid: Key identifier, matched against the token header.
        algorithm: JWS algorithm the key is meant for (e.g. "RS256").
        jwk: PyJWK wrapper holding the prepared public key.
        raw: The JWK object exactly as fetched (read-only).
        fetched_at: Unix timestamp of the fetch that produced this key.
    """

    kid: str
    algorithm: str
    jwk: PyJWK
    raw: Mapping[str, Any]
    fetched_at: float


@dataclass(frozen=True, slots=True)
class KeySet:
    """Immutable snapshot of the provider's key set.

    A refresh builds a new KeySet and the cache swaps the reference, so a
    reader holding a snapshot always sees a complete set.

    Attributes:
        keys: Read-only mapping of kid -> SigningKey.
        fetched_at: Unix timestamp of the fetch.
        max_age_hint: Freshness hint in seconds from the source's
            Cache-Control header, or None when it sent none.
    """

    keys: Mapping[str, SigningKey]
    fetched_at: float
    max_age_hint: float | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.keys, MappingProxyType):
            object.__setattr__(self, "keys", MappingProxyType(dict(self.keys)))

    def get(self, kid: str) -> SigningKey | None:
        return self.keys.get(kid)

    @property
    def kids(self) -> frozenset[str]:
        return frozenset(self.keys)

    def __contains__(self, kid: object) -> bool:
        return kid in self.keys

    def __len__(self) -> int:
        return len(self.keys)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys)


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Typed view of the payload fields that gate security decisions.

    Anything the verifier does not inspect is passed through untouched in
    ``extra`` for downstream handlers.
    """

    issuer: str
    subject: str
    audience: tuple[str, ...]
    expires_at: float
    not_before: float | None = None
    issued_at: float | None = None
    extra: Claims = field(default_factory=lambda: _EMPTY)


@dataclass(frozen=True, slots=True)
class Identity:
    """Successful verification result.

    Attributes:
        subject: The token's ``sub`` claim.
        issuer: The token's ``iss`` claim.
        audience: All audiences the token was minted for.
        claims: Read-only mapping of the full verified payload.
        token_claims: Typed view of the validated claims; custom claims are
            in its ``extra``.
    """

    subject: str
    issuer: str
    audience: tuple[str, ...]
    claims: Claims = field(default_factory=lambda: _EMPTY)
    token_claims: TokenClaims | None = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.claims.get(name, default)


_PUBLIC_MESSAGES: Mapping[FailureReason, str] = MappingProxyType(
    {FailureReason.MISSING_CREDENTIAL: "Missing token"}
)


@dataclass(frozen=True, slots=True)
class Failure:
    """Rejected verification result.

    ``detail`` is the internal cause for operational logs; clients only ever
    see ``public_message``.
    """

    reason: FailureReason
    claim: str | None = None
    detail: str = ""

    @property
    def status_code(self) -> int:
        return 401

    @property
    def public_message(self) -> str:
        return _PUBLIC_MESSAGES.get(self.reason, "Invalid token")


VerificationResult: TypeAlias = Identity | Failure
