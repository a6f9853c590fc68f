"""Schema validation of JWKS documents.

The key set is untrusted input. Entries that are not usable public signing
keys are skipped (and logged at debug level); a document with no usable
entry at all is rejected outright so the cache never installs an empty set.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Final

from jwt import InvalidKeyError, PyJWK, PyJWKError

from ..errors import KeyFetchError
from ..models import KeySet, SigningKey

logger = logging.getLogger(__name__)

_SYMMETRIC_KEY_TYPES: Final[frozenset[str]] = frozenset({"oct"})

_PRIVATE_MEMBERS: Final[tuple[str, ...]] = ("d", "p", "q", "dp", "dq", "qi")
"""JWK members that only appear in private keys (RFC 7518 6.2.2, 6.3.2)."""


def parse_key_set(
    document: Any,
    *,
    fetched_at: float,
    max_age_hint: float | None = None,
) -> KeySet:
    """Build a KeySet from a JWKS document.

    Raises:
        KeyFetchError: The document is not a JWKS object or holds no usable key.
    """
    if not isinstance(document, Mapping):
        raise KeyFetchError("key set is not a JSON object")

    entries = document.get("keys")
    if not isinstance(entries, list):
        raise KeyFetchError("key set has no 'keys' list")

    keys: dict[str, SigningKey] = {}
    for entry in entries:
        key = _load_key(entry, fetched_at)
        if key is None:
            continue
        if key.kid in keys:
            logger.warning("duplicate_kid_ignored", extra={"kid": key.kid})
            continue
        keys[key.kid] = key

    if not keys:
        raise KeyFetchError("key set contains no usable signing keys")

    return KeySet(keys=keys, fetched_at=fetched_at, max_age_hint=max_age_hint)


def _load_key(entry: Any, fetched_at: float) -> SigningKey | None:
    if not isinstance(entry, Mapping):
        return _skip(None, "entry is not an object")

    kid = entry.get("kid")
    if not isinstance(kid, str) or not kid:
        return _skip(None, "missing kid")
    if entry.get("kty") in _SYMMETRIC_KEY_TYPES:
        return _skip(kid, "symmetric key")
    if entry.get("use", "sig") != "sig":
        return _skip(kid, "not a signing key")
    if any(member in entry for member in _PRIVATE_MEMBERS):
        return _skip(kid, "private key material")

    raw = copy.deepcopy(dict(entry))
    try:
        jwk = PyJWK.from_dict(copy.deepcopy(raw))
    except (PyJWKError, InvalidKeyError, ValueError, TypeError, KeyError) as e:
        return _skip(kid, f"unloadable key: {e.__class__.__name__}")

    return SigningKey(
        kid=kid,
        algorithm=jwk.algorithm_name,
        jwk=jwk,
        raw=MappingProxyType(raw),
        fetched_at=fetched_at,
    )


def _skip(kid: str | None, why: str) -> None:
    logger.debug("jwk_skipped", extra={"kid": kid, "why": why})
    return None
