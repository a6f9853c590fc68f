"""Shared test helpers: key pairs, JWKS documents, a fake clock and key source."""

import json
import threading
import time
from dataclasses import dataclass
from typing import Any

from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt.algorithms import ECAlgorithm, RSAAlgorithm
from jwt.utils import base64url_encode

from jwks_verification import KeyFetchError
from jwks_verification.key_sources import parse_key_set

ISSUER = "https://idp.example.com/"
AUDIENCE = "https://api.example.com"
T0 = 1_700_000_000.0


@dataclass
class KeyPair:
    kid: str
    alg: str
    private_key: Any
    jwk: dict[str, Any]


def rsa_pair(kid: str) -> KeyPair:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwk = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
    return KeyPair(kid=kid, alg="RS256", private_key=private_key, jwk=jwk)


def ec_pair(kid: str) -> KeyPair:
    private_key = ec.generate_private_key(ec.SECP256R1())
    jwk = ECAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk.update({"kid": kid, "alg": "ES256", "use": "sig"})
    return KeyPair(kid=kid, alg="ES256", private_key=private_key, jwk=jwk)


def jwks(*pairs: KeyPair) -> dict[str, Any]:
    return {"keys": [dict(p.jwk) for p in pairs]}


def forge_token(header: dict[str, Any], payload: dict[str, Any], signature: bytes = b"") -> str:
    """Hand-assemble a compact JWS, for tokens a well-behaved signer refuses to produce."""
    segments = [
        base64url_encode(json.dumps(header).encode()),
        base64url_encode(json.dumps(payload).encode()),
        base64url_encode(signature),
    ]
    return b".".join(segments).decode()


class Clock:
    """Stand-in for time.time() that only moves when told to."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeKeySource:
    """
    Counting KeySource for cache tests.

    - ``document`` can be swapped to simulate rotation
    - ``fail`` makes fetches raise KeyFetchError
    - ``release`` (when set) blocks fetches until the event is set
    """

    def __init__(self, document: dict[str, Any]):
        self.document = document
        self.calls = 0
        self.fail = False
        self.max_age_hint: float | None = None
        self.release: threading.Event | None = None
        self.started = threading.Event()
        self.closed = False
        self._lock = threading.Lock()

    def fetch_key_set(self):
        with self._lock:
            self.calls += 1
        self.started.set()
        if self.release is not None:
            assert self.release.wait(5), "fetch was never released"
        if self.fail:
            raise KeyFetchError("provider unreachable")
        return parse_key_set(
            self.document, fetched_at=time.time(), max_age_hint=self.max_age_hint
        )

    def close(self) -> None:
        self.closed = True
