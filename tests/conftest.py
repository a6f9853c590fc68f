import time
from typing import Any

import jwt
import pytest
from flask import Flask
from support import AUDIENCE, ISSUER, Clock, FakeKeySource, KeyPair, ec_pair, jwks, rsa_pair

from jwks_verification import JWTVerifier, JWTVerifyOptions, KeyCache


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


@pytest.fixture(scope="session")
def key_a() -> KeyPair:
    return rsa_pair("a")


@pytest.fixture(scope="session")
def key_b() -> KeyPair:
    return rsa_pair("b")


@pytest.fixture(scope="session")
def ec_key() -> KeyPair:
    return ec_pair("ec1")


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> Clock:
    c = Clock()
    monkeypatch.setattr(time, "time", c)
    return c


@pytest.fixture
def source(key_a: KeyPair) -> FakeKeySource:
    return FakeKeySource(jwks(key_a))


@pytest.fixture
def cache(source: FakeKeySource) -> KeyCache:
    return KeyCache(source)


@pytest.fixture
def verifier(cache: KeyCache) -> JWTVerifier:
    return JWTVerifier(cache, JWTVerifyOptions(issuer=ISSUER, audience=AUDIENCE, leeway=30))


@pytest.fixture
def make_token():
    """
    Factory fixture that returns a function.

    Usage in tests:
        token = make_token(key_a, claims={"sub": "u1"}, drop=("iat",))
    """

    def _make(
        key: KeyPair,
        *,
        claims: dict[str, Any] | None = None,
        drop: tuple[str, ...] = (),
        alg: str | None = None,
        kid: str | None = "",
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": ISSUER,
            "aud": AUDIENCE,
            "sub": "user-1",
            "iat": now,
            "exp": now + 300,
        }
        payload.update(claims or {})
        for name in drop:
            payload.pop(name, None)

        # kid="" means "use the key's own kid", None means "no kid header"
        headers = {} if kid is None else {"kid": kid or key.kid}
        return jwt.encode(payload, key.private_key, algorithm=alg or key.alg, headers=headers)

    return _make
