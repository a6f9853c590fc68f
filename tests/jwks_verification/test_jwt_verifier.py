import json
from typing import Any

import jwt
import pytest
from jwt.utils import base64url_encode
from support import AUDIENCE, ISSUER, Clock, FakeKeySource, KeyPair, forge_token, jwks

import jwks_verification as m


def sign_raw(key: KeyPair, payload: Any, *, kid: str | None = None) -> str:
    """Sign arbitrary payload bytes, bypassing PyJWT's claim handling."""
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return jwt.PyJWS().encode(body, key.private_key, algorithm=key.alg, headers={"kid": kid or key.kid})


def base_claims(now: float, **overrides: Any) -> dict[str, Any]:
    claims = {"iss": ISSUER, "aud": AUDIENCE, "sub": "user-1", "exp": int(now) + 300}
    claims.update(overrides)
    return claims


# --- success ---------------------------------------------------------------


def test_valid_token_returns_identity(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, make_token):
    token = make_token(key_a, claims={"scope": "read:all"})

    identity = verifier.verify(token)

    assert identity.subject == "user-1"
    assert identity.issuer == ISSUER
    assert identity.audience == (AUDIENCE,)
    assert identity.get("scope") == "read:all"
    assert identity.get("missing", "x") == "x"
    with pytest.raises(TypeError):
        identity.claims["sub"] = "someone-else"  # type: ignore[index]


def test_identity_carries_typed_claims(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, make_token):
    exp = int(clock.now) + 300
    token = make_token(key_a, claims={"exp": exp, "scope": "read:all", "tenant": "t-9"})

    token_claims = verifier.verify(token).token_claims

    assert token_claims is not None
    assert token_claims.expires_at == exp
    assert token_claims.issued_at == int(clock.now)
    assert token_claims.not_before is None
    assert dict(token_claims.extra) == {"scope": "read:all", "tenant": "t-9"}


def test_audience_list_must_contain_expected(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, make_token):
    token = make_token(key_a, claims={"aud": ["https://other.example.com", AUDIENCE]})

    assert verifier.verify(token).audience == ("https://other.example.com", AUDIENCE)


def test_ec_key_verifies(clock: Clock, key_a: KeyPair, ec_key: KeyPair, make_token):
    cache = m.KeyCache(FakeKeySource(jwks(key_a, ec_key)))
    verifier = m.JWTVerifier(
        cache, m.JWTVerifyOptions(issuer=ISSUER, audience=AUDIENCE, algorithms=("RS256", "ES256"))
    )

    assert verifier.verify(make_token(ec_key)).subject == "user-1"
    assert verifier.verify(make_token(key_a)).subject == "user-1"


def test_options_are_exposed(verifier: m.JWTVerifier):
    assert verifier.options.issuer == ISSUER
    assert verifier.options.leeway == 30


# --- time claims -----------------------------------------------------------


def test_exp_boundary_honours_leeway(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, make_token):
    token = make_token(key_a, claims={"exp": int(clock.now) + 10})

    clock.advance(40)  # exactly exp + leeway
    assert verifier.verify(token).subject == "user-1"

    clock.advance(1)
    with pytest.raises(m.ExpiredToken) as exc_info:
        verifier.verify(token)
    assert exc_info.value.claim == "exp"
    assert exc_info.value.reason is m.FailureReason.CLAIM_REJECTED


def test_not_before_honours_leeway(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, make_token):
    assert verifier.verify(make_token(key_a, claims={"nbf": int(clock.now) + 30}))

    with pytest.raises(m.ClaimRejected) as exc_info:
        verifier.verify(make_token(key_a, claims={"nbf": int(clock.now) + 31}))
    assert exc_info.value.claim == "nbf"


def test_zero_leeway(clock: Clock, cache: m.KeyCache, key_a: KeyPair, make_token):
    verifier = m.JWTVerifier(cache, m.JWTVerifyOptions(issuer=ISSUER, audience=AUDIENCE))
    token = make_token(key_a, claims={"exp": int(clock.now) + 5})

    clock.advance(5)
    verifier.verify(token)
    clock.advance(1)
    with pytest.raises(m.ExpiredToken):
        verifier.verify(token)


# --- claim rejection -------------------------------------------------------


@pytest.mark.parametrize(
    "overrides, claim",
    [
        ({"iss": "https://idp.example.com"}, "iss"),
        ({"iss": None}, "iss"),
        ({"aud": "https://other.example.com"}, "aud"),
        ({"aud": []}, "aud"),
        ({"aud": [AUDIENCE, 7]}, "aud"),
        ({"sub": ""}, "sub"),
        ({"sub": 123}, "sub"),
        ({"exp": "soon"}, "exp"),
        ({"exp": True}, "exp"),
        ({"nbf": "later"}, "nbf"),
        ({"iat": [1]}, "iat"),
        ({"exp": 10**400}, "exp"),
        ({"iat": 10**400}, "iat"),
    ],
)
def test_bad_claims_are_rejected(
    clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, overrides: dict[str, Any], claim: str
):
    token = sign_raw(key_a, base_claims(clock.now, **overrides))

    with pytest.raises(m.ClaimRejected) as exc_info:
        verifier.verify(token)
    assert exc_info.value.claim == claim


@pytest.mark.parametrize("name", ["iss", "aud", "sub", "exp"])
def test_required_claims(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, make_token, name: str):
    with pytest.raises(m.ClaimRejected) as exc_info:
        verifier.verify(make_token(key_a, drop=(name,)))
    assert exc_info.value.claim == name


# --- algorithm handling ----------------------------------------------------


def test_alg_none_rejected_without_key_lookup(clock: Clock, verifier: m.JWTVerifier, source: FakeKeySource):
    token = forge_token({"alg": "none", "kid": "a"}, base_claims(clock.now))

    with pytest.raises(m.UnsupportedAlgorithm):
        verifier.verify(token)
    assert source.calls == 0


def test_algorithm_outside_allow_list(clock: Clock, verifier: m.JWTVerifier, source: FakeKeySource, ec_key: KeyPair, make_token):
    with pytest.raises(m.UnsupportedAlgorithm):
        verifier.verify(make_token(ec_key))
    assert source.calls == 0


def test_hmac_forgery_with_public_key_rejected(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, source: FakeKeySource):
    token = forge_token(
        {"alg": "HS256", "kid": "a"},
        base_claims(clock.now),
        signature=json.dumps(key_a.jwk).encode(),
    )

    with pytest.raises(m.UnsupportedAlgorithm):
        verifier.verify(token)
    assert source.calls == 0


def test_key_used_with_other_algorithm_is_rejected(clock: Clock, cache: m.KeyCache, key_a: KeyPair, make_token):
    verifier = m.JWTVerifier(
        cache, m.JWTVerifyOptions(issuer=ISSUER, audience=AUDIENCE, algorithms=("RS256", "RS384"))
    )

    with pytest.raises(m.BadSignature):
        verifier.verify(make_token(key_a, alg="RS384"))


# --- signature -------------------------------------------------------------


def test_tampered_payload_fails_signature(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, make_token):
    header, _, signature = make_token(key_a).split(".")
    forged = base64url_encode(json.dumps(base_claims(clock.now, sub="admin")).encode()).decode()

    with pytest.raises(m.BadSignature):
        verifier.verify(f"{header}.{forged}.{signature}")


def test_token_signed_by_other_key_fails_signature(
    clock: Clock, verifier: m.JWTVerifier, key_b: KeyPair, make_token
):
    with pytest.raises(m.BadSignature):
        verifier.verify(make_token(key_b, kid="a"))


def test_signature_is_checked_before_claims(clock: Clock, verifier: m.JWTVerifier, key_b: KeyPair, make_token):
    token = make_token(key_b, kid="a", claims={"exp": int(clock.now) - 3600, "iss": "evil"})

    with pytest.raises(m.BadSignature):
        verifier.verify(token)


def test_unknown_kid(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, make_token):
    with pytest.raises(m.UnknownKey):
        verifier.verify(make_token(key_a, kid="not-published"))


# --- structure -------------------------------------------------------------


@pytest.mark.parametrize(
    "token",
    [
        "",
        "abc",
        "a.b",
        "a.b.c.d",
        ".eyJzdWIiOiJ4In0.sig",
        "eyJhbGciOiJSUzI1NiJ9..sig",
        "!!!.eyJzdWIiOiJ4In0.sig",
        "W10.eyJzdWIiOiJ4In0.sig",  # header is a JSON array
        None,
        b"a.b.c",
    ],
)
def test_malformed_tokens(verifier: m.JWTVerifier, source: FakeKeySource, token: Any):
    with pytest.raises(m.MalformedToken):
        verifier.verify(token)
    assert source.calls == 0


@pytest.mark.parametrize("header", [{"alg": "RS256"}, {"alg": "RS256", "kid": ""}, {"alg": "RS256", "kid": 5}])
def test_missing_or_invalid_kid(clock: Clock, verifier: m.JWTVerifier, source: FakeKeySource, header: dict[str, Any]):
    with pytest.raises(m.MalformedToken):
        verifier.verify(forge_token(header, base_claims(clock.now), signature=b"sig"))
    assert source.calls == 0


@pytest.mark.parametrize("payload", [b"not json", b"[1, 2, 3]"])
def test_payload_must_be_json_object(clock: Clock, verifier: m.JWTVerifier, key_a: KeyPair, payload: bytes):
    with pytest.raises(m.MalformedToken):
        verifier.verify(sign_raw(key_a, payload))


# --- options ---------------------------------------------------------------


@pytest.mark.parametrize(
    "kwargs",
    [
        {"issuer": ""},
        {"audience": ""},
        {"algorithms": ()},
        {"algorithms": ("none",)},
        {"algorithms": ("RS256", "HS256")},
        {"algorithms": ("XX999",)},
        {"leeway": -1},
    ],
)
def test_options_reject_unsafe_configuration(kwargs: dict[str, Any]):
    params = {"issuer": ISSUER, "audience": AUDIENCE, **kwargs}

    with pytest.raises(m.ConfigError):
        m.JWTVerifyOptions(**params)
