"""
Tests for TokenValidator.

Tokens are produced with the real TokenGenerator or jwt.encode and validated
against keys served by the FakeKeyStore.
"""

import asyncio
import json
import time
from collections.abc import Callable
from typing import Any

import jwt
import pytest
from jwt.utils import base64url_decode, base64url_encode
from structlog.testing import capture_logs

import jwt_service_auth as m

ISSUER = "https://svc.example"
OTHER_ISSUER = "https://partner.example"
AUDIENCE = "svc-a"


def build(store: Any, issuer_data=None, window: float = 60, **kwargs: Any):
    cache = m.KeyCache(window)
    resolver = m.KeyResolver(store)
    validator = m.TokenValidator(resolver, cache, issuer_data=issuer_data, **kwargs)
    generator = m.TokenGenerator(resolver, cache)
    return validator, generator


def sign_with(jwk: dict, claims: dict, **headers: Any) -> str:
    secret = base64url_decode(jwk["k"])
    return jwt.encode(claims, secret, algorithm="HS256", headers={"kid": jwk["kid"], **headers})


class TestRoundTrip:
    """validate(generate(claims)) returns the claims plus iat."""

    @pytest.mark.asyncio
    async def test_generated_token_validates(self, store: Any, make_oct_jwk: Callable[..., Any]):
        store.add(m.KeyPopulation.ISSUED, make_oct_jwk(kid="k1"))
        validator, generator = build(store)
        claims = {"iss": ISSUER, "aud": AUDIENCE, "sub": "user1", "role": "admin"}

        token = await generator.generate(claims)
        result = await validator.validate(token)

        assert set(result) == {"iss", "aud", "sub", "role", "iat"}
        assert {k: v for k, v in result.items() if k != "iat"} == claims
        assert abs(result["iat"] - time.time()) < 5

    @pytest.mark.asyncio
    async def test_rsa_keys_round_trip(self, store: Any, make_rsa_jwk: Callable[..., Any]):
        store.add(m.KeyPopulation.ISSUED, make_rsa_jwk(kid="r1"))
        validator, generator = build(store)

        token = await generator.generate({"iss": ISSUER, "aud": AUDIENCE, "sub": "u"})

        assert jwt.get_unverified_header(token)["alg"] == "RS256"
        assert (await validator.validate(token))["sub"] == "u"


class TestKeySearch:
    """Key lookup order, caching and failures."""

    @pytest.mark.asyncio
    async def test_accepted_population_wins_over_issued(
        self, store: Any, make_oct_jwk: Callable[..., Any]
    ):
        accepted = make_oct_jwk(kid="shared", secret=b"a" * 32)
        issued = make_oct_jwk(kid="shared", secret=b"b" * 32)
        store.add(m.KeyPopulation.ACCEPTED, accepted)
        store.add(m.KeyPopulation.ISSUED, issued)
        validator, _ = build(store)

        claims = {"iss": ISSUER, "aud": AUDIENCE, "sub": "u1"}
        assert (await validator.validate(sign_with(accepted, claims)))["sub"] == "u1"
        assert store.count("find", m.KeyPopulation.ISSUED) == 0

        # A token signed with the issued key does not verify against the accepted one.
        with pytest.raises(m.SignatureInvalid):
            await validator.validate(sign_with(issued, claims))

    @pytest.mark.asyncio
    async def test_accepted_is_queried_before_issued(
        self, store: Any, make_oct_jwk: Callable[..., Any]
    ):
        jwk = make_oct_jwk(kid="k1")
        store.add(m.KeyPopulation.ISSUED, jwk)
        validator, _ = build(store)

        await validator.validate(sign_with(jwk, {"iss": ISSUER, "aud": AUDIENCE}))

        assert [call[1] for call in store.calls] == [
            m.KeyPopulation.ACCEPTED,
            m.KeyPopulation.ISSUED,
        ]

    @pytest.mark.asyncio
    async def test_unknown_kid_raises_key_not_found(
        self, store: Any, make_oct_jwk: Callable[..., Any]
    ):
        store.add(m.KeyPopulation.ISSUED, make_oct_jwk(kid="k1"))
        validator, _ = build(store)
        token = sign_with(make_oct_jwk(kid="ghost"), {"iss": ISSUER, "aud": AUDIENCE})

        with pytest.raises(m.KeyNotFound) as exc:
            await validator.validate(token)

        assert exc.value.identity == {"kid": "ghost", "iss": ISSUER, "aud": AUDIENCE}
        assert "ghost" in str(exc.value)

    @pytest.mark.asyncio
    async def test_kid_falls_back_to_claims(self, store: Any, make_oct_jwk: Callable[..., Any]):
        jwk = make_oct_jwk(kid="k1")
        store.add(m.KeyPopulation.ACCEPTED, jwk)
        validator, _ = build(store)
        secret = base64url_decode(jwk["k"])
        token = jwt.encode({"iss": ISSUER, "aud": AUDIENCE, "kid": "k1"}, secret, algorithm="HS256")

        assert (await validator.validate(token))["kid"] == "k1"

    @pytest.mark.asyncio
    async def test_concurrent_validations_share_one_store_query(
        self, store: Any, make_oct_jwk: Callable[..., Any]
    ):
        jwk = make_oct_jwk(kid="k1")
        store.add(m.KeyPopulation.ACCEPTED, jwk)
        store.delay = 0.05
        validator, _ = build(store, window=60)

        tokens = [
            sign_with(jwk, {"iss": ISSUER, "aud": AUDIENCE, "sub": f"user{i}"}) for i in range(2)
        ]
        results = await asyncio.gather(*(validator.validate(t) for t in tokens))

        assert [r["sub"] for r in results] == ["user0", "user1"]
        assert store.count("find", m.KeyPopulation.ACCEPTED) == 1

    @pytest.mark.asyncio
    async def test_store_failure_becomes_internal_error_with_correlation_id(
        self, store: Any, make_oct_jwk: Callable[..., Any]
    ):
        jwk = make_oct_jwk(kid="k1")
        store.add(m.KeyPopulation.ACCEPTED, jwk)
        store.fail_with = RuntimeError("connection reset")
        validator, _ = build(store)
        token = sign_with(jwk, {"iss": ISSUER, "aud": AUDIENCE})

        with capture_logs() as logs:
            with pytest.raises(m.InternalAuthError) as exc:
                await validator.validate(token)

        assert exc.value.status_code == 500
        assert "connection reset" not in exc.value.description
        errors = [e for e in logs if e["log_level"] == "error"]
        assert errors[0]["correlation_id"] == exc.value.correlation_id

        # Failures are not cached: the next call reaches the store again.
        store.fail_with = None
        assert (await validator.validate(token))["iss"] == ISSUER


class TestVerification:
    """Signature and standard claim failures."""

    @pytest.mark.asyncio
    async def test_malformed_token(self, store: Any):
        validator, _ = build(store)

        with pytest.raises(m.MalformedToken):
            await validator.validate("bad.token.value")

        assert store.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "claims",
        [
            {"iss": {"a": 1}, "aud": AUDIENCE},
            {"iss": ISSUER, "aud": [{"a": 1}]},
            {"iss": ISSUER, "aud": 7},
            {"iss": ISSUER, "kid": ["k1"]},
        ],
    )
    async def test_non_string_lookup_claims_are_malformed(self, store: Any, claims: dict):
        validator, _ = build(store)
        header = base64url_encode(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
        payload = base64url_encode(json.dumps(claims).encode())
        token = f"{header.decode()}.{payload.decode()}.c2lnbmF0dXJl"

        with pytest.raises(m.MalformedToken) as exc:
            await validator.validate(token)

        assert exc.value.status_code == 401
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_tampered_signature(self, store: Any, make_oct_jwk: Callable[..., Any]):
        jwk = make_oct_jwk(kid="k1")
        store.add(m.KeyPopulation.ISSUED, jwk)
        validator, _ = build(store)
        token = sign_with(jwk, {"iss": ISSUER, "aud": AUDIENCE})
        header, payload, _sig = token.split(".")
        forged = sign_with(make_oct_jwk(kid="k1", secret=b"z" * 32), {"iss": ISSUER, "aud": AUDIENCE})

        with pytest.raises(m.SignatureInvalid):
            await validator.validate(f"{header}.{payload}.{forged.split('.')[2]}")

    @pytest.mark.asyncio
    async def test_expired_token(self, store: Any, make_oct_jwk: Callable[..., Any]):
        store.add(m.KeyPopulation.ISSUED, make_oct_jwk(kid="k1"))
        cache = m.KeyCache(60)
        resolver = m.KeyResolver(store)
        validator = m.TokenValidator(resolver, cache)
        generator = m.TokenGenerator(resolver, cache, now=lambda: time.time() - 3600)

        token = await generator.generate(
            {"iss": ISSUER, "aud": AUDIENCE}, m.GenerateOptions(expires_in=60)
        )

        with pytest.raises(m.TokenExpired):
            await validator.validate(token)

    @pytest.mark.asyncio
    async def test_audience_pinning_from_issuer_policy(
        self, store: Any, make_oct_jwk: Callable[..., Any]
    ):
        jwk = make_oct_jwk(kid="k1")
        store.add(m.KeyPopulation.ACCEPTED, jwk)
        loader = m.StaticIssuerDataLoader(
            {ISSUER: m.IssuerPolicy(options=m.JWTVerifyOptions(audience="svc-b"))}
        )
        validator, _ = build(store, issuer_data=loader)

        with pytest.raises(m.InvalidToken) as exc:
            await validator.validate(sign_with(jwk, {"iss": ISSUER, "aud": AUDIENCE}))

        assert type(exc.value) is m.InvalidToken

    @pytest.mark.asyncio
    async def test_algorithm_outside_allow_list(
        self, store: Any, make_oct_jwk: Callable[..., Any]
    ):
        jwk = make_oct_jwk(kid="k1")
        store.add(m.KeyPopulation.ACCEPTED, jwk)
        loader = m.StaticIssuerDataLoader(
            {ISSUER: {"options": {"algorithms": ["RS256"]}}}
        )
        validator, _ = build(store, issuer_data=loader)

        with pytest.raises(m.InvalidToken):
            await validator.validate(sign_with(jwk, {"iss": ISSUER, "aud": AUDIENCE}))


class TestIssuerPolicy:
    """Issuer data loading, masking and extra claims."""

    @pytest.fixture
    def jwk(self, store: Any, make_oct_jwk: Callable[..., Any]) -> dict:
        jwk = make_oct_jwk(kid="k1")
        store.add(m.KeyPopulation.ACCEPTED, jwk, iss=OTHER_ISSUER, aud=None)
        return jwk

    @pytest.mark.asyncio
    async def test_missing_policy_fails_closed(self, store: Any, jwk: dict):
        validator, _ = build(store, issuer_data=m.StaticIssuerDataLoader({}))

        with pytest.raises(m.IssuerDataUnavailable) as exc:
            await validator.validate(sign_with(jwk, {"iss": OTHER_ISSUER, "aud": AUDIENCE}))

        assert exc.value.issuer == OTHER_ISSUER

    @pytest.mark.asyncio
    async def test_loader_failure_is_issuer_data_unavailable(self, store: Any, jwk: dict):
        class BrokenLoader:
            async def load(self, iss):
                raise ConnectionError("issuer db unreachable")

        validator, _ = build(store, issuer_data=BrokenLoader())

        with pytest.raises(m.IssuerDataUnavailable):
            await validator.validate(sign_with(jwk, {"iss": OTHER_ISSUER, "aud": AUDIENCE}))

    @pytest.mark.asyncio
    async def test_allow_list_mask(self, store: Any, jwk: dict):
        loader = m.StaticIssuerDataLoader({OTHER_ISSUER: {"mask": ["sub", "iss"]}})
        validator, _ = build(store, issuer_data=loader)
        token = sign_with(jwk, {"sub": "u1", "iss": OTHER_ISSUER, "extra": "secret"})

        assert await validator.validate(token) == {"sub": "u1", "iss": OTHER_ISSUER}

    @pytest.mark.asyncio
    async def test_async_transform_mask(self, store: Any, jwk: dict):
        async def upper_sub(claims):
            return {"user": claims["sub"].upper()}

        loader = m.StaticIssuerDataLoader({OTHER_ISSUER: m.IssuerPolicy(mask=upper_sub)})
        validator, _ = build(store, issuer_data=loader)
        token = sign_with(jwk, {"sub": "u1", "iss": OTHER_ISSUER, "aud": AUDIENCE})

        assert await validator.validate(token) == {"user": "U1"}

    @pytest.mark.asyncio
    async def test_mask_not_applied_to_unverified_token(self, store: Any, jwk: dict):
        seen = []

        def mask(claims):
            seen.append(claims)
            return claims

        loader = m.StaticIssuerDataLoader({OTHER_ISSUER: m.IssuerPolicy(mask=mask)})
        validator, _ = build(store, issuer_data=loader)
        token = sign_with(jwk, {"sub": "u1", "iss": OTHER_ISSUER})

        with pytest.raises(m.SignatureInvalid):
            await validator.validate(token[:-4] + "AAAA")
        assert seen == []

    @pytest.mark.asyncio
    async def test_extra_claims_wrap_token_claims(self, store: Any, jwk: dict):
        loader = m.StaticIssuerDataLoader(
            {OTHER_ISSUER: {"mask": ["sub"], "claims": {"tenant": "t1", "trusted": True}}}
        )
        validator, _ = build(store, issuer_data=loader)
        token = sign_with(jwk, {"sub": "u1", "iss": OTHER_ISSUER, "aud": AUDIENCE})

        assert await validator.validate(token) == {
            "claims": {"sub": "u1"},
            "tenant": "t1",
            "trusted": True,
        }
