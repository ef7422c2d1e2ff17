import asyncio
from typing import Any

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from flask import Flask
from jwt.algorithms import RSAAlgorithm
from jwt.utils import base64url_encode

from jwt_service_auth import KeyPopulation, KeyRecord

ISSUER = "https://svc.example"
AUDIENCE = "svc-a"


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def make_oct_jwk():
    """
    Factory fixture returning a function building an HMAC JWK dict.

    Usage in tests:
        jwk = make_oct_jwk(kid="k1")
    """

    def _make(*, kid: str = "kid1", secret: bytes = b"0123456789abcdef0123456789abcdef") -> dict:
        return {
            "kty": "oct",
            "kid": kid,
            "k": base64url_encode(secret).decode("ascii"),
            "alg": "HS256",
            "use": "sig",
        }

    return _make


@pytest.fixture
def make_rsa_jwk():
    """Factory fixture returning a function building a private RSA JWK dict."""

    def _make(*, kid: str = "rsa1") -> dict:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        jwk = RSAAlgorithm.to_jwk(private_key, as_dict=True)
        jwk["kid"] = kid
        return jwk

    return _make


class FakeKeyStore:
    """
    In-memory KeyStore for tests.

    Records every query in ``calls`` and optionally sleeps before answering so
    concurrent lookups overlap.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.records: dict[KeyPopulation, list[KeyRecord]] = {p: [] for p in KeyPopulation}
        self.calls: list[tuple[Any, ...]] = []
        self.fail_with: Exception | None = None

    def add(
        self,
        population: KeyPopulation,
        jwk: dict,
        *,
        iss: str = ISSUER,
        aud: str | None = AUDIENCE,
        created: float = 0,
    ) -> KeyRecord:
        record = KeyRecord(kid=jwk["kid"], iss=iss, aud=aud, jwk=jwk, created=created)
        self.records[population].append(record)
        return record

    async def find_key(self, population, kid, iss, aud):
        self.calls.append(("find", population, kid, iss, aud))
        await self._pause()
        auds = aud if isinstance(aud, list) else [aud]
        for record in self.records[population]:
            if record.kid == kid and record.iss == iss and (record.aud is None or record.aud in auds):
                return record
        return None

    async def list_newest_key(self, population, *, iss=None, aud=None):
        self.calls.append(("newest", population, iss, aud))
        await self._pause()
        matches = [
            r
            for r in self.records[population]
            if (aud is None or r.aud == aud) and (iss is None or r.iss == iss)
        ]
        if not matches:
            return None
        return max(matches, key=lambda r: r.created or 0)

    def count(self, kind: str, population: KeyPopulation | None = None) -> int:
        return sum(
            1
            for call in self.calls
            if call[0] == kind and (population is None or call[1] is population)
        )

    async def _pause(self):
        if self.fail_with is not None:
            raise self.fail_with
        if self.delay:
            await asyncio.sleep(self.delay)


@pytest.fixture
def store() -> FakeKeyStore:
    return FakeKeyStore()
