"""Key resolution against the external key store.

The resolver is a thin data-access adapter. It asks the store for key
records and turns them into key material usable by PyJWT:

- ``find_key`` returns verification material (public half for asymmetric keys)
- ``newest_signing_key`` returns signing material (private half)

It does no caching of its own; callers put a KeyCache in front of it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from jwt import PyJWK

from .log import get_logger
from .models import KeyPopulation, KeyRecord

if TYPE_CHECKING:
    from .protocols import KeyStore

_log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ResolvedKey:
    """Key material ready for ``jwt.encode``/``jwt.decode``.

    Attributes:
        kid: Key identifier to route future validations.
        key: Key object accepted by PyJWT (bytes for HMAC, a cryptography key
            object otherwise).
        algorithm: Algorithm implied by the JWK (``alg`` member or key type).
        population: Population the record was found in.
    """

    kid: str
    key: Any
    algorithm: str
    population: KeyPopulation


def _to_record(row: KeyRecord | Mapping[str, Any]) -> KeyRecord:
    if isinstance(row, KeyRecord):
        return row
    return KeyRecord.from_mapping(row)


def _load_jwk(record: KeyRecord) -> PyJWK:
    jwk = dict(record.jwk)
    jwk.setdefault("kid", record.kid)
    return PyJWK.from_dict(jwk)


class KeyResolver:
    """Resolves key records from a KeyStore into PyJWT key material.

    Example:
        ```python
        resolver = KeyResolver(store)
        key = await resolver.find_key(KeyPopulation.ACCEPTED, kid, iss, aud)
        signing = await resolver.newest_signing_key(aud="svc-a")
        ```
    """

    def __init__(self, store: KeyStore) -> None:
        self._store = store

    async def find_key(
        self,
        population: KeyPopulation,
        kid: str | None,
        iss: str | None,
        aud: Any,
    ) -> ResolvedKey | None:
        """Look up the verification key for a token identity.

        Returns:
            The verification key, or None when the store has no match.
        """
        row = await self._store.find_key(population, kid, iss, aud)
        if row is None:
            return None

        record = _to_record(row)
        jwk = _load_jwk(record)
        key = jwk.key
        # Private JWKs verify with their public half.
        if hasattr(key, "public_key"):
            key = key.public_key()
        return ResolvedKey(
            kid=record.kid,
            key=key,
            algorithm=jwk.algorithm_name,
            population=population,
        )

    async def newest_signing_key(
        self,
        *,
        iss: str | None = None,
        aud: Any = None,
        population: KeyPopulation = KeyPopulation.ISSUED,
    ) -> ResolvedKey | None:
        """Return the most recently created signing key for the target.

        Returns:
            The signing key, or None when the store has no key or the newest
            one holds public material only.
        """
        row = await self._store.list_newest_key(population, iss=iss, aud=aud)
        if row is None:
            return None

        record = _to_record(row)
        jwk = _load_jwk(record)
        # HMAC secrets are bytes; asymmetric keys must carry their private half.
        if not isinstance(jwk.key, bytes) and not hasattr(jwk.key, "sign"):
            _log.warning("Newest issued key cannot sign", kid=record.kid, iss=iss, aud=aud)
            return None
        return ResolvedKey(
            kid=record.kid,
            key=jwk.key,
            algorithm=jwk.algorithm_name,
            population=population,
        )
