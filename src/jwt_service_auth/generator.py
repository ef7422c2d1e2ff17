"""Token generation with the newest issued key.

The signing key is the most recently created key in the issued population for
the token's audience. Lookups go through the shared KeyCache, so a freshly
rotated key is picked up by new signings only once the cache window for the
previous lookup has elapsed.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import jwt

from .errors import NoSigningKeyAvailable
from .models import KeyPopulation

if TYPE_CHECKING:
    from .key_cache import KeyCache
    from .key_resolver import KeyResolver, ResolvedKey
    from .protocols import Claims


@dataclass(frozen=True, slots=True)
class GenerateOptions:
    """Per-call signing options.

    Attributes:
        expires_in: Seconds after ``iat`` at which the token expires.
        not_before: Seconds after ``iat`` before which the token is not valid.
        headers: Extra header fields, applied after ``kid`` (so they may
            override it).
    """

    expires_in: int | None = None
    not_before: int | None = None
    headers: Mapping[str, Any] = field(default_factory=dict)


class TokenGenerator:
    """Signs claims with the current signing key.

    Example:
        ```python
        generator = TokenGenerator(KeyResolver(store), KeyCache(window=60))
        token = await generator.generate(
            {"aud": "svc-a", "sub": "user1"},
            GenerateOptions(expires_in=300),
        )
        ```

    Attributes:
        _resolver: KeyResolver querying the key store.
        _cache: KeyCache shared with the validator.
        _now: Wall clock returning epoch seconds.
    """

    def __init__(
        self,
        resolver: KeyResolver,
        cache: KeyCache,
        now: Callable[[], float] | None = None,
    ) -> None:
        self._resolver = resolver
        self._cache = cache
        self._now = now or time.time

    async def generate(
        self,
        claims: Claims,
        options: GenerateOptions | None = None,
    ) -> str:
        """Sign ``claims`` and return the compact token.

        ``iat`` is always stamped to the current time, overriding any value
        supplied by the caller.

        Raises:
            NoSigningKeyAvailable: No issued key exists for the target.
        """
        options = options or GenerateOptions()

        aud = claims.get("aud")
        iss = claims.get("iss")
        key = await self._signing_key(aud=aud, iss=iss)
        if key is None:
            raise NoSigningKeyAvailable(aud if aud is not None else iss)

        iat = int(self._now())
        payload = {**claims, "iat": iat}
        if options.expires_in is not None:
            payload["exp"] = iat + options.expires_in
        if options.not_before is not None:
            payload["nbf"] = iat + options.not_before

        return jwt.encode(
            payload,
            key.key,
            algorithm=key.algorithm,
            headers={"kid": key.kid, **options.headers},
        )

    async def _signing_key(self, *, aud: Any, iss: str | None) -> ResolvedKey | None:
        # Keys are scoped by audience; the issuer is only used without one.
        if aud is not None:
            field_name, value = "aud", aud
        else:
            field_name, value = "iss", iss

        identity = (
            "newest",
            KeyPopulation.ISSUED,
            field_name,
            tuple(value) if isinstance(value, list) else value,
        )
        return await self._cache.get(
            identity,
            lambda: self._resolver.newest_signing_key(**{field_name: value}),
        )
