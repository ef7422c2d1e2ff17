"""Token validation using PyJWT.

This module provides the validator that turns an incoming token into trusted
claims:

- Decodes header and claims without verifying, to learn the key identity
- Finds the key in the accepted population, then the issued population,
  through the shared KeyCache
- Loads the issuer's policy and verifies signature and standard claims
- Masks claims and merges server-asserted claims as the policy dictates
- Maps PyJWT exceptions to domain-specific error types

Claims are never trusted, masked or returned before signature verification
succeeds.
"""

from __future__ import annotations

import inspect
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import jwt

from .errors import (
    AuthError,
    InternalAuthError,
    InvalidToken,
    IssuerDataUnavailable,
    KeyNotFound,
    MalformedToken,
    SignatureInvalid,
    TokenExpired,
)
from .log import get_logger, new_correlation_id
from .models import IssuerPolicy, JWTVerifyOptions, KeyPopulation

if TYPE_CHECKING:
    from .key_cache import KeyCache
    from .key_resolver import KeyResolver, ResolvedKey
    from .protocols import Claims, IssuerDataLoader

_SEARCH_ORDER = (KeyPopulation.ACCEPTED, KeyPopulation.ISSUED)


def _lookup_identity(header: Mapping[str, Any], claims: Mapping[str, Any]) -> dict[str, Any]:
    """Build the key lookup identity from unverified header and claims.

    Every field ends up in a cache key, so only strings (and a list of strings
    for ``aud``) are accepted.

    Raises:
        MalformedToken: ``kid``, ``iss`` or ``aud`` has an unexpected type.
    """
    kid = header.get("kid") or claims.get("kid")
    iss = claims.get("iss")
    aud = claims.get("aud")

    for name, value in (("kid", kid), ("iss", iss)):
        if value is not None and not isinstance(value, str):
            raise MalformedToken(f"Token {name} must be a string")
    if aud is not None and not isinstance(aud, str):
        if not isinstance(aud, list) or not all(isinstance(a, str) for a in aud):
            raise MalformedToken("Token aud must be a string or a list of strings")

    return {"kid": kid, "iss": iss, "aud": aud}


class TokenValidator:
    """Validates tokens signed by accepted issuers or by this service.

    Architecture:
        1. Decode header and claims (unverified) to get kid, iss and aud
        2. Resolve the key via KeyCache/KeyResolver, accepted before issued
        3. Load the issuer policy (mandatory once a loader is configured)
        4. Verify signature and claims via PyJWT with the policy's options
        5. Apply the policy's mask and extra claims

    Example:
        ```python
        validator = TokenValidator(
            resolver=KeyResolver(store),
            cache=KeyCache(window=30),
            issuer_data=StaticIssuerDataLoader({"https://a.example": {}}),
        )

        try:
            claims = await validator.validate(raw_token)
        except TokenExpired:
            ...
        except AuthError:
            ...
        ```

    Attributes:
        _resolver: KeyResolver querying the key store.
        _cache: KeyCache shared with the generator and other requests.
        _issuer_data: Optional issuer policy loader.
        _default_options: Verification options used when a policy has none.
    """

    def __init__(
        self,
        resolver: KeyResolver,
        cache: KeyCache,
        issuer_data: IssuerDataLoader | None = None,
        default_options: JWTVerifyOptions | None = None,
        logger: Any = None,
    ) -> None:
        self._resolver = resolver
        self._cache = cache
        self._issuer_data = issuer_data
        self._default_options = default_options or JWTVerifyOptions()
        self._log = logger or get_logger(__name__)

    async def validate(self, token: str) -> Claims:
        """Verify a token and return its claims.

        Args:
            token: Raw token string.

        Returns:
            Verified claims, masked and wrapped per the issuer policy.

        Raises:
            MalformedToken: Token is not structurally decodable.
            KeyNotFound: No key in either population matches the token.
            IssuerDataUnavailable: Issuer policy missing or failed to load.
            SignatureInvalid: Signature does not verify.
            TokenExpired: The ``exp`` claim has passed.
            InvalidToken: Another standard claim check failed.
            InternalAuthError: Unexpected failure; details are logged with
                the error's correlation id.
        """
        try:
            return await self._validate(token)
        except AuthError:
            raise
        except Exception as e:
            correlation_id = new_correlation_id()
            self._log.error(
                "Unexpected token validation failure",
                correlation_id=correlation_id,
                exc_info=True,
            )
            raise InternalAuthError(correlation_id) from e

    async def _validate(self, token: str) -> Claims:
        # Step 1: structural decode, nothing here is trusted yet.
        try:
            header = jwt.get_unverified_header(token)
            unverified = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            raise MalformedToken(f"Token could not be decoded: {e}") from e

        # Step 2: lookup identity
        identity = _lookup_identity(header, unverified)

        # Step 3: accepted first, then issued. First hit wins.
        key = None
        for population in _SEARCH_ORDER:
            key = await self._find_key(population, **identity)
            if key is not None:
                break
        if key is None:
            raise KeyNotFound(identity)

        self._log.debug(
            "Resolved verification key",
            kid=key.kid,
            population=key.population.value,
        )

        # Steps 4-5
        policy = await self._load_policy(identity["iss"])

        # Step 6
        claims = self._verify(token, key, policy)

        # Step 7
        if policy is not None and policy.mask is not None:
            claims = await self._mask(claims, policy.mask)

        # Step 8
        if policy is not None and policy.claims:
            claims = {"claims": claims, **policy.claims}

        return claims

    async def _find_key(
        self,
        population: KeyPopulation,
        kid: str | None,
        iss: str | None,
        aud: Any,
    ) -> ResolvedKey | None:
        return await self._cache.get(
            ("find", population, kid, iss, tuple(aud) if isinstance(aud, list) else aud),
            lambda: self._resolver.find_key(population, kid, iss, aud),
        )

    async def _load_policy(self, iss: str | None) -> IssuerPolicy | None:
        if self._issuer_data is None:
            return None

        try:
            data = await self._issuer_data.load(iss)
        except Exception as e:
            raise IssuerDataUnavailable(
                iss, f"Issuer data for issuer {iss!r} could not be loaded: {e}"
            ) from e

        if data is None:
            raise IssuerDataUnavailable(iss)
        if isinstance(data, IssuerPolicy):
            return data
        return IssuerPolicy.from_mapping(data)

    def _verify(
        self,
        token: str,
        key: ResolvedKey,
        policy: IssuerPolicy | None,
    ) -> dict[str, Any]:
        opt = (policy and policy.options) or self._default_options
        algorithms = list(opt.algorithms) if opt.algorithms else [key.algorithm]
        # PyJWT rejects an aud claim when no audience is given; only pin it on request.
        decode_options = {} if opt.audience is not None else {"verify_aud": False}

        try:
            return jwt.decode(
                token,
                key.key,
                algorithms=algorithms,
                audience=opt.audience,
                issuer=opt.issuer,
                leeway=opt.leeway,
                options=decode_options,
            )

        except jwt.ExpiredSignatureError as e:
            raise TokenExpired("Token has expired") from e

        except jwt.InvalidSignatureError as e:
            raise SignatureInvalid("Token signature verification failed") from e

        except jwt.DecodeError as e:
            raise MalformedToken(f"Token could not be decoded: {e}") from e

        except jwt.InvalidTokenError as e:
            # Remaining PyJWT failures: iss/aud mismatch, nbf/iat in the
            # future, algorithm not in the allow-list, missing required claim.
            raise InvalidToken(f"Token validation failed: {e}") from e

    async def _mask(self, claims: Mapping[str, Any], mask: Any) -> Claims:
        if callable(mask):
            masked = mask(claims)
            if inspect.isawaitable(masked):
                masked = await masked
            return masked

        if isinstance(mask, str):
            mask = (mask,)
        return {name: claims[name] for name in mask if name in claims}
