"""Protocol definitions for the collaborators of the token core.

This module defines structural interfaces using Protocol (PEP 544) for:
- The key store queried by the key resolver
- The issuer data loader consulted by the validator
- The stats sink handed to request handling
- Token validation and generation, as consumed by the context builder

Using protocols allows for duck-typing and easier testing/mocking without
requiring explicit inheritance. Any class that implements the required methods
satisfies the protocol.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .generator import GenerateOptions
    from .models import IssuerPolicy, KeyPopulation, KeyRecord

# ============================================================================
# Type Aliases
# ============================================================================

type Claims = Mapping[str, Any]
"""Represents a decoded token payload."""

type KeyLoader[T] = Callable[[], Awaitable[T]]
"""Zero-argument coroutine factory run by the key cache on a miss."""

type ViewFunc = Callable[..., Any]
"""Type alias for Flask view functions."""


# ============================================================================
# Collaborator Protocols
# ============================================================================


class KeyStore(Protocol):
    """Protocol for the external store holding key records.

    How the store is queried (SQL, GraphQL, an HTTP API) is up to the
    implementation. Rows may be returned as KeyRecord instances or as flat
    mappings accepted by ``KeyRecord.from_mapping``.
    """

    async def find_key(
        self,
        population: KeyPopulation,
        kid: str | None,
        iss: str | None,
        aud: Any,
    ) -> KeyRecord | Mapping[str, Any] | None:
        """Exact-match lookup of a verification key.

        Must be idempotent and side-effect free. None is a valid, non-error
        outcome. Whether None criteria act as wildcards is up to the store.
        """
        ...

    async def list_newest_key(
        self,
        population: KeyPopulation,
        *,
        iss: str | None = None,
        aud: Any = None,
    ) -> KeyRecord | Mapping[str, Any] | None:
        """Return the most recently created active key matching the filter.

        None signals that no usable signing key exists.
        """
        ...


class IssuerDataLoader(Protocol):
    """Protocol for loading per-issuer validation policy."""

    async def load(self, iss: str | None) -> IssuerPolicy | Mapping[str, Any] | None:
        """Return the policy for ``iss``, or None when none is registered.

        Raising signals that the policy could not be fetched.
        """
        ...


class StatsSink(Protocol):
    """Protocol for the stats client handed to request handling."""

    def increment(self, name: str, value: float = 1, **tags: Any) -> None: ...

    def decrement(self, name: str, value: float = 1, **tags: Any) -> None: ...

    def counter(self, name: str, value: float, **tags: Any) -> None: ...

    def gauge(self, name: str, value: float, **tags: Any) -> None: ...

    def gauge_delta(self, name: str, delta: float, **tags: Any) -> None: ...

    def set(self, name: str, value: Any, **tags: Any) -> None: ...

    def histogram(self, name: str, value: float, **tags: Any) -> None: ...


class TokenVerifier(Protocol):
    """Protocol for token validation as consumed by the context builder."""

    async def validate(self, token: str) -> Claims:
        """Verify a token and return its (possibly transformed) claims.

        Raises:
            AuthError: Any validation failure.
        """
        ...


class TokenSigner(Protocol):
    """Protocol for token generation as consumed by the context builder."""

    async def generate(
        self,
        claims: Claims,
        options: GenerateOptions | None = None,
    ) -> str:
        """Sign ``claims`` with the current signing key.

        Raises:
            NoSigningKeyAvailable: No signing key exists for the target.
        """
        ...
