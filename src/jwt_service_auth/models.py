"""Value types shared by the resolver, validator and generator.

Key records are owned by the external key store and never mutated here.
Issuer policies are owned by the issuer data collaborator and read once per
validation.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

KEY_FIELDS: Final[tuple[str, ...]] = (
    "kty",
    "use",
    "key_ops",
    "alg",
    "kid",
    "x5u",
    "x5c",
    "x5t",
    "x5t_S256",
    "e",
    "d",
    "k",
    "n",
    "p",
    "q",
    "x",
    "y",
    "dp",
    "dq",
    "qi",
    "crv",
)
"""JWK member names read from a key store row."""

_JWK_NAMES: Final[Mapping[str, str]] = {"x5t_S256": "x5t#S256"}


class KeyPopulation(enum.Enum):
    """Logical key set a lookup runs against.

    ACCEPTED keys belong to other trusted issuers and only verify tokens.
    ISSUED keys belong to this service; they verify self-issued tokens and
    sign new ones.
    """

    ACCEPTED = "accepted"
    ISSUED = "issued"


@dataclass(frozen=True, slots=True)
class KeyRecord:
    """A key as stored by the key store.

    Attributes:
        kid: Key identifier, embedded in token headers.
        iss: Issuer the key belongs to.
        jwk: JWK-shaped key material (public, or private for issued keys).
        aud: Audience the key is scoped to, if any.
        created: Creation timestamp; the store orders signing keys by it.
    """

    kid: str
    iss: str | None
    jwk: Mapping[str, Any]
    aud: str | None = None
    created: float | None = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> KeyRecord:
        """Build a record from a flat store row.

        The row holds identity fields next to the JWK members. Only the known
        JWK members are copied into ``jwk``; ``x5t_S256`` is renamed to its JWK
        spelling ``x5t#S256``.

        Raises:
            ValueError: If the row has no ``kid``.
        """
        kid = row.get("kid")
        if not kid:
            raise ValueError("Key record must have a kid")

        jwk = {
            _JWK_NAMES.get(name, name): row[name]
            for name in KEY_FIELDS
            if row.get(name) is not None
        }
        return cls(
            kid=kid,
            iss=row.get("iss"),
            aud=row.get("aud"),
            created=row.get("created"),
            jwk=jwk,
        )


@dataclass(frozen=True, slots=True)
class JWTVerifyOptions:
    """Verification rules an issuer's tokens are checked against.

    Attributes:
        issuer: Expected ``iss`` claim. If None, issuer is not pinned.
        audience: Expected ``aud`` claim (single value or list). If None, the
            ``aud`` claim is not checked.
        algorithms: Allowed signing algorithms. If None, only the resolved
            key's own algorithm is accepted.
        leeway: Clock skew tolerance in seconds for exp/nbf/iat validation.
    """

    issuer: str | None = None
    audience: str | Sequence[str] | None = None
    algorithms: tuple[str, ...] | None = None
    leeway: float = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> JWTVerifyOptions:
        algorithms = data.get("algorithms")
        return cls(
            issuer=data.get("issuer"),
            audience=data.get("audience"),
            algorithms=tuple(algorithms) if algorithms else None,
            leeway=data.get("leeway", 0),
        )


type ClaimsMask = Sequence[str] | Callable[[Mapping[str, Any]], Any]
"""Allow-list of claim names, or a (sync or async) transform over all claims."""


@dataclass(frozen=True, slots=True)
class IssuerPolicy:
    """Per-issuer validation policy supplied by the issuer data loader.

    Attributes:
        options: Verification rules; defaults apply when None.
        mask: Claim allow-list or transform, applied after verification.
        claims: Server-asserted claims. When present the token claims are
            nested under a ``claims`` key next to these fields.
    """

    options: JWTVerifyOptions | None = None
    mask: ClaimsMask | None = None
    claims: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> IssuerPolicy:
        """Build a policy from the ``{options?, mask?, claims?}`` mapping shape."""
        options = data.get("options")
        if isinstance(options, Mapping):
            options = JWTVerifyOptions.from_mapping(options)
        return cls(
            options=options,
            mask=data.get("mask"),
            claims=data.get("claims") or {},
        )
