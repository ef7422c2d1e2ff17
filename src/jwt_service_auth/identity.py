"""Who a request runs as.

An identity is one of three variants:

- Anonymous: no token source yielded a valid token
- User: a token was validated; carries its claims
- System: a server-internal call that bears no token

Callers branch on the variant (``isinstance`` or ``match``) instead of
comparing subjects against sentinel values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .protocols import Claims


@dataclass(frozen=True, slots=True)
class Anonymous:
    """No authenticated identity."""

    @property
    def claims(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class User:
    """Identity established from validated token claims."""

    claims: Claims

    @property
    def subject(self) -> Any:
        return self.claims.get("sub")

    @property
    def issuer(self) -> Any:
        return self.claims.get("iss")


@dataclass(frozen=True, slots=True)
class System:
    """Server-internal identity.

    Attributes:
        subject: Internal user sentinel.
        issuer: Internal issuer sentinel.
    """

    subject: Any
    issuer: Any

    @property
    def claims(self) -> Claims:
        return {"sub": self.subject, "iss": self.issuer}


type Identity = Anonymous | User | System
