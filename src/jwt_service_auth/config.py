"""Configuration for request authentication.

AuthConfig is an immutable set of options. It can be built directly or read
from a Flask ``app.config``-style mapping with ``AuthConfig.from_mapping``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any, Final


class _Sentinel:
    """Unique marker value that only compares equal to itself."""

    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return f"<{self._name}>"


INTERNAL_USER: Final = _Sentinel("internal-user")
"""Default subject of the server-internal identity."""

INTERNAL_ISSUER: Final = _Sentinel("internal-issuer")
"""Default issuer of the server-internal identity."""

CONFIG_PREFIX: Final[str] = "TOKEN_AUTH_"


@dataclass(frozen=True, slots=True)
class AuthConfig:
    """Options recognized by the context builder and the service.

    Attributes:
        lax_token_header: Accept a bare token in the authorization header.
            When False the header must read ``<token_type_name> <token>``.
        query_token_name: Query parameter holding a token; None/False disables it.
        body_token_name: Body field holding a token; None/False disables it.
        authorization_header_name: Header holding a token; None/False disables it.
        token_type_name: Expected header scheme, compared case-insensitively.
        cache_window: Seconds key lookups are reused. 0 disables the cache.
        internal_user_sentinel: Subject of the server-internal identity.
        internal_issuer_sentinel: Issuer of the server-internal identity.
    """

    lax_token_header: bool = False
    query_token_name: str | None = "token"
    body_token_name: str | None = "token"
    authorization_header_name: str | None = "authorization"
    token_type_name: str = "bearer"
    cache_window: float = 0
    internal_user_sentinel: Any = field(default=INTERNAL_USER)
    internal_issuer_sentinel: Any = field(default=INTERNAL_ISSUER)

    def __post_init__(self) -> None:
        if self.cache_window < 0:
            raise ValueError(f"cache_window must be non-negative, got {self.cache_window}")
        if not self.token_type_name or not self.token_type_name.strip():
            raise ValueError("token_type_name cannot be empty")

        # False is accepted as "disabled" for the source names.
        for name in ("query_token_name", "body_token_name", "authorization_header_name"):
            if getattr(self, name) is False:
                object.__setattr__(self, name, None)

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, Any],
        prefix: str = CONFIG_PREFIX,
    ) -> AuthConfig:
        """Read options from upper-cased, prefixed keys.

        Example:
            ```python
            app.config["TOKEN_AUTH_LAX_TOKEN_HEADER"] = True
            app.config["TOKEN_AUTH_CACHE_WINDOW"] = 30
            config = AuthConfig.from_mapping(app.config)
            ```

        Keys that are absent keep their defaults.
        """
        values = {}
        for f in fields(cls):
            key = f"{prefix}{f.name.upper()}"
            if key in mapping:
                values[f.name] = mapping[key]

        if "cache_window" in values:
            values["cache_window"] = float(values["cache_window"])
        return cls(**values)
