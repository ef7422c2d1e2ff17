"""Service facade wiring the token core together.

AuthService builds one KeyCache shared by validation and generation, the
resolver in front of the key store, the validator, the generator and the
context builder, and exposes the operations a host needs.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .config import AuthConfig
from .context import ContextBuilder, RequestContext
from .generator import GenerateOptions, TokenGenerator
from .key_cache import KeyCache
from .key_resolver import KeyResolver
from .validator import TokenValidator

if TYPE_CHECKING:
    from .identity import Identity
    from .models import JWTVerifyOptions
    from .protocols import Claims, IssuerDataLoader, KeyStore, StatsSink


class AuthService:
    """Token validation, generation and request contexts over one key store.

    Example:
        ```python
        service = AuthService(
            store=my_key_store,
            issuer_data=StaticIssuerDataLoader({"https://api.example.com": {}}),
            config=AuthConfig(cache_window=30),
        )

        token = await service.generate({"aud": "svc-a", "sub": "user1"})
        claims = await service.validate(token)
        ctx = await service.build_context(flask.request)
        ```
    """

    def __init__(
        self,
        store: KeyStore,
        issuer_data: IssuerDataLoader | None = None,
        config: AuthConfig | None = None,
        *,
        default_options: JWTVerifyOptions | None = None,
        create_logger: Callable[[Any, Identity], Any] | None = None,
        create_stats: Callable[[Any, Identity], StatsSink] | None = None,
        now: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or AuthConfig()
        self.cache = KeyCache(self.config.cache_window)
        self.resolver = KeyResolver(store)
        self.validator = TokenValidator(
            self.resolver,
            self.cache,
            issuer_data=issuer_data,
            default_options=default_options,
        )
        self.generator = TokenGenerator(self.resolver, self.cache, now=now)
        self.contexts = ContextBuilder(
            self.validator,
            self.generator,
            self.config,
            create_logger=create_logger,
            create_stats=create_stats,
        )

    async def validate(self, token: str) -> Claims:
        return await self.validator.validate(token)

    async def generate(
        self,
        claims: Claims,
        options: GenerateOptions | None = None,
    ) -> str:
        return await self.generator.generate(claims, options)

    async def build_context(self, req: Any) -> RequestContext:
        return await self.contexts.build(req)

    def create_internal_context(self) -> RequestContext:
        return self.contexts.build_internal()

    def is_internal_user(self, sub: Any) -> bool:
        return sub is not None and sub == self.config.internal_user_sentinel

    def is_internal_issuer(self, iss: Any) -> bool:
        return iss is not None and iss == self.config.internal_issuer_sentinel
