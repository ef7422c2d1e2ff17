"""Per-request authentication context.

The ContextBuilder turns an incoming request into a RequestContext:

    NoToken -> CandidateFound -> (validate) -> Authenticated
                     ^                |
                     +--- next source +-> Unauthenticated (no source left)

Token sources are tried in a fixed order (body, query, authorization header).
The first candidate that validates wins; failures on a candidate are logged
at debug level and the next source is tried. An unauthenticated request is
not an error here: the context carries an Anonymous identity and rejecting
it is up to the caller (see ``AuthExtension.require``).
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlsplit

from .config import AuthConfig
from .errors import AuthError, MissingToken
from .extractors import AuthorizationHeaderExtractor, BodyExtractor, QueryExtractor
from .identity import Anonymous, Identity, System, User
from .log import get_logger
from .stats import NullStats

if TYPE_CHECKING:
    from .generator import GenerateOptions
    from .protocols import Claims, StatsSink, TokenSigner, TokenVerifier


class _Extractor(Protocol):
    source: str

    def extract(self, req: Any) -> str: ...


def default_extractors(config: AuthConfig) -> list[_Extractor]:
    """Build the configured token sources in priority order."""
    extractors: list[_Extractor] = []
    if config.body_token_name:
        extractors.append(BodyExtractor(config.body_token_name))
    if config.query_token_name:
        extractors.append(QueryExtractor(config.query_token_name))
    if config.authorization_header_name:
        extractors.append(
            AuthorizationHeaderExtractor(
                config.authorization_header_name,
                config.token_type_name,
                lax=config.lax_token_header,
            )
        )
    return extractors


def request_issuer(req: Any) -> str:
    """Issuer this service signs as for a request: ``<scheme>://<hostname>``."""
    parts = urlsplit(req.host_url)
    return f"{parts.scheme}://{parts.hostname}"


def default_create_logger(req: Any, identity: Identity) -> Any:
    log = get_logger("jwt_service_auth.request")
    if req is not None:
        log = log.bind(method=req.method, path=req.path)
    if isinstance(identity, User):
        log = log.bind(sub=identity.subject)
    return log


def default_create_stats(req: Any, identity: Identity) -> StatsSink:
    return NullStats()


class TokenHelpers:
    """Token operations bound to one request context.

    ``generate`` signs as the request's issuer; ``verify`` runs the service's
    validator.
    """

    def __init__(
        self,
        verifier: TokenVerifier,
        signer: TokenSigner | None,
        issuer: str | None,
    ) -> None:
        self._verifier = verifier
        self._signer = signer
        self._issuer = issuer

    async def generate(
        self,
        claims: Claims,
        options: GenerateOptions | None = None,
    ) -> str:
        if self._signer is None:
            raise RuntimeError("No token generator configured")
        if self._issuer is not None:
            claims = {**claims, "iss": self._issuer}
        return await self._signer.generate(claims, options)

    async def verify(self, token: str) -> Claims:
        return await self._verifier.validate(token)


@dataclass(slots=True)
class RequestContext:
    """Everything request handling needs to know about the caller.

    Created once per request and discarded at request end.

    Attributes:
        identity: Anonymous, User or System.
        log: Logger bound to the request.
        stats: Stats sink for the request.
        token: Token helpers bound to this request.
        issuer: Issuer this service signs as for the request.
    """

    identity: Identity
    log: Any
    stats: StatsSink
    token: TokenHelpers
    issuer: str | None = None
    internal_user: Any = None
    internal_issuer: Any = None

    @property
    def user(self) -> Claims | None:
        """Validated claims, or None for unauthenticated requests."""
        return self.identity.claims

    @property
    def is_authenticated(self) -> bool:
        return not isinstance(self.identity, Anonymous)

    @property
    def is_internal(self) -> bool:
        return isinstance(self.identity, System)

    def is_internal_user(self, sub: Any) -> bool:
        return sub is not None and sub == self.internal_user

    def is_internal_issuer(self, iss: Any) -> bool:
        return iss is not None and iss == self.internal_issuer


class ContextBuilder:
    """Builds a RequestContext from a request.

    Example:
        ```python
        builder = ContextBuilder(validator, generator, AuthConfig(lax_token_header=True))
        ctx = await builder.build(flask.request)
        if ctx.user is None:
            abort(401)
        ```

    Attributes:
        _validator: Validates candidate tokens.
        _generator: Signs tokens for ``ctx.token.generate``.
        _config: Source names, header mode and internal sentinels.
        _extractors: Token sources in priority order.
    """

    def __init__(
        self,
        validator: TokenVerifier,
        generator: TokenSigner | None = None,
        config: AuthConfig | None = None,
        create_logger: Callable[[Any, Identity], Any] | None = None,
        create_stats: Callable[[Any, Identity], StatsSink] | None = None,
        extractors: Sequence[_Extractor] | None = None,
    ) -> None:
        self._validator = validator
        self._generator = generator
        self._config = config or AuthConfig()
        self._create_logger = create_logger or default_create_logger
        self._create_stats = create_stats or default_create_stats
        self._extractors = (
            list(extractors) if extractors is not None else default_extractors(self._config)
        )
        self._log = get_logger(__name__)

    async def build(self, req: Any) -> RequestContext:
        """Resolve the request's identity and assemble its context.

        Never raises for unauthenticated requests.
        """
        identity = await self._authenticate(req)
        issuer = request_issuer(req)
        return self._make_context(req, identity, issuer)

    def build_internal(self) -> RequestContext:
        """Context for server-internal calls that carry no token."""
        identity = System(
            subject=self._config.internal_user_sentinel,
            issuer=self._config.internal_issuer_sentinel,
        )
        return self._make_context(None, identity, None)

    async def _authenticate(self, req: Any) -> Identity:
        log = self._log.bind(method=req.method, path=req.path)

        for extractor in self._extractors:
            try:
                token = extractor.extract(req)
            except MissingToken:
                continue

            try:
                claims = await self._validator.validate(token)
            except AuthError as e:
                log.debug(
                    "Invalid token received",
                    source=extractor.source,
                    error=type(e).__name__,
                    reason=str(e),
                )
                continue

            return User(claims)

        return Anonymous()

    def _make_context(self, req: Any, identity: Identity, issuer: str | None) -> RequestContext:
        return RequestContext(
            identity=identity,
            log=self._create_logger(req, identity),
            stats=self._create_stats(req, identity),
            token=TokenHelpers(self._validator, self._generator, issuer),
            issuer=issuer,
            internal_user=self._config.internal_user_sentinel,
            internal_issuer=self._config.internal_issuer_sentinel,
        )
