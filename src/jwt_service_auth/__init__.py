"""
Service token authentication: key-store backed validation and signing.

High-level flow (per request)
-----------------------------
1. ``ContextBuilder.build(request)`` tries token sources in order:
   body field, query parameter, ``Authorization`` header.
2. ``TokenValidator.validate(token)``:
   - Decodes header and claims without verifying to get ``kid``/``iss``/``aud``
   - Looks the key up in the *accepted* population, then the *issued* one,
     through the shared ``KeyCache``
   - Loads the issuer's policy and verifies signature and standard claims
   - Masks claims and merges server-asserted claims per the policy
3. The first validated candidate becomes the context's ``User`` identity;
   otherwise the context is ``Anonymous``.

Outbound, ``TokenGenerator.generate(claims)`` signs with the newest issued
key for the claims' audience and stamps ``iat``.

Security notes
--------------
- Never trust claims until signature verification succeeds.
- Only the key's own algorithm (or the issuer's allow-list) is accepted.
- Key lookups are cached per identity for ``cache_window`` seconds, so
  random ``kid`` spam costs one store query per identity and window.

Example usage
-------------

.. code-block:: python

    from flask import Flask, g

    from jwt_service_auth import AuthConfig, AuthExtension, AuthService, StaticIssuerDataLoader

    service = AuthService(
        store=my_key_store,
        issuer_data=StaticIssuerDataLoader({"https://api.example.com": {}}),
        config=AuthConfig(cache_window=30),
    )

    app = Flask(__name__)
    auth = AuthExtension(service)
    auth.init_app(app)

    @app.get("/me")
    @auth.require()
    def me():
        return dict(g.auth.user)
"""

# Configuration
from .config import INTERNAL_ISSUER, INTERNAL_USER, AuthConfig

# Context
from .context import ContextBuilder, RequestContext, TokenHelpers

# Errors
from .errors import (
    AuthError,
    InternalAuthError,
    InvalidToken,
    IssuerDataUnavailable,
    KeyNotFound,
    MalformedToken,
    MissingToken,
    NoSigningKeyAvailable,
    SignatureInvalid,
    TokenExpired,
)

# Extractors
from .extractors import AuthorizationHeaderExtractor, BodyExtractor, QueryExtractor

# Flask extension
from .flask_extension import AuthExtension, current_context

# Generator
from .generator import GenerateOptions, TokenGenerator

# Identity
from .identity import Anonymous, Identity, System, User

# Issuer data
from .issuer_data import StaticIssuerDataLoader

# Keys
from .key_cache import KeyCache
from .key_resolver import KeyResolver, ResolvedKey

# Logging
from .log import configure_logging, get_logger

# Models
from .models import IssuerPolicy, JWTVerifyOptions, KeyPopulation, KeyRecord

# Protocols
from .protocols import (
    Claims,
    IssuerDataLoader,
    KeyStore,
    StatsSink,
    TokenSigner,
    TokenVerifier,
    ViewFunc,
)

# Service
from .service import AuthService

# Stats
from .stats import NullStats

# Validator
from .validator import TokenValidator

__all__ = [
    # Configuration
    "AuthConfig",
    "INTERNAL_ISSUER",
    "INTERNAL_USER",
    # Context
    "ContextBuilder",
    "RequestContext",
    "TokenHelpers",
    # Errors
    "AuthError",
    "InternalAuthError",
    "InvalidToken",
    "IssuerDataUnavailable",
    "KeyNotFound",
    "MalformedToken",
    "MissingToken",
    "NoSigningKeyAvailable",
    "SignatureInvalid",
    "TokenExpired",
    # Extractors
    "AuthorizationHeaderExtractor",
    "BodyExtractor",
    "QueryExtractor",
    # Flask extension
    "AuthExtension",
    "current_context",
    # Generator
    "GenerateOptions",
    "TokenGenerator",
    # Identity
    "Anonymous",
    "Identity",
    "System",
    "User",
    # Issuer data
    "StaticIssuerDataLoader",
    # Keys
    "KeyCache",
    "KeyResolver",
    "ResolvedKey",
    # Logging
    "configure_logging",
    "get_logger",
    # Models
    "IssuerPolicy",
    "JWTVerifyOptions",
    "KeyPopulation",
    "KeyRecord",
    # Protocols
    "Claims",
    "IssuerDataLoader",
    "KeyStore",
    "StatsSink",
    "TokenSigner",
    "TokenVerifier",
    "ViewFunc",
    # Service
    "AuthService",
    # Stats
    "NullStats",
    # Validator
    "TokenValidator",
]
