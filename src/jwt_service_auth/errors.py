"""Authentication and token errors.

This module defines the exception hierarchy for token validation, token
generation and request authentication failures. All errors inherit from
AuthError to allow catch-all error handling.

Every error class carries a ``status_code`` and a generic ``description``
that are safe to return to clients. Detailed messages (key identities,
issuer names, library errors) stay in ``str(error)`` and in server-side logs.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class AuthError(Exception):
    """Base exception for all authentication failures.

    Attributes:
        status_code: HTTP status a host framework should answer with.
        description: Client-safe message. Never includes token contents.
    """

    status_code: int = 401
    description: str = "Authentication failed"


class MissingToken(AuthError):  # noqa: N818
    """Raised by an extractor when its request source holds no token.

    This occurs when:
    - The body field or query parameter is absent or empty
    - The authorization header is missing
    - The header scheme does not match the expected one (strict mode)
    """

    description = "Missing token"


class InvalidToken(AuthError):  # noqa: N818
    """Raised when a token is present but cannot be trusted.

    Used directly for standard claim failures that are neither a bad signature
    nor an expiry: audience or issuer pinning mismatch, not-before in the
    future, algorithm outside the allow-list.
    """

    description = "Invalid token"


class MalformedToken(InvalidToken):  # noqa: N818
    """Raised when the token cannot be decoded into header and claims."""

    description = "Malformed token"


class SignatureInvalid(InvalidToken):  # noqa: N818
    """Raised when the signature does not verify against the resolved key."""

    description = "Invalid token signature"


class TokenExpired(InvalidToken):  # noqa: N818
    """Raised when the token's ``exp`` claim has passed (leeway included).

    Note:
        Treat identically to InvalidToken from a security perspective. The
        distinction helps with metrics and debugging.
    """

    description = "Expired token"


class KeyNotFound(InvalidToken):  # noqa: N818
    """Raised when no key matches the token in either key population.

    Attributes:
        identity: The lookup identity that was attempted (kid, iss, aud).
    """

    description = "Unknown signing key"

    def __init__(self, identity: Mapping[str, Any]) -> None:
        self.identity = dict(identity)
        super().__init__(
            "key not found in accepted or issued keys "
            f"(iss: {self.identity.get('iss')!r}, "
            f"kid: {self.identity.get('kid')!r}, "
            f"aud: {self.identity.get('aud')!r})"
        )


class IssuerDataUnavailable(AuthError):  # noqa: N818
    """Raised when the issuer policy is required but missing or failed to load.

    Attributes:
        issuer: The ``iss`` claim the policy was requested for.
    """

    description = "Untrusted issuer"

    def __init__(self, issuer: Any, message: str | None = None) -> None:
        self.issuer = issuer
        super().__init__(message or f"No issuer data for issuer {issuer!r} could be found")


class NoSigningKeyAvailable(AuthError):  # noqa: N818
    """Raised when token generation finds no signing key for its target.

    This is always fatal: there is no fallback for outbound signing.

    Attributes:
        target: The audience (or issuer) a signing key was looked up for.
    """

    status_code = 500
    description = "Token signing unavailable"

    def __init__(self, target: Any) -> None:
        self.target = target
        super().__init__(f"No signing key available for {target!r}")


class InternalAuthError(AuthError):
    """Opaque wrapper for unexpected failures during validation.

    The original exception is logged server-side together with the
    correlation id; only the id is exposed to callers.

    Attributes:
        correlation_id: Identifier linking the client response to the log entry.
    """

    status_code = 500
    description = "Internal authentication error"

    def __init__(self, correlation_id: str) -> None:
        self.correlation_id = correlation_id
        super().__init__(f"Internal authentication error (correlation id: {correlation_id})")
