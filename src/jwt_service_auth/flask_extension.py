"""Flask extension for request authentication.

This module is the integration point between the token core and Flask
applications:

1. Before each request, build the RequestContext and store it in ``flask.g.auth``
2. ``AuthExtension.require()`` rejects requests whose context is unauthenticated
3. AuthError raised by views (e.g. NoSigningKeyAvailable from
   ``g.auth.token.generate``) becomes a JSON error response

The core is async; Flask runs the async hook through ``app.ensure_sync``,
which needs the ``flask[async]`` extra.
"""

from __future__ import annotations

from functools import wraps
from typing import TYPE_CHECKING, Any, Final

from flask import Flask, abort, current_app, g, jsonify, request

from .errors import AuthError, InternalAuthError
from .log import get_logger

if TYPE_CHECKING:
    from .context import RequestContext
    from .protocols import ViewFunc
    from .service import AuthService

_EXT_KEY: Final[str] = "token_auth"
"""Flask extensions registry key for AuthExtension."""


class AuthExtension:
    """
    Flask glue for token authentication.

    Responsibilities:
    - Build the request context (AuthService) before each request
    - Store it in ``flask.g.auth``
    - Reject unauthenticated requests on routes decorated with ``require()``
    - Convert domain errors to HTTP responses

    Pattern:
        auth = AuthExtension()
        auth.init_app(app, service=service)

    Usage:
        auth = AuthExtension(service)
        auth.init_app(app)

        @app.get("/me")
        @auth.require()
        def me(): return g.auth.user
    """

    def __init__(self, service: AuthService | None = None) -> None:
        self._service = service
        self._log = get_logger(__name__)

    @property
    def service(self) -> AuthService:
        if self._service is None:
            raise RuntimeError("AuthExtension has no AuthService configured")
        return self._service

    def init_app(self, app: Flask, *, service: AuthService | None = None) -> None:
        """Register the extension's hooks on a Flask app.

        Args:
            app (Flask): The Flask application instance.
            service (AuthService | None, optional): Overrides the service given
                to the constructor.

        Raises:
            RuntimeError: If no service was given here or to the constructor.
        """
        if service is not None:
            self._service = service
        if self._service is None:
            raise RuntimeError("AuthExtension.init_app requires an AuthService")

        app.extensions[_EXT_KEY] = self
        app.before_request(self._load_context)
        app.register_error_handler(AuthError, self._handle_auth_error)

    async def _load_context(self) -> None:
        g.auth = await self.service.build_context(request)

    def _handle_auth_error(self, error: AuthError) -> Any:
        body: dict[str, Any] = {"error": error.description}
        if isinstance(error, InternalAuthError):
            body["correlation_id"] = error.correlation_id
        else:
            self._log.debug("Request failed authentication", error=type(error).__name__)
        return jsonify(body), error.status_code

    def require(self):
        """Decorator rejecting requests that carry no valid identity.

        Authenticated users and the internal System identity pass; Anonymous
        contexts are aborted with HTTP 401.

        Returns:
        Callable[[ViewFunc], ViewFunc]:
                        A decorator that wraps a Flask view function.
        """

        def decorator(view: ViewFunc) -> ViewFunc:
            @wraps(view)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                ctx = current_context()
                if ctx is None or not ctx.is_authenticated:
                    abort(401, description="Missing or invalid token")

                return current_app.ensure_sync(view)(*args, **kwargs)

            return wrapper

        return decorator


def current_context() -> RequestContext | None:
    """Return the RequestContext of the current Flask request, if built."""
    return g.get("auth")
