"""Token extraction strategies from HTTP requests.

Each extractor reads one request location and returns the raw token string,
or raises MissingToken when the location holds no candidate. The context
builder runs them in a fixed priority order:

1. BodyExtractor: a field of the JSON or form body
2. QueryExtractor: a query string parameter
3. AuthorizationHeaderExtractor: ``<scheme> <token>`` (or a bare token in
   lax mode) in an HTTP header

Extractors take the request object explicitly (a Flask/Werkzeug request or
anything with the same ``get_json``/``form``/``args``/``headers`` surface).

Security Considerations:
- Tokens in query strings end up in access logs and browser history; disable
  the query source when clients can use the header.
- Extracted values are untrusted until validated.
"""

from __future__ import annotations

from typing import Any

from .errors import MissingToken


class BodyExtractor:
    """Extracts a token from a request body field.

    JSON bodies are read first; form bodies are used when the body is not JSON.

    Attributes:
        _name: Body field name.
    """

    source = "body"

    def __init__(self, field_name: str = "token") -> None:
        if not field_name or not field_name.strip():
            raise ValueError("field_name cannot be empty")
        self._name = field_name

    def extract(self, req: Any) -> str:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get(self._name)
        else:
            token = req.form.get(self._name)

        if not token or not isinstance(token, str):
            raise MissingToken(f"Missing body field '{self._name}'")

        return token


class QueryExtractor:
    """Extracts a token from a query string parameter.

    Attributes:
        _name: Query parameter name.
    """

    source = "query"

    def __init__(self, param_name: str = "token") -> None:
        if not param_name or not param_name.strip():
            raise ValueError("param_name cannot be empty")
        self._name = param_name

    def extract(self, req: Any) -> str:
        token = req.args.get(self._name)

        if not token:
            raise MissingToken(f"Missing query parameter '{self._name}'")

        return token


class AuthorizationHeaderExtractor:
    """Extracts a token from a ``<scheme> <token>`` header.

    Strict mode (default) requires the scheme to match ``scheme``
    case-insensitively and discards the header otherwise. Lax mode also
    accepts a bare token with no scheme prefix and does not check the scheme.

    Example:
        ```python
        AuthorizationHeaderExtractor()                      # Authorization: Bearer <t>
        AuthorizationHeaderExtractor(lax=True)              # Authorization: <t>
        AuthorizationHeaderExtractor("X-Api-Token", "token")
        ```

    Attributes:
        _header: Header name (headers are case-insensitive).
        _scheme: Expected scheme, lower-cased.
        _lax: Whether bare tokens are accepted.
    """

    def __init__(
        self,
        header_name: str = "authorization",
        scheme: str = "bearer",
        *,
        lax: bool = False,
    ) -> None:
        if not header_name or not header_name.strip():
            raise ValueError("header_name cannot be empty")
        self._header = header_name
        self._scheme = scheme.lower()
        self._lax = lax

    @property
    def source(self) -> str:
        return f"authorization header ({self._header})"

    def extract(self, req: Any) -> str:
        value = req.headers.get(self._header, "").strip()

        if not value:
            raise MissingToken(f"Missing {self._header} header")

        # Single-space split; anything after the second part is ignored.
        scheme, _, rest = value.partition(" ")
        token = rest.split(" ", 1)[0]

        if self._lax:
            token = token or scheme
        elif scheme.lower() != self._scheme:
            raise MissingToken(f"Invalid {self._header} header (expected '{self._scheme} <token>')")

        if not token:
            raise MissingToken(f"Empty token in {self._header} header")

        return token
