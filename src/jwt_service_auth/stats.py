"""Default stats sink.

Request handling receives a stats client through the request context. When
the host does not supply one, NullStats accepts every call and records
nothing, so handlers never need to check for its presence.
"""

from __future__ import annotations

from typing import Any


class NullStats:
    """StatsSink implementation whose methods are all no-ops."""

    def increment(self, name: str, value: float = 1, **tags: Any) -> None:
        return None

    def decrement(self, name: str, value: float = 1, **tags: Any) -> None:
        return None

    def counter(self, name: str, value: float, **tags: Any) -> None:
        return None

    def gauge(self, name: str, value: float, **tags: Any) -> None:
        return None

    def gauge_delta(self, name: str, delta: float, **tags: Any) -> None:
        return None

    def set(self, name: str, value: Any, **tags: Any) -> None:
        return None

    def histogram(self, name: str, value: float, **tags: Any) -> None:
        return None
