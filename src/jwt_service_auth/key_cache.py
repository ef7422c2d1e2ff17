"""Time-windowed, coalescing cache in front of key store lookups.

Key lookups are expensive (a store query per token) and validation traffic is
bursty. The cache bounds the load on the key store per lookup identity:

- The first lookup for an identity starts the loader and records it.
- Lookups for the same identity within the window share that result, including
  a lookup still in flight. Concurrent callers never issue duplicate queries.
- Absent results (None) are cached like any other result.
- Failures are not cached. The entry is dropped and the next call retries.

Entries hold a ``concurrent.futures.Future`` rather than an asyncio task, so
callers running on other event loops (Flask runs every async hook in a loop of
its own, often on another thread) wait on the same in-flight lookup through
``asyncio.wrap_future``. The entry table is guarded by a ``threading.Lock``.

Expired entries are removed lazily on access; ``purge()`` sweeps all of them
and runs opportunistically at most once per window when new entries are added.

Security Note:
    Caching keys introduces a window in which a rotated key is not yet
    visible. Balance the window against how quickly new keys must be used.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .protocols import KeyLoader


@dataclass(slots=True)
class _CacheEntry:
    """Internal cache entry with window tracking.

    Attributes:
        future: Outcome of the loader run, pending or done. Usable from any
            event loop.
        expires_at: Clock reading after which the entry is stale.
    """

    future: concurrent.futures.Future[Any]
    expires_at: float


class KeyCache:
    """In-process cache of key lookups, keyed by lookup identity.

    Identities are any hashable value; the resolver callers use tuples such as
    ``("find", population, kid, iss, aud)``. Identities are independent of each
    other, so no cross-identity locking is needed.

    Example:
        ```python
        cache = KeyCache(window=30)

        key = await cache.get(
            ("find", KeyPopulation.ACCEPTED, kid, iss, aud),
            lambda: resolver.find_key(KeyPopulation.ACCEPTED, kid, iss, aud),
        )
        ```

    Attributes:
        _window: Seconds a result stays valid. 0 disables caching.
        _now: Monotonic clock, injectable for tests.
        _entries: Mapping identity -> _CacheEntry.
        _lock: Guards ``_entries`` against callers on other threads.
    """

    def __init__(
        self,
        window: float = 0,
        now: Callable[[], float] | None = None,
    ) -> None:
        """Initialize an empty cache.

        Args:
            window: Seconds a lookup result is reused. Must be non-negative;
                0 makes every call pass through to the loader.
            now: Clock returning seconds. Defaults to ``time.monotonic``.

        Raises:
            ValueError: If window is negative.
        """
        if window < 0:
            raise ValueError(f"window must be non-negative, got {window}")

        self._window = window
        self._now = now or time.monotonic
        self._entries: dict[Hashable, _CacheEntry] = {}
        self._next_purge_at: float = 0.0
        self._lock = threading.Lock()
        # Strong references to in-flight loader tasks.
        self._running: set[asyncio.Task[None]] = set()

    @property
    def window(self) -> float:
        return self._window

    def __len__(self) -> int:
        return len(self._entries)

    async def get[T](self, identity: Hashable, loader: KeyLoader[T]) -> T:
        """Return the cached result for ``identity``, loading it on a miss.

        The loader runs on the event loop of the caller that missed; callers
        on any other loop or thread wait for that same run.

        Args:
            identity: Hashable lookup identity.
            loader: Coroutine factory producing the result on a miss.

        Returns:
            The loader's result, possibly shared with other callers.

        Raises:
            Exception: Whatever the loader raised. Failures are not cached.
        """
        if self._window <= 0:
            return await loader()

        with self._lock:
            now = self._now()
            entry = self._entries.get(identity)
            if entry is not None and now >= entry.expires_at:
                del self._entries[identity]
                entry = None

            owner = entry is None
            if owner:
                self._maybe_purge(now)
                entry = _CacheEntry(
                    future=concurrent.futures.Future(),
                    expires_at=now + self._window,
                )
                self._entries[identity] = entry

        if owner:
            task = asyncio.ensure_future(self._load(identity, entry, loader))
            self._running.add(task)
            task.add_done_callback(self._running.discard)
            task.add_done_callback(functools.partial(self._settle_cancelled, identity, entry))

        # Shielded so a cancelled caller does not cancel the shared lookup.
        return await asyncio.shield(asyncio.wrap_future(entry.future))

    def purge(self) -> int:
        """Evict every expired entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            return self._purge(self._now())

    def clear(self) -> None:
        """Drop all entries, forcing the next lookups back to the store."""
        with self._lock:
            self._entries.clear()

    async def _load(self, identity: Hashable, entry: _CacheEntry, loader: KeyLoader[Any]) -> None:
        try:
            result = await loader()
        except Exception as e:
            self._forget(identity, entry)
            entry.future.set_exception(e)
        else:
            entry.future.set_result(result)

    def _settle_cancelled(
        self, identity: Hashable, entry: _CacheEntry, task: asyncio.Task[None]
    ) -> None:
        # The owning loop may cancel the loader, even before it starts (loop shutdown).
        if task.cancelled() and not entry.future.done():
            self._forget(identity, entry)
            entry.future.cancel()

    def _maybe_purge(self, now: float) -> None:
        # Caller holds the lock.
        if now >= self._next_purge_at:
            self._next_purge_at = now + self._window
            self._purge(now)

    def _purge(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _forget(self, identity: Hashable, entry: _CacheEntry) -> None:
        with self._lock:
            if self._entries.get(identity) is entry:
                del self._entries[identity]
