"""Query cache keyed by composite keys.

A key is a tuple such as ('requirements', 'list', project_id, user_id) or
('requirements', 'detail', requirement_id). Every key carries an epoch that
advances whenever the key is fetched, written or invalidated; a fetch may
only store its result if the epoch is still the one it started under, so a
slow response can never overwrite newer data.
"""
import logging
from typing import Any, Callable, Hashable

logger = logging.getLogger("reqflow-client.cache")

CacheKey = tuple[Hashable, ...]


class QueryCache:
    """Shared in-memory cache for every resource of a workspace."""

    def __init__(self):
        self._data: dict[CacheKey, Any] = {}
        self._epochs: dict[CacheKey, int] = {}

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: CacheKey, default: Any = None) -> Any:
        return self._data.get(key, default)

    def _advance(self, key: CacheKey) -> int:
        epoch = self._epochs.get(key, 0) + 1
        self._epochs[key] = epoch
        return epoch

    def set(self, key: CacheKey, value: Any) -> None:
        """Store a value directly (mutation results); in-flight fetches for the key are discarded."""
        self._advance(key)
        self._data[key] = value

    def begin_fetch(self, key: CacheKey) -> int:
        """Start a fetch for a key; returns the epoch token to complete it with."""
        return self._advance(key)

    def complete_fetch(self, key: CacheKey, token: int, value: Any) -> bool:
        """
        Store a fetch result unless the key moved on since the fetch began.

        Returns:
            True if the value was stored, False if it was discarded as stale
        """
        if self._epochs.get(key) != token:
            logger.debug(f"Discarded stale response for {key}")
            return False
        self._data[key] = value
        return True

    def keys(self, prefix: CacheKey = ()) -> list[CacheKey]:
        """Cached keys starting with prefix."""
        size = len(prefix)
        return [key for key in self._data if key[:size] == prefix]

    def update(self, key: CacheKey, updater: Callable[[Any], Any]) -> None:
        """Replace a cached value with updater(value); no-op for uncached keys."""
        if key in self._data:
            self.set(key, updater(self._data[key]))

    def invalidate(self, prefix: CacheKey = ()) -> int:
        """Drop every key starting with prefix and abandon its in-flight fetches."""
        size = len(prefix)
        matching = {key for key in list(self._data) + list(self._epochs) if key[:size] == prefix}
        for key in matching:
            self._data.pop(key, None)
            self._advance(key)
        if matching:
            logger.debug(f"Invalidated {len(matching)} key(s) under {prefix}")
        return len(matching)

    def clear(self) -> None:
        self.invalidate(())
