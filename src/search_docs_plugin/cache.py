"""
In-memory, lazily expiring cache of search answers.

Entries are keyed by a normalized form of the query (see `normalize_cache_key`) and expire
after a fixed TTL. Expiry is checked on read; there is no background sweep. Entries are
never mutated: a write replaces any previous entry for the key.

The cache is owned by a single `DocsSearchService` instance. Neither `get` nor `set`
contains a suspension point, so under the asyncio event loop concurrent requests cannot
interleave inside them and no lock is needed.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .answer import Answer

__all__ = ["CACHE_KEY_SEPARATOR", "CacheEntry", "QueryCache", "normalize_cache_key"]

_LOGGER = logging.getLogger(__name__)

CACHE_KEY_SEPARATOR = "|"


def normalize_cache_key(query: str, context: str | None = None) -> str:
    """
    Compute the cache key for a query and optional free-text context.

    The query is lowercased and trimmed. A non-empty context is appended verbatim after
    `CACHE_KEY_SEPARATOR`. The function is pure; `str.lower` does not depend on the locale.

    Args:
        query (str): The search query.
        context (str | None): Optional caller-supplied context.

    Returns:
        str: The cache key.

    Example:
        >>> normalize_cache_key("  BOSL2 Cuboid ")
        'bosl2 cuboid'
        >>> normalize_cache_key("cuboid", "rounded edges")
        'cuboid|rounded edges'
    """
    key = query.lower().strip()
    if context:
        return f"{key}{CACHE_KEY_SEPARATOR}{context}"
    return key


@dataclass(frozen=True)
class CacheEntry:
    """A cached answer and the monotonic time it was stored."""

    key: str
    answer: Answer
    created_at: float


class QueryCache:
    """
    TTL cache of answers keyed by normalized query.

    Args:
        ttl_seconds (float): Lifetime of an entry. Entries older than this are treated as absent.
        clock (Callable[[], float]): Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl_seconds(self) -> float:
        """Lifetime of an entry in seconds."""
        return self._ttl

    def get(self, key: str) -> Answer | None:
        """
        Return the live answer stored under `key`, or None.

        An expired entry is removed and reported as absent.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at >= self._ttl:
            _LOGGER.debug(f"[QueryCache:get] Entry expired for key: {key!r}")
            del self._entries[key]
            return None
        return entry.answer

    def set(self, key: str, answer: Answer) -> None:
        """Store `answer` under `key`, replacing any existing entry."""
        self._entries[key] = CacheEntry(key=key, answer=answer, created_at=self._clock())

    def clear(self) -> int:
        """Remove all entries and return how many were removed."""
        size = len(self._entries)
        self._entries.clear()
        return size

    def __len__(self) -> int:
        return len(self._entries)
