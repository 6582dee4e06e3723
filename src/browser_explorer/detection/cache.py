"""
TTL-Bounded Element Cache.

Maps (page URL, element identity) to an ElementSnapshot. One entry per key,
last write wins; adaptation history already recorded under a key survives
overwrites. Snapshots are valid only while younger than the TTL and are
evicted lazily on read or explicitly via cleanup_expired().

Single-writer: no locking under the one-page, one-event-loop model.
"""

from typing import Any, Callable, Iterable
import logging

from browser_explorer.models import (
    AdaptationAttempt,
    ElementSnapshot,
    InteractiveElement,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 300_000


class AdaptiveCache:
    """In-memory snapshot cache keyed by page URL, type, selector and text."""

    def __init__(self, ttl_ms: int = DEFAULT_TTL_MS, clock: Callable[[], float] = now_ms):
        """
        Initialize the cache.

        Args:
            ttl_ms: Snapshot lifetime in milliseconds
            clock: Returns the current time in epoch milliseconds
        """
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: dict[str, ElementSnapshot] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def make_key(element: InteractiveElement, page_url: str) -> str:
        """Compute the identity key of an element on a page."""
        return f"{page_url}_{element.type.value}_{element.selector}_{element.text or ''}"

    def put(
        self,
        element: InteractiveElement,
        page_url: str,
        history: list[AdaptationAttempt] | None = None,
    ) -> str:
        """
        Store a fresh snapshot of an element.

        Args:
            element: Element to cache
            page_url: URL of the page it was found on
            history: Attempts to append to the key's existing history

        Returns:
            The cache key
        """
        key = self.make_key(element, page_url)
        previous = self._entries.get(key)
        merged_history = list(previous.adaptation_history) if previous else []
        if history:
            merged_history.extend(history)

        self._entries[key] = ElementSnapshot(
            element=element,
            timestamp=self._clock(),
            page_url=page_url,
            adaptation_history=merged_history,
        )
        return key

    def put_many(self, elements: Iterable[InteractiveElement], page_url: str) -> list[str]:
        return [self.put(element, page_url) for element in elements]

    def get(self, key: str) -> ElementSnapshot | None:
        """
        Retrieve a snapshot if present and still valid.

        Expired snapshots are removed and reported as a miss.
        """
        snapshot = self._entries.get(key)
        if snapshot is None:
            self._misses += 1
            return None

        if not self.is_valid(snapshot):
            del self._entries[key]
            self._evictions += 1
            self._misses += 1
            logger.debug(f"Evicted expired snapshot: {key}")
            return None

        self._hits += 1
        return snapshot

    def lookup(self, element: InteractiveElement, page_url: str) -> ElementSnapshot | None:
        return self.get(self.make_key(element, page_url))

    def is_valid(self, snapshot: ElementSnapshot) -> bool:
        """A snapshot is valid while its age is below the TTL."""
        return not snapshot.is_expired(self.ttl_ms, self._clock())

    def remove(self, key: str) -> bool:
        """Drop one entry. Returns True if it existed."""
        return self._entries.pop(key, None) is not None

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        now = self._clock()
        expired = [
            key for key, snapshot in self._entries.items()
            if snapshot.is_expired(self.ttl_ms, now)
        ]
        for key in expired:
            del self._entries[key]
        self._evictions += len(expired)
        if expired:
            logger.debug(f"Removed {len(expired)} expired snapshot(s)")
        return len(expired)

    def clear(self) -> None:
        """Clear all cache entries and counters."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def snapshots(self) -> list[ElementSnapshot]:
        """All stored snapshots, valid or not."""
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "ttl_ms": self.ttl_ms,
        }
