"""Bounded, TTL-limited detection cache.

Entries map a canonical repository root to the fragment identifier that
was detected for it. The table is split into lock stripes keyed by a hash
of the repository root, so concurrent lookups for different repositories
rarely contend. Every access stamps the entry with a global tick; when the
total size exceeds ``max_entries`` the entry with the oldest tick across
all stripes is evicted, which keeps eviction least-recently-used for the
cache as a whole.

Mutations that can make a detection stale (`clear`, `invalidate`,
`invalidate_fragment`) bump a generation counter. A detector captures the
generation before evaluating rules and hands it to `put`, which drops the
result if the cache was invalidated in the meantime.

The cache can be persisted to a JSON file and reloaded; a missing or
corrupt file yields an empty cache.
"""

import itertools
import json
import logging
import threading
import time
import zlib
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from gitprofiles.utils.fs import atomic_write_text

logger = logging.getLogger("gitprofiles.detection.cache")

CACHE_FORMAT_VERSION = 1
MAX_STRIPES = 16


@dataclass(frozen=True)
class DetectionCacheEntry:
    """Cached detection outcome.

    Attributes:
        fragment_id: Detected fragment identifier.
        timestamp: Wall-clock time the entry was stored (seconds).
    """

    fragment_id: str
    timestamp: float


class _Stripe:
    """One lock stripe; ``entries`` is kept in access order, oldest first."""

    __slots__ = ("lock", "entries", "ticks")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: "OrderedDict[str, DetectionCacheEntry]" = OrderedDict()
        self.ticks: Dict[str, int] = {}

    def remove(self, repo_root: str) -> Optional[DetectionCacheEntry]:
        self.ticks.pop(repo_root, None)
        return self.entries.pop(repo_root, None)


class DetectionCache:
    """Thread-safe detection cache with global LRU eviction.

    Args:
        ttl_seconds: Entries older than this are treated as absent.
        max_entries: Total capacity across all stripes.
        stripes: Number of lock stripes; defaults to ``min(16, max_entries)``.
        clock: Time source, injectable for tests.
        persist_path: File used by `persist` and `load` when no path is given.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 1000,
        stripes: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        persist_path: Optional[Path] = None,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        count = stripes if stripes is not None else min(MAX_STRIPES, max_entries)
        self._stripes: List[_Stripe] = [_Stripe() for _ in range(max(1, min(count, max_entries)))]
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.persist_path = persist_path
        self._clock = clock
        self._ticks = itertools.count()
        self._evict_lock = threading.Lock()
        self._generation = 0
        self._generation_lock = threading.Lock()

    @property
    def generation(self) -> int:
        """Counter bumped by every invalidation."""
        return self._generation

    def _bump_generation(self) -> None:
        with self._generation_lock:
            self._generation += 1

    def _stripe(self, repo_root: str) -> _Stripe:
        return self._stripes[zlib.crc32(repo_root.encode("utf-8")) % len(self._stripes)]

    def _expired(self, entry: DetectionCacheEntry, now: float) -> bool:
        return now - entry.timestamp >= self.ttl_seconds

    def get(self, repo_root: str) -> Optional[str]:
        """Return the cached fragment identifier, or None if absent or expired."""
        stripe = self._stripe(repo_root)
        with stripe.lock:
            entry = stripe.entries.get(repo_root)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                stripe.remove(repo_root)
                return None
            stripe.entries.move_to_end(repo_root)
            stripe.ticks[repo_root] = next(self._ticks)
            return entry.fragment_id

    def put(self, repo_root: str, fragment_id: str, generation: Optional[int] = None) -> bool:
        """Store a detection result, evicting the least recently used entry if full.

        Args:
            repo_root: Canonical repository root.
            fragment_id: Detected fragment identifier.
            generation: Value of `generation` observed before the detection
                was computed; the result is discarded if it has moved on.

        Returns:
            Whether the entry was stored.
        """
        stripe = self._stripe(repo_root)
        with stripe.lock:
            if generation is not None and generation != self._generation:
                logger.debug("Discarding stale detection for %s -> %s", repo_root, fragment_id)
                return False
            self._insert(stripe, repo_root, DetectionCacheEntry(fragment_id, self._clock()))
        self._enforce_bound()
        return True

    def _insert(self, stripe: _Stripe, repo_root: str, entry: DetectionCacheEntry) -> None:
        stripe.entries[repo_root] = entry
        stripe.entries.move_to_end(repo_root)
        stripe.ticks[repo_root] = next(self._ticks)

    def _enforce_bound(self) -> None:
        with self._evict_lock:
            while len(self) > self.max_entries:
                if not self._evict_oldest():
                    return

    def _evict_oldest(self) -> bool:
        oldest = None
        for stripe in self._stripes:
            with stripe.lock:
                if not stripe.entries:
                    continue
                root = next(iter(stripe.entries))
                tick = stripe.ticks[root]
                if oldest is None or tick < oldest[0]:
                    oldest = (tick, stripe, root)
        if oldest is None:
            return False
        tick, stripe, root = oldest
        with stripe.lock:
            # Skip if the entry was touched after the scan; the caller rescans.
            if stripe.ticks.get(root) == tick:
                stripe.remove(root)
                logger.debug("Evicted detection cache entry for %s", root)
        return True

    def invalidate(self, repo_root: str) -> bool:
        """Drop the entry for ``repo_root``; returns whether one existed."""
        self._bump_generation()
        stripe = self._stripe(repo_root)
        with stripe.lock:
            return stripe.remove(repo_root) is not None

    def invalidate_fragment(self, fragment_id: str) -> int:
        """Drop every entry that points at ``fragment_id``.

        Returns:
            Number of entries removed.
        """
        self._bump_generation()
        removed = 0
        for stripe in self._stripes:
            with stripe.lock:
                stale = [root for root, entry in stripe.entries.items() if entry.fragment_id == fragment_id]
                for root in stale:
                    stripe.remove(root)
                removed += len(stale)
        if removed:
            logger.debug("Invalidated %d detection cache entries for %s", removed, fragment_id)
        return removed

    def clear(self) -> None:
        self._bump_generation()
        for stripe in self._stripes:
            with stripe.lock:
                stripe.entries.clear()
                stripe.ticks.clear()

    def __len__(self) -> int:
        total = 0
        for stripe in self._stripes:
            with stripe.lock:
                total += len(stripe.entries)
        return total

    def snapshot(self) -> Dict[str, DetectionCacheEntry]:
        """Return a copy of all live entries."""
        now = self._clock()
        result: Dict[str, DetectionCacheEntry] = {}
        for stripe in self._stripes:
            with stripe.lock:
                for root, entry in stripe.entries.items():
                    if not self._expired(entry, now):
                        result[root] = entry
        return result

    def persist(self, path: Optional[Path] = None) -> bool:
        """Write live entries to ``path`` (or `persist_path`) as JSON.

        Returns:
            True on success; write failures are logged, not raised.
        """
        target = path or self.persist_path
        if target is None:
            return False
        data: Dict[str, Any] = {
            "version": CACHE_FORMAT_VERSION,
            "entries": {
                root: {"fragment": entry.fragment_id, "timestamp": entry.timestamp}
                for root, entry in sorted(self.snapshot().items())
            },
        }
        try:
            atomic_write_text(Path(target), json.dumps(data, indent=2) + "\n")
        except OSError as e:
            logger.warning("Failed to persist detection cache to %s: %s", target, e)
            return False
        logger.debug("Persisted %d detection cache entries to %s", len(data["entries"]), target)
        return True

    def load(self, path: Optional[Path] = None) -> int:
        """Replace the cache content with entries read from disk.

        Expired entries are skipped and the newest entries win when the
        file holds more than ``max_entries``. A missing, unreadable or
        corrupt file leaves the cache empty.

        Returns:
            Number of entries loaded.
        """
        self.clear()
        source = path or self.persist_path
        if source is None:
            return 0
        source = Path(source)
        if not source.exists():
            logger.debug("No detection cache file at %s", source)
            return 0
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
            entries = data["entries"]
            if data.get("version") != CACHE_FORMAT_VERSION or not isinstance(entries, dict):
                raise ValueError("unsupported cache format")
            parsed = [
                (str(root), DetectionCacheEntry(str(item["fragment"]), float(item["timestamp"])))
                for root, item in entries.items()
            ]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Ignoring corrupt detection cache %s: %s", source, e)
            return 0

        now = self._clock()
        loaded = 0
        for root, entry in sorted(parsed, key=lambda item: item[1].timestamp):
            if self._expired(entry, now):
                continue
            stripe = self._stripe(root)
            with stripe.lock:
                self._insert(stripe, root, entry)
            loaded += 1
        self._enforce_bound()
        loaded = min(loaded, self.max_entries)
        logger.debug("Loaded %d detection cache entries from %s", loaded, source)
        return loaded
