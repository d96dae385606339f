"""
Result cache for enriched query payloads.

Entries expire lazily on read. Each entry carries tags (the record ids and
collections it was built from) so a write elsewhere can purge exactly the
payloads it affects. Purges are also recorded in a short log, and a value
computed from data read before a purge is refused on ``set``; otherwise a slow
computation could put a stale payload back right after it was purged.
"""

import json
import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from staffing.coalescer import RequestCoalescer

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

_ALL = object()


def make_cache_key(scope: str, entity_id: str | None = None, **filters: Any) -> str:
    """Deterministic key from query scope, target id and filter parameters."""
    parts = [scope, entity_id or "*"]
    if filters:
        parts.append(
            json.dumps(filters, sort_keys=True, separators=(",", ":"), default=str)
        )
    return ":".join(parts)


def collection_tag(collection: str) -> str:
    return f"{collection}:*"


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)


class CacheStore:
    def __init__(
        self,
        *,
        clock: Clock = time.monotonic,
        default_ttl: float = 300.0,
        max_entries: int = 100,
        coalescer: RequestCoalescer | None = None,
        purge_log_size: int = 256,
    ) -> None:
        self._clock = clock
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self.coalescer = coalescer
        self._entries: dict[str, CacheEntry] = {}
        self._seq = 0
        self._purges: deque[tuple[int, Any]] = deque(maxlen=purge_log_size)

    def __len__(self) -> int:
        return len(self._entries)

    def checkpoint(self) -> int:
        """Mark the start of a computation; pass the result to ``set(since=...)``."""
        return self._seq

    def get(self, key: str) -> tuple[Any, bool]:
        entry = self._entries.get(key)
        if entry is None:
            return None, False
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            logger.debug("cache entry expired: %s", key)
            return None, False
        return entry.value, True

    def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        *,
        tags: Iterable[str] = (),
        since: int | None = None,
    ) -> bool:
        """
        Store ``value`` until now + ttl. Returns False when the write is refused
        because a purge affecting it happened after ``since``.
        """
        tags = frozenset(tags)
        if since is not None and self._purged_since(since, key, tags):
            logger.debug("dropping cache write for %s: purged while computing", key)
            return False

        ttl = self.default_ttl if ttl is None else ttl
        self._entries[key] = CacheEntry(value, self._clock() + ttl, tags)
        if len(self._entries) > self.max_entries:
            self.prune()
        return True

    def prune(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("pruned %d expired cache entries", len(expired))
        return len(expired)

    def purge(self, key: str) -> None:
        self._entries.pop(key, None)
        self._record_purge(key)
        if self.coalescer is not None:
            self.coalescer.forget(key)

    def purge_all(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        self._record_purge(_ALL)
        if self.coalescer is not None:
            self.coalescer.forget_all()
        logger.info("result cache cleared (%d entries)", count)

    def invalidate(self, tags: Iterable[str]) -> int:
        """Purge every entry carrying any of ``tags``; returns how many went."""
        tags = frozenset(tags)
        doomed = [k for k, e in self._entries.items() if e.tags & tags]
        for key in doomed:
            del self._entries[key]
        self._record_purge(tags)
        if self.coalescer is not None:
            self.coalescer.forget_tagged(tags)
        logger.debug("invalidated %d cache entries for %s", len(doomed), sorted(tags))
        return len(doomed)

    def _record_purge(self, target: Any) -> None:
        self._seq += 1
        self._purges.append((self._seq, target))

    def _purged_since(self, since: int, key: str, tags: frozenset[str]) -> bool:
        if since >= self._seq:
            return False
        if not self._purges or self._purges[0][0] > since + 1:
            # log no longer reaches back that far
            return True
        for seq, target in self._purges:
            if seq <= since:
                continue
            if target is _ALL or target == key:
                return True
            if isinstance(target, frozenset) and target & tags:
                return True
        return False
