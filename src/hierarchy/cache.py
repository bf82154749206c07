"""
Hierarchy View Cache - process-level cache of resolved tenant views.

Cache Strategy:
- LRU with TTL expiration, keyed by tenant
- Explicit invalidation after every committed custom-role or placement change
- Versions come from one monotonic counter, so a resolve that raced with an
  invalidation or a clear() never stores the stale view it loaded

Correctness never depends on the cache: a miss re-reads storage and
produces the same view a hit would.
"""

import itertools
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from config.logging_config import get_logger

from .catalog import HierarchyView

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """Cached tenant hierarchy view."""
    view: HierarchyView
    version: int
    expires_at: float

    def is_expired(self) -> bool:
        return time.time() > self.expires_at


class HierarchyViewCache:
    """
    Tenant-keyed view cache with version-guarded writes.

    A tenant's version is the counter value of its last invalidation, or
    the epoch of the last clear() when it has none. Per-tenant versions are
    kept for at most ``maxsize`` tenants; past that the epoch is advanced,
    which retires every cached view at once.
    """

    def __init__(self, maxsize: int = 1000, ttl_seconds: int = 60, enabled: bool = True):
        self.enabled = enabled and ttl_seconds > 0
        self.maxsize = maxsize
        self.ttl_seconds = ttl_seconds
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._counter = itertools.count(1)
        self._epoch = 0
        self._versions: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def version(self, tenant_id: str) -> int:
        with self._lock:
            return self._versions.get(tenant_id, self._epoch)

    def get(self, tenant_id: str) -> Optional[HierarchyView]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(tenant_id)
            if entry is not None and entry.is_expired():
                del self._entries[tenant_id]
                entry = None
            if entry is None or entry.version != self.version(tenant_id):
                self._misses += 1
                return None
            self._entries.move_to_end(tenant_id)
            self._hits += 1
            return entry.view

    def set(self, tenant_id: str, view: HierarchyView, version: int) -> bool:
        """Store a view loaded at ``version``. Refused if the tenant changed since."""
        if not self.enabled:
            return False
        with self._lock:
            if self.version(tenant_id) != version:
                logger.debug("Skipping stale hierarchy view", extra={"tenant_id": tenant_id})
                return False
            self._entries[tenant_id] = CacheEntry(
                view=view,
                version=version,
                expires_at=time.time() + self.ttl_seconds,
            )
            self._entries.move_to_end(tenant_id)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)
            return True

    def invalidate(self, tenant_id: str) -> None:
        with self._lock:
            self._entries.pop(tenant_id, None)
            if tenant_id not in self._versions and len(self._versions) >= self.maxsize:
                self._reset()
            self._versions[tenant_id] = next(self._counter)
        logger.debug("Invalidated hierarchy view", extra={"tenant_id": tenant_id})

    def clear(self) -> None:
        with self._lock:
            self._reset()

    def _reset(self) -> None:
        """Drop every view and version (must hold lock)."""
        self._entries.clear()
        self._versions.clear()
        self._epoch = next(self._counter)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "maxsize": self.maxsize,
                "ttl_seconds": self.ttl_seconds,
                "tracked_versions": len(self._versions),
                "enabled": self.enabled,
                "hits": self._hits,
                "misses": self._misses,
            }
