"""Bounded in-memory loading caches.

A ``LoadingCache`` fetches values lazily on first read (cache-aside) and
keeps at most ``maximum_size`` entries, evicting the least recently used.
Concurrent readers of the same key share a single load. An invalidation
that lands while a load is in flight wins: the loading caller still gets
its value, but it is not stored, so the next read fetches again.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Callable, Hashable, Iterator, Mapping
from typing import TYPE_CHECKING

from loguru import logger

from stratus.constants import CACHE_MAXIMUM_SIZE

if TYPE_CHECKING:
    from stratus.domain import FloatingIp, KeyPair, RegionAndId, RegionAndName, SecurityGroup

type Loader[K, V] = Callable[[K], V | None]


class _KeyLoad:
    """Per-key load state, kept only while callers are loading or waiting."""

    __slots__ = ("callers", "invalidated", "lock")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.callers = 0
        self.invalidated = False


class LoadingCache[K: Hashable, V]:
    """Thread-safe LRU cache populated by a loader function."""

    def __init__(
        self,
        loader: Loader[K, V] | None = None,
        *,
        maximum_size: int = CACHE_MAXIMUM_SIZE,
        name: str = "default",
    ) -> None:
        if maximum_size <= 0:
            raise ValueError(f"maximum_size must be positive, got {maximum_size}")
        self.name = name
        self.maximum_size = maximum_size
        self._loader = loader
        self._entries: OrderedDict[K, V] = OrderedDict()
        self._lock = threading.Lock()
        self._loading: dict[K, _KeyLoad] = {}
        self._log = logger.bind(component="cache", cache=name)

    def get(self, key: K, loader: Callable[[], V | None] | None = None) -> V | None:
        """Return the cached value, loading it if absent.

        ``loader`` overrides the cache's loader for this call only. A loader
        returning ``None`` means "absent": nothing is stored.
        """
        hit, value = self._lookup(key)
        if hit:
            return value

        load = self._join_load(key)
        try:
            with load.lock:
                hit, value = self._lookup(key)
                if hit:
                    return value

                with self._lock:
                    load.invalidated = False

                self._log.debug("Cache miss key={key}", key=key)
                value = self._load(key, loader)
                if value is None:
                    return None

                with self._lock:
                    if load.invalidated:
                        self._log.debug("Discarding load invalidated in flight key={key}", key=key)
                    else:
                        self._store(key, value)
                return value
        finally:
            self._leave_load(key, load)

    def get_if_present(self, key: K) -> V | None:
        _, value = self._lookup(key)
        return value

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store(key, value)

    def invalidate(self, key: K) -> None:
        with self._lock:
            if (load := self._loading.get(key)) is not None:
                load.invalidated = True
            if self._entries.pop(key, None) is not None:
                self._log.debug("Invalidated key={key}", key=key)

    def invalidate_where(self, predicate: Callable[[K, V], bool]) -> list[K]:
        """Invalidate every entry matching ``predicate``; return the keys removed."""
        with self._lock:
            keys = [k for k, v in self._entries.items() if predicate(k, v)]
        for key in keys:
            self.invalidate(key)
        return keys

    def invalidate_all(self) -> None:
        with self._lock:
            for load in self._loading.values():
                load.invalidated = True
            self._entries.clear()
        self._log.debug("Cleared cache")

    def as_map(self) -> Mapping[K, V]:
        """Snapshot of the current entries."""
        with self._lock:
            return dict(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self.as_map()))

    def _lookup(self, key: K) -> tuple[bool, V | None]:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return True, self._entries[key]
        return False, None

    def _store(self, key: K, value: V) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.maximum_size:
            evicted, _ = self._entries.popitem(last=False)
            self._log.debug("Evicted key={key}", key=evicted)

    def _load(self, key: K, loader: Callable[[], V | None] | None) -> V | None:
        if loader is not None:
            return loader()
        if self._loader is None:
            return None
        return self._loader(key)

    def _join_load(self, key: K) -> _KeyLoad:
        with self._lock:
            load = self._loading.get(key)
            if load is None:
                load = self._loading[key] = _KeyLoad()
            load.callers += 1
            return load

    def _leave_load(self, key: K, load: _KeyLoad) -> None:
        with self._lock:
            load.callers -= 1
            if load.callers == 0:
                del self._loading[key]


# =============================================================================
# Typed caches (each needs a unique type for injection)
# =============================================================================


class FloatingIpCache(LoadingCache["RegionAndId", "tuple[FloatingIp, ...]"]):
    """Floating IPs associated with a server, keyed by ``RegionAndId``."""


class SecurityGroupCache(LoadingCache["RegionAndName", "SecurityGroup"]):
    """Security groups keyed by ``RegionAndName``."""


class KeyPairCache(LoadingCache["RegionAndName", "KeyPair"]):
    """Key pairs keyed by ``RegionAndName``."""
