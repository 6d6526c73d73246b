"""
Read-through cache validated against per-package write generations.

Every committed store bumps a generation counter for its package id in the
backing store. A cache entry remembers the generations of every id it was
computed from; if any of them has moved on, the entry is stale and dropped.
This keeps caches on separate processes correct without any cross-process
messaging. Local writes also invalidate directly via invalidate().
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable, Mapping

V = TypeVar("V")


@dataclass(frozen=True)
class _Entry(Generic[V]):
    value: V
    generations: tuple[tuple[str, int], ...]

    def mentions(self, package_id: str) -> bool:
        return any(pid == package_id for pid, _ in self.generations)

    def is_current(self, current: Mapping[str, int]) -> bool:
        return all(current.get(pid, 0) == gen for pid, gen in self.generations)


class GenerationalCache(Generic[V]):
    """Bounded LRU cache. maxsize 0 disables caching."""

    def __init__(self, maxsize: int) -> None:
        if maxsize < 0:
            raise ValueError(f"maxsize must be >= 0, got {maxsize}")
        self._maxsize = maxsize
        self._entries: OrderedDict[Hashable, _Entry[V]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, key: Hashable, current: Mapping[str, int]) -> V | None:
        """Return the cached value if every id it depends on is unchanged."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_current(current):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.value

    def store(
        self,
        key: Hashable,
        value: V,
        package_ids: Iterable[str],
        generations: Mapping[str, int],
    ) -> None:
        """Cache value, recording generations as read before it was computed."""
        if self._maxsize == 0:
            return
        snapshot = tuple(sorted((pid, generations.get(pid, 0)) for pid in set(package_ids)))
        self._entries[key] = _Entry(value=value, generations=snapshot)
        self._entries.move_to_end(key)
        while len(self._entries) > self._maxsize:
            self._entries.popitem(last=False)

    def invalidate(self, package_id: str) -> int:
        """Drop every entry that depends on package_id. Returns the count."""
        stale = [k for k, e in self._entries.items() if e.mentions(package_id)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
