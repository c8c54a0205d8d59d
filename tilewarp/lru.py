from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Generic, Hashable, List, Optional, TypeVar

T = TypeVar("T")


def _noop(_item) -> None:
    return None


class LRUCache(Generic[T]):
    """
    Fixed-capacity LRU map with a disposal hook.

    `on_remove` is called exactly once for every value that leaves the cache through
    eviction, `remove()`, `reset()` or replacement by a different value under the same key.
    `get()` promotes the key to most-recently-used.
    """

    def __init__(self, max_size: int, on_remove: Optional[Callable[[T], None]] = None):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = int(max_size)
        self.on_remove: Callable[[T], None] = on_remove or _noop
        self._data: "OrderedDict[Hashable, T]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data

    def has(self, key: Hashable) -> bool:
        return key in self._data

    def keys(self) -> List[Hashable]:
        """Keys from least- to most-recently used."""
        return list(self._data.keys())

    def add(self, key: Hashable, value: T) -> "LRUCache[T]":
        if value is None:
            return self
        old = self._data.pop(key, None)
        if old is not None and old is not value:
            self.on_remove(old)
        self._data[key] = value
        self._shrink()
        return self

    def get(self, key: Hashable) -> Optional[T]:
        if key not in self._data:
            return None
        self._data.move_to_end(key)
        return self._data[key]

    def get_and_remove(self, key: Hashable) -> Optional[T]:
        """Detach a value without disposing it; the caller now owns it."""
        return self._data.pop(key, None)

    def remove(self, key: Hashable) -> "LRUCache[T]":
        value = self._data.pop(key, None)
        if value is not None:
            self.on_remove(value)
        return self

    def set_max_size(self, max_size: int) -> "LRUCache[T]":
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = int(max_size)
        self._shrink()
        return self

    def reset(self) -> "LRUCache[T]":
        values = list(self._data.values())
        self._data = OrderedDict()
        for value in values:
            self.on_remove(value)
        return self

    def _shrink(self) -> None:
        while len(self._data) > self.max_size:
            _, value = self._data.popitem(last=False)
            self.on_remove(value)
