"""Thread-safe containers and small sequence helpers."""

from __future__ import annotations

import threading
from typing import Callable, Generic, Hashable, Iterable, Optional, Sequence, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
T = TypeVar("T")
H = TypeVar("H", bound=Hashable)


def with_in(value, low, high):
    """Clamp ``value`` into the closed range ``[low, high]``."""
    if value < low:
        return low
    if high < value:
        return high
    return value


def with_in_default(value, low, high, default):
    """Return ``value`` if it lies in ``[low, high]``, otherwise ``default``."""
    if value < low or high < value:
        return default
    return value


def uniq(source: Iterable[T], key: Callable[[T], H]) -> list[T]:
    """Keep the first item for every distinct ``key(item)``, preserving order."""
    seen: set[H] = set()
    result: list[T] = []
    for item in source:
        marker = key(item)
        if marker not in seen:
            seen.add(marker)
            result.append(item)
    return result


def safe_index(items: Sequence[T], index: int) -> Optional[T]:
    """Return ``items[index]``, or ``None`` when ``index`` is past the end."""
    if index < 0:
        raise IndexError(f"negative index {index}")
    if index >= len(items):
        return None
    return items[index]


class AsyncMap(Generic[K, V]):
    """A dictionary guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._store: dict[K, V] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store

    def snapshot(self) -> dict[K, V]:
        """Return a shallow copy of the current contents."""
        with self._lock:
            return dict(self._store)

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            return self._store.get(key, default)

    def must_get(self, key: K) -> Optional[V]:
        """Return the value for ``key`` or ``None`` when it is absent."""
        with self._lock:
            return self._store.get(key)

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def delete(self, key: K) -> None:
        """Remove ``key`` if present."""
        with self._lock:
            self._store.pop(key, None)

    def take(self, key: K, default: Optional[V] = None) -> Optional[V]:
        """Remove ``key`` and return its value, or ``default`` if absent."""
        with self._lock:
            return self._store.pop(key, default)


class AsyncArr(Generic[T]):
    """A list guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._store: list[T] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _in_range(self, index: int) -> bool:
        return 0 <= index < len(self._store)

    def snapshot(self) -> list[T]:
        """Return a shallow copy of the current contents."""
        with self._lock:
            return list(self._store)

    def get(self, index: int) -> Optional[T]:
        """Return the item at ``index`` or ``None`` when out of range."""
        with self._lock:
            return self._store[index] if self._in_range(index) else None

    def set(self, index: int, value: T) -> None:
        """Replace the item at ``index``; raise IndexError when out of range."""
        with self._lock:
            if not self._in_range(index):
                raise IndexError(f"index {index} out of range")
            self._store[index] = value

    def push(self, value: T) -> None:
        with self._lock:
            self._store.append(value)

    def delete(self, index: int) -> Optional[T]:
        """Remove and return the item at ``index``, or ``None`` when out of range."""
        with self._lock:
            if not self._in_range(index):
                return None
            return self._store.pop(index)

    def take(self, index: int) -> Optional[T]:
        """Alias of :meth:`delete`."""
        return self.delete(index)