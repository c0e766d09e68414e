"""In-memory key/value storage with per-key expiry."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class MemoryDriver(Generic[T]):
    """Keys that expire after a time-to-live, measured in seconds."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._mem: dict[str, T] = {}
        self._timer: dict[str, float] = {}

    def _read(self, key: str) -> T:
        if key not in self._mem:
            raise KeyError(key)
        deadline = self._timer.get(key)
        if deadline is None:
            del self._mem[key]
            raise KeyError(key)
        if deadline <= self._clock():
            del self._mem[key]
            del self._timer[key]
            raise KeyError(key)
        return self._mem[key]

    def _write(self, key: str, value: T, expire: float, overwrite_ttl: bool) -> T:
        existed = key in self._mem
        self._mem[key] = value
        if not existed or overwrite_ttl:
            self._timer[key] = self._clock() + expire
        return value

    def read(self, key: str) -> T:
        """Return the live value for ``key``; raise KeyError if absent or expired."""
        with self._lock:
            return self._read(key)

    def write(self, key: str, value: T, expire: float, overwrite_ttl: bool) -> T:
        """Store ``value``; the TTL is set for new keys or when ``overwrite_ttl``."""
        with self._lock:
            return self._write(key, value, expire, overwrite_ttl)

    def inc_by(self, key: str, value: int, expire: float, overwrite_ttl: bool) -> int:
        """Add ``value`` to an integer counter and return the new total.

        A live non-integer value is left untouched and ``value`` is returned.
        """
        with self._lock:
            next_value = value
            try:
                current: Any = self._read(key)
            except KeyError:
                pass
            else:
                if not isinstance(current, int) or isinstance(current, bool):
                    return next_value
                next_value += current
            self._write(key, next_value, expire, overwrite_ttl)  # type: ignore[arg-type]
            return next_value

    def inc(self, key: str, expire: float, overwrite_ttl: bool) -> int:
        return self.inc_by(key, 1, expire, overwrite_ttl)

    def exists(self, key: str) -> bool:
        with self._lock:
            deadline = self._timer.get(key)
            return deadline is not None and deadline > self._clock() and key in self._mem

    def expire(self, key: str) -> None:
        """Drop ``key`` immediately."""
        with self._lock:
            self._mem.pop(key, None)
            self._timer.pop(key, None)

    def set_expire(self, key: str, duration: float) -> float:
        """Give a live ``key`` a new TTL of ``duration`` seconds from now."""
        with self._lock:
            try:
                self._read(key)
            except KeyError:
                return duration
            self._timer[key] = self._clock() + duration
            return duration

    def list(self, prefix: str) -> list[str]:
        """Return the live keys starting with ``prefix``."""
        with self._lock:
            now = self._clock()
            return [k for k, deadline in self._timer.items() if now < deadline and k.startswith(prefix)]

    def wipe(self, prefix: str) -> None:
        """Drop every key held by this driver, whatever ``prefix`` is."""
        with self._lock:
            self._mem = {}
            self._timer = {}

    def wipe_prefix(self, prefix: str) -> None:
        """Drop every key starting with ``prefix``."""
        with self._lock:
            for key in [k for k in self._mem if k.startswith(prefix)]:
                del self._mem[key]
                self._timer.pop(key, None)


class ObliviousMap(Generic[T]):
    """A namespaced view over a driver whose entries forget themselves."""

    def __init__(
        self,
        prefix: str,
        expire: float,
        update_time_if_write: bool,
        driver: Optional[MemoryDriver[T]] = None,
    ) -> None:
        self.prefix = prefix
        self.expire = expire
        self.update_time_if_write = update_time_if_write
        self.driver: MemoryDriver[T] = driver if driver is not None else MemoryDriver()
        self._hold = threading.Lock()

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Hold this map's lock for the duration of the block."""
        with self._hold:
            yield

    def get(self, key: str, default: Optional[T] = None) -> Optional[T]:
        try:
            return self.driver.read(self.prefix + key)
        except KeyError:
            return default

    def set(self, key: str, value: T) -> T:
        return self.driver.write(self.prefix + key, value, self.expire, self.update_time_if_write)

    def set_expire(self, key: str, duration: float) -> float:
        return self.driver.set_expire(self.prefix + key, duration)

    def unset(self, key: str) -> None:
        self.driver.expire(self.prefix + key)

    def exist(self, key: str) -> bool:
        return self.driver.exists(self.prefix + key)

    def wipe(self) -> None:
        self.driver.wipe(self.prefix)

    def wipe_prefix(self, prefix: str) -> None:
        self.driver.wipe_prefix(self.prefix + prefix)

    def add_by(self, key: str, value: int) -> int:
        return self.driver.inc_by(self.prefix + key, value, self.expire, self.update_time_if_write)

    def add(self, key: str) -> int:
        return self.driver.inc(self.prefix + key, self.expire, self.update_time_if_write)