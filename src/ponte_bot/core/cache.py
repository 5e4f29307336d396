
"""Cache em memória limitado por tamanho (LRU) com TTL opcional por entrada."""
from __future__ import annotations
import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Iterator, TypeVar

V = TypeVar("V")

_MISSING = object()


class BoundedCache(Generic[V]):
    """Dono da própria política de despejo: excedeu `max_size`, sai o menos recente.

    `ttl_s=None` desliga expiração. O relógio é injetável para testes.
    """

    def __init__(self, max_size: int = 10_000, ttl_s: float | None = None, clock: Callable[[], float] = time.monotonic):
        if max_size <= 0:
            raise ValueError("max_size deve ser positivo")
        self.max_size = max_size
        self.ttl_s = ttl_s
        self._clock = clock
        self._data: OrderedDict[Hashable, tuple[V, float | None]] = OrderedDict()

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __iter__(self) -> Iterator[Hashable]:
        self._purge_expired()
        return iter(list(self._data.keys()))

    def get(self, key: Hashable, default=None):
        item = self._data.get(key)
        if item is None:
            return default
        value, expiry = item
        if expiry is not None and self._clock() >= expiry:
            del self._data[key]
            return default
        self._data.move_to_end(key)
        return value

    def set(self, key: Hashable, value: V) -> None:
        expiry = None if self.ttl_s is None else self._clock() + self.ttl_s
        self._data.pop(key, None)
        self._data[key] = (value, expiry)
        while len(self._data) > self.max_size:
            self._data.popitem(last=False)

    def pop(self, key: Hashable, default=None):
        item = self._data.pop(key, None)
        return default if item is None else item[0]

    def items(self) -> list[tuple[Hashable, V]]:
        self._purge_expired()
        return [(k, v) for k, (v, _) in self._data.items()]

    def clear(self) -> None:
        self._data.clear()

    def _purge_expired(self) -> None:
        if self.ttl_s is None:
            return
        now = self._clock()
        for key in [k for k, (_, exp) in self._data.items() if exp is not None and now >= exp]:
            del self._data[key]
