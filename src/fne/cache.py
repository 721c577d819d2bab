from __future__ import annotations

import copy
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol


class Cache(Protocol):
    def has(self, key: str) -> bool: ...

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def clear(self) -> bool: ...


class MemoryCache:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float | None]] = {}

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return entry

    def has(self, key: str) -> bool:
        return self._live(key) is not None

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._live(key)
        if entry is None:
            return default
        return copy.deepcopy(entry[0])

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if ttl is not None and ttl <= 0:
            self._entries.pop(key, None)
            return True
        expires_at = None if ttl is None else self._clock() + ttl
        self._entries[key] = (copy.deepcopy(value), expires_at)
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> bool:
        self._entries.clear()
        return True

    def get_many(self, keys: Iterable[str], default: Any = None) -> dict[str, Any]:
        return {key: self.get(key, default) for key in keys}

    def set_many(self, values: Mapping[str, Any], ttl: int | None = None) -> bool:
        for key, value in values.items():
            self.set(key, value, ttl)
        return True

    def delete_many(self, keys: Iterable[str]) -> bool:
        for key in keys:
            self.delete(key)
        return True

    def __len__(self) -> int:
        return sum(1 for key in list(self._entries) if self._live(key) is not None)
