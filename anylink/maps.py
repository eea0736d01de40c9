"""String-keyed maps with different locking strategies behind one interface."""

from __future__ import annotations

import threading
from typing import Any

_SHARD_COUNT = 32


class BaseMap:
    """A plain dictionary map with no locking."""

    def __init__(self, size: int = 0) -> None:
        self._data: dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


class RWLockMap(BaseMap):
    """A dictionary map guarded by a single lock."""

    def __init__(self, size: int = 0) -> None:
        super().__init__(size)
        self._lock = threading.Lock()

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class SyncMap(BaseMap):
    """A map that relies on the atomicity of single dictionary operations."""


def _fnv32(key: str) -> int:
    value = 2166136261
    for byte in key.encode():
        value = (value * 16777619) & 0xFFFFFFFF
        value ^= byte
    return value


class ConcurrentMap:
    """A map split into independently locked shards."""

    def __init__(self, size: int = 0) -> None:
        self._shards = [({}, threading.Lock()) for _ in range(_SHARD_COUNT)]

    def _shard(self, key: str):
        return self._shards[_fnv32(key) % _SHARD_COUNT]

    def set(self, key: str, value: Any) -> None:
        data, lock = self._shard(key)
        with lock:
            data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        data, lock = self._shard(key)
        with lock:
            return data.get(key, default)

    def delete(self, key: str) -> None:
        data, lock = self._shard(key)
        with lock:
            data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        data, lock = self._shard(key)
        with lock:
            return key in data

    def __len__(self) -> int:
        total = 0
        for data, lock in self._shards:
            with lock:
                total += len(data)
        return total


def new_map(name: str, size: int = 0):
    """Create a map by kind: "cmap", "rwmap", "syncmap"; anything else is a plain map."""
    kinds = {"cmap": ConcurrentMap, "rwmap": RWLockMap, "syncmap": SyncMap}
    return kinds.get(name, BaseMap)(size)