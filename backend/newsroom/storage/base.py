"""
Key/value storage contract shared by every backend.

Values are strings. Besides plain keys a backend provides unordered sets,
sorted sets (member -> float score) and numeric counters. All writes go
through `WriteBatch`, which a backend applies all-or-nothing, so a logical
entity spread over several keys is never observed half-written.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

Op = Tuple[Any, ...]


class WriteBatch:
    """Collects write operations and applies them atomically on execute()."""

    def __init__(self, store: "KeyValueStore"):
        self._store = store
        self._ops: List[Op] = []

    def set(self, key: str, value: str) -> "WriteBatch":
        self._ops.append(("set", key, str(value)))
        return self

    def add_to_set(self, key: str, *members: str) -> "WriteBatch":
        if members:
            self._ops.append(("sadd", key, tuple(members)))
        return self

    def remove_from_set(self, key: str, *members: str) -> "WriteBatch":
        if members:
            self._ops.append(("srem", key, tuple(members)))
        return self

    def z_add(self, key: str, score: float, member: str) -> "WriteBatch":
        self._ops.append(("zadd", key, float(score), member))
        return self

    def z_remove(self, key: str, member: str) -> "WriteBatch":
        self._ops.append(("zrem", key, member))
        return self

    def incr_by(self, key: str, amount: int) -> "WriteBatch":
        self._ops.append(("incrby", key, int(amount)))
        return self

    def incr_by_float(self, key: str, amount: float) -> "WriteBatch":
        self._ops.append(("incrbyfloat", key, float(amount)))
        return self

    def delete(self, *keys: str) -> "WriteBatch":
        for key in keys:
            self._ops.append(("delete", key))
        return self

    def __len__(self) -> int:
        return len(self._ops)

    def execute(self) -> List[Any]:
        """Apply all queued operations; returns one result per operation."""
        if not self._ops:
            return []
        ops, self._ops = self._ops, []
        return self._store._execute(ops)

    def __enter__(self) -> "WriteBatch":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.execute()
        else:
            self._ops = []
        return False


class KeyValueStore(ABC):
    """Abstract tenant-agnostic key/value store."""

    # Reads

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def get_many(self, keys: List[str]) -> List[Optional[str]]:
        ...

    @abstractmethod
    def members(self, key: str) -> Set[str]:
        ...

    @abstractmethod
    def z_range_by_score(self, key: str, lo: float, hi: float) -> List[str]:
        """Members with lo <= score <= hi, lowest score first."""

    @abstractmethod
    def z_range_rev(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        """Members ordered highest score first, sliced inclusively [start, stop]."""

    @abstractmethod
    def z_score(self, key: str, member: str) -> Optional[float]:
        ...

    # Writes

    @abstractmethod
    def _execute(self, ops: List[Op]) -> List[Any]:
        """Apply a list of operations all-or-nothing."""

    def pipeline(self) -> WriteBatch:
        return WriteBatch(self)

    def set(self, key: str, value: str) -> None:
        self.pipeline().set(key, value).execute()

    def multi_set(self, mapping: Dict[str, str]) -> None:
        batch = self.pipeline()
        for key, value in mapping.items():
            batch.set(key, value)
        batch.execute()

    def add_to_set(self, key: str, *members: str) -> None:
        self.pipeline().add_to_set(key, *members).execute()

    def remove_from_set(self, key: str, *members: str) -> None:
        self.pipeline().remove_from_set(key, *members).execute()

    def z_add(self, key: str, score: float, member: str) -> None:
        self.pipeline().z_add(key, score, member).execute()

    def incr_by(self, key: str, amount: int = 1) -> int:
        return int(self.pipeline().incr_by(key, amount).execute()[0])

    def incr_by_float(self, key: str, amount: float) -> float:
        return float(self.pipeline().incr_by_float(key, amount).execute()[0])

    def delete_keys(self, keys: Iterable[str]) -> None:
        self.pipeline().delete(*keys).execute()

    def close(self) -> None:
        """Release connections held by the backend."""


def slice_inclusive(items: List[str], start: int, stop: int) -> List[str]:
    """Redis-style inclusive range where -1 means the last element."""
    if stop < 0:
        stop = len(items) + stop
    if start < 0:
        start = max(len(items) + start, 0)
    return items[start : stop + 1]
