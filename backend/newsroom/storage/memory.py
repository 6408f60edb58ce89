import copy
import threading
from typing import Any, Dict, List, Optional, Set

from newsroom.storage.base import KeyValueStore, Op, slice_inclusive


class MemoryKeyValueStore(KeyValueStore):
    """In-process store used by tests and single-process development."""

    def __init__(self):
        self._lock = threading.RLock()
        self._strings: Dict[str, str] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._strings.get(key)

    def get_many(self, keys: List[str]) -> List[Optional[str]]:
        with self._lock:
            return [self._strings.get(key) for key in keys]

    def members(self, key: str) -> Set[str]:
        with self._lock:
            return set(self._sets.get(key, ()))

    def z_range_by_score(self, key: str, lo: float, hi: float) -> List[str]:
        with self._lock:
            items = sorted(
                self._zsets.get(key, {}).items(), key=lambda kv: (kv[1], kv[0])
            )
        return [member for member, score in items if lo <= score <= hi]

    def z_range_rev(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        with self._lock:
            items = sorted(
                self._zsets.get(key, {}).items(),
                key=lambda kv: (kv[1], kv[0]),
                reverse=True,
            )
        return slice_inclusive([member for member, _ in items], start, stop)

    def z_score(self, key: str, member: str) -> Optional[float]:
        with self._lock:
            return self._zsets.get(key, {}).get(member)

    def _snapshot(self, key: str):
        return (
            self._strings.get(key),
            copy.copy(self._sets.get(key)),
            copy.copy(self._zsets.get(key)),
        )

    def _restore(self, key: str, snapshot) -> None:
        for container, value in zip((self._strings, self._sets, self._zsets), snapshot):
            if value is None:
                container.pop(key, None)
            else:
                container[key] = value

    def _apply(self, op: Op) -> Any:
        kind, key = op[0], op[1]
        if kind == "set":
            self._strings[key] = op[2]
            return True
        if kind == "sadd":
            bucket = self._sets.setdefault(key, set())
            added = len(set(op[2]) - bucket)
            bucket.update(op[2])
            return added
        if kind == "srem":
            bucket = self._sets.get(key, set())
            removed = len(bucket & set(op[2]))
            bucket.difference_update(op[2])
            if not bucket:
                self._sets.pop(key, None)
            return removed
        if kind == "zadd":
            zset = self._zsets.setdefault(key, {})
            is_new = op[3] not in zset
            zset[op[3]] = op[2]
            return int(is_new)
        if kind == "zrem":
            zset = self._zsets.get(key, {})
            removed = zset.pop(op[2], None) is not None
            if not zset:
                self._zsets.pop(key, None)
            return int(removed)
        if kind == "incrby":
            value = int(self._strings.get(key, "0")) + op[2]
            self._strings[key] = str(value)
            return value
        if kind == "incrbyfloat":
            value = float(self._strings.get(key, "0")) + op[2]
            self._strings[key] = repr(value)
            return value
        if kind == "delete":
            existed = any(key in c for c in (self._strings, self._sets, self._zsets))
            self._strings.pop(key, None)
            self._sets.pop(key, None)
            self._zsets.pop(key, None)
            return int(existed)
        raise ValueError(f"Unknown operation: {kind}")

    def _execute(self, ops: List[Op]) -> List[Any]:
        with self._lock:
            snapshots = {}
            for op in ops:
                if op[1] not in snapshots:
                    snapshots[op[1]] = self._snapshot(op[1])
            try:
                return [self._apply(op) for op in ops]
            except Exception:
                for key, snapshot in snapshots.items():
                    self._restore(key, snapshot)
                raise

    def flush(self) -> None:
        with self._lock:
            self._strings.clear()
            self._sets.clear()
            self._zsets.clear()
