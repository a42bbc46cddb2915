"""
In-memory store backend.

This is the degraded mode the resolver falls back to when no durable backend
is configured or reachable. All data lives in two dictionaries:
- Hash records: key -> {field: value}
- Sorted sets: key -> {member: score}

WARNING: Not durable!
- Data is lost when the process exits
- Not shared between processes
- Not thread-safe: safe under a single event loop only, a multi-threaded
  host must guard the store with its own lock
"""

from typing import Any

from chronicle.config import BackendKind
from chronicle.core.backends.base import Store
from chronicle.core.pipeline import Operation, OpType, normalize_result


class MemoryStore(Store):
    """
    Dictionary-backed implementation of Store.

    Follows Redis semantics where they are observable: HSET merges fields,
    ZADD reports whether the member is new, a sorted set that loses its last
    member disappears, and range indices are inclusive with negative indices
    counting from the end.

    Example:
        >>> store = MemoryStore()
        >>> await store.add_to_sorted_set("user:chat:u1", 1.0, "chat:a")
        True
        >>> await store.add_to_sorted_set("user:chat:u1", 2.0, "chat:a")
        False
    """

    kind = BackendKind.MEMORY

    def __init__(self) -> None:
        super().__init__()
        self._hashes: dict[str, dict[str, str]] = {}
        self._sorted_sets: dict[str, dict[str, float]] = {}

    async def _hgetall(self, key: str) -> dict[str, str] | None:
        record = self._hashes.get(key)
        # Copy so callers cannot mutate stored state
        return dict(record) if record is not None else None

    async def _hset(self, key: str, fields: dict[str, str]) -> int:
        record = self._hashes.setdefault(key, {})
        added = sum(1 for name in fields if name not in record)
        record.update(fields)
        return added

    async def _delete(self, key: str) -> int:
        existed = key in self._hashes or key in self._sorted_sets
        self._hashes.pop(key, None)
        self._sorted_sets.pop(key, None)
        return int(existed)

    async def _zadd(self, key: str, score: float, member: str) -> int:
        members = self._sorted_sets.setdefault(key, {})
        is_new = member not in members
        members[member] = score
        return int(is_new)

    async def _zrem(self, key: str, member: str) -> int:
        members = self._sorted_sets.get(key)
        if not members or member not in members:
            return 0
        del members[member]
        if not members:
            del self._sorted_sets[key]
        return 1

    async def _zrange(self, key: str, start: int, stop: int, reverse: bool) -> list[str]:
        members = self._sorted_sets.get(key)
        if not members:
            return []

        # Ties on score order by member, as in Redis
        ordered = sorted(members.items(), key=lambda item: (item[1], item[0]), reverse=reverse)

        length = len(ordered)
        if start < 0:
            start = max(0, length + start)
        if stop < 0:
            stop = length + stop
        if start > stop or start >= length:
            return []

        # Redis stop is inclusive, Python slice is exclusive
        return [member for member, _ in ordered[start : stop + 1]]

    async def _run_batch(self, operations: list[Operation], transaction: bool) -> list[Any]:
        # Nothing here awaits real I/O, so the batch never interleaves with
        # other tasks and transaction mode needs no extra handling.
        results: list[Any] = []
        for operation in operations:
            raw = await self._apply(operation)
            results.append(normalize_result(operation.op, raw))
        return results

    async def _apply(self, operation: Operation) -> Any:
        key, args = operation.key, operation.args
        if operation.op == OpType.GET_HASH:
            return await self._hgetall(key)
        if operation.op == OpType.SET_HASH:
            return await self._hset(key, *args)
        if operation.op == OpType.ADD_TO_SORTED_SET:
            return await self._zadd(key, *args)
        if operation.op == OpType.REMOVE_FROM_SORTED_SET:
            return await self._zrem(key, *args)
        if operation.op == OpType.DELETE_KEY:
            return await self._delete(key)
        raise ValueError(f"unsupported operation {operation.op}")

    # =========================================================================
    # Utility Methods (not part of the contract, useful for testing)
    # =========================================================================

    def clear(self) -> None:
        """Drop every record and sorted set."""
        self._hashes.clear()
        self._sorted_sets.clear()

    def keys(self) -> list[str]:
        """All keys holding a hash record or a sorted set."""
        return sorted(set(self._hashes) | set(self._sorted_sets))
