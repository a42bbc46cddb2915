"""
Batched store operations.

A PipelineBatch collects operations in the order they are queued and hands
them to its store in one go. Transport backends send the whole queue in a
single round trip; the in-memory backend simply runs it in order. Either way
the result list lines up with the queue position by position.

Batches are not transactional unless created with ``transaction=True``: a
failing operation does not undo the ones that already ran.

Example:
    >>> batch = store.create_batch()
    >>> batch.set_hash("chat:1", {"title": "hi"}).add_to_sorted_set(
    ...     "user:chat:u1", 1700000000.0, "chat:1"
    ... )
    >>> await batch.execute()
    [True, True]
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from chronicle.core.codec import decode_hash, encode_fields, encode_score
from chronicle.core.errors import BatchAlreadyExecutedError, StoreClosedError

if TYPE_CHECKING:
    from chronicle.core.backends.base import Store


class OpType(StrEnum):
    GET_HASH = "get_hash"
    SET_HASH = "set_hash"
    ADD_TO_SORTED_SET = "add_to_sorted_set"
    REMOVE_FROM_SORTED_SET = "remove_from_sorted_set"
    DELETE_KEY = "delete_key"


@dataclass(frozen=True)
class Operation:
    """One queued call: the operation, its key and its remaining arguments."""

    op: OpType
    key: str
    args: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return f"{self.op.value}({self.key!r})"


def normalize_result(op: OpType, raw: Any) -> Any:
    """Convert a raw backend reply into the Store contract's return type."""
    if op == OpType.GET_HASH:
        return decode_hash(raw)
    if op == OpType.SET_HASH:
        return True
    return bool(int(raw))


class PipelineBatch:
    """
    Ordered queue of store operations, executed exactly once.

    Each queuing method validates its arguments immediately and returns the
    batch so calls can be chained.
    """

    def __init__(self, store: "Store", transaction: bool = False) -> None:
        self._store = store
        self._transaction = transaction
        self._operations: list[Operation] = []
        self._executed = False

    @property
    def operations(self) -> tuple[Operation, ...]:
        return tuple(self._operations)

    @property
    def transaction(self) -> bool:
        return self._transaction

    @property
    def executed(self) -> bool:
        return self._executed

    def __len__(self) -> int:
        return len(self._operations)

    def _queue(self, op: OpType, key: str, *args: Any) -> "PipelineBatch":
        if self._executed:
            raise BatchAlreadyExecutedError("cannot queue onto a batch that was already executed")
        self._operations.append(Operation(op, key, args))
        return self

    def get_hash(self, key: str) -> "PipelineBatch":
        return self._queue(OpType.GET_HASH, key)

    def set_hash(self, key: str, fields: Mapping[str, Any]) -> "PipelineBatch":
        return self._queue(OpType.SET_HASH, key, encode_fields(fields))

    def add_to_sorted_set(self, key: str, score: float, member: str) -> "PipelineBatch":
        return self._queue(OpType.ADD_TO_SORTED_SET, key, encode_score(score), str(member))

    def remove_from_sorted_set(self, key: str, member: str) -> "PipelineBatch":
        return self._queue(OpType.REMOVE_FROM_SORTED_SET, key, str(member))

    def delete_key(self, key: str) -> "PipelineBatch":
        return self._queue(OpType.DELETE_KEY, key)

    async def execute(self) -> list[Any]:
        """
        Run the queued operations against the owning store.

        Returns:
            One result per queued operation, in queue order.

        Raises:
            BatchAlreadyExecutedError: The batch was executed before.
            BatchError: A queued operation failed.
            RetrievalError: The transport failed before any result came back.
            StoreClosedError: The owning store was closed; the batch stays
                unexecuted.
        """
        if self._executed:
            raise BatchAlreadyExecutedError("batch was already executed")
        if self._store.closed:
            raise StoreClosedError(f"{self._store.kind.value} store is closed")
        self._executed = True

        if not self._operations:
            return []

        return await self._store._execute_batch(list(self._operations), self._transaction)
