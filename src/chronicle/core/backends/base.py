"""
Abstract base class for store backends.

This module defines the contract shared by the three backends:
- RemoteStore: Upstash-style REST service, one HTTP request per call
- LocalStore: Redis server over a socket, one memoised connection
- MemoryStore: process-local dictionaries, no durability

The public methods here are the Store contract. They validate and coerce
arguments once, then delegate to a small set of Redis-shaped hooks that each
backend implements. Because the coercion happens in one place, a record
written through any backend reads back the same way.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, ClassVar

from chronicle.config import BackendKind
from chronicle.core.codec import decode_hash, encode_fields, encode_score
from chronicle.core.errors import StoreClosedError
from chronicle.core.pipeline import Operation, PipelineBatch


class Store(ABC):
    """
    Hash-record and sorted-set storage with pipelined batches.

    Subclasses set ``kind`` and implement the underscore hooks. Callers only
    use the public methods, so they cannot tell backends apart except through
    ``kind``.

    Example:
        >>> store = MemoryStore()
        >>> await store.set_hash("chat:1", {"title": "Hello", "shared": False})
        True
        >>> await store.get_hash("chat:1")
        {"title": "Hello", "shared": "false"}
    """

    kind: ClassVar[BackendKind]

    def __init__(self) -> None:
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError(f"{self.kind.value} store is closed")

    async def __aenter__(self) -> "Store":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # Hash Records
    # =========================================================================

    async def get_hash(self, key: str) -> dict[str, str] | None:
        """
        Fetch every field of a hash record.

        Args:
            key: The record key.

        Returns:
            Field to string value mapping, or None if the key does not exist.

        Raises:
            ParseError: The stored value is not a field/value mapping.
            RetrievalError: The transport failed.
        """
        self._ensure_open()
        return decode_hash(await self._hgetall(key))

    async def set_hash(self, key: str, fields: Mapping[str, Any]) -> bool:
        """
        Write fields into a hash record, merging with existing fields.

        Values are coerced to strings before they are stored.

        Args:
            key: The record key.
            fields: Non-empty mapping of field names to values.

        Returns:
            True once the write is acknowledged.

        Example:
            >>> await store.set_hash("chat:1", {"createdAt": 1700000000})
            True
        """
        self._ensure_open()
        await self._hset(key, encode_fields(fields))
        return True

    async def delete_key(self, key: str) -> bool:
        """
        Remove a key together with its hash record and sorted set.

        Returns:
            True if anything was stored under the key.
        """
        self._ensure_open()
        return bool(await self._delete(key))

    # =========================================================================
    # Sorted Sets
    # =========================================================================

    async def add_to_sorted_set(self, key: str, score: float, member: str) -> bool:
        """
        Add a member with a score, or update the score of an existing member.

        Args:
            key: The sorted set key.
            score: Ordering score, usually a millisecond timestamp.
            member: Member string, unique within the set.

        Returns:
            True if the member was newly added, False if only its score changed.
        """
        self._ensure_open()
        return bool(await self._zadd(key, encode_score(score), str(member)))

    async def remove_from_sorted_set(self, key: str, member: str) -> bool:
        """
        Remove a member from a sorted set.

        Returns:
            True if the member was present. Absent members are not an error.
        """
        self._ensure_open()
        return bool(await self._zrem(key, str(member)))

    async def range_sorted_set(
        self,
        key: str,
        start: int = 0,
        stop: int = -1,
        reverse: bool = False,
    ) -> list[str]:
        """
        Get members by rank, ascending by score unless ``reverse`` is set.

        Follows Redis index rules: both ends are inclusive and negative
        indices count from the end, so ``stop=-1`` means the last member.

        Example:
            >>> # Ten most recently active chats
            >>> await store.range_sorted_set("user:chat:u1", 0, 9, reverse=True)
        """
        self._ensure_open()
        return list(await self._zrange(key, int(start), int(stop), bool(reverse)))

    # =========================================================================
    # Batches and Lifecycle
    # =========================================================================

    def create_batch(self, transaction: bool = False) -> PipelineBatch:
        """
        Start a batch of operations to submit together.

        Args:
            transaction: Ask the backend to apply the batch atomically
                (MULTI/EXEC). Off by default, matching plain pipelining.
        """
        self._ensure_open()
        return PipelineBatch(self, transaction=transaction)

    async def _execute_batch(self, operations: list[Operation], transaction: bool) -> list[Any]:
        self._ensure_open()
        return await self._run_batch(operations, transaction)

    async def connect(self) -> None:
        """Establish or verify the transport. Raises BackendConnectionError."""

    async def close(self) -> None:
        """Release backend resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._close()

    # =========================================================================
    # Backend Hooks
    # =========================================================================

    @abstractmethod
    async def _hgetall(self, key: str) -> Any:
        pass

    @abstractmethod
    async def _hset(self, key: str, fields: dict[str, str]) -> Any:
        pass

    @abstractmethod
    async def _delete(self, key: str) -> int:
        pass

    @abstractmethod
    async def _zadd(self, key: str, score: float, member: str) -> int:
        pass

    @abstractmethod
    async def _zrem(self, key: str, member: str) -> int:
        pass

    @abstractmethod
    async def _zrange(self, key: str, start: int, stop: int, reverse: bool) -> list[str]:
        pass

    @abstractmethod
    async def _run_batch(self, operations: list[Operation], transaction: bool) -> list[Any]:
        pass

    async def _close(self) -> None:
        pass
