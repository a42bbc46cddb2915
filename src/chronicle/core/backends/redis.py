from typing import Any

import structlog
from redis import exceptions as redis_exceptions
from redis.asyncio import Redis, from_url

from chronicle.config import BackendKind
from chronicle.core.backends.base import Store
from chronicle.core.errors import (
    BackendConnectionError,
    BatchError,
    CommandError,
    ParseError,
    RetrievalError,
    classify_connection_error,
)
from chronicle.core.pipeline import Operation, OpType, normalize_result

logger = structlog.get_logger()

_TRANSPORT_ERRORS = (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError)


class LocalStore(Store):
    """
    Store backed by a Redis server reached over a socket.

    Holds one client, created on first use and kept for the life of the
    store. Command ordering relies on the client itself; no lock is added.
    """

    kind = BackendKind.LOCAL

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        connect_timeout: float | None = 5.0,
        client: Redis | None = None,
    ) -> None:
        super().__init__()
        self.url = url
        self._connect_timeout = connect_timeout
        self._redis = client

    @property
    def client(self) -> Redis:
        if self._redis is None:
            self._redis = from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self._connect_timeout,
            )
        return self._redis

    async def connect(self) -> None:
        """
        Open the connection and check it with PING.

        Raises:
            BackendConnectionError: With the cause classified as refused,
                timeout, host_not_found or other.
        """
        try:
            await self.client.ping()
        except (redis_exceptions.RedisError, OSError, ValueError) as exc:
            # from_url raises ValueError for a malformed URL
            await self._discard_client()
            raise BackendConnectionError(
                classify_connection_error(exc), self.url, str(exc)
            ) from exc
        logger.info("local_store_connected", url=self.url)

    async def _discard_client(self) -> None:
        client, self._redis = self._redis, None
        if client is None:
            return
        try:
            await client.aclose()
        except (redis_exceptions.RedisError, OSError) as exc:
            logger.debug("local_store_close_failed", url=self.url, error=str(exc))

    async def _call(self, command: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return await getattr(self.client, command)(*args, **kwargs)
        except _TRANSPORT_ERRORS as exc:
            raise RetrievalError(
                f"{command} on {self.url} failed: {exc}", classify_connection_error(exc)
            ) from exc
        except redis_exceptions.ResponseError as exc:
            raise CommandError(str(exc)) from exc
        except ValueError as exc:
            raise RetrievalError(f"{command} on {self.url} failed: {exc}") from exc

    async def _hgetall(self, key: str) -> Any:
        return await self._call("hgetall", key)

    async def _hset(self, key: str, fields: dict[str, str]) -> int:
        return await self._call("hset", key, mapping=fields)

    async def _delete(self, key: str) -> int:
        return await self._call("delete", key)

    async def _zadd(self, key: str, score: float, member: str) -> int:
        return await self._call("zadd", key, {member: score})

    async def _zrem(self, key: str, member: str) -> int:
        return await self._call("zrem", key, member)

    async def _zrange(self, key: str, start: int, stop: int, reverse: bool) -> list[str]:
        results = await self._call("zrange", key, start, stop, desc=reverse)
        return [r.decode() if isinstance(r, bytes) else r for r in results]

    async def _run_batch(self, operations: list[Operation], transaction: bool) -> list[Any]:
        try:
            async with self.client.pipeline(transaction=transaction) as pipe:
                for operation in operations:
                    _queue(pipe, operation)
                replies = await pipe.execute(raise_on_error=False)
        except _TRANSPORT_ERRORS as exc:
            raise RetrievalError(
                f"pipeline on {self.url} failed: {exc}", classify_connection_error(exc)
            ) from exc
        except redis_exceptions.ResponseError as exc:
            # MULTI/EXEC aborts the whole transaction on a queued command error
            raise CommandError(str(exc)) from exc
        except ValueError as exc:
            raise RetrievalError(f"pipeline on {self.url} failed: {exc}") from exc

        results: list[Any] = []
        for index, (operation, reply) in enumerate(zip(operations, replies)):
            if isinstance(reply, Exception):
                error: Exception = reply
                if isinstance(reply, redis_exceptions.ResponseError):
                    error = CommandError(str(reply))
                raise BatchError(index, operation, results, error)
            try:
                results.append(normalize_result(operation.op, reply))
            except ParseError as exc:
                raise BatchError(index, operation, results, exc) from exc
        return results

    async def _close(self) -> None:
        await self._discard_client()


def _queue(pipe: Any, operation: Operation) -> None:
    key, args = operation.key, operation.args
    if operation.op == OpType.GET_HASH:
        pipe.hgetall(key)
    elif operation.op == OpType.SET_HASH:
        pipe.hset(key, mapping=args[0])
    elif operation.op == OpType.ADD_TO_SORTED_SET:
        score, member = args
        pipe.zadd(key, {member: score})
    elif operation.op == OpType.REMOVE_FROM_SORTED_SET:
        pipe.zrem(key, args[0])
    elif operation.op == OpType.DELETE_KEY:
        pipe.delete(key)
    else:
        raise ValueError(f"unsupported operation {operation.op}")
