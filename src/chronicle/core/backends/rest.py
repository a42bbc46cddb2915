"""
REST store backend for Upstash-style Redis services.

Every command is a JSON array posted to the service URL:

    POST {url}              ["HSET", "chat:1", "title", "Hello"]
    POST {url}/pipeline     [["HGETALL", "chat:1"], ["DEL", "chat:2"]]
    POST {url}/multi-exec   same body as /pipeline, applied atomically

and every reply is ``{"result": ...}`` or ``{"error": "..."}`` (one per
command for /pipeline and /multi-exec). No connection is kept between calls,
so concurrent callers never share client state.
"""

from typing import Any

import httpx
import structlog

from chronicle.config import BackendKind
from chronicle.core.backends.base import Store
from chronicle.core.errors import (
    BackendConnectionError,
    BatchError,
    CommandError,
    ConnectionCause,
    ParseError,
    RetrievalError,
    cause_for_status,
    classify_connection_error,
)
from chronicle.core.pipeline import Operation, OpType, normalize_result

logger = structlog.get_logger()


class RemoteStore(Store):
    kind = BackendKind.REMOTE

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        self.url = url.rstrip("/")
        self._token = token
        self._timeout = timeout
        # Injected by tests; None means httpx's default network transport
        self._transport = transport

    async def _post(self, path: str, body: list[Any]) -> Any:
        async with httpx.AsyncClient(
            base_url=self.url,
            headers={"Authorization": f"Bearer {self._token}"},
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(path, json=body)

        cause = cause_for_status(response.status_code)
        if cause is not None:
            raise RetrievalError(f"{self.url}{path} answered {response.status_code}", cause)

        try:
            payload = response.json()
        except ValueError as exc:
            raise RetrievalError(
                f"{self.url}{path} answered {response.status_code} with a non-JSON body"
            ) from exc

        if isinstance(payload, dict) and "error" in payload:
            raise CommandError(str(payload["error"]))
        if response.is_error:
            raise RetrievalError(f"{self.url}{path} answered {response.status_code}")
        return payload

    async def _request(self, path: str, body: list[Any]) -> Any:
        try:
            return await self._post(path, body)
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            raise RetrievalError(
                f"request to {self.url}{path} failed: {exc}", classify_connection_error(exc)
            ) from exc

    async def _command(self, *command: Any) -> Any:
        payload = await self._request("/", list(command))
        if not isinstance(payload, dict) or "result" not in payload:
            raise RetrievalError(f"unexpected reply for {command[0]}: {payload!r}")
        return payload["result"]

    async def connect(self) -> None:
        """
        Check the URL and token with a PING.

        Raises:
            BackendConnectionError: unauthorized, url_not_found, refused,
                host_not_found, timeout or other.
        """
        try:
            await self._command("PING")
        except RetrievalError as exc:
            raise BackendConnectionError(exc.cause, self.url, str(exc)) from exc
        except CommandError as exc:
            # Some deployments answer auth failures with an error body and 400
            cause = ConnectionCause.OTHER
            if "unauthorized" in str(exc).lower():
                cause = ConnectionCause.UNAUTHORIZED
            raise BackendConnectionError(cause, self.url, str(exc)) from exc
        logger.info("remote_store_connected", url=self.url)

    async def _hgetall(self, key: str) -> Any:
        return await self._command("HGETALL", key)

    async def _hset(self, key: str, fields: dict[str, str]) -> int:
        return await self._command("HSET", key, *_flatten(fields))

    async def _delete(self, key: str) -> int:
        return await self._command("DEL", key)

    async def _zadd(self, key: str, score: float, member: str) -> int:
        return await self._command("ZADD", key, _score(score), member)

    async def _zrem(self, key: str, member: str) -> int:
        return await self._command("ZREM", key, member)

    async def _zrange(self, key: str, start: int, stop: int, reverse: bool) -> list[str]:
        command = ["ZRANGE", key, str(start), str(stop)]
        if reverse:
            command.append("REV")
        result = await self._command(*command)
        if not isinstance(result, list):
            raise ParseError(f"ZRANGE reply is not a list: {result!r}")
        return [str(member) for member in result]

    async def _run_batch(self, operations: list[Operation], transaction: bool) -> list[Any]:
        path = "/multi-exec" if transaction else "/pipeline"
        replies = await self._request(path, [_command_for(op) for op in operations])

        if not isinstance(replies, list) or len(replies) != len(operations):
            raise RetrievalError(f"{path} returned {replies!r} for {len(operations)} commands")

        results: list[Any] = []
        for index, (operation, reply) in enumerate(zip(operations, replies)):
            if not isinstance(reply, dict):
                raise BatchError(index, operation, results, ParseError(f"bad reply {reply!r}"))
            if "error" in reply:
                raise BatchError(index, operation, results, CommandError(str(reply["error"])))
            try:
                results.append(normalize_result(operation.op, reply.get("result")))
            except (ParseError, TypeError, ValueError) as exc:
                raise BatchError(index, operation, results, exc) from exc
        return results


def _score(score: float) -> str:
    if score == float("inf"):
        return "+inf"
    if score == float("-inf"):
        return "-inf"
    return repr(float(score))


def _flatten(fields: dict[str, str]) -> list[str]:
    flat: list[str] = []
    for name, value in fields.items():
        flat.extend((name, value))
    return flat


def _command_for(operation: Operation) -> list[str]:
    key, args = operation.key, operation.args
    if operation.op == OpType.GET_HASH:
        return ["HGETALL", key]
    if operation.op == OpType.SET_HASH:
        return ["HSET", key, *_flatten(args[0])]
    if operation.op == OpType.ADD_TO_SORTED_SET:
        score, member = args
        return ["ZADD", key, _score(score), member]
    if operation.op == OpType.REMOVE_FROM_SORTED_SET:
        return ["ZREM", key, args[0]]
    if operation.op == OpType.DELETE_KEY:
        return ["DEL", key]
    raise ValueError(f"unsupported operation {operation.op}")
