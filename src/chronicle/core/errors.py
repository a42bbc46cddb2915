"""
Exception hierarchy for the store layer.

Every error raised through the Store contract derives from StoreError, so
callers can catch the whole family with one clause. Connection problems are
tagged with a ConnectionCause so the resolver can log each cause distinctly.
"""

import socket
from enum import StrEnum
from typing import Any

import httpx
from redis import exceptions as redis_exceptions


class ConnectionCause(StrEnum):
    REFUSED = "refused"
    TIMEOUT = "timeout"
    HOST_NOT_FOUND = "host_not_found"
    UNAUTHORIZED = "unauthorized"
    URL_NOT_FOUND = "url_not_found"
    OTHER = "other"


class StoreError(Exception):
    """Base class for every error raised by the store layer."""


class ConfigurationError(StoreError):
    """An explicitly selected backend is missing the settings it needs."""


class BackendConnectionError(StoreError):
    """The backend could not be reached while establishing the store."""

    def __init__(self, cause: ConnectionCause, target: str, detail: str = "") -> None:
        self.cause = cause
        self.target = target
        self.detail = detail
        message = f"{cause.value} while connecting to {target}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RetrievalError(StoreError):
    """Transport failure while executing an operation."""

    def __init__(self, message: str, cause: ConnectionCause = ConnectionCause.OTHER) -> None:
        self.cause = cause
        super().__init__(message)


class ParseError(StoreError):
    """A stored hash decoded to something that is not a field/value mapping."""


class CommandError(StoreError):
    """The backend rejected a command (for example WRONGTYPE)."""


class StoreClosedError(StoreError):
    """Operation attempted on a store or context that has been closed."""


class BatchAlreadyExecutedError(StoreError, RuntimeError):
    """A PipelineBatch was reused after execute()."""


class BatchError(StoreError):
    """
    A queued operation failed during batch execution.

    Attributes:
        index: Position of the first failing operation.
        operation: The failing queued operation.
        completed: Normalised results of the operations before ``index``.
        error: The underlying exception.
    """

    def __init__(
        self,
        index: int,
        operation: Any,
        completed: list[Any],
        error: BaseException,
    ) -> None:
        self.index = index
        self.operation = operation
        self.completed = completed
        self.error = error
        super().__init__(f"batch operation {index} ({operation}) failed: {error}")


_HOST_NOT_FOUND_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)


def _chain(exc: BaseException) -> list[BaseException]:
    seen: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in seen:
        seen.append(current)
        current = current.__cause__ or current.__context__
    return seen


def classify_connection_error(exc: BaseException) -> ConnectionCause:
    """
    Map a transport exception onto a ConnectionCause.

    Looks at the exception type first and falls back to the message text,
    since redis-py flattens socket errors into a formatted message.
    """
    chain = _chain(exc)

    for err in chain:
        if isinstance(err, (redis_exceptions.TimeoutError, httpx.TimeoutException, TimeoutError)):
            return ConnectionCause.TIMEOUT
        if isinstance(err, socket.gaierror):
            return ConnectionCause.HOST_NOT_FOUND
        if isinstance(err, ConnectionRefusedError):
            return ConnectionCause.REFUSED

    for err in chain:
        text = str(err).lower()
        if any(marker in text for marker in _HOST_NOT_FOUND_MARKERS):
            return ConnectionCause.HOST_NOT_FOUND
        if "refused" in text or "econnrefused" in text:
            return ConnectionCause.REFUSED
        if "timed out" in text or "etimedout" in text:
            return ConnectionCause.TIMEOUT

    return ConnectionCause.OTHER


def cause_for_status(status_code: int) -> ConnectionCause | None:
    """HTTP status codes that mean the REST service rejected us as a client."""
    if status_code in (401, 403):
        return ConnectionCause.UNAUTHORIZED
    if status_code == 404:
        return ConnectionCause.URL_NOT_FOUND
    return None
