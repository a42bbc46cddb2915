"""
Process-wide store ownership.

StoreContext resolves the backend once, builds it, and hands the same
instance to every caller. Resolution never fails because of an unreachable
backend: connection problems are logged with their cause and the context
settles on a MemoryStore instead (degraded mode).

Lifecycle:
    UNINITIALIZED -> RESOLVING -> CONNECTED | DEGRADED -> CLOSED

CLOSED is only reached through close(). DEGRADED is only left through
reset(), which forces a fresh resolution on the next get().
"""

import asyncio
from enum import StrEnum

import httpx
import structlog

from chronicle.config import BackendKind, Settings, get_settings, resolve_backend_kind
from chronicle.core.backends.base import Store
from chronicle.core.backends.memory import MemoryStore
from chronicle.core.backends.redis import LocalStore
from chronicle.core.backends.rest import RemoteStore
from chronicle.core.errors import BackendConnectionError, ConnectionCause, StoreClosedError

logger = structlog.get_logger()


class StoreState(StrEnum):
    UNINITIALIZED = "uninitialized"
    RESOLVING = "resolving"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    CLOSED = "closed"


_CAUSE_EVENTS = {
    ConnectionCause.REFUSED: "connection_refused",
    ConnectionCause.TIMEOUT: "connection_timeout",
    ConnectionCause.HOST_NOT_FOUND: "host_not_found",
    ConnectionCause.UNAUTHORIZED: "unauthorized",
    ConnectionCause.URL_NOT_FOUND: "url_not_found",
    ConnectionCause.OTHER: "connection_failed",
}

_CAUSE_HINTS = {
    ConnectionCause.REFUSED: "Is Redis running?",
    ConnectionCause.TIMEOUT: "Check your network or Redis server.",
    ConnectionCause.HOST_NOT_FOUND: "Check your Redis URL.",
    ConnectionCause.UNAUTHORIZED: "Check your Upstash Redis token.",
    ConnectionCause.URL_NOT_FOUND: "Check your Upstash Redis URL.",
    ConnectionCause.OTHER: "",
}


class StoreContext:
    """
    Owns the single resolved Store for a process.

    Args:
        settings: Configuration to resolve from.
        remote_transport: Optional httpx transport passed to RemoteStore,
            used to point the REST backend at a fake server in tests.
    """

    def __init__(
        self,
        settings: Settings,
        remote_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._remote_transport = remote_transport
        self._store: Store | None = None
        self._state = StoreState.UNINITIALIZED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def kind(self) -> BackendKind | None:
        return self._store.kind if self._store is not None else None

    @property
    def degraded(self) -> bool:
        return self._state == StoreState.DEGRADED

    async def get(self) -> Store:
        """
        Return the resolved store, resolving it on first call.

        Raises:
            StoreClosedError: The context was closed.
            ConfigurationError: An explicitly selected backend lacks settings.
        """
        if self._state == StoreState.CLOSED:
            raise StoreClosedError("store context is closed; call reset() before reuse")
        if self._store is not None:
            return self._store

        async with self._lock:
            if self._state == StoreState.CLOSED:
                raise StoreClosedError("store context is closed; call reset() before reuse")
            if self._store is None:
                self._state = StoreState.RESOLVING
                try:
                    self._store = await self._resolve()
                except BaseException:
                    self._state = StoreState.UNINITIALIZED
                    raise
        return self._store

    async def _resolve(self) -> Store:
        kind = resolve_backend_kind(self.settings)

        if kind == BackendKind.MEMORY:
            logger.warning(
                "store_not_configured",
                backend=BackendKind.MEMORY.value,
                detail="Using in-memory storage; data will be lost on restart.",
            )
            return self._degrade()

        store = self._build(kind)
        try:
            await store.connect()
        except BackendConnectionError as exc:
            logger.error(
                f"{kind.value}_store_{_CAUSE_EVENTS[exc.cause]}",
                target=exc.target,
                detail=exc.detail,
                hint=_CAUSE_HINTS[exc.cause],
            )
            logger.warning("store_fallback", backend=BackendKind.MEMORY.value, preferred=kind.value)
            return self._degrade()

        self._state = StoreState.CONNECTED
        return store

    def _build(self, kind: BackendKind) -> Store:
        if kind == BackendKind.LOCAL:
            return LocalStore(
                self.settings.local_redis_url,
                connect_timeout=self.settings.redis_connect_timeout,
            )
        return RemoteStore(
            self.settings.upstash_redis_rest_url or "",
            self.settings.upstash_redis_rest_token or "",
            timeout=self.settings.remote_timeout,
            transport=self._remote_transport,
        )

    def _degrade(self) -> Store:
        self._state = StoreState.DEGRADED
        return MemoryStore()

    async def close(self) -> None:
        """Close the store and refuse further get() calls. Idempotent."""
        async with self._lock:
            store, self._store = self._store, None
            self._state = StoreState.CLOSED
        if store is not None:
            await store.close()
            logger.info("store_closed", backend=store.kind.value)

    async def reset(self) -> None:
        """Close the store and allow the next get() to resolve again."""
        await self.close()
        self._state = StoreState.UNINITIALIZED


_default_context: StoreContext | None = None


async def get_store() -> Store:
    """Store of the default process context, created from get_settings()."""
    global _default_context
    if _default_context is None:
        _default_context = StoreContext(get_settings())
    return await _default_context.get()


async def close_store() -> None:
    """Close the default context; the next get_store() re-resolves."""
    global _default_context
    context, _default_context = _default_context, None
    if context is not None:
        await context.close()
