from enum import StrEnum
from functools import lru_cache

import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict

from chronicle.core.errors import ConfigurationError

logger = structlog.get_logger()


class BackendKind(StrEnum):
    REMOTE = "remote"
    LOCAL = "local"
    MEMORY = "memory"


class Settings(BaseSettings):
    app_name: str = "Chronicle Store"

    use_local_redis: bool = False
    upstash_redis_rest_url: str | None = None
    upstash_redis_rest_token: str | None = None
    local_redis_url: str = "redis://localhost:6379"

    # Forces a backend instead of inferring it from the credentials above
    store_backend: BackendKind | None = None

    redis_connect_timeout: float = 5.0
    remote_timeout: float = 10.0

    log_level: str = "INFO"
    json_logs: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def has_remote_credentials(self) -> bool:
        return bool(self.upstash_redis_rest_url and self.upstash_redis_rest_token)


@lru_cache
def get_settings() -> Settings:
    return Settings()


def resolve_backend_kind(settings: Settings) -> BackendKind:
    """
    Decide which backend to build from the configured flags and credentials.

    Order: explicit ``store_backend``, then the local flag, then a complete
    remote credential pair, then the in-memory store. Incomplete remote
    credentials fall through to memory instead of raising, so the app stays
    usable without storage.

    Raises:
        ConfigurationError: ``store_backend`` is ``remote`` but the URL or
            token is missing.
    """
    if settings.store_backend is not None:
        if settings.store_backend == BackendKind.REMOTE and not settings.has_remote_credentials:
            raise ConfigurationError(
                "STORE_BACKEND=remote requires UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN"
            )
        return settings.store_backend

    if settings.use_local_redis:
        return BackendKind.LOCAL

    if settings.has_remote_credentials:
        return BackendKind.REMOTE

    if settings.upstash_redis_rest_url or settings.upstash_redis_rest_token:
        logger.warning(
            "remote_store_partial_credentials",
            has_url=bool(settings.upstash_redis_rest_url),
            has_token=bool(settings.upstash_redis_rest_token),
        )

    return BackendKind.MEMORY
