import pytest

from chronicle.config import get_settings

_STORE_ENV = (
    "USE_LOCAL_REDIS",
    "UPSTASH_REDIS_REST_URL",
    "UPSTASH_REDIS_REST_TOKEN",
    "LOCAL_REDIS_URL",
    "STORE_BACKEND",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Keep the developer's environment and .env file out of every test."""
    for name in _STORE_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
