import pytest
from unittest.mock import AsyncMock, MagicMock
from redis import exceptions as redis_exceptions

from chronicle.config import BackendKind
from chronicle.core.backends.redis import LocalStore
from chronicle.core.errors import (
    BackendConnectionError,
    BatchError,
    CommandError,
    ConnectionCause,
    ParseError,
    RetrievalError,
)


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.hgetall.return_value = {}
    return client


@pytest.fixture
def store(redis_client):
    return LocalStore("redis://localhost:6379", client=redis_client)


def make_pipeline(replies):
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.execute = AsyncMock(return_value=replies)
    return pipe


class TestCommands:
    def test_kind(self, store):
        assert store.kind == BackendKind.LOCAL

    @pytest.mark.asyncio
    async def test_set_hash_sends_string_mapping(self, store, redis_client):
        assert await store.set_hash("chat:1", {"n": 1, "ok": True}) is True

        redis_client.hset.assert_awaited_once_with("chat:1", mapping={"n": "1", "ok": "true"})

    @pytest.mark.asyncio
    async def test_empty_hgetall_is_none(self, store):
        assert await store.get_hash("chat:1") is None

    @pytest.mark.asyncio
    async def test_get_hash(self, store, redis_client):
        redis_client.hgetall.return_value = {"title": "Hi"}

        assert await store.get_hash("chat:1") == {"title": "Hi"}

    @pytest.mark.asyncio
    async def test_zadd_reports_new_members(self, store, redis_client):
        redis_client.zadd.return_value = 1
        assert await store.add_to_sorted_set("k", 2, "m") is True
        redis_client.zadd.assert_awaited_with("k", {"m": 2.0})

        redis_client.zadd.return_value = 0
        assert await store.add_to_sorted_set("k", 3, "m") is False

    @pytest.mark.asyncio
    async def test_zrange_reverse_flag(self, store, redis_client):
        redis_client.zrange.return_value = [b"m2", "m1"]

        assert await store.range_sorted_set("k", 0, -1, reverse=True) == ["m2", "m1"]
        redis_client.zrange.assert_awaited_once_with("k", 0, -1, desc=True)

    @pytest.mark.asyncio
    async def test_zrem_and_delete(self, store, redis_client):
        redis_client.zrem.return_value = 0
        redis_client.delete.return_value = 1

        assert await store.remove_from_sorted_set("k", "m") is False
        assert await store.delete_key("k") is True

    @pytest.mark.asyncio
    async def test_transport_failure_is_retrieval_error(self, store, redis_client):
        redis_client.hgetall.side_effect = redis_exceptions.ConnectionError(
            "Error 111 connecting to localhost:6379. Connection refused."
        )

        with pytest.raises(RetrievalError) as excinfo:
            await store.get_hash("k")

        assert excinfo.value.cause == ConnectionCause.REFUSED

    @pytest.mark.asyncio
    async def test_response_error_is_command_error(self, store, redis_client):
        redis_client.zadd.side_effect = redis_exceptions.ResponseError("WRONGTYPE")

        with pytest.raises(CommandError):
            await store.add_to_sorted_set("h", 1, "m")

    @pytest.mark.asyncio
    async def test_close_releases_client_once(self, store, redis_client):
        await store.close()
        await store.close()

        redis_client.aclose.assert_awaited_once()


class TestBatches:
    @pytest.mark.asyncio
    async def test_pipeline_results_are_normalised(self, store, redis_client):
        pipe = make_pipeline([1, 1, {"a": "1"}])
        redis_client.pipeline = MagicMock(return_value=pipe)

        results = await (
            store.create_batch()
            .set_hash("k", {"a": 1})
            .add_to_sorted_set("k", 1, "m")
            .get_hash("k")
            .execute()
        )

        assert results == [True, True, {"a": "1"}]
        redis_client.pipeline.assert_called_once_with(transaction=False)
        pipe.hset.assert_called_once_with("k", mapping={"a": "1"})
        pipe.zadd.assert_called_once_with("k", {"m": 1.0})
        pipe.hgetall.assert_called_once_with("k")
        pipe.execute.assert_awaited_once_with(raise_on_error=False)

    @pytest.mark.asyncio
    async def test_transaction_flag_is_forwarded(self, store, redis_client):
        redis_client.pipeline = MagicMock(return_value=make_pipeline([0]))

        assert await store.create_batch(transaction=True).delete_key("k").execute() == [False]
        redis_client.pipeline.assert_called_once_with(transaction=True)

    @pytest.mark.asyncio
    async def test_failed_command_raises_batch_error(self, store, redis_client):
        replies = [1, redis_exceptions.ResponseError("WRONGTYPE"), 1]
        redis_client.pipeline = MagicMock(return_value=make_pipeline(replies))

        batch = store.create_batch().delete_key("a").add_to_sorted_set("h", 1, "m").delete_key("b")

        with pytest.raises(BatchError) as excinfo:
            await batch.execute()

        assert excinfo.value.index == 1
        assert excinfo.value.completed == [True]
        assert isinstance(excinfo.value.error, CommandError)

    @pytest.mark.asyncio
    async def test_malformed_hash_raises_batch_error(self, store, redis_client):
        redis_client.pipeline = MagicMock(return_value=make_pipeline([["odd"]]))

        with pytest.raises(BatchError) as excinfo:
            await store.create_batch().get_hash("k").execute()

        assert isinstance(excinfo.value.error, ParseError)

    @pytest.mark.asyncio
    async def test_transport_failure_during_execute(self, store, redis_client):
        pipe = make_pipeline([])
        pipe.execute.side_effect = redis_exceptions.TimeoutError("Timeout reading from socket")
        redis_client.pipeline = MagicMock(return_value=pipe)

        with pytest.raises(RetrievalError) as excinfo:
            await store.create_batch().get_hash("k").execute()

        assert excinfo.value.cause == ConnectionCause.TIMEOUT


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_pings(self, store, redis_client):
        await store.connect()

        redis_client.ping.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, cause",
        [
            (
                redis_exceptions.ConnectionError("Error 111 connecting to localhost:6379. Connection refused."),
                ConnectionCause.REFUSED,
            ),
            (redis_exceptions.TimeoutError("Timeout connecting to server"), ConnectionCause.TIMEOUT),
            (
                redis_exceptions.ConnectionError(
                    "Error -2 connecting to nohost:6379. Name or service not known."
                ),
                ConnectionCause.HOST_NOT_FOUND,
            ),
            (redis_exceptions.AuthenticationError("invalid password"), ConnectionCause.OTHER),
        ],
    )
    async def test_connect_failure_is_classified(self, store, redis_client, error, cause):
        redis_client.ping.side_effect = error

        with pytest.raises(BackendConnectionError) as excinfo:
            await store.connect()

        assert excinfo.value.cause == cause
        assert excinfo.value.target == "redis://localhost:6379"
        redis_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_malformed_url_is_classified_as_other(self):
        store = LocalStore("localhost:6379")

        with pytest.raises(BackendConnectionError) as excinfo:
            await store.connect()

        assert excinfo.value.cause == ConnectionCause.OTHER

    @pytest.mark.asyncio
    async def test_malformed_url_during_operation_is_retrieval_error(self):
        store = LocalStore("localhost:6379")

        with pytest.raises(RetrievalError):
            await store.get_hash("k")

    def test_client_is_created_lazily_and_memoised(self, monkeypatch):
        created = []

        def fake_from_url(url, **kwargs):
            created.append((url, kwargs))
            return AsyncMock()

        monkeypatch.setattr("chronicle.core.backends.redis.from_url", fake_from_url)
        store = LocalStore("redis://cache:6379/1", connect_timeout=2.0)

        assert created == []
        assert store.client is store.client
        assert created == [
            (
                "redis://cache:6379/1",
                {"encoding": "utf-8", "decode_responses": True, "socket_connect_timeout": 2.0},
            )
        ]
