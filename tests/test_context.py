"""
tests/test_context.py - broker context wiring and Redis connection setup.
"""

from unittest.mock import patch

import pytest

from core.config import Settings
from core.context import build_context, build_job_store
from core.redis_client import RedisClient
from services.job_store import InMemoryJobStore, RedisJobStore


class TestBuildJobStore:

    def test_memory_backend(self):
        store, redis_client = build_job_store(Settings(_env_file=None, JOB_STORE_BACKEND="memory"))
        assert isinstance(store, InMemoryJobStore)
        assert redis_client is None

    def test_redis_backend(self, fake_redis):
        config = Settings(_env_file=None, JOB_STORE_BACKEND="redis", JOB_RETENTION_HOURS=2)
        with patch.object(RedisClient, "get_client", return_value=fake_redis):
            store, redis_client = build_job_store(config)

        assert isinstance(store, RedisJobStore)
        assert isinstance(redis_client, RedisClient)
        assert store.retention_seconds == 7200
        assert store.key_prefix == "publish_job"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_job_store(Settings(_env_file=None, JOB_STORE_BACKEND="postgres"))


class TestBuildContext:

    @pytest.mark.asyncio
    async def test_wires_shared_collaborators(self, test_settings):
        store = InMemoryJobStore()
        context = build_context(test_settings, job_store=store)

        assert context.job_store is store
        assert context.orchestrator.job_store is store
        assert context.poller.job_store is store
        assert context.orchestrator.poller is context.poller
        assert context.poller.deployment_client is context.deployment_client
        assert not context.deployment_client.is_configured()
        assert context.rate_limiter.max_requests == test_settings.RATE_LIMIT_REQUESTS

        await context.close()


class TestRedisClient:

    def test_pool_settings(self):
        config = Settings(_env_file=None, REDIS_HOST="cache", REDIS_SSL=True, REDIS_PASSWORD="pw")

        with patch("core.redis_client.ConnectionPool") as pool_cls, patch("core.redis_client.redis.Redis") as redis_cls:
            client = RedisClient(config).get_client()

        kwargs = pool_cls.call_args.kwargs
        assert kwargs["host"] == "cache"
        assert kwargs["password"] == "pw"
        assert kwargs["decode_responses"] is True
        assert "connection_class" in kwargs
        redis_cls.return_value.ping.assert_called_once()
        assert client is redis_cls.return_value

    def test_client_is_lazy(self):
        with patch("core.redis_client.ConnectionPool") as pool_cls:
            RedisClient(Settings(_env_file=None))
        pool_cls.assert_not_called()
