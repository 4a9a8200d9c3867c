"""
tests/test_job_store.py - in-memory and Redis job stores.
"""

from datetime import timedelta

import pytest
import redis

from schemas.publish_models import PublishStatus, utc_now
from services.job_store import InMemoryJobStore, RedisJobStore


@pytest.fixture(params=["memory", "redis"])
def store(request, fake_redis):
    if request.param == "memory":
        return InMemoryJobStore()
    return RedisJobStore(fake_redis, key_prefix="test_job", retention_seconds=3600)


class TestJobStoreContract:
    """Behaviour both backends share."""

    @pytest.mark.asyncio
    async def test_create_yields_queued_job(self, store):
        job = await store.create(app_id=123, bundle_hash="abc", bundle_size=1024, app_name="Demo")

        assert job.status == PublishStatus.QUEUED
        assert job.url is None
        assert job.error is None
        assert job.app_name == "Demo"
        assert job.created_at == job.updated_at

        fetched = await store.get(job.id)
        assert fetched is not None
        assert fetched.id == job.id
        assert fetched.app_id == 123

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, store):
        first = await store.create(app_id=1, bundle_hash="a", bundle_size=1)
        second = await store.create(app_id=1, bundle_hash="a", bundle_size=1)
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_unknown_job(self, store):
        assert await store.get("missing") is None
        assert await store.update("missing", status=PublishStatus.FAILED) is None

    @pytest.mark.asyncio
    async def test_terminal_job_is_frozen(self, store):
        job = await store.create(app_id=1, bundle_hash="a", bundle_size=1)
        ready = await store.update(job.id, status=PublishStatus.READY, url="https://app.vercel.app")

        again = await store.update(job.id, status=PublishStatus.FAILED, error="late failure")

        assert again.status == PublishStatus.READY
        assert again.url == "https://app.vercel.app"
        assert again.error is None
        assert again.updated_at == ready.updated_at

    @pytest.mark.asyncio
    async def test_url_only_on_ready_error_only_on_failure(self, store):
        job = await store.create(app_id=1, bundle_hash="a", bundle_size=1)

        building = await store.update(job.id, status=PublishStatus.UPLOADING, url="https://early", error="early")
        assert building.url is None
        assert building.error is None

        failed = await store.update(job.id, status=PublishStatus.FAILED, error="build failed")
        assert failed.error == "build failed"

    @pytest.mark.asyncio
    async def test_deployment_id_is_write_once(self, store):
        job = await store.create(app_id=1, bundle_hash="a", bundle_size=1)
        await store.update(job.id, deployment_id="dpl_1")

        updated = await store.update(job.id, deployment_id="dpl_2")

        assert updated.deployment_id == "dpl_1"

    @pytest.mark.asyncio
    async def test_immutable_fields_are_ignored(self, store):
        job = await store.create(app_id=1, bundle_hash="a", bundle_size=1)

        updated = await store.update(job.id, app_id=99, id="other")

        assert updated.app_id == 1
        assert updated.id == job.id

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, store):
        job = await store.create(app_id=1, bundle_hash="a", bundle_size=1)
        with pytest.raises(ValueError):
            await store.update(job.id, colour="blue")

    @pytest.mark.asyncio
    async def test_updated_at_never_moves_backwards(self, store):
        job = await store.create(app_id=1, bundle_hash="a", bundle_size=1)
        first = await store.update(job.id, status=PublishStatus.UPLOADING)
        second = await store.update(job.id, status=PublishStatus.PACKAGING)
        assert job.updated_at <= first.updated_at <= second.updated_at

    @pytest.mark.asyncio
    async def test_health_check(self, store):
        assert await store.health_check() is True


class TestInMemoryJobStore:

    @pytest.mark.asyncio
    async def test_purge_older_than(self):
        store = InMemoryJobStore()
        old = await store.create(app_id=1, bundle_hash="a", bundle_size=1)
        fresh = await store.create(app_id=2, bundle_hash="b", bundle_size=1)
        store._jobs[old.id] = old.model_copy(update={"created_at": utc_now() - timedelta(hours=48)})

        removed = await store.purge_older_than(24)

        assert removed == 1
        assert await store.get(old.id) is None
        assert await store.get(fresh.id) is not None
        assert list(store._jobs) == [fresh.id]


class TestRedisJobStore:

    @pytest.mark.asyncio
    async def test_documents_carry_retention_ttl(self, fake_redis):
        store = RedisJobStore(fake_redis, key_prefix="test_job", retention_seconds=3600)
        job = await store.create(app_id=1, bundle_hash="a", bundle_size=1)

        await store.update(job.id, status=PublishStatus.UPLOADING)

        assert fake_redis.ttls[f"test_job:{job.id}"] == 3600

    @pytest.mark.asyncio
    async def test_purge_skips_unreadable_documents(self, fake_redis):
        store = RedisJobStore(fake_redis, key_prefix="test_job")
        old = await store.create(app_id=1, bundle_hash="a", bundle_size=1)
        key = f"test_job:{old.id}"
        aged = (await store.get(old.id)).model_copy(update={"created_at": utc_now() - timedelta(hours=48)})
        fake_redis.data[key] = aged.model_dump_json()
        fake_redis.data["test_job:broken"] = "{not json"

        removed = await store.purge_older_than(24)

        assert removed == 1
        assert key not in fake_redis.data
        assert "test_job:broken" in fake_redis.data

    @pytest.mark.asyncio
    async def test_health_check_reports_connection_errors(self, fake_redis):
        fake_redis.ping_error = redis.ConnectionError("down")
        store = RedisJobStore(fake_redis)
        assert await store.health_check() is False
