# services/job_store.py
"""
Publish Job Storage

Two interchangeable backends behind one async contract:
- InMemoryJobStore: process-local dict, used for local development and tests
- RedisJobStore: JSON documents in Redis with a retention TTL

Storage Structure in Redis:
- Jobs: publish_job:{id} -> JSON PublishJob (snake_case fields)

Neither backend serialises concurrent writers; the last update wins.
Both enforce the record invariants (terminal jobs are frozen, url only on
ready, error only on failed/cancelled, deployment ids are write-once).
"""

import asyncio
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional, Protocol

import redis

from core.logger import logger
from schemas.publish_models import (
    IMMUTABLE_JOB_FIELDS,
    WRITE_ONCE_JOB_FIELDS,
    PublishJob,
    PublishStatus,
    utc_now,
)


class JobStore(Protocol):
    """Interface every job store backend implements."""

    async def create(
        self,
        app_id: int,
        bundle_hash: str,
        bundle_size: int,
        app_name: Optional[str] = None,
        profile_id: Optional[str] = None
    ) -> PublishJob:
        ...

    async def get(self, job_id: str) -> Optional[PublishJob]:
        ...

    async def update(self, job_id: str, **fields: Any) -> Optional[PublishJob]:
        ...

    async def purge_older_than(self, hours: float) -> int:
        ...

    async def health_check(self) -> bool:
        ...


def new_job(
    app_id: int,
    bundle_hash: str,
    bundle_size: int,
    app_name: Optional[str] = None,
    profile_id: Optional[str] = None
) -> PublishJob:
    now = utc_now()
    return PublishJob(
        id=str(uuid.uuid4()),
        status=PublishStatus.QUEUED,
        app_id=app_id,
        app_name=app_name or None,
        profile_id=profile_id or None,
        bundle_hash=bundle_hash,
        bundle_size=bundle_size,
        created_at=now,
        updated_at=now,
    )


def merge_job_update(job: PublishJob, fields: Dict[str, Any]) -> PublishJob:
    """
    Apply a partial update to a job record, honouring record invariants.

    Returns the original record untouched when the job is already terminal.
    """
    if job.is_terminal:
        logger.debug(
            f"[store] Ignoring update to terminal job {job.id} ({job.status.value}): {sorted(fields)}"
        )
        return job

    changes: Dict[str, Any] = {}
    for name, value in fields.items():
        if name in IMMUTABLE_JOB_FIELDS or name == "updated_at":
            logger.warning(f"[store] Ignoring write to immutable field '{name}' on job {job.id}")
            continue
        if name not in PublishJob.model_fields:
            raise ValueError(f"Unknown job field: {name}")
        if name in WRITE_ONCE_JOB_FIELDS:
            current = getattr(job, name)
            if current is not None and value != current:
                logger.warning(f"[store] Ignoring rewrite of '{name}' on job {job.id}")
                continue
        if name == "status":
            value = PublishStatus(value)
        changes[name] = value

    status = changes.get("status", job.status)
    if status != PublishStatus.READY:
        changes["url"] = None
    if status not in (PublishStatus.FAILED, PublishStatus.CANCELLED):
        changes["error"] = None

    now = utc_now()
    changes["updated_at"] = now if now > job.updated_at else job.updated_at
    return job.model_copy(update=changes)


# ============================================================================
# IN-MEMORY BACKEND
# ============================================================================

class InMemoryJobStore:
    """Process-local job store (local development without Redis)."""

    def __init__(self):
        self._jobs: Dict[str, PublishJob] = {}

    async def create(
        self,
        app_id: int,
        bundle_hash: str,
        bundle_size: int,
        app_name: Optional[str] = None,
        profile_id: Optional[str] = None
    ) -> PublishJob:
        job = new_job(app_id, bundle_hash, bundle_size, app_name, profile_id)
        self._jobs[job.id] = job
        return job

    async def get(self, job_id: str) -> Optional[PublishJob]:
        return self._jobs.get(job_id)

    async def update(self, job_id: str, **fields: Any) -> Optional[PublishJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        updated = merge_job_update(job, fields)
        self._jobs[job_id] = updated
        return updated

    async def purge_older_than(self, hours: float) -> int:
        cutoff = utc_now() - timedelta(hours=hours)
        expired = [job_id for job_id, job in self._jobs.items() if job.created_at < cutoff]
        for job_id in expired:
            del self._jobs[job_id]
        return len(expired)

    async def health_check(self) -> bool:
        return True


# ============================================================================
# REDIS BACKEND
# ============================================================================

class RedisJobStore:
    """
    Durable job store backed by Redis.

    redis-py is synchronous; every call runs in a worker thread so the event
    loop keeps serving requests and pollers.
    """

    def __init__(self, redis_conn: redis.Redis, key_prefix: str = "publish_job", retention_seconds: int = 86400):
        self.redis = redis_conn
        self.key_prefix = key_prefix
        self.retention_seconds = retention_seconds

        logger.info(
            "RedisJobStore initialized",
            extra={"key_prefix": key_prefix, "retention_seconds": retention_seconds}
        )

    def _key(self, job_id: str) -> str:
        return f"{self.key_prefix}:{job_id}"

    def _load(self, job_id: str) -> Optional[PublishJob]:
        data = self.redis.get(self._key(job_id))
        if not data:
            return None
        return PublishJob.model_validate_json(data)

    def _save(self, job: PublishJob, new: bool = False) -> None:
        payload = job.model_dump_json()
        if new:
            self.redis.setex(name=self._key(job.id), time=self.retention_seconds, value=payload)
        else:
            self.redis.set(self._key(job.id), payload, keepttl=True)

    def _create_sync(self, job: PublishJob) -> PublishJob:
        self._save(job, new=True)
        return job

    def _update_sync(self, job_id: str, fields: Dict[str, Any]) -> Optional[PublishJob]:
        job = self._load(job_id)
        if job is None:
            return None
        updated = merge_job_update(job, fields)
        if updated is not job:
            self._save(updated)
        return updated

    def _purge_sync(self, hours: float) -> int:
        cutoff = utc_now() - timedelta(hours=hours)
        deleted = 0
        for key in self.redis.scan_iter(match=f"{self.key_prefix}:*"):
            data = self.redis.get(key)
            if not data:
                continue
            try:
                job = PublishJob.model_validate_json(data)
            except ValueError as e:
                logger.warning(f"[store] Unreadable job document {key}: {e}")
                continue
            if job.created_at < cutoff:
                deleted += self.redis.delete(key)
        return deleted

    def _ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def create(
        self,
        app_id: int,
        bundle_hash: str,
        bundle_size: int,
        app_name: Optional[str] = None,
        profile_id: Optional[str] = None
    ) -> PublishJob:
        job = new_job(app_id, bundle_hash, bundle_size, app_name, profile_id)
        return await asyncio.to_thread(self._create_sync, job)

    async def get(self, job_id: str) -> Optional[PublishJob]:
        return await asyncio.to_thread(self._load, job_id)

    async def update(self, job_id: str, **fields: Any) -> Optional[PublishJob]:
        return await asyncio.to_thread(self._update_sync, job_id, fields)

    async def purge_older_than(self, hours: float) -> int:
        return await asyncio.to_thread(self._purge_sync, hours)

    async def health_check(self) -> bool:
        return await asyncio.to_thread(self._ping)
