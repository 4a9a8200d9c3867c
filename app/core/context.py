# core/context.py
"""
Per-process broker context.

Owns everything that used to be shared module state: the rate-limit table,
the provider client, the job store and the poller registry. Built once in
the application lifespan and reached from handlers through
request.app.state.context.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from core.config import Settings
from core.logger import logger
from core.rate_limiter import RequestRateLimiter
from core.redis_client import RedisClient
from integrations.vercel_client import VercelDeploymentClient
from services.bundle_service import BundleProcessor
from services.deployment_poller import DeploymentPoller
from services.job_store import InMemoryJobStore, JobStore, RedisJobStore
from services.publish_service import PublishOrchestrator


@dataclass
class BrokerContext:
    config: Settings
    job_store: JobStore
    deployment_client: VercelDeploymentClient
    rate_limiter: RequestRateLimiter
    poller: DeploymentPoller
    orchestrator: PublishOrchestrator
    redis_client: Optional[RedisClient] = None

    async def close(self) -> None:
        await self.poller.shutdown()
        self.deployment_client.close()
        if self.redis_client is not None:
            self.redis_client.close()


def build_job_store(config: Settings):
    """Return (job_store, redis_client) for the configured backend."""
    backend = config.JOB_STORE_BACKEND.lower()
    if backend == "redis":
        redis_client = RedisClient(config)
        store = RedisJobStore(
            redis_client.get_client(),
            key_prefix=config.JOB_KEY_PREFIX,
            retention_seconds=config.JOB_RETENTION_SECONDS,
        )
        return store, redis_client
    if backend != "memory":
        raise ValueError(f"Unknown JOB_STORE_BACKEND: {config.JOB_STORE_BACKEND}")
    return InMemoryJobStore(), None


def build_context(
    config: Settings,
    job_store: Optional[JobStore] = None,
    deployment_client: Optional[VercelDeploymentClient] = None
) -> BrokerContext:
    redis_client = None
    if job_store is None:
        job_store, redis_client = build_job_store(config)
    if deployment_client is None:
        deployment_client = VercelDeploymentClient.from_settings(config)

    poller = DeploymentPoller(
        job_store,
        deployment_client,
        interval_seconds=config.POLL_INTERVAL_SECONDS,
        timeout_seconds=config.POLL_TIMEOUT_SECONDS,
    )
    orchestrator = PublishOrchestrator(
        job_store,
        BundleProcessor(config),
        deployment_client,
        poller,
        config=config,
    )

    logger.info(
        f"Broker context ready: store={type(job_store).__name__}, "
        f"provider_configured={deployment_client.is_configured()}"
    )

    return BrokerContext(
        config=config,
        job_store=job_store,
        deployment_client=deployment_client,
        rate_limiter=RequestRateLimiter(config.RATE_LIMIT_REQUESTS, config.RATE_LIMIT_WINDOW_SECONDS),
        poller=poller,
        orchestrator=orchestrator,
        redis_client=redis_client,
    )


def get_context(request: Request) -> BrokerContext:
    return request.app.state.context
