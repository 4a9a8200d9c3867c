# services/deployment_poller.py
"""
Deployment Reconciliation

Background polling that brings a job's local status in line with the
provider's deployment state. One task per active deployment, tracked in a
registry keyed by job id so callers can await or cancel it.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from core.logger import logger
from integrations.vercel_client import ProviderStatus, VercelDeploymentClient, map_provider_status
from schemas.publish_models import PublishJob, PublishStatus, can_transition, precedes
from services.job_store import JobStore
from utils.log_publish_event import log_publish_event


@dataclass
class PollOutcome:
    success: bool
    status: PublishStatus
    url: Optional[str] = None
    error: Optional[str] = None


def describe_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"


async def reconcile_job(store: JobStore, job_id: str, provider_status: ProviderStatus) -> Optional[PublishJob]:
    """
    Apply one provider observation to a job.

    Shared by the poller and the status endpoint so both converge on the
    same mapping. BUILDING only ever moves a job forward, QUEUED changes
    nothing, and terminal jobs are left alone.
    """
    job = await store.get(job_id)
    if job is None or job.is_terminal:
        return job

    mapping = map_provider_status(provider_status)
    if mapping.status is None:
        return job

    if mapping.status == PublishStatus.BUILDING:
        if not precedes(job.status, PublishStatus.BUILDING):
            return job
        return await store.update(job_id, status=PublishStatus.BUILDING)

    if not can_transition(job.status, mapping.status):
        logger.warning(
            f"[poller] Ignoring provider state {provider_status.state.value} for job {job_id} in {job.status.value}"
        )
        return job

    fields = {"status": mapping.status}
    if mapping.url:
        fields["url"] = mapping.url
    elif mapping.status == PublishStatus.READY:
        logger.warning(f"[poller] Deployment for job {job_id} is ready but reported no url")
    if mapping.error:
        fields["error"] = mapping.error
    return await store.update(job_id, **fields)


class DeploymentPoller:
    """
    Registry of reconciliation tasks.

    start() spawns a detached task per job; wait() lets tests await it
    deterministically; cancel() is tied to job cancellation.
    """

    def __init__(
        self,
        job_store: JobStore,
        deployment_client: VercelDeploymentClient,
        interval_seconds: float = 3.0,
        timeout_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.job_store = job_store
        self.deployment_client = deployment_client
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}

    # ========================================================================
    # REGISTRY
    # ========================================================================

    def start(self, job_id: str, deployment_id: str) -> asyncio.Task:
        self._prune()
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self.poll_until_terminal(job_id, deployment_id),
            name=f"poll-{job_id}"
        )
        task.add_done_callback(self._log_task_result)
        self._tasks[job_id] = task
        logger.info(f"[poller] Started polling deployment {deployment_id} for job {job_id}")
        return task

    async def wait(self, job_id: str) -> Optional[PollOutcome]:
        task = self._tasks.get(job_id)
        if task is None:
            return None
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    def cancel(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info(f"[poller] Cancelled polling for job {job_id}")
        return True

    def active_jobs(self) -> List[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"[poller] Stopped {len(tasks)} active poller(s)")
        self._tasks.clear()

    def _prune(self) -> None:
        for job_id in [job_id for job_id, task in self._tasks.items() if task.done()]:
            del self._tasks[job_id]

    @staticmethod
    def _log_task_result(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[poller] Background poll failed: {error}", exc_info=error)

    # ========================================================================
    # POLL LOOP
    # ========================================================================

    async def poll_until_terminal(self, job_id: str, deployment_id: str) -> PollOutcome:
        """
        Poll the provider until the deployment reaches a terminal state or
        the time budget runs out. Transient errors are retried on the next
        tick.
        """
        deadline = self._clock() + self.timeout_seconds

        while self._clock() < deadline:
            try:
                provider_status = await self.deployment_client.get_deployment_status_async(deployment_id)
                logger.info(f"[poller] Deployment {deployment_id} state: {provider_status.state.value}")

                job = await reconcile_job(self.job_store, job_id, provider_status)
                if job is None:
                    logger.warning(f"[poller] Job {job_id} disappeared, stopping")
                    return PollOutcome(success=False, status=PublishStatus.FAILED, error="Publish job not found")

                if provider_status.is_terminal or job.is_terminal:
                    log_publish_event(
                        "deployment_finished", job_id, job.status,
                        deployment_id=deployment_id, url=job.url, error=job.error
                    )
                    return PollOutcome(
                        success=job.status == PublishStatus.READY,
                        status=job.status,
                        url=job.url,
                        error=job.error,
                    )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"[poller] Error polling deployment {deployment_id}: {e}")

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.interval_seconds, remaining))

        error = f"Deployment timed out after {describe_duration(self.timeout_seconds)}"
        logger.error(f"[poller] {error} (job {job_id}, deployment {deployment_id})")
        job = await self.job_store.update(job_id, status=PublishStatus.FAILED, error=error)
        if job is not None:
            log_publish_event(
                "deployment_timed_out", job_id, job.status,
                deployment_id=deployment_id, url=job.url, error=job.error
            )
        if job is not None and job.status != PublishStatus.FAILED:
            # Job reached a terminal state on another path; that result stands
            return PollOutcome(success=job.status == PublishStatus.READY, status=job.status, url=job.url, error=job.error)
        return PollOutcome(success=False, status=PublishStatus.FAILED, error=error)
