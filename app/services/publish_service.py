# services/publish_service.py
"""
Publish Job Orchestrator

Owns the job state machine and drives the upload -> extraction -> deploy
sequence. Progress after deployment creation belongs to the poller.
"""

from dataclasses import dataclass
from typing import Any, Optional

from core.config import Settings, settings
from core.errors import (
    BundleTooLargeError,
    InvalidTransitionError,
    JobNotFoundError,
    ProviderError,
    PublishError,
)
from core.logger import logger
from integrations.vercel_client import VercelDeploymentClient
from schemas.publish_models import (
    PublishJob,
    PublishStartRequest,
    PublishStatus,
    can_transition,
    get_status_message,
    get_status_progress,
)
from services.bundle_service import BundleProcessor, compute_hash
from services.deployment_poller import DeploymentPoller, reconcile_job
from services.job_store import JobStore
from utils.log_publish_event import log_publish_event
from utils.redaction import redact_sensitive_info


IN_PROGRESS_STATUSES = frozenset({
    PublishStatus.UPLOADING,
    PublishStatus.PACKAGING,
    PublishStatus.BUILDING,
    PublishStatus.DEPLOYING,
})


@dataclass
class UploadResult:
    success: bool
    message: str
    status: PublishStatus
    deployment_id: Optional[str] = None


@dataclass
class StatusResult:
    status: PublishStatus
    progress: int
    message: str
    url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_job(cls, job: PublishJob) -> "StatusResult":
        return cls(
            status=job.status,
            progress=get_status_progress(job.status),
            message=get_status_message(job.status),
            url=job.url or None,
            error=job.error or None,
        )


@dataclass
class CompleteResult:
    success: bool
    status: PublishStatus
    message: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CancelResult:
    success: bool
    status: PublishStatus
    message: Optional[str] = None


class PublishOrchestrator:
    """
    Publish lifecycle operations: start, upload, complete, status, cancel.

    Every status change goes through transition(), which validates the
    move against ALLOWED_TRANSITIONS before writing.
    """

    def __init__(
        self,
        job_store: JobStore,
        bundle_processor: BundleProcessor,
        deployment_client: VercelDeploymentClient,
        poller: DeploymentPoller,
        config: Settings = settings
    ):
        self.job_store = job_store
        self.bundle_processor = bundle_processor
        self.deployment_client = deployment_client
        self.poller = poller
        self.mock_url_template = config.MOCK_DEPLOYMENT_URL_TEMPLATE

    # ========================================================================
    # STATE MACHINE
    # ========================================================================

    async def _require_job(self, job_id: str) -> PublishJob:
        job = await self.job_store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def transition(self, job_id: str, target: PublishStatus, **fields: Any) -> PublishJob:
        """
        Move a job to `target`, writing any extra fields alongside.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the state machine forbids the move
        """
        job = await self._require_job(job_id)
        if not can_transition(job.status, target):
            raise InvalidTransitionError(
                f"Cannot move job from {job.status.value} to {PublishStatus(target).value}",
                current_status=job.status.value
            )

        updated = await self.job_store.update(job_id, status=target, **fields)
        if updated is None:
            raise JobNotFoundError(job_id)
        if updated.status != PublishStatus(target):
            # Job went terminal between the read and the write; the store kept it frozen
            raise InvalidTransitionError(
                f"Cannot move job from {updated.status.value} to {PublishStatus(target).value}",
                current_status=updated.status.value
            )
        logger.debug(f"[publish] Job {job_id}: {job.status.value} -> {updated.status.value}")
        return updated

    async def _fail(self, job_id: str, error: str) -> Optional[PublishJob]:
        """Mark a job failed unless it already reached a terminal state."""
        job = await self.job_store.update(job_id, status=PublishStatus.FAILED, error=error)
        if job is not None and job.status == PublishStatus.FAILED:
            logger.error(f"[publish] Job {job_id} failed: {error}")
            log_publish_event("publish_failed", job_id, job.status, deployment_id=job.deployment_id, error=error)
        return job

    # ========================================================================
    # START
    # ========================================================================

    async def start_publish(self, request: PublishStartRequest) -> PublishJob:
        logger.info(
            f"[publish:start] Creating job for app {request.app_id}, bundle size: {request.bundle_size}"
        )
        job = await self.job_store.create(
            app_id=request.app_id,
            bundle_hash=request.bundle_hash,
            bundle_size=request.bundle_size,
            app_name=request.app_name,
            profile_id=request.profile_id,
        )
        logger.info(f"[publish:start] Created job: {job.id}")
        return job

    # ========================================================================
    # UPLOAD
    # ========================================================================

    async def upload_bundle(self, job_id: str, payload: bytes) -> UploadResult:
        """
        Accept a bundle for a queued job and start its deployment.

        Returns as soon as the deployment is created; the poller takes the
        job the rest of the way.

        Raises:
            JobNotFoundError: Unknown job
            InvalidTransitionError: Job is not queued
            CapacityError: Bundle too large or not a readable archive
            ProviderError: Deployment could not be created
        """
        job = await self._require_uploadable(job_id)

        logger.info(f"[publish:upload] Starting upload for job: {job_id} ({len(payload)} bytes)")
        await self.transition(job_id, PublishStatus.UPLOADING)

        try:
            return await self._run_pipeline(job, payload)
        except InvalidTransitionError:
            current = await self.job_store.get(job_id)
            if current is not None and current.is_terminal:
                logger.info(f"[publish:upload] Job {job_id} became {current.status.value} mid-pipeline")
                return UploadResult(
                    success=current.status == PublishStatus.READY,
                    message=get_status_message(current.status),
                    status=current.status,
                )
            raise
        except PublishError as e:
            await self._fail(job_id, e.message)
            raise
        except Exception as e:
            await self._fail(job_id, redact_sensitive_info(str(e)) or "Unknown upload error")
            raise

    async def _require_uploadable(self, job_id: str) -> PublishJob:
        job = await self._require_job(job_id)
        if job.status != PublishStatus.QUEUED:
            raise InvalidTransitionError(
                f"Cannot upload to job in status: {job.status.value}",
                current_status=job.status.value
            )
        return job

    async def reject_oversized_upload(self, job_id: str, size: int) -> None:
        """
        Fail a queued job whose upload is already known to exceed the bundle
        limit (declared Content-Length or a capped read), before the body is
        buffered. Does nothing when `size` is within the limit.

        Raises:
            BundleTooLargeError: The upload is over the limit
        """
        size_check = self.bundle_processor.validate_bundle_size(size)
        if size_check.valid:
            return

        await self._require_uploadable(job_id)
        await self.transition(job_id, PublishStatus.UPLOADING)
        await self._fail(job_id, size_check.error)
        raise BundleTooLargeError(size_check.error)

    async def _run_pipeline(self, job: PublishJob, payload: bytes) -> UploadResult:
        job_id = job.id

        size_check = self.bundle_processor.validate_bundle_size(len(payload))
        if not size_check.valid:
            raise BundleTooLargeError(size_check.error)

        actual_hash = compute_hash(payload)
        if job.bundle_hash and actual_hash != job.bundle_hash:
            logger.warning(
                f"[publish:upload] Hash mismatch: expected {job.bundle_hash}, got {actual_hash}"
            )

        await self.transition(job_id, PublishStatus.PACKAGING)
        extracted = await self.bundle_processor.extract_bundle_async(payload)
        deploy_files = self.bundle_processor.ensure_default_files(extracted.files)
        logger.info(f"[publish:upload] Extracted {len(deploy_files)} files")

        if not self.deployment_client.is_configured():
            url = self.mock_url_template.format(app_id=job.app_id)
            logger.info(f"[publish:upload] Provider not configured, simulating deployment: {url}")
            ready = await self.transition(job_id, PublishStatus.READY, url=url)
            log_publish_event("publish_ready", job_id, ready.status, url=ready.url)
            return UploadResult(
                success=True,
                message="Bundle uploaded (mock deployment)",
                status=ready.status,
            )

        await self.transition(job_id, PublishStatus.BUILDING)
        await self.transition(job_id, PublishStatus.DEPLOYING)

        project_name = self.deployment_client.project_name_for(job.app_id, actual_hash)
        logger.info(f"[publish:upload] Deploying {project_name}...")
        handle = await self.deployment_client.create_deployment_async(project_name, deploy_files)

        updated = await self.job_store.update(
            job_id,
            deployment_id=handle.deployment_id,
            deployment_project_id=handle.project_id,
        )
        if updated is None or updated.is_terminal:
            logger.info(f"[publish:upload] Job {job_id} ended during deployment creation, cancelling remote")
            await self.deployment_client.cancel_deployment_async(handle.deployment_id)
            raise InvalidTransitionError("Job ended while the deployment was being created")

        self.poller.start(job_id, handle.deployment_id)

        return UploadResult(
            success=True,
            message="Bundle uploaded, deployment started",
            status=updated.status,
            deployment_id=handle.deployment_id,
        )

    # ========================================================================
    # COMPLETE
    # ========================================================================

    async def complete_publish(self, job_id: str) -> CompleteResult:
        """
        Compatibility step for multi-step upload flows. Upload already
        triggers deployment, so this only reports where the job stands.
        """
        job = await self._require_job(job_id)
        logger.info(f"[publish:complete] Completing job: {job_id}")

        if job.status == PublishStatus.QUEUED:
            raise InvalidTransitionError("Bundle not uploaded yet", current_status=job.status.value)

        if job.status in IN_PROGRESS_STATUSES:
            return CompleteResult(success=True, status=job.status, message="Deployment in progress")

        return CompleteResult(
            success=job.status == PublishStatus.READY,
            status=job.status,
            url=job.url,
            error=job.error,
        )

    # ========================================================================
    # STATUS
    # ========================================================================

    async def get_status(self, job_id: str) -> StatusResult:
        """
        Current job status. In-flight deployments are refreshed from the
        provider through the same reconciliation the poller uses; provider
        failures fall back to the stored record.
        """
        job = await self._require_job(job_id)

        if job.is_terminal:
            return StatusResult.from_job(job)

        if (
            job.deployment_id
            and job.status in (PublishStatus.BUILDING, PublishStatus.DEPLOYING)
            and self.deployment_client.is_configured()
        ):
            try:
                provider_status = await self.deployment_client.get_deployment_status_async(job.deployment_id)
                refreshed = await reconcile_job(self.job_store, job_id, provider_status)
                if refreshed is not None:
                    job = refreshed
            except ProviderError as e:
                logger.warning(f"[publish:status] Failed to check provider status: {e.message}")

        return StatusResult.from_job(job)

    # ========================================================================
    # CANCEL
    # ========================================================================

    async def cancel_publish(self, job_id: str) -> CancelResult:
        """
        Cancel a non-terminal job. The remote deployment is cancelled on a
        best-effort basis; the local job reaches cancelled regardless.
        """
        job = await self._require_job(job_id)
        logger.info(f"[publish:cancel] Cancelling job: {job_id}")

        if job.is_terminal:
            return CancelResult(
                success=False,
                status=job.status,
                message=f"Cannot cancel job in {job.status.value} state",
            )

        if job.deployment_id:
            try:
                cancelled = await self.deployment_client.cancel_deployment_async(job.deployment_id)
                if cancelled:
                    logger.info(f"[publish:cancel] Cancelled deployment: {job.deployment_id}")
                else:
                    logger.warning(f"[publish:cancel] Provider refused to cancel deployment: {job.deployment_id}")
            except Exception as e:
                logger.warning(f"[publish:cancel] Failed to cancel deployment: {redact_sensitive_info(str(e))}")

        self.poller.cancel(job_id)

        try:
            updated = await self.transition(job_id, PublishStatus.CANCELLED)
        except InvalidTransitionError:
            current = await self._require_job(job_id)
            return CancelResult(
                success=False,
                status=current.status,
                message=f"Cannot cancel job in {current.status.value} state",
            )

        log_publish_event("publish_cancelled", job_id, updated.status, deployment_id=updated.deployment_id)
        return CancelResult(success=True, status=updated.status)
