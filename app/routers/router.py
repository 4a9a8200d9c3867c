# routers/router.py
"""
FastAPI Routers for the Publish Broker
"""

from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    Request,
    status
)

from core.auth import TokenReason, validate_device_token, verify_device_token
from core.config import settings
from core.context import BrokerContext, get_context
from core.errors import ClientError
from core.logger import logger
from core.rate_limiter import client_identity
from schemas.publish_models import (
    AuthHealthResponse,
    CancelResponse,
    CompleteResponse,
    ErrorResponse,
    HealthResponse,
    PublishIdRequest,
    PublishStartRequest,
    PublishStartResponse,
    PublishStatusResponse,
    UploadResponse,
)


# ============================================================================
# DEPENDENCIES
# ============================================================================

async def enforce_rate_limit(request: Request) -> None:
    """Fixed-window throttle per client identity, applied before auth."""
    context = get_context(request)
    decision = context.rate_limiter.admit(client_identity(request))
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Too Many Requests",
                "message": f"Rate limit exceeded. Try again in {decision.retry_after} seconds.",
            },
            headers={"Retry-After": str(decision.retry_after)}
        )


async def read_capped_body(request: Request, limit: int) -> bytearray:
    """
    Read the raw request body, stopping as soon as it grows past `limit`.
    The returned buffer is then `limit + 1` bytes or more.
    """
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            break
    return body


# ============================================================================
# ROUTER CONFIGURATION
# ============================================================================

router = APIRouter(
    prefix=settings.PUBLIC_BASE_PATH,
    tags=["Publish"],
    dependencies=[Depends(enforce_rate_limit), Depends(verify_device_token)],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request, state or bundle"},
        401: {"model": ErrorResponse, "description": "Unauthorized - Missing or invalid device token"},
        404: {"model": ErrorResponse, "description": "Publish job not found"},
        429: {"model": ErrorResponse, "description": "Too Many Requests"},
        502: {"model": ErrorResponse, "description": "Deployment provider error"},
        503: {"model": ErrorResponse, "description": "Broker misconfigured"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"}
    }
)

health_router = APIRouter(tags=["Health"])


# ============================================================================
# PUBLISH ENDPOINTS
# ============================================================================

@router.post(
    "/start",
    response_model=PublishStartResponse,
    status_code=status.HTTP_200_OK,
    summary="Start Publish",
    description="Create a publish job and return its id and upload URL"
)
async def start_publish(
    body: PublishStartRequest,
    context: BrokerContext = Depends(get_context)
) -> PublishStartResponse:
    job = await context.orchestrator.start_publish(body)
    return PublishStartResponse(
        publishId=job.id,
        status=job.status,
        uploadUrl=f"{router.prefix}/upload?publishId={quote(job.id, safe='')}",
    )


@router.put(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Upload Bundle",
    description="Accept a zip bundle (raw body or multipart field 'bundle') and start deployment"
)
async def upload_bundle(
    request: Request,
    publish_id: str = Query(..., alias="publishId", min_length=1),
    context: BrokerContext = Depends(get_context)
) -> UploadResponse:
    """
    Upload flow:
    1. Validate size and (optionally) hash
    2. Extract and repackage the bundle
    3. Create the deployment and hand the job to the poller

    Returns immediately after the deployment is created.
    """
    orchestrator = context.orchestrator
    max_size = context.config.MAX_BUNDLE_SIZE
    content_type = request.headers.get("content-type", "")

    if "multipart/form-data" in content_type:
        # Multipart files are spooled to disk by the form parser
        form = await request.form()
        upload = form.get("bundle")
        if upload is None or isinstance(upload, str):
            raise ClientError("No bundle file provided")
        if upload.size is not None:
            await orchestrator.reject_oversized_upload(publish_id, upload.size)
        payload = await upload.read()
    else:
        declared = request.headers.get("content-length", "")
        if declared.isdigit():
            await orchestrator.reject_oversized_upload(publish_id, int(declared))
        payload = await read_capped_body(request, max_size)
        if len(payload) > max_size:
            await orchestrator.reject_oversized_upload(publish_id, len(payload))

    logger.info(f"[publish:upload] Received bundle: {len(payload)} bytes")

    result = await orchestrator.upload_bundle(publish_id, bytes(payload))
    return UploadResponse(
        success=result.success,
        message=result.message,
        status=result.status,
        deploymentId=result.deployment_id,
    )


@router.post(
    "/complete",
    response_model=CompleteResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Complete Publish",
    description="Compatibility endpoint for multi-step upload flows"
)
async def complete_publish(
    body: PublishIdRequest,
    context: BrokerContext = Depends(get_context)
) -> CompleteResponse:
    result = await context.orchestrator.complete_publish(body.publish_id)
    return CompleteResponse(
        success=result.success,
        status=result.status,
        message=result.message,
        url=result.url,
        error=result.error,
    )


@router.get(
    "/status",
    response_model=PublishStatusResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Publish Status",
    description="Current status, progress percentage and message of a publish job"
)
async def publish_status(
    publish_id: str = Query(..., alias="publishId", min_length=1),
    context: BrokerContext = Depends(get_context)
) -> PublishStatusResponse:
    result = await context.orchestrator.get_status(publish_id)
    return PublishStatusResponse(
        status=result.status,
        progress=result.progress,
        message=result.message,
        url=result.url,
        error=result.error,
    )


@router.post(
    "/cancel",
    response_model=CancelResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Cancel Publish",
    description="Cancel an in-progress publish; terminal jobs are left untouched"
)
async def cancel_publish(
    body: PublishIdRequest,
    context: BrokerContext = Depends(get_context)
) -> CancelResponse:
    result = await context.orchestrator.cancel_publish(body.publish_id)
    return CancelResponse(success=result.success, status=result.status, message=result.message)


# ============================================================================
# HEALTH CHECK ENDPOINTS
# ============================================================================

@health_router.get(
    "/api/health/auth",
    response_model=AuthHealthResponse,
    summary="Authenticated Health Check",
    description="Validates the device token and reports auth status"
)
async def auth_health(request: Request) -> AuthHealthResponse:
    context = get_context(request)
    result = validate_device_token(
        request.headers.get(context.config.DEVICE_TOKEN_HEADER),
        server_token=context.config.ABBA_DEVICE_TOKEN or ""
    )

    if not result.valid:
        message = {
            TokenReason.MISSING: "Missing device token",
            TokenReason.NOT_CONFIGURED: "Server token not configured",
        }.get(result.reason, "Invalid device token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized", "message": message}
        )

    return AuthHealthResponse(ok=True, auth="ok", time=datetime.now(timezone.utc).isoformat())


@health_router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Service Health Check",
    description="Validates job store connectivity and provider configuration"
)
async def check_health(request: Request) -> HealthResponse:
    context = get_context(request)
    health_status = HealthResponse(
        status="healthy",
        message="Publish broker is operational",
        active_pollers=len(context.poller.active_jobs()),
    )

    if await context.job_store.health_check():
        health_status.job_store_status = "connected"
    else:
        health_status.job_store_status = "error"
        health_status.status = "degraded"

    if context.deployment_client.is_configured():
        health_status.deployment_provider_status = "configured"
    else:
        health_status.deployment_provider_status = "mock"

    return health_status
