import time
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from routers.router import health_router, router
from core.context import BrokerContext
from core.lifespan import lifespan
from core.config import settings
from core.errors import PublishError
from core.logger import logger
from utils.redaction import redact_sensitive_info

# CORS configuration
if settings.ENABLE_CORS:
    origins = [
        settings.FRONTEND_ENDPOINT,
        settings.BACKEND_ENDPOINT,
    ]
else:
    origins = ["*"]


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

async def publish_error_handler(request: Request, exc: PublishError):
    if exc.status_code >= 500:
        logger.error(f"[{request.url.path}] {exc.kind}: {exc.message}")
    else:
        logger.warning(f"[{request.url.path}] {exc.kind}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "message": exc.message}
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())}
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"error": "Error", "message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def unhandled_error_handler(request: Request, exc: Exception):
    message = redact_sensitive_info(str(exc)) or "Unknown error"
    logger.exception(f"[{request.url.path}] Unhandled error: {message}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "message": message}
    )


def create_app(context: Optional[BrokerContext] = None) -> FastAPI:
    """
    Build the FastAPI application.

    When `context` is given it is installed on app.state before startup and
    the lifespan reuses it instead of building one from settings.
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="""
    Publish broker for one-click app deployment.

    ## Private API Endpoints

    **POST /api/v1/publish/start** - Create a publish job
    **PUT /api/v1/publish/upload?publishId=** - Upload the zip bundle (raw body or multipart `bundle`)
    **POST /api/v1/publish/complete** - Report where an uploaded job stands
    **GET /api/v1/publish/status?publishId=** - Status, progress and message
    **POST /api/v1/publish/cancel** - Cancel an in-progress publish

    ### Headers:
    - **Request**: `x-abba-device-token` (required), `x-request-id` (optional)
    - **Response**: `Retry-After` on 429
    """,
        version=settings.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    if context is not None:
        app.state.context = context

    app.add_exception_handler(PublishError, publish_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Request/Response logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": int(duration * 1000),
            "client": request.client.host if request.client else "unknown"
        }

        # Only log non-health-check requests
        if request.url.path != "/health":
            logger.info(f"Request: {log_data}")

        return response

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(router)
    app.include_router(health_router)

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root():
        return {
            "service": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "status": "running",
            "documentation": "/docs"
        }

    return app


app = create_app()
