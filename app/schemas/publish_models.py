# schemas/publish_models.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field


class PublishStatus(str, Enum):
    """Publish job lifecycle states, in forward order"""
    QUEUED = "queued"
    PACKAGING = "packaging"
    UPLOADING = "uploading"
    BUILDING = "building"
    DEPLOYING = "deploying"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: FrozenSet[PublishStatus] = frozenset({
    PublishStatus.READY,
    PublishStatus.FAILED,
    PublishStatus.CANCELLED,
})

# Order in which a healthy job moves through the pipeline
FORWARD_ORDER: List[PublishStatus] = [
    PublishStatus.QUEUED,
    PublishStatus.UPLOADING,
    PublishStatus.PACKAGING,
    PublishStatus.BUILDING,
    PublishStatus.DEPLOYING,
    PublishStatus.READY,
]

STATUS_PROGRESS: Dict[PublishStatus, int] = {
    PublishStatus.QUEUED: 5,
    PublishStatus.PACKAGING: 15,
    PublishStatus.UPLOADING: 35,
    PublishStatus.BUILDING: 60,
    PublishStatus.DEPLOYING: 85,
    PublishStatus.READY: 100,
    PublishStatus.FAILED: 0,
    PublishStatus.CANCELLED: 0,
}

STATUS_MESSAGES: Dict[PublishStatus, str] = {
    PublishStatus.QUEUED: "Preparing to publish...",
    PublishStatus.PACKAGING: "Processing bundle...",
    PublishStatus.UPLOADING: "Uploading to hosting provider...",
    PublishStatus.BUILDING: "Building for production...",
    PublishStatus.DEPLOYING: "Deploying to hosting...",
    PublishStatus.READY: "Your app is live!",
    PublishStatus.FAILED: "Publish failed",
    PublishStatus.CANCELLED: "Publish cancelled",
}

_ABORT_TARGETS = frozenset({PublishStatus.FAILED, PublishStatus.CANCELLED})

ALLOWED_TRANSITIONS: Dict[PublishStatus, FrozenSet[PublishStatus]] = {
    PublishStatus.QUEUED: frozenset({PublishStatus.UPLOADING}) | _ABORT_TARGETS,
    PublishStatus.UPLOADING: frozenset({PublishStatus.PACKAGING}) | _ABORT_TARGETS,
    # packaging -> ready is the degraded-mode shortcut
    PublishStatus.PACKAGING: frozenset({PublishStatus.BUILDING, PublishStatus.READY}) | _ABORT_TARGETS,
    PublishStatus.BUILDING: frozenset({PublishStatus.DEPLOYING, PublishStatus.READY}) | _ABORT_TARGETS,
    PublishStatus.DEPLOYING: frozenset({PublishStatus.READY}) | _ABORT_TARGETS,
    PublishStatus.READY: frozenset(),
    PublishStatus.FAILED: frozenset(),
    PublishStatus.CANCELLED: frozenset(),
}

for _table in (STATUS_PROGRESS, STATUS_MESSAGES, ALLOWED_TRANSITIONS):
    _missing = set(PublishStatus) - set(_table)
    if _missing:
        raise RuntimeError(f"Status table is missing entries for: {sorted(s.value for s in _missing)}")


def is_terminal_status(status: PublishStatus) -> bool:
    return PublishStatus(status) in TERMINAL_STATUSES


def can_transition(current: PublishStatus, target: PublishStatus) -> bool:
    return PublishStatus(target) in ALLOWED_TRANSITIONS[PublishStatus(current)]


def precedes(current: PublishStatus, target: PublishStatus) -> bool:
    """True when `current` sits strictly before `target` on the forward path."""
    current, target = PublishStatus(current), PublishStatus(target)
    if current not in FORWARD_ORDER or target not in FORWARD_ORDER:
        return False
    return FORWARD_ORDER.index(current) < FORWARD_ORDER.index(target)


def get_status_progress(status: PublishStatus) -> int:
    return STATUS_PROGRESS[PublishStatus(status)]


def get_status_message(status: PublishStatus) -> str:
    return STATUS_MESSAGES[PublishStatus(status)]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# JOB RECORD
# ============================================================================

class PublishJob(BaseModel):
    """
    One publish attempt.

    Field names are snake_case internally; aliases are the names the
    desktop client sees.
    """
    id: str
    status: PublishStatus = PublishStatus.QUEUED
    app_id: int = Field(..., alias="appId")
    app_name: Optional[str] = Field(None, alias="appName")
    profile_id: Optional[str] = Field(None, alias="profileId")
    bundle_hash: str = Field(..., alias="bundleHash")
    bundle_size: int = Field(..., alias="bundleSize")
    bundle_path: Optional[str] = Field(None, alias="bundlePath")
    deployment_id: Optional[str] = Field(None, alias="deploymentId")
    deployment_project_id: Optional[str] = Field(None, alias="deploymentProjectId")
    url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=utc_now, alias="updatedAt")

    class Config:
        populate_by_name = True

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)


# Fields a caller may never change through an update
IMMUTABLE_JOB_FIELDS = frozenset({"id", "app_id", "app_name", "profile_id", "created_at"})
# Fields that are write-once
WRITE_ONCE_JOB_FIELDS = frozenset({"deployment_id", "deployment_project_id"})


# ============================================================================
# REQUEST MODELS
# ============================================================================

class PublishStartRequest(BaseModel):
    """Request model for starting a publish"""
    app_id: int = Field(..., alias="appId", description="The app ID being published")
    bundle_hash: str = Field(..., alias="bundleHash", min_length=1, description="SHA256 hash of the bundle")
    bundle_size: int = Field(..., alias="bundleSize", ge=0, description="Size of the bundle in bytes")
    profile_id: Optional[str] = Field(None, alias="profileId", description="Profile ID of the user publishing")
    app_name: Optional[str] = Field(None, alias="appName", description="Optional app name for display")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "appId": 123,
                "bundleHash": "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08",
                "bundleSize": 1024,
                "profileId": "profile-1",
                "appName": "My App"
            }
        }


class PublishIdRequest(BaseModel):
    """Body for complete and cancel"""
    publish_id: str = Field(..., alias="publishId", min_length=1)

    class Config:
        populate_by_name = True


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class PublishStartResponse(BaseModel):
    publishId: str
    status: PublishStatus
    uploadUrl: Optional[str] = None


class UploadResponse(BaseModel):
    success: bool
    message: str
    status: PublishStatus
    deploymentId: Optional[str] = None


class PublishStatusResponse(BaseModel):
    status: PublishStatus
    progress: int
    message: str
    url: Optional[str] = None
    error: Optional[str] = None


class CompleteResponse(BaseModel):
    success: bool
    status: PublishStatus
    message: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


class CancelResponse(BaseModel):
    success: bool
    status: PublishStatus
    message: Optional[str] = None


class AuthHealthResponse(BaseModel):
    ok: bool
    auth: str
    time: str


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    message: str
    job_store_status: Optional[str] = None
    deployment_provider_status: Optional[str] = None
    active_pollers: int = 0


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
    details: Optional[List[Dict[str, Any]]] = None
