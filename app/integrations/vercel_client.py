# integrations/vercel_client.py
"""
Vercel Deployment Client

Deploys extracted bundles through the Vercel Deployments API: files are
sent inline with the create call, so no separate upload step exists.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from core.config import Settings
from core.errors import ProviderError
from core.logger import logger
from schemas.publish_models import PublishStatus
from services.bundle_service import DeploymentFile, files_to_payload
from utils.redaction import redact_sensitive_info, truncate


class ProviderState(str, Enum):
    """Vercel deployment readyState values"""
    QUEUED = "QUEUED"
    INITIALIZING = "INITIALIZING"
    BUILDING = "BUILDING"
    READY = "READY"
    ERROR = "ERROR"
    CANCELED = "CANCELED"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ProviderState":
        try:
            return cls(str(value).upper())
        except ValueError:
            logger.warning(f"[vercel] Unknown readyState '{value}', treating as QUEUED")
            return cls.QUEUED


PROVIDER_TERMINAL_STATES = frozenset({ProviderState.READY, ProviderState.ERROR, ProviderState.CANCELED})


@dataclass
class DeploymentHandle:
    deployment_id: str
    project_id: Optional[str]
    url: Optional[str]
    state: ProviderState


@dataclass
class ProviderStatus:
    state: ProviderState
    url: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in PROVIDER_TERMINAL_STATES


@dataclass
class StatusMapping:
    """Broker-side view of a provider status. `status` None means no change."""
    status: Optional[PublishStatus]
    url: Optional[str] = None
    error: Optional[str] = None


def map_provider_status(provider_status: ProviderStatus) -> StatusMapping:
    """
    Translate a provider status into broker vocabulary.

    QUEUED / INITIALIZING -> no change (job stays deploying)
    BUILDING -> building
    READY -> ready (url)
    ERROR -> failed (error)
    CANCELED -> cancelled
    """
    state = provider_status.state
    if state == ProviderState.READY:
        return StatusMapping(status=PublishStatus.READY, url=provider_status.url)
    if state == ProviderState.ERROR:
        return StatusMapping(
            status=PublishStatus.FAILED,
            error=provider_status.error_message or "Deployment failed"
        )
    if state == ProviderState.CANCELED:
        return StatusMapping(status=PublishStatus.CANCELLED)
    if state == ProviderState.BUILDING:
        return StatusMapping(status=PublishStatus.BUILDING)
    return StatusMapping(status=None)


def generate_project_name(app_id: int, bundle_hash: str, prefix: str = "abba-app") -> str:
    """Deterministic project name: same app and content map to the same project."""
    return f"{prefix}-{app_id}-{bundle_hash[:8]}"


def _https(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return url if url.startswith("http") else f"https://{url}"


class VercelDeploymentClient:
    """
    Thin wrapper over the Vercel REST API.

    Blocking calls use a shared requests.Session; the *_async variants run
    them in worker threads for the orchestrator and the poller.
    """

    def __init__(
        self,
        token: Optional[str],
        team_id: Optional[str] = None,
        api_url: str = "https://api.vercel.com",
        timeout: int = 60,
        project_prefix: str = "abba-app",
        session: Optional[requests.Session] = None
    ):
        self.token = token.strip() if token and token.strip() else None
        self.team_id = team_id or None
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.project_prefix = project_prefix
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, config: Settings) -> "VercelDeploymentClient":
        return cls(
            token=config.BROKER_VERCEL_TOKEN,
            team_id=config.VERCEL_TEAM_ID,
            api_url=config.VERCEL_API_URL,
            timeout=config.VERCEL_REQUEST_TIMEOUT_SECS,
            project_prefix=config.VERCEL_PROJECT_PREFIX,
        )

    def is_configured(self) -> bool:
        return self.token is not None

    def project_name_for(self, app_id: int, bundle_hash: str) -> str:
        return generate_project_name(app_id, bundle_hash, self.project_prefix)

    # ========================================================================
    # HTTP PLUMBING
    # ========================================================================

    def _url(self, path: str) -> str:
        base = f"{self.api_url}{path}"
        if self.team_id:
            separator = "&" if "?" in path else "?"
            return f"{base}{separator}teamId={quote(self.team_id)}"
        return base

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        if not self.token:
            raise ProviderError("BROKER_VERCEL_TOKEN not configured")

        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        headers.update(kwargs.pop("headers", {}))

        try:
            return self.session.request(
                method,
                self._url(path),
                headers=headers,
                timeout=self.timeout,
                **kwargs
            )
        except requests.exceptions.RequestException as e:
            message = redact_sensitive_info(str(e))
            logger.error(f"[vercel] {method} {path} failed: {message}")
            raise ProviderError(f"Deployment provider unreachable: {message}") from e

    @staticmethod
    def _error_text(response: requests.Response) -> str:
        return truncate(redact_sensitive_info(response.text or ""))

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error(f"[vercel] Unparseable response ({response.status_code}): {VercelDeploymentClient._error_text(response)}")
            raise ProviderError("Invalid provider response", provider_status=response.status_code)
        return data

    # ========================================================================
    # PROJECTS
    # ========================================================================

    def ensure_project(self, name: str) -> Dict[str, Any]:
        """Return the project called `name`, creating it on first use."""
        response = self._request("GET", f"/v9/projects/{quote(name, safe='')}")

        if response.ok:
            project = self._json(response)
            return {"id": project.get("id"), "name": project.get("name", name)}

        if response.status_code != 404:
            raise ProviderError(
                f"Failed to get project: {self._error_text(response)}",
                provider_status=response.status_code
            )

        logger.info(f"[vercel] Creating new project: {name}")
        response = self._request("POST", "/v10/projects", json={"name": name, "framework": None})

        if not response.ok:
            raise ProviderError(
                f"Failed to create project: {self._error_text(response)}",
                provider_status=response.status_code
            )

        project = self._json(response)
        return {"id": project.get("id"), "name": project.get("name", name)}

    # ========================================================================
    # DEPLOYMENTS
    # ========================================================================

    def create_deployment(self, project_name: str, files: List[DeploymentFile]) -> DeploymentHandle:
        """
        Create a production deployment with the given files.

        Raises:
            ProviderError: If the project or the deployment cannot be created
        """
        logger.info(f"[vercel] Creating deployment for project: {project_name} ({len(files)} files)")

        project = self.ensure_project(project_name)
        logger.info(f"[vercel] Using project: {project['id']}")

        response = self._request("POST", "/v13/deployments", json={
            "name": project_name,
            "project": project["id"],
            "files": files_to_payload(files),
            "projectSettings": {
                "framework": None,  # Static deployment
                "buildCommand": None,
                "outputDirectory": None,
            },
            "target": "production",
        })

        if not response.ok:
            error_text = self._error_text(response)
            logger.error(f"[vercel] Deployment creation failed: {error_text}")
            raise ProviderError(
                f"Failed to create deployment: {response.status_code}",
                provider_status=response.status_code
            )

        data = self._json(response)
        if not data.get("id"):
            raise ProviderError("Invalid provider response: missing deployment id", provider_status=response.status_code)
        handle = DeploymentHandle(
            deployment_id=data["id"],
            project_id=data.get("projectId") or project["id"],
            url=_https(data.get("url")),
            state=ProviderState.parse(data.get("readyState")),
        )
        logger.info(f"[vercel] Deployment created: {handle.deployment_id}, state: {handle.state.value}")
        return handle

    def get_deployment_status(self, deployment_id: str) -> ProviderStatus:
        response = self._request("GET", f"/v13/deployments/{quote(deployment_id, safe='')}")

        if not response.ok:
            raise ProviderError(
                f"Failed to get deployment: {response.status_code}",
                provider_status=response.status_code
            )

        data = self._json(response)
        error_message = data.get("errorMessage")
        return ProviderStatus(
            state=ProviderState.parse(data.get("readyState")),
            url=_https(data.get("url")),
            error_message=redact_sensitive_info(error_message) if error_message else None,
        )

    def cancel_deployment(self, deployment_id: str) -> bool:
        """Best-effort cancel; never raises."""
        try:
            response = self._request("PATCH", f"/v13/deployments/{quote(deployment_id, safe='')}/cancel")
        except ProviderError as e:
            logger.warning(f"[vercel] Cancel failed for {deployment_id}: {e}")
            return False
        return response.ok

    # ========================================================================
    # ASYNC WRAPPERS
    # ========================================================================

    async def create_deployment_async(self, project_name: str, files: List[DeploymentFile]) -> DeploymentHandle:
        return await asyncio.to_thread(self.create_deployment, project_name, files)

    async def get_deployment_status_async(self, deployment_id: str) -> ProviderStatus:
        return await asyncio.to_thread(self.get_deployment_status, deployment_id)

    async def cancel_deployment_async(self, deployment_id: str) -> bool:
        return await asyncio.to_thread(self.cancel_deployment, deployment_id)

    def close(self) -> None:
        self.session.close()
