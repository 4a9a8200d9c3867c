# core/errors.py
"""
Error taxonomy for the publish broker.

Every error carries the HTTP status and the error kind the API layer
reports, so handlers in main.py can translate them without a lookup table.
"""

from typing import Optional


class PublishError(Exception):
    """Base class for all broker errors."""

    status_code: int = 500
    kind: str = "Internal server error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ============================================================================
# CLIENT ERRORS
# ============================================================================

class ClientError(PublishError):
    """Malformed input or a request the job cannot honour."""

    status_code = 400
    kind = "Invalid request"


class JobNotFoundError(ClientError):
    status_code = 404
    kind = "Not found"

    def __init__(self, job_id: str):
        super().__init__("Publish job not found")
        self.job_id = job_id


class InvalidTransitionError(ClientError):
    """Requested status change is not permitted by the state machine."""

    kind = "Invalid state"

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


# ============================================================================
# CAPACITY ERRORS (fatal to the current job)
# ============================================================================

class CapacityError(ClientError):
    kind = "Bundle rejected"


class BundleTooLargeError(CapacityError):
    pass


class BundleExtractionError(CapacityError):
    pass


# ============================================================================
# PROVIDER ERRORS
# ============================================================================

class ProviderError(PublishError):
    """Remote deployment API failure; message is already redacted."""

    status_code = 502
    kind = "Deployment provider error"

    def __init__(self, message: str, provider_status: Optional[int] = None):
        super().__init__(message)
        self.provider_status = provider_status

