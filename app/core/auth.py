# core/auth.py
"""
Device-token authentication for broker requests.

The desktop client presents a shared device token in the
x-abba-device-token header. Only SHA-256 prefixes of tokens are ever
logged, never the tokens themselves.
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status

from core.config import settings
from core.logger import logger


class TokenReason:
    NOT_CONFIGURED = "not_configured"
    MISSING = "missing"
    INVALID = "invalid"


@dataclass
class TokenValidation:
    valid: bool
    reason: Optional[str] = None


class AuthenticatedDevice:
    """
    Principal for an admitted request.

    The broker has a single shared device token, so the principal only
    records which client presented it and the fingerprint of that token.
    """

    def __init__(self, token_fingerprint: str, request_id: str):
        self.token_fingerprint = token_fingerprint
        self.request_id = request_id


def get_server_token(server_token: Optional[str] = None) -> Optional[str]:
    token = server_token if server_token is not None else settings.ABBA_DEVICE_TOKEN
    if token and token.strip():
        return token.strip()
    return None


def token_hash_prefix(token: str) -> str:
    """First 8 hex chars of the token's SHA-256, safe to log."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:8]


def constant_time_compare(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def validate_device_token(
    presented: Optional[str],
    server_token: Optional[str] = None
) -> TokenValidation:
    """
    Validate a presented device token against the server's token.

    Args:
        presented: Token from the request header (None when absent)
        server_token: Override for the configured token (tests)

    Returns:
        TokenValidation: valid flag plus the failure reason
    """
    expected = get_server_token(server_token)

    logger.debug(
        f"[auth] serverConfigured={expected is not None}, "
        f"headerPresent={bool(presented)}, "
        f"serverHash={token_hash_prefix(expected) if expected else 'none'}, "
        f"clientHash={token_hash_prefix(presented) if presented else 'none'}"
    )

    if expected is None:
        logger.error("[auth] ABBA_DEVICE_TOKEN not configured on server")
        return TokenValidation(valid=False, reason=TokenReason.NOT_CONFIGURED)

    if not presented:
        return TokenValidation(valid=False, reason=TokenReason.MISSING)

    if constant_time_compare(presented, expected):
        return TokenValidation(valid=True)

    logger.warning(
        f"[auth] Token mismatch: server={token_hash_prefix(expected)}..., "
        f"client={token_hash_prefix(presented)}..."
    )
    return TokenValidation(valid=False, reason=TokenReason.INVALID)


async def verify_device_token(request: Request) -> AuthenticatedDevice:
    """
    FastAPI dependency guarding every publish route.

    Raises:
        HTTPException: 503 when the server has no token configured,
            401 when the client token is missing or wrong
    """
    config = request.app.state.context.config
    request_id = request.headers.get("x-request-id", "unknown")
    presented = request.headers.get(config.DEVICE_TOKEN_HEADER)
    result = validate_device_token(presented, server_token=config.ABBA_DEVICE_TOKEN or "")

    if result.valid:
        return AuthenticatedDevice(
            token_fingerprint=token_hash_prefix(presented),
            request_id=request_id
        )

    if result.reason == TokenReason.NOT_CONFIGURED:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "BrokerMisconfigured",
                "message": "ABBA_DEVICE_TOKEN not configured on server. Set it in the environment and redeploy.",
            },
            headers={"x-request-id": request_id}
        )

    message = "Missing device token" if result.reason == TokenReason.MISSING else "Invalid device token"
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "Unauthorized", "message": message},
        headers={"x-request-id": request_id}
    )
