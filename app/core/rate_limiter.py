# core/rate_limiter.py
import math
import time
from dataclasses import dataclass

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from core.logger import logger


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


def client_identity(request: Request) -> str:
    """
    Identity used for throttling: first proxy-forwarded address, then
    x-real-ip, then the literal "unknown".
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return "unknown"


class RequestRateLimiter:
    """
    Fixed-window request counter keyed by client identity.

    One instance is owned by the broker context; nothing here is module
    level, so tests can build as many independent limiters as they need.
    """

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(max_requests, window_seconds)
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    def admit(self, identity: str) -> RateLimitDecision:
        if self._strategy.hit(self._item, identity):
            return RateLimitDecision(allowed=True)

        reset_time, _remaining = self._strategy.get_window_stats(self._item, identity)
        retry_after = max(1, math.ceil(reset_time - time.time()))
        logger.warning(f"[rate-limit] Rejected {identity}, retry after {retry_after}s")
        return RateLimitDecision(allowed=False, retry_after=retry_after)

    def remaining(self, identity: str) -> int:
        _reset_time, remaining = self._strategy.get_window_stats(self._item, identity)
        return remaining

    def reset(self) -> None:
        self._storage.reset()
