"""Per-client request limits.

Two buckets, keyed by client address: one shared by every `/api` route and a
stricter one for `/api/auth`. An auth request counts against both.
"""

from typing import Dict

import structlog
from fastapi import Request
from limits import RateLimitItem, parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from config import Settings
from errors import TooManyRequests

logger = structlog.get_logger(__name__)

MESSAGES = {
    "api": "Too many requests from this IP, please try again later",
    "auth": "Too many auth attempts from this IP, please try again later",
}


class RateLimiter:
    def __init__(self, limits: Dict[str, str], storage_uri: str = "memory://", enabled: bool = True):
        self.enabled = enabled
        self.items: Dict[str, RateLimitItem] = {scope: parse(value) for scope, value in limits.items()}
        self.strategy = MovingWindowRateLimiter(storage_from_string(storage_uri))

    def hit(self, scope: str, key: str) -> None:
        if not self.enabled:
            return
        item = self.items[scope]
        if not self.strategy.hit(item, scope, key):
            logger.warning("Rate limit exceeded", scope=scope, client=key, limit=str(item))
            raise TooManyRequests(MESSAGES[scope])


def build_rate_limiter(settings: Settings) -> RateLimiter:
    return RateLimiter(
        {"api": settings.api_rate_limit, "auth": settings.auth_rate_limit},
        storage_uri=settings.rate_limit_storage_uri,
        enabled=settings.rate_limit_enabled,
    )


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def api_rate_limit(request: Request) -> None:
    request.app.state.rate_limiter.hit("api", client_key(request))


def auth_rate_limit(request: Request) -> None:
    request.app.state.rate_limiter.hit("auth", client_key(request))
