"""Request-pipeline adapters that apply a RateLimiter per IP or per user."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from .config import Settings, settings
from .metrics import REJECTED
from .ratelimit import RateLimiter

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = "Too many requests. Please try again later."


def client_ip(request: Request) -> str:
    """Return the caller's address, honoring proxy headers when trusted."""

    if settings.TRUST_PROXY_HEADERS:
        cf_ip = request.headers.get("cf-connecting-ip", "").strip()
        if cf_ip:
            return cf_ip
        # proxies append the peer they saw; only the rightmost hops are trustworthy
        hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",")]
        hops = [h for h in hops if h]
        if len(hops) >= settings.TRUSTED_PROXY_HOPS:
            return hops[-settings.TRUSTED_PROXY_HOPS]
    return request.client.host if request.client else "unknown"


def retry_after_header(limiter: RateLimiter, key: str) -> dict[str, str]:
    return {"Retry-After": str(max(1, math.ceil(limiter.retry_after(key))))}


def record_rejection(limiter: RateLimiter, key: str, request: Request) -> None:
    REJECTED.labels(limiter.name).inc()
    logger.warning(
        "rate limit exceeded limiter=%s key=%s endpoint=%s method=%s",
        limiter.name,
        key,
        request.url.path,
        request.method,
    )


def _reject(limiter: RateLimiter, key: str, request: Request) -> HTTPException:
    record_rejection(limiter, key, request)
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=TOO_MANY_REQUESTS,
        headers=retry_after_header(limiter, key),
    )


class RateLimitByIP:
    """Dependency limiting requests by client IP address."""

    def __init__(self, limiter: RateLimiter) -> None:
        self.limiter = limiter

    def key(self, request: Request) -> str:
        return client_ip(request)

    async def __call__(self, request: Request) -> None:
        key = self.key(request)
        if not self.limiter.allow(key):
            raise _reject(self.limiter, key, request)


class RateLimitByUser(RateLimitByIP):
    """Dependency limiting requests by authenticated user.

    Reads ``request.state.user_id`` set by :func:`sheltergate.auth.require_user`,
    so it must be declared after that dependency. Unauthenticated callers are
    keyed by IP address instead.
    """

    def key(self, request: Request) -> str:
        user_id = getattr(request.state, "user_id", None)
        if user_id is None:
            return client_ip(request)
        return f"user:{user_id}"


@dataclass
class Limiters:
    """Limiter instances shared by the routing layer of one application."""

    api: RateLimiter
    auth: RateLimiter
    user: RateLimiter

    def all(self) -> dict[str, RateLimiter]:
        return {"api": self.api, "auth": self.auth, "user": self.user}

    def start_all(self) -> None:
        for limiter in self.all().values():
            limiter.start()

    async def stop_all(self) -> None:
        await asyncio.gather(*(limiter.stop() for limiter in self.all().values()))


def build_limiters(cfg: Settings | None = None) -> Limiters:
    cfg = cfg or settings
    window = cfg.RATE_LIMIT_WINDOW_SECONDS
    return Limiters(
        api=RateLimiter(cfg.RATE_LIMIT_PER_MINUTE, window, name="api"),
        auth=RateLimiter(cfg.AUTH_RATE_LIMIT_PER_MINUTE, window, name="auth"),
        user=RateLimiter(cfg.USER_RATE_LIMIT_PER_MINUTE, window, name="user"),
    )
