from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .auth import Principal, create_access_token, require_admin, require_user
from .config import reload_settings, settings
from .limits import (
    TOO_MANY_REQUESTS,
    Limiters,
    RateLimitByIP,
    RateLimitByUser,
    build_limiters,
    client_ip,
    record_rejection,
    retry_after_header,
)
from .logging import AccessLogMiddleware
from .logging_setup import init_logging
from .metrics import LAT, REQS, router as metrics_router
from .security import MaxBodySizeMiddleware, SecurityHeadersMiddleware


class Health(BaseModel):
    status: str
    time: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


def api_router(limiters: Limiters) -> APIRouter:
    by_ip_auth = RateLimitByIP(limiters.auth)
    by_user = RateLimitByUser(limiters.user)

    api = APIRouter(prefix="/api")

    @api.post("/token/refresh", response_model=Token, dependencies=[Depends(by_ip_auth)])
    def refresh_token(principal: Principal = Depends(require_user)):
        return Token(
            access_token=create_access_token(principal.user_id, principal.is_admin)
        )

    protected = APIRouter(dependencies=[Depends(require_user), Depends(by_user)])

    @protected.get("/me", response_model=Principal)
    def me(principal: Principal = Depends(require_user)):
        return principal

    @protected.get("/environment")
    def environment():
        return {"environment": settings.ENVIRONMENT}

    admin = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])

    @admin.get("/ratelimit")
    def ratelimit_stats():
        return {
            "limiters": {name: lim.stats() for name, lim in limiters.all().items()}
        }

    @admin.delete("/ratelimit/{limiter}/{key}")
    def ratelimit_reset(limiter: str, key: str):
        target = limiters.all().get(limiter)
        if target is None:
            raise HTTPException(status_code=404, detail="unknown limiter")
        return {"limiter": limiter, "key": key, "reset": target.reset(key)}

    protected.include_router(admin)
    api.include_router(protected)
    return api


def create_app(limiters: Limiters | None = None) -> FastAPI:
    limiters = limiters or build_limiters(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reload_settings()
        limiters.start_all()
        try:
            yield
        finally:
            await limiters.stop_all()

    app = FastAPI(title="Shelter Gate", version="0.1.0", lifespan=lifespan)
    app.state.limiters = limiters
    app.include_router(metrics_router())

    @app.middleware("http")
    async def _metrics_and_rate(request: Request, call_next):
        method = request.method
        path = request.url.path
        start = time.time()
        status_code = 500
        try:
            if (
                settings.RATE_LIMIT_ENABLED
                and method != "OPTIONS"
                and path.startswith("/api")
            ):
                key = client_ip(request)
                if not limiters.api.allow(key):
                    record_rejection(limiters.api, key, request)
                    response = JSONResponse(
                        {"detail": TOO_MANY_REQUESTS},
                        status_code=429,
                        headers=retry_after_header(limiters.api, key),
                    )
                    status_code = response.status_code
                    return response
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = time.time() - start
            REQS.labels(method, path, str(status_code)).inc()
            LAT.labels(method, path).observe(duration)

    # added after the rate limit middleware so they wrap its 429s
    app.add_middleware(MaxBodySizeMiddleware, max_bytes=settings.MAX_REQUEST_BODY_BYTES)
    origins = [o.strip() for o in settings.CORS_ALLOW_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if settings.SECURITY_HEADERS_ENABLED:
        app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(AccessLogMiddleware)

    @app.get("/health", response_model=Health)
    @app.get("/healthz", response_model=Health, include_in_schema=False)
    def health():
        return Health(status="ok", time=datetime.now(timezone.utc).isoformat())

    app.include_router(api_router(limiters))
    return app


init_logging(settings.LOG_LEVEL)

app = create_app()
