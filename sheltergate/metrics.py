from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REQS = Counter(
    "shelter_requests_total",
    "Requests",
    ["method", "path", "status"],
)
LAT = Histogram(
    "shelter_latency_seconds",
    "Latency",
    ["method", "path"],
)
REJECTED = Counter(
    "shelter_ratelimit_rejections_total",
    "Requests rejected by a rate limiter",
    ["limiter"],
)
BUCKETS = Gauge(
    "shelter_ratelimit_buckets",
    "Tracked rate limit buckets after the last sweep",
    ["limiter"],
)


def router() -> APIRouter:
    r = APIRouter()

    @r.get("/metrics", include_in_schema=False)
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return r
