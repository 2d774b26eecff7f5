"""Request logging middleware emitting JSON records with request IDs."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.datastructures import MutableHeaders
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.errors import ServerErrorMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .limits import client_ip

REQUEST_ID_HEADER = "X-Request-ID"
SENSITIVE_HEADERS = {"authorization"}

access_logger = logging.getLogger("sheltergate.access")

_REQUEST_ID_SCOPE_KEY = "sheltergate.request_id"
_SERVER_ERROR_PATCHED = False


def _req_id(req: Request) -> str:
    """Return the inbound request ID or generate a UUID4."""

    return req.headers.get("x-request-id") or str(uuid.uuid4())


def _redact_headers(headers: dict[str, str]) -> dict[str, str]:
    return {
        key: ("<redacted>" if key.lower() in SENSITIVE_HEADERS else value)
        for key, value in headers.items()
    }


def _patch_server_error_middleware() -> None:
    """Make Starlette's 500 responses carry the request ID as well."""

    global _SERVER_ERROR_PATCHED
    if _SERVER_ERROR_PATCHED:
        return

    original_call = ServerErrorMiddleware.__call__

    async def _patched_call(self, scope, receive, send):  # type: ignore[override]
        if scope.get("type") != "http":
            await original_call(self, scope, receive, send)
            return

        async def _send(message):
            if message["type"] == "http.response.start":
                headers = MutableHeaders(raw=list(message.get("headers", [])))
                request_id = scope.get(_REQUEST_ID_SCOPE_KEY)
                if request_id and "x-request-id" not in headers:
                    headers[REQUEST_ID_HEADER] = request_id
                message = dict(message)
                message["headers"] = headers.raw
            await send(message)

        await original_call(self, scope, receive, _send)

    ServerErrorMiddleware.__call__ = _patched_call  # type: ignore[assignment]
    _SERVER_ERROR_PATCHED = True


_patch_server_error_middleware()


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log one JSON access record per request and echo `X-Request-ID`."""

    async def dispatch(self, request: Request, call_next: Callable):  # type: ignore[override]
        request_id = _req_id(request)
        request.scope[_REQUEST_ID_SCOPE_KEY] = request_id
        request.state.request_id = request_id
        start = time.time()
        status = 500
        error: str | None = None
        response: Response | None = None
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        except Exception as exc:
            error = repr(exc)
            raise
        finally:
            record = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "query": str(request.url.query),
                "status": status,
                "duration_ms": int((time.time() - start) * 1000),
                "client_ip": client_ip(request),
                "user_id": getattr(request.state, "user_id", None),
                "headers": _redact_headers(
                    {
                        key: value
                        for key, value in request.headers.items()
                        if key.lower() in {"authorization", "user-agent"}
                    }
                ),
            }
            if error:
                record["error"] = error
            if error or status >= 500:
                access_logger.error(json.dumps(record))
            elif status >= 400:
                access_logger.warning(json.dumps(record))
            else:
                access_logger.info(json.dumps(record))
            if response is not None:
                response.headers[REQUEST_ID_HEADER] = request_id
