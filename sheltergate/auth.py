"""JWT bearer authentication for the shelter API."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request, status
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from .config import settings

logger = logging.getLogger(__name__)


class Principal(BaseModel):
    user_id: str
    is_admin: bool = False


def create_access_token(
    user_id: int | str,
    is_admin: bool = False,
    expires_in: timedelta | None = None,
) -> str:
    lifetime = expires_in or timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(user_id),
        "admin": bool(is_admin),
        "type": "access",
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> Principal:
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError as exc:
        raise _unauthorized("Token has expired") from exc
    except JWTError as exc:
        raise _unauthorized("Invalid or expired token") from exc

    if payload.get("type") != "access" or not payload.get("sub"):
        raise _unauthorized("Invalid token type")
    return Principal(user_id=str(payload["sub"]), is_admin=bool(payload.get("admin")))


def _log_rejection(request: Request, reason: str) -> None:
    logger.warning(
        "%s ip=%s endpoint=%s method=%s",
        reason,
        request.client.host if request.client else None,
        request.url.path,
        request.method,
    )


async def require_user(request: Request) -> Principal:
    """Authenticate the bearer token and record the caller on ``request.state``."""

    authorization = request.headers.get("authorization")
    if not authorization:
        _log_rejection(request, "Authorization header missing")
        raise _unauthorized("Authorization header required")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        _log_rejection(request, "Invalid authorization format")
        raise _unauthorized("Invalid authorization format")

    try:
        principal = decode_token(parts[1])
    except HTTPException as exc:
        _log_rejection(request, f"Rejected token: {exc.detail}")
        raise

    request.state.user_id = principal.user_id
    request.state.is_admin = principal.is_admin
    return principal


async def require_admin(
    request: Request, principal: Principal = Depends(require_user)
) -> Principal:
    if not principal.is_admin:
        logger.warning(
            "Admin access denied user_id=%s endpoint=%s method=%s",
            principal.user_id,
            request.url.path,
            request.method,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required"
        )
    return principal
