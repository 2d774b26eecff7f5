from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from sheltergate.auth import create_access_token, decode_token
from sheltergate.config import settings


def test_round_trip_claims():
    principal = decode_token(create_access_token(31, is_admin=True))
    assert principal.user_id == "31"
    assert principal.is_admin is True


def test_expired_token():
    token = create_access_token(1, expires_in=timedelta(seconds=-1))
    with pytest.raises(HTTPException) as exc:
        decode_token(token)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Token has expired"


def test_wrong_secret():
    token = jwt.encode({"sub": "1", "type": "access"}, "other", algorithm="HS256")
    with pytest.raises(HTTPException) as exc:
        decode_token(token)
    assert exc.value.detail == "Invalid or expired token"


def test_non_access_token_rejected():
    token = jwt.encode(
        {"sub": "1", "type": "refresh"},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(HTTPException) as exc:
        decode_token(token)
    assert exc.value.detail == "Invalid token type"
