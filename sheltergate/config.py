from __future__ import annotations

import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

load_dotenv()

DEFAULT_JWT_SECRET = "dev_secret"


class Settings(BaseModel):
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")
    CORS_ALLOW_ORIGINS: str = Field(default="*")
    JWT_SECRET: str = Field(default=DEFAULT_JWT_SECRET)
    JWT_ALGORITHM: str = Field(default="HS256")
    JWT_EXPIRY_HOURS: int = Field(default=24, gt=0)
    TRUST_PROXY_HEADERS: bool = Field(
        default=False, description="honor CF-Connecting-IP / X-Forwarded-For"
    )
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_PER_MINUTE: int = Field(default=100, gt=0)
    AUTH_RATE_LIMIT_PER_MINUTE: int = Field(default=5, gt=0)
    USER_RATE_LIMIT_PER_MINUTE: int = Field(default=60, gt=0)
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=60.0, gt=0)
    TRUSTED_PROXY_HOPS: int = Field(
        default=1, gt=0, description="X-Forwarded-For entries appended by trusted proxies"
    )
    SECURITY_HEADERS_ENABLED: bool = Field(default=True)
    MAX_REQUEST_BODY_BYTES: int = Field(default=10 * 1024 * 1024, gt=0)

    @model_validator(mode="after")
    def _secret_set_in_production(self) -> "Settings":
        if self.ENVIRONMENT == "production" and self.JWT_SECRET == DEFAULT_JWT_SECRET:
            raise ValueError("JWT_SECRET must be set in production")
        return self


def _load_settings(existing: Settings | None = None) -> Settings:
    values: dict[str, Any] = {}
    for name, field in Settings.model_fields.items():
        env_value = os.getenv(name)
        if env_value is None:
            if existing is not None and hasattr(existing, name):
                values[name] = getattr(existing, name)
                continue
            values[name] = field.get_default(call_default_factory=True)
        else:
            values[name] = env_value

    try:
        return Settings(**values)
    except ValidationError as exc:
        invalid = [str(error["loc"][0]) for error in exc.errors() if error.get("loc")]
        if invalid:
            joined = ", ".join(sorted(set(invalid)))
            raise RuntimeError(f"Invalid environment variables: {joined}") from exc
        raise RuntimeError(str(exc)) from exc


settings = _load_settings()


def reload_settings() -> Settings:
    global settings
    fresh = _load_settings(settings)
    settings.__dict__.update(fresh.__dict__)
    return settings
