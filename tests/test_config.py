import pytest

from sheltergate.config import Settings, _load_settings, reload_settings, settings


def test_defaults(monkeypatch):
    for name in Settings.model_fields:
        monkeypatch.delenv(name, raising=False)
    loaded = _load_settings()
    assert loaded.RATE_LIMIT_ENABLED is True
    assert loaded.AUTH_RATE_LIMIT_PER_MINUTE == 5
    assert loaded.RATE_LIMIT_WINDOW_SECONDS == 60.0


def test_env_values_are_coerced(monkeypatch):
    monkeypatch.setenv("AUTH_RATE_LIMIT_PER_MINUTE", "12")
    monkeypatch.setenv("TRUST_PROXY_HEADERS", "true")
    loaded = _load_settings()
    assert loaded.AUTH_RATE_LIMIT_PER_MINUTE == 12
    assert loaded.TRUST_PROXY_HEADERS is True


@pytest.mark.parametrize(
    "name,value",
    [
        ("RATE_LIMIT_PER_MINUTE", "0"),
        ("AUTH_RATE_LIMIT_PER_MINUTE", "-3"),
        ("USER_RATE_LIMIT_PER_MINUTE", "lots"),
        ("RATE_LIMIT_WINDOW_SECONDS", "0"),
    ],
)
def test_invalid_limits_fail_at_load(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(RuntimeError, match=name):
        _load_settings()


def test_production_requires_jwt_secret(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.delenv("JWT_SECRET", raising=False)
    with pytest.raises(RuntimeError, match="JWT_SECRET"):
        _load_settings()
    monkeypatch.setenv("JWT_SECRET", "s3cret")
    assert _load_settings().ENVIRONMENT == "production"


def test_reload_keeps_values_not_in_env(monkeypatch):
    monkeypatch.delenv("USER_RATE_LIMIT_PER_MINUTE", raising=False)
    previous = settings.USER_RATE_LIMIT_PER_MINUTE
    settings.USER_RATE_LIMIT_PER_MINUTE = 17
    try:
        assert reload_settings().USER_RATE_LIMIT_PER_MINUTE == 17
    finally:
        settings.USER_RATE_LIMIT_PER_MINUTE = previous
