from datetime import timedelta

import pytest
from pydantic import ValidationError

from token_pool import TokenPoolSettings


def test_defaults(monkeypatch) -> None:
    for name in ("POOL_SIZE", "MAX_ACTIVE_TOKENS", "TOKEN_LIFETIME_SECONDS", "CHECK_INTERVAL_SECONDS"):
        monkeypatch.delenv(name, raising=False)
    settings = TokenPoolSettings(_env_file=None)

    assert settings.pool_size == 100
    assert settings.max_active_tokens == 100
    assert settings.lease_lifetime == timedelta(minutes=2)
    assert settings.check_interval == timedelta(seconds=30)
    assert settings.enable_reaper is True


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("TOKEN_LIFETIME_SECONDS", "45")
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    settings = TokenPoolSettings(_env_file=None)

    assert settings.lease_lifetime == timedelta(seconds=45)
    assert settings.storage_backend == "memory"


def test_rejects_non_positive_values(settings_factory) -> None:
    with pytest.raises(ValidationError):
        settings_factory(max_active_tokens=0)
    with pytest.raises(ValidationError):
        settings_factory(storage_backend="redis")
