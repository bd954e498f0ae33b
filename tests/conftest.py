"""Shared test fixtures for zminit tests."""

import pytest

from zminit.config import ContainerSettings


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings() -> ContainerSettings:
    """Settings built from defaults only."""
    return ContainerSettings()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every recognized settings key from the environment."""
    for key in ContainerSettings.env_keys():
        monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("ZMINIT_DEBUG", raising=False)
    monkeypatch.delenv("ZMINIT_LOG_LEVEL", raising=False)
    return monkeypatch
