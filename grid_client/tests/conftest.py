"""
Shared test fixtures for EnergyGrid client tests.

All client env vars are cleaned before each test and the working directory
is moved to tmp_path so no stray .env file is loaded by ClientSettings.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import pytest

from grid_client.tests.fakes import FakeClock

# All ClientSettings environment variable names, used for cleanup.
_ALL_CLIENT_ENV_VARS = (
    "API_URL",
    "SECRET_TOKEN",
    "TOTAL_DEVICES",
    "BATCH_SIZE",
    "RATE_LIMIT_MS",
    "MAX_RETRIES",
    "RETRY_DELAY_MS",
    "MAX_RETRY_AFTER_S",
    "REQUEST_TIMEOUT_S",
    "RUN_TIMEOUT_S",
    "OUTPUT_DIR",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_client_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all client env vars and isolate from .env files before each test."""
    for var in _ALL_CLIENT_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch, tmp_path) -> dict[str, str]:
    """Set every ClientSettings environment variable.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "API_URL": "https://grid.example.com/device/real/query",
        "SECRET_TOKEN": "test-secret",
        "TOTAL_DEVICES": "25",
        "BATCH_SIZE": "5",
        "RATE_LIMIT_MS": "500",
        "MAX_RETRIES": "2",
        "RETRY_DELAY_MS": "750",
        "REQUEST_TIMEOUT_S": "3.5",
        "RUN_TIMEOUT_S": "120",
        "OUTPUT_DIR": str(tmp_path / "out"),
        "LOG_LEVEL": "debug",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables."""
    env = {"SECRET_TOKEN": "test-secret"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def fake_clock() -> FakeClock:
    """A monotonic clock whose async sleep advances time instantly."""
    return FakeClock()
