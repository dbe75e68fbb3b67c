"""
EnergyGrid client configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
The settings object is frozen: it is built once at startup and passed
explicitly into every component, never mutated mid-run.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
import math

import httpx
from pydantic import field_validator
from pydantic_settings import BaseSettings

_ENDPOINT_MAX_BATCH = 10
"""Largest sn_list the EnergyGrid endpoint accepts per request."""


class ClientSettings(BaseSettings):
    """EnergyGrid client configuration.

    All values are loaded from environment variables (or a ``.env`` file).
    ``SECRET_TOKEN`` is required; everything else has a default matching
    the endpoint's published limits.

    Attributes:
        api_url: Full URL of the query endpoint. Its path is also the
            ``path`` component of the request signature.
        secret_token: Shared secret used to sign requests.
        total_devices: Size of the serial population (SN-000 ..).
        batch_size: Serials per request (1-10, endpoint limit).
        rate_limit_ms: Minimum milliseconds between request starts.
        max_retries: Retries allowed per batch on recoverable errors.
        retry_delay_ms: Constant delay before each retry.
        max_retry_after_s: Cap on a server-supplied Retry-After delay.
        request_timeout_s: Timeout for a single HTTP request.
        run_timeout_s: Optional deadline for the whole run, checked between
            batches.
        output_dir: Directory for ``device_data.json`` and ``report.json``.
        log_level: Root logging level name.
    """

    api_url: str = "http://localhost:3000/device/real/query"
    secret_token: str
    total_devices: int = 500
    batch_size: int = 10
    rate_limit_ms: int = 1000
    max_retries: int = 3
    retry_delay_ms: int = 2000
    max_retry_after_s: float = 60.0
    request_timeout_s: float = 10.0
    run_timeout_s: float | None = None
    output_dir: str = "./output"
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "frozen": True}

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def api_path(self) -> str:
        """Path component of ``api_url``, used when signing requests."""
        return httpx.URL(self.api_url).path

    @property
    def rate_limit_s(self) -> float:
        return self.rate_limit_ms / 1000.0

    @property
    def retry_delay_s(self) -> float:
        return self.retry_delay_ms / 1000.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("api_url")
    @classmethod
    def api_url_must_be_http(cls, v: str) -> str:
        """Validate that API_URL is an absolute http(s) URL with a path."""
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError(f"API_URL must start with http:// or https:// (got: '{v}')")
        if httpx.URL(v).path in ("", "/"):
            raise ValueError("API_URL must include the endpoint path")
        return v

    @field_validator("secret_token")
    @classmethod
    def secret_token_must_be_set(cls, v: str) -> str:
        if not v:
            raise ValueError("SECRET_TOKEN must not be empty")
        return v

    @field_validator("total_devices")
    @classmethod
    def total_devices_must_be_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("TOTAL_DEVICES must be >= 0")
        return v

    @field_validator("batch_size")
    @classmethod
    def batch_size_must_respect_endpoint(cls, v: int) -> int:
        """Validate batch size is between 1 and the endpoint maximum."""
        if v < 1 or v > _ENDPOINT_MAX_BATCH:
            raise ValueError(f"BATCH_SIZE must be >= 1 and <= {_ENDPOINT_MAX_BATCH}")
        return v

    @field_validator("rate_limit_ms", "retry_delay_ms")
    @classmethod
    def delays_must_be_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("RATE_LIMIT_MS and RETRY_DELAY_MS must be >= 0")
        return v

    @field_validator("max_retries")
    @classmethod
    def max_retries_must_be_small(cls, v: int) -> int:
        if v < 0 or v > 10:
            raise ValueError("MAX_RETRIES must be between 0 and 10")
        return v

    @field_validator("max_retry_after_s")
    @classmethod
    def max_retry_after_must_be_finite(cls, v: float) -> float:
        if not math.isfinite(v) or v < 0:
            raise ValueError("MAX_RETRY_AFTER_S must be a finite number >= 0")
        return v

    @field_validator("request_timeout_s")
    @classmethod
    def request_timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        return v

    @field_validator("run_timeout_s")
    @classmethod
    def run_timeout_must_be_positive(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("RUN_TIMEOUT_S must be > 0 when set")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"LOG_LEVEL '{v}' is not a logging level")
        return level
