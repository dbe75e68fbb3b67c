"""
Signed, retrying request executor for the EnergyGrid query endpoint.

POSTs one batch of serial numbers as ``{"sn_list": [...]}`` with fresh
``timestamp`` / ``signature`` headers and turns the response into a
RequestOutcome. Recoverable failures (HTTP 429, 5xx, network errors,
malformed success bodies) are retried in a bounded loop with a constant
delay. Authentication failures (401/403) are returned immediately without
a retry.

Operations:
- execute(batch): Run one batch to a BatchSuccess or BatchFailure.

The executor never raises for a per-batch failure; the aggregator always
gets an outcome back and moves on to the next batch. Each outcome records
the clock reading at which its final attempt started so the aggregator can
pace the next batch from the last request actually sent.

CHANGELOG:
- 2026-10-19: Initial creation
- 2026-10-19: Treat every httpx.RequestError as transient; cap Retry-After

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from grid_client.src.errors import (
    AuthenticationError,
    RateLimitExceededError,
    RecoverableRequestError,
    RetryBudgetExhaustedError,
    TransientRequestError,
)
from grid_client.src.models import (
    BatchFailure,
    BatchSuccess,
    FailureKind,
    TelemetryRecord,
)
from grid_client.src.signing import make_timestamp, signed_headers

if TYPE_CHECKING:
    from grid_client.src.config import ClientSettings
    from grid_client.src.models import Batch, RequestOutcome

logger = logging.getLogger(__name__)

_AUTH_STATUSES = frozenset({401, 403})
DEFAULT_MAX_RETRY_AFTER_S = 60.0


def _parse_retry_after(value: str | None) -> float | None:
    """Parse a numeric ``Retry-After`` header.

    HTTP-date values, negative numbers, ``inf`` and ``nan`` are ignored.
    """
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


def _label(batch: Batch) -> str:
    return f"{batch[0]}..{batch[-1]}" if batch else "<empty>"


class RequestExecutor:
    """Executes one batch request with signing and bounded retry.

    Args:
        api_url: Full endpoint URL.
        api_path: Path signed into every request; parsed from *api_url*
            when omitted.
        secret_token: Shared secret for the signature.
        max_retries: Retries allowed after the first attempt, so at most
            ``max_retries + 1`` attempts per batch.
        retry_delay_s: Constant delay before every retry.
        min_interval_s: Pacing window; the retry delay is never shorter, so
            retries inside one batch also keep request starts apart.
        max_retry_after_s: Upper bound on a server-supplied ``Retry-After``.
        request_timeout_s: Timeout for a single HTTP request (only used when
            the executor creates its own client).
        client: Optional pre-built ``httpx.AsyncClient``. When omitted, one
            is created on ``__aenter__`` and closed on ``__aexit__``.
        sleep: Awaitable sleep, ``asyncio.sleep`` by default.
        clock: Monotonic clock in seconds, ``time.monotonic`` by default.
        timestamp: Factory for the signature timestamp string.

    Usage::

        async with RequestExecutor.from_settings(settings) as executor:
            outcome = await executor.execute(("SN-000", "SN-001"))
    """

    def __init__(
        self,
        *,
        api_url: str,
        secret_token: str,
        api_path: str | None = None,
        max_retries: int = 3,
        retry_delay_s: float = 2.0,
        min_interval_s: float = 0.0,
        max_retry_after_s: float = DEFAULT_MAX_RETRY_AFTER_S,
        request_timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        timestamp: Callable[[], str] = make_timestamp,
    ) -> None:
        self._api_url = api_url
        self._api_path = api_path if api_path is not None else httpx.URL(api_url).path
        self._secret_token = secret_token
        self._max_retries = max_retries
        self._retry_delay_s = retry_delay_s
        self._min_interval_s = min_interval_s
        self._max_retry_after_s = max_retry_after_s
        self._request_timeout_s = request_timeout_s
        self._client = client
        self._owns_client = False
        self._sleep = sleep
        self._clock = clock
        self._timestamp = timestamp

    @classmethod
    def from_settings(cls, settings: ClientSettings, **overrides: object) -> RequestExecutor:
        """Build an executor from :class:`ClientSettings`.

        Keyword *overrides* (``client``, ``sleep``, ``clock``, ``timestamp``)
        are passed through unchanged.
        """
        return cls(
            api_url=settings.api_url,
            api_path=settings.api_path,
            secret_token=settings.secret_token,
            max_retries=settings.max_retries,
            retry_delay_s=settings.retry_delay_s,
            min_interval_s=settings.rate_limit_s,
            max_retry_after_s=settings.max_retry_after_s,
            request_timeout_s=settings.request_timeout_s,
            **overrides,  # type: ignore[arg-type]
        )

    async def __aenter__(self) -> RequestExecutor:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._request_timeout_s)
            self._owns_client = True
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, batch: Batch) -> RequestOutcome:
        """Request *batch* until it succeeds, fails terminally, or runs out of retries.

        Args:
            batch: Serial numbers to request.

        Returns:
            :class:`BatchSuccess` with the parsed records, or
            :class:`BatchFailure` classified as authentication failure,
            rate-limit exhausted, or transient exhausted.

        Raises:
            RuntimeError: If no HTTP client is available (the executor was
                neither given a client nor entered as a context manager).
        """
        if self._client is None:
            raise RuntimeError(
                "RequestExecutor needs an httpx.AsyncClient; pass client= or "
                "use it as an async context manager."
            )

        start = self._clock()
        max_attempts = self._max_retries + 1
        last_error: RecoverableRequestError | None = None
        attempt_started_at = start

        for attempt in range(1, max_attempts + 1):
            attempt_started_at = self._clock()
            try:
                records = await self._attempt(batch)
            except AuthenticationError as exc:
                logger.error("Authentication failed for batch %s: %s", _label(batch), exc)
                return BatchFailure(
                    batch=batch,
                    kind=FailureKind.AUTHENTICATION_FAILURE,
                    error=str(exc),
                    status_code=exc.status_code,
                    attempts=attempt,
                    elapsed_s=self._clock() - start,
                    last_attempt_started_at=attempt_started_at,
                )
            except RecoverableRequestError as exc:
                last_error = exc
                if attempt == max_attempts:
                    break
                delay = self._retry_delay_for(exc)
                logger.warning(
                    "%s for batch %s. Retrying in %.2fs (attempt %d/%d)",
                    exc,
                    _label(batch),
                    delay,
                    attempt,
                    self._max_retries,
                )
                await self._sleep(delay)
                continue

            return BatchSuccess(
                batch=batch,
                records=records,
                attempts=attempt,
                elapsed_s=self._clock() - start,
                last_attempt_started_at=attempt_started_at,
            )

        assert last_error is not None
        exhausted = RetryBudgetExhaustedError(last_error, attempts=max_attempts)
        logger.error("Batch %s failed: %s", _label(batch), exhausted)
        return BatchFailure(
            batch=batch,
            kind=exhausted.kind,
            error=str(exhausted),
            status_code=exhausted.status_code,
            attempts=max_attempts,
            elapsed_s=self._clock() - start,
            last_attempt_started_at=attempt_started_at,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _attempt(self, batch: Batch) -> tuple[TelemetryRecord, ...]:
        """Send one signed request and parse the ``data`` envelope.

        Raises:
            AuthenticationError: On HTTP 401/403.
            RateLimitExceededError: On HTTP 429.
            TransientRequestError: On any other failure.
        """
        assert self._client is not None
        headers = signed_headers(self._api_path, self._secret_token, self._timestamp())

        try:
            response = await self._client.post(
                self._api_url,
                json={"sn_list": list(batch)},
                headers=headers,
            )
        except httpx.TransportError as exc:
            raise TransientRequestError(f"Network error: {exc!r}") from exc
        except httpx.RequestError as exc:
            # Decoding failures, redirect loops and other request-level errors.
            raise TransientRequestError(f"Request error: {exc!r}") from exc

        status = response.status_code
        if status == 429:
            raise RateLimitExceededError(
                "Rate limit hit (HTTP 429)",
                status_code=status,
                retry_after_s=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status in _AUTH_STATUSES:
            raise AuthenticationError(
                f"Authentication failed (HTTP {status}), check signature logic",
                status_code=status,
            )
        if not response.is_success:
            raise TransientRequestError(f"Request failed (HTTP {status})", status_code=status)

        try:
            body = response.json()
        except ValueError as exc:
            raise TransientRequestError(
                "Response body is not valid JSON", status_code=status
            ) from exc

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, list):
            raise TransientRequestError(
                "Response envelope has no 'data' list", status_code=status
            )

        try:
            records = tuple(TelemetryRecord.model_validate(item) for item in data)
        except ValidationError as exc:
            raise TransientRequestError(
                f"Malformed telemetry record ({exc.error_count()} error(s))",
                status_code=status,
            ) from exc

        if len(records) != len(batch):
            logger.warning(
                "Batch %s: requested %d devices but received %d records",
                _label(batch),
                len(batch),
                len(records),
            )
        return records

    def _retry_delay_for(self, exc: RecoverableRequestError) -> float:
        """Constant retry delay, stretched by the pacing window or Retry-After.

        A server-supplied Retry-After is capped at ``max_retry_after_s``.
        """
        delay = max(self._retry_delay_s, self._min_interval_s)
        if isinstance(exc, RateLimitExceededError) and exc.retry_after_s is not None:
            delay = max(delay, min(exc.retry_after_s, self._max_retry_after_s))
        return delay
