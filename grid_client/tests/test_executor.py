"""
Unit tests for the signed, retrying request executor.

Tests verify:
- POST body is {"sn_list": [...]} with timestamp/signature headers that
  match md5(path + token + timestamp).
- A fresh timestamp and signature is used for every attempt.
- HTTP 429 is retried with a constant delay; an always-429 endpoint is hit
  exactly max_retries + 1 times before rate_limit_exhausted.
- HTTP 401/403 fail immediately without retry.
- 5xx, network errors, other httpx request errors (decoding, redirects)
  and malformed bodies are retried, then transient_exhausted.
- Retry delay is never shorter than the pacing window and honours a
  numeric Retry-After, capped and ignoring non-finite values.
- Response cardinality mismatches are logged, not fatal.
- Client ownership when used as an async context manager.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import logging

import httpx
import pytest

from grid_client.src.config import ClientSettings
from grid_client.src.executor import RequestExecutor
from grid_client.src.models import BatchFailure, BatchSuccess, FailureKind
from grid_client.src.signing import create_signature
from grid_client.tests.fakes import (
    API_PATH,
    API_URL,
    SECRET,
    FakeClock,
    counter_timestamps,
    make_record,
    ok_response,
    requested_serials,
    scripted_handler,
)

BATCH = ("SN-000", "SN-001", "SN-002")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _executor(
    responses: list,
    calls: list[httpx.Request],
    clock: FakeClock,
    **overrides: object,
) -> RequestExecutor:
    """Build an executor whose client replays *responses* through MockTransport."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(scripted_handler(responses, calls)))
    kwargs: dict = {
        "api_url": API_URL,
        "secret_token": SECRET,
        "max_retries": 3,
        "retry_delay_s": 2.0,
        "min_interval_s": 1.0,
        "client": client,
        "sleep": clock.sleep,
        "clock": clock.monotonic,
        "timestamp": counter_timestamps(),
    }
    kwargs.update(overrides)
    return RequestExecutor(**kwargs)


# ---------------------------------------------------------------------------
# Success path and wire format
# ---------------------------------------------------------------------------


class TestExecuteSuccess:
    """Successful requests return parsed records."""

    @pytest.mark.asyncio
    async def test_returns_records_for_batch(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([ok_response], calls, fake_clock)

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchSuccess)
        assert outcome.batch == BATCH
        assert [r.sn for r in outcome.records] == list(BATCH)
        assert outcome.attempts == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_posts_sn_list_with_signed_headers(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [ok_response], calls, fake_clock, timestamp=lambda: "1700000000000"
        )

        await executor.execute(BATCH)

        request = calls[0]
        assert request.method == "POST"
        assert str(request.url) == API_URL
        assert json.loads(request.content) == {"sn_list": list(BATCH)}
        assert request.headers["timestamp"] == "1700000000000"
        assert request.headers["signature"] == create_signature(
            API_PATH, SECRET, "1700000000000"
        )
        assert request.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_elapsed_reported(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []

        def slow_ok(request: httpx.Request) -> httpx.Response:
            fake_clock.advance(0.4)
            return ok_response(request)

        executor = _executor([slow_ok], calls, fake_clock)

        outcome = await executor.execute(BATCH)

        assert outcome.elapsed_s == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_cardinality_mismatch_is_tolerated(
        self, fake_clock: FakeClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        calls: list[httpx.Request] = []
        short = httpx.Response(200, json={"data": [make_record("SN-000")]})
        executor = _executor([short], calls, fake_clock)

        with caplog.at_level(logging.WARNING, logger="grid_client.src.executor"):
            outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchSuccess)
        assert len(outcome.records) == 1
        assert "requested 3 devices but received 1" in caplog.text


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class TestRateLimitRetry:
    """HTTP 429 is recoverable within the retry budget."""

    @pytest.mark.asyncio
    async def test_always_429_exhausts_after_max_retries_plus_one(
        self, fake_clock: FakeClock
    ) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([httpx.Response(429)], calls, fake_clock)

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchFailure)
        assert outcome.kind == FailureKind.RATE_LIMIT_EXHAUSTED
        assert outcome.attempts == 4
        assert len(calls) == 4
        assert outcome.status_code == 429
        assert outcome.batch == BATCH
        assert "gave up after 4 attempts" in outcome.error

    @pytest.mark.asyncio
    async def test_retry_delay_is_constant(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([httpx.Response(429)], calls, fake_clock)

        await executor.execute(BATCH)

        assert fake_clock.sleeps == [2.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_429(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [httpx.Response(429), httpx.Response(429), ok_response], calls, fake_clock
        )

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchSuccess)
        assert outcome.attempts == 3
        assert len(calls) == 3
        assert outcome.elapsed_s == pytest.approx(4.0)
        assert outcome.last_attempt_started_at == pytest.approx(1004.0)

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([httpx.Response(429)], calls, fake_clock, max_retries=0)

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchFailure)
        assert outcome.attempts == 1
        assert len(calls) == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_fresh_signature_per_attempt(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([httpx.Response(429)], calls, fake_clock)

        await executor.execute(BATCH)

        timestamps = [r.headers["timestamp"] for r in calls]
        signatures = [r.headers["signature"] for r in calls]
        assert len(set(timestamps)) == 4
        assert len(set(signatures)) == 4
        for ts, sig in zip(timestamps, signatures, strict=True):
            assert sig == create_signature(API_PATH, SECRET, ts)

    @pytest.mark.asyncio
    async def test_retry_after_header_extends_delay(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [httpx.Response(429, headers={"Retry-After": "5"}), ok_response],
            calls,
            fake_clock,
        )

        await executor.execute(BATCH)

        assert fake_clock.sleeps == [5.0]

    @pytest.mark.asyncio
    async def test_retry_after_http_date_ignored(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [
                httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}),
                ok_response,
            ],
            calls,
            fake_clock,
        )

        await executor.execute(BATCH)

        assert fake_clock.sleeps == [2.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["inf", "-inf", "nan", "-3"])
    async def test_retry_after_non_finite_or_negative_ignored(
        self, fake_clock: FakeClock, value: str
    ) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [httpx.Response(429, headers={"Retry-After": value}), ok_response],
            calls,
            fake_clock,
        )

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchSuccess)
        assert fake_clock.sleeps == [2.0]

    @pytest.mark.asyncio
    async def test_retry_after_capped(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [httpx.Response(429, headers={"Retry-After": "86400"}), ok_response],
            calls,
            fake_clock,
            max_retry_after_s=10.0,
        )

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchSuccess)
        assert fake_clock.sleeps == [10.0]

    @pytest.mark.asyncio
    async def test_retry_delay_never_below_pacing_window(
        self, fake_clock: FakeClock
    ) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [httpx.Response(429), ok_response],
            calls,
            fake_clock,
            retry_delay_s=0.1,
            min_interval_s=1.0,
        )

        await executor.execute(BATCH)

        assert fake_clock.sleeps == [1.0]


# ---------------------------------------------------------------------------
# Authentication failures
# ---------------------------------------------------------------------------


class TestAuthenticationFailure:
    """401/403 are terminal immediately."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failure_not_retried(self, fake_clock: FakeClock, status: int) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([httpx.Response(status), ok_response], calls, fake_clock)

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchFailure)
        assert outcome.kind == FailureKind.AUTHENTICATION_FAILURE
        assert outcome.attempts == 1
        assert outcome.status_code == status
        assert len(calls) == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_auth_failure_after_rate_limit_stops_retrying(
        self, fake_clock: FakeClock
    ) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [httpx.Response(429), httpx.Response(401), ok_response], calls, fake_clock
        )

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchFailure)
        assert outcome.kind == FailureKind.AUTHENTICATION_FAILURE
        assert outcome.attempts == 2


# ---------------------------------------------------------------------------
# Transient server / network errors
# ---------------------------------------------------------------------------


class TestTransientFailures:
    """5xx, network errors and malformed bodies are retried."""

    @pytest.mark.asyncio
    async def test_always_500_exhausts_as_transient(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([httpx.Response(500)], calls, fake_clock)

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchFailure)
        assert outcome.kind == FailureKind.TRANSIENT_EXHAUSTED
        assert outcome.status_code == 500
        assert len(calls) == 4
        assert fake_clock.sleeps == [2.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_network_error_then_success(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [httpx.ConnectError("connection refused"), ok_response], calls, fake_clock
        )

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchSuccess)
        assert outcome.attempts == 2

    @pytest.mark.asyncio
    async def test_network_errors_exhaust_without_status(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([httpx.ReadTimeout("timed out")], calls, fake_clock)

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchFailure)
        assert outcome.kind == FailureKind.TRANSIENT_EXHAUSTED
        assert outcome.status_code is None
        assert "Network error" in outcome.error

    @pytest.mark.asyncio
    async def test_decoding_error_is_transient(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([httpx.DecodingError("bad gzip body")], calls, fake_clock)

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchFailure)
        assert outcome.kind == FailureKind.TRANSIENT_EXHAUSTED
        assert outcome.status_code is None
        assert outcome.attempts == 4
        assert "Request error" in outcome.error

    @pytest.mark.asyncio
    async def test_too_many_redirects_then_success(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [httpx.TooManyRedirects("redirect loop"), ok_response], calls, fake_clock
        )

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchSuccess)
        assert outcome.attempts == 2

    @pytest.mark.asyncio
    async def test_last_error_decides_kind(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [httpx.Response(500), httpx.Response(500), httpx.Response(500), httpx.Response(429)],
            calls,
            fake_clock,
        )

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchFailure)
        assert outcome.kind == FailureKind.RATE_LIMIT_EXHAUSTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, content=b"<html>oops</html>"),
            httpx.Response(200, json={"result": []}),
            httpx.Response(200, json={"data": "not-a-list"}),
            httpx.Response(200, json=[1, 2, 3]),
            httpx.Response(200, json={"data": [{"status": "Online"}]}),
        ],
    )
    async def test_malformed_success_body_is_transient(
        self, fake_clock: FakeClock, response: httpx.Response
    ) -> None:
        calls: list[httpx.Request] = []
        executor = _executor([response], calls, fake_clock, max_retries=0)

        outcome = await executor.execute(BATCH)

        assert isinstance(outcome, BatchFailure)
        assert outcome.kind == FailureKind.TRANSIENT_EXHAUSTED
        assert outcome.status_code == 200


# ---------------------------------------------------------------------------
# Client lifecycle and construction
# ---------------------------------------------------------------------------


class TestClientLifecycle:
    """Executor creates and closes its own client only when none is given."""

    @pytest.mark.asyncio
    async def test_execute_without_client_raises(self) -> None:
        executor = RequestExecutor(api_url=API_URL, secret_token=SECRET)

        with pytest.raises(RuntimeError, match="AsyncClient"):
            await executor.execute(BATCH)

    @pytest.mark.asyncio
    async def test_owned_client_closed_on_exit(self) -> None:
        executor = RequestExecutor(api_url=API_URL, secret_token=SECRET)

        async with executor:
            client = executor._client
            assert isinstance(client, httpx.AsyncClient)

        assert client.is_closed
        assert executor._client is None

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(ok_response))

        async with RequestExecutor(api_url=API_URL, secret_token=SECRET, client=client):
            pass

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_from_settings(self, fake_clock: FakeClock) -> None:
        settings = ClientSettings(
            secret_token="from-settings",
            api_url="https://grid.example.com/device/real/query",
            max_retries=1,
            retry_delay_ms=300,
            rate_limit_ms=1000,
        )
        calls: list[httpx.Request] = []
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(scripted_handler([httpx.Response(503)], calls))
        )
        executor = RequestExecutor.from_settings(
            settings,
            client=client,
            sleep=fake_clock.sleep,
            clock=fake_clock.monotonic,
            timestamp=lambda: "42",
        )

        outcome = await executor.execute(("SN-000",))

        assert isinstance(outcome, BatchFailure)
        assert len(calls) == 2
        assert fake_clock.sleeps == [1.0]
        assert calls[0].headers["signature"] == create_signature(
            "/device/real/query", "from-settings", "42"
        )
        assert requested_serials(calls[0]) == ["SN-000"]

    @pytest.mark.asyncio
    async def test_from_settings_caps_retry_after(self, fake_clock: FakeClock) -> None:
        settings = ClientSettings(
            secret_token="from-settings",
            api_url="https://grid.example.com/device/real/query",
            max_retry_after_s=3,
        )
        calls: list[httpx.Request] = []
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(
                scripted_handler(
                    [httpx.Response(429, headers={"Retry-After": "100"}), ok_response], calls
                )
            )
        )
        executor = RequestExecutor.from_settings(
            settings, client=client, sleep=fake_clock.sleep, clock=fake_clock.monotonic
        )

        outcome = await executor.execute(("SN-000",))

        assert isinstance(outcome, BatchSuccess)
        assert fake_clock.sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_explicit_api_path_is_signed(self, fake_clock: FakeClock) -> None:
        calls: list[httpx.Request] = []
        executor = _executor(
            [ok_response], calls, fake_clock, api_path="/signed/path", timestamp=lambda: "7"
        )

        await executor.execute(BATCH)

        assert calls[0].headers["signature"] == create_signature("/signed/path", SECRET, "7")
