"""
Pydantic models for EnergyGrid telemetry, request outcomes and run results.

TelemetryRecord mirrors one entry of the endpoint's ``data`` envelope. Only
``status`` and ``power`` are interpreted by the client; every other field is
kept verbatim (``extra="allow"``) so the raw listing written to disk matches
what the endpoint sent.

BatchSuccess / BatchFailure are the two shapes of a RequestOutcome: exactly
one is produced per executor invocation and neither is mutated afterwards.
AggregateResult is the finalized product of a full (or cancelled) run.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel

Batch = tuple[str, ...]
"""Ordered, non-empty group of device serial numbers sent in one request."""

_LEADING_NUMBER = re.compile(r"^\s*([-+]?\d+(?:\.\d+)?)")


class FailureKind(StrEnum):
    """Classification of a terminal batch failure."""

    AUTHENTICATION_FAILURE = "authentication_failure"
    RATE_LIMIT_EXHAUSTED = "rate_limit_exhausted"
    TRANSIENT_EXHAUSTED = "transient_exhausted"


class TelemetryRecord(BaseModel):
    """Reported state of a single device.

    Attributes:
        sn: Device serial number (e.g. ``SN-042``).
        power: Power reading as sent by the endpoint, either a number or a
            string with units such as ``"2.45 kW"``.
        status: Device status, normally ``"Online"`` or ``"Offline"``.
        last_updated: Endpoint-provided timestamp of the reading.
    """

    sn: str
    power: float | str | None = None
    status: str | None = None
    last_updated: str | None = None

    model_config = {"extra": "allow", "frozen": True}

    @property
    def power_kw(self) -> float | None:
        """Numeric power reading in kW, or ``None`` when it cannot be parsed."""
        if self.power is None:
            return None
        if isinstance(self.power, float | int):
            return float(self.power)
        match = _LEADING_NUMBER.match(self.power)
        if match is None:
            return None
        return float(match.group(1))


# ---------------------------------------------------------------------------
# Request outcomes
# ---------------------------------------------------------------------------


class BatchSuccess(BaseModel):
    """A batch whose request resolved with telemetry records.

    Attributes:
        batch: The serial numbers that were requested.
        records: Records returned by the endpoint, in response order.
        attempts: Number of attempts it took (1 = no retries).
        elapsed_s: Wall time spent on the batch, retries included.
        last_attempt_started_at: Monotonic clock reading when the final
            attempt started; the pacing window is measured from there.
            ``None`` when the producer did not record it.
    """

    batch: Batch
    records: tuple[TelemetryRecord, ...]
    attempts: int = 1
    elapsed_s: float = 0.0
    last_attempt_started_at: float | None = None

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return True


class BatchFailure(BaseModel):
    """A batch that will not be retried again within this run.

    Attributes:
        batch: The serial numbers that were requested, kept so the caller can
            re-run just the missing devices.
        kind: Failure classification.
        error: Human-readable message of the last error.
        status_code: Last HTTP status seen, or ``None`` for network errors.
        attempts: Number of attempts made.
        elapsed_s: Wall time spent on the batch, retries included.
        last_attempt_started_at: Monotonic clock reading when the final
            attempt started, or ``None``.
    """

    batch: Batch
    kind: FailureKind
    error: str
    status_code: int | None = None
    attempts: int = 1
    elapsed_s: float = 0.0
    last_attempt_started_at: float | None = None

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return False


RequestOutcome = BatchSuccess | BatchFailure


# ---------------------------------------------------------------------------
# Aggregated run result
# ---------------------------------------------------------------------------


class PowerStats(BaseModel):
    """Power aggregates in kW over records with a parseable reading."""

    total: float
    average: float
    maximum: float
    minimum: float
    sample_count: int

    model_config = {"frozen": True}


class RunSummary(BaseModel):
    """Counters describing a finished (or cancelled) run.

    Attributes:
        total_requested: Number of serials in the batch plan.
        total_fetched: Number of telemetry records received.
        total_failed: Number of batches that ended in a terminal failure.
        total_batches: Number of batches in the plan.
        batches_processed: Number of batches actually attempted.
        elapsed_s: Wall time of the whole run in seconds.
        average_batch_s: ``elapsed_s / batches_processed`` (0 when none ran).
        cancelled: Whether the run stopped before the last batch.
        stop_reason: ``"shutdown"`` or ``"timeout"`` when cancelled.
    """

    total_requested: int
    total_fetched: int
    total_failed: int
    total_batches: int
    batches_processed: int
    elapsed_s: float
    average_batch_s: float
    cancelled: bool = False
    stop_reason: str | None = None

    model_config = {"frozen": True}


class AggregateResult(BaseModel):
    """Everything a run produced, handed over to the reporter."""

    records: list[TelemetryRecord]
    failures: list[BatchFailure]
    summary: RunSummary
    device_status: dict[str, int]
    power: PowerStats | None = None

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        """True when every planned batch ran and none failed."""
        return not self.failures and not self.summary.cancelled

    @property
    def missing_serials(self) -> list[str]:
        """Serials of every failed batch, in batch order."""
        return [sn for failure in self.failures for sn in failure.batch]
