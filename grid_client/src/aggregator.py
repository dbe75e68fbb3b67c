"""
Sequential, paced aggregation of every batch into one AggregateResult.

Batches are sent strictly one at a time and in order. After each batch the
aggregator sleeps only for the remainder of the pacing window measured from
the start of that batch's last attempt (retries happen inside the executor,
which keeps its own attempts apart), so request starts are always at least
``rate_limit_s`` apart. No wait follows the final batch and no wait is
ever skipped to catch up.

A terminal failure for one batch is recorded and the run continues. The run
can be stopped between batches through an ``asyncio.Event`` (set on
SIGINT/SIGTERM by the entry point) or a run deadline; either way the result
accumulated so far is finalized and returned.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TYPE_CHECKING

from grid_client.src.models import (
    AggregateResult,
    BatchFailure,
    PowerStats,
    RunSummary,
    TelemetryRecord,
)

if TYPE_CHECKING:
    from grid_client.src.config import ClientSettings
    from grid_client.src.executor import RequestExecutor
    from grid_client.src.models import Batch

logger = logging.getLogger(__name__)

UNKNOWN_STATUS = "Unknown"


def summarize_devices(
    records: Iterable[TelemetryRecord],
) -> tuple[dict[str, int], PowerStats | None]:
    """Compute per-status counts and power aggregates over *records*.

    Records without a status are counted under ``"Unknown"``. Power stats
    only include records whose reading parses as a number; when there are
    none the stats are ``None`` rather than a division by zero.

    Args:
        records: Fetched telemetry records.

    Returns:
        ``(status_counts, power_stats)``.
    """
    status_counts: Counter[str] = Counter()
    readings: list[float] = []
    unparsed = 0

    for record in records:
        status_counts[record.status or UNKNOWN_STATUS] += 1
        power = record.power_kw
        if power is None:
            unparsed += 1
        else:
            readings.append(power)

    if unparsed:
        logger.warning("%d record(s) had no parseable power reading", unparsed)

    if not readings:
        return dict(status_counts), None

    total = sum(readings)
    power = PowerStats(
        total=total,
        average=total / len(readings),
        maximum=max(readings),
        minimum=min(readings),
        sample_count=len(readings),
    )
    return dict(status_counts), power


class Aggregator:
    """Drives a :class:`RequestExecutor` over a batch plan.

    Args:
        executor: Executor used for every batch (anything with an async
            ``execute(batch)`` returning a RequestOutcome).
        rate_limit_s: Minimum seconds between the starts of two requests.
        run_timeout_s: Optional deadline for the whole run. Checked before
            each batch; a batch already in flight is never interrupted.
        clock: Monotonic clock in seconds.
        sleep: Awaitable sleep used for pacing when no shutdown event is
            supplied.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        rate_limit_s: float,
        run_timeout_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._executor = executor
        self._rate_limit_s = rate_limit_s
        self._run_timeout_s = run_timeout_s
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        executor: RequestExecutor,
        **overrides: object,
    ) -> Aggregator:
        return cls(
            executor,
            rate_limit_s=settings.rate_limit_s,
            run_timeout_s=settings.run_timeout_s,
            **overrides,  # type: ignore[arg-type]
        )

    async def run(
        self,
        batches: Sequence[Batch],
        shutdown_event: asyncio.Event | None = None,
    ) -> AggregateResult:
        """Process every batch in order and return the aggregated result.

        Args:
            batches: The batch plan from :func:`create_batches`.
            shutdown_event: Optional event; once set, the run stops at the
                next batch boundary (the pacing wait wakes up early).

        Returns:
            The finalized :class:`AggregateResult`, partial when cancelled.
        """
        total_batches = len(batches)
        total_requested = sum(len(batch) for batch in batches)
        records: list[TelemetryRecord] = []
        failures: list[BatchFailure] = []
        processed = 0
        stop_reason: str | None = None

        logger.info(
            "Starting data aggregation: %d devices in %d batches "
            "(interval=%.2fs, estimated ~%.0fs)",
            total_requested,
            total_batches,
            self._rate_limit_s,
            max(total_batches - 1, 0) * self._rate_limit_s,
        )

        run_start = self._clock()
        for index, batch in enumerate(batches, start=1):
            stop_reason = self._stop_reason(shutdown_event, run_start)
            if stop_reason is not None:
                logger.warning(
                    "Stopping before batch %d/%d (%s); %d batch(es) not requested",
                    index,
                    total_batches,
                    stop_reason,
                    total_batches - index + 1,
                )
                break

            batch_start = self._clock()
            logger.info(
                "Processing batch %d/%d (%d devices)", index, total_batches, len(batch)
            )
            outcome = await self._executor.execute(batch)
            processed += 1

            if outcome.ok:
                records.extend(outcome.records)
                logger.info(
                    "Batch %d completed: %d record(s) in %d attempt(s)",
                    index,
                    len(outcome.records),
                    outcome.attempts,
                )
            else:
                failures.append(outcome)
                logger.error("Batch %d failed (%s): %s", index, outcome.kind, outcome.error)

            if index < total_batches:
                last_request_start = outcome.last_attempt_started_at
                if last_request_start is None:
                    last_request_start = batch_start
                await self._pace(last_request_start, shutdown_event)

        elapsed = self._clock() - run_start
        status_counts, power = summarize_devices(records)
        summary = RunSummary(
            total_requested=total_requested,
            total_fetched=len(records),
            total_failed=len(failures),
            total_batches=total_batches,
            batches_processed=processed,
            elapsed_s=elapsed,
            average_batch_s=elapsed / processed if processed else 0.0,
            cancelled=stop_reason is not None,
            stop_reason=stop_reason,
        )
        logger.info(
            "Aggregation finished: fetched=%d failed=%d batches=%d/%d elapsed=%.2fs",
            summary.total_fetched,
            summary.total_failed,
            processed,
            total_batches,
            elapsed,
        )
        return AggregateResult(
            records=records,
            failures=failures,
            summary=summary,
            device_status=status_counts,
            power=power,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _stop_reason(
        self, shutdown_event: asyncio.Event | None, run_start: float
    ) -> str | None:
        if shutdown_event is not None and shutdown_event.is_set():
            return "shutdown"
        if (
            self._run_timeout_s is not None
            and self._clock() - run_start >= self._run_timeout_s
        ):
            return "timeout"
        return None

    async def _pace(
        self, last_request_start: float, shutdown_event: asyncio.Event | None
    ) -> None:
        """Sleep for whatever is left of the pacing window."""
        wait = self._rate_limit_s - (self._clock() - last_request_start)
        if wait <= 0:
            return
        if shutdown_event is None:
            await self._sleep(wait)
            return
        # Wake early on shutdown; the loop checks the event before the next batch.
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=wait)
