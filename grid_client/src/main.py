"""
Entry point for the EnergyGrid telemetry client.

Loads ClientSettings, generates the serial population, splits it into
batches, fetches every batch through the paced RequestExecutor, prints the
aggregation report to stdout and writes ``device_data.json`` and
``report.json`` to the output directory.

SIGTERM/SIGINT set a shared asyncio.Event; the aggregator stops at the next
batch boundary and the partial result is still reported and saved.

Exit codes:
- 0: every device fetched, no failed batches.
- 1: at least one failed batch, or the run was stopped early.
- 2: invalid configuration or batch plan; nothing was requested.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError

from grid_client.src.aggregator import Aggregator
from grid_client.src.batching import create_batches
from grid_client.src.errors import InvalidArgumentError
from grid_client.src.executor import RequestExecutor
from grid_client.src.report import build_report, render_report, save_results
from grid_client.src.serials import generate_serial_numbers

if TYPE_CHECKING:
    import httpx

    from grid_client.src.config import ClientSettings
    from grid_client.src.models import AggregateResult

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging for the client.

    Sets up the root logger with a JSON-formatted handler writing to stderr,
    keeping stdout free for the human-readable report.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


def log_config_summary(settings: ClientSettings) -> None:
    """Log a config summary at startup, with the secret token masked."""
    logger.info(
        "EnergyGrid client starting with config: "
        "api_url=%s, total_devices=%s, batch_size=%s, rate_limit_ms=%s, "
        "max_retries=%s, retry_delay_ms=%s, max_retry_after_s=%s, request_timeout_s=%s, "
        "run_timeout_s=%s, output_dir=%s, secret_token_masked=%s",
        settings.api_url,
        settings.total_devices,
        settings.batch_size,
        settings.rate_limit_ms,
        settings.max_retries,
        settings.retry_delay_ms,
        settings.max_retry_after_s,
        settings.request_timeout_s,
        settings.run_timeout_s,
        settings.output_dir,
        _masked_token(settings.secret_token),
    )


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


async def run_client(
    settings: ClientSettings,
    *,
    client: httpx.AsyncClient | None = None,
    shutdown_event: asyncio.Event | None = None,
) -> AggregateResult:
    """Generate, batch, fetch and aggregate the whole device population.

    Args:
        settings: Client configuration.
        client: Optional pre-built HTTP client (tests inject a transport).
        shutdown_event: Optional event that stops the run between batches.

    Raises:
        InvalidArgumentError: If the batch plan cannot be built.
    """
    serials = generate_serial_numbers(settings.total_devices)
    batches = create_batches(serials, settings.batch_size)
    logger.info("Generated %d serial numbers in %d batches", len(serials), len(batches))

    async with RequestExecutor.from_settings(settings, client=client) as executor:
        aggregator = Aggregator.from_settings(settings, executor)
        return await aggregator.run(batches, shutdown_event=shutdown_event)


def exit_code(result: AggregateResult) -> int:
    """Map a finished run to a process exit code."""
    return EXIT_OK if result.ok else EXIT_PARTIAL


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> int:
    """Async entrypoint: load config, run the client, report and save.

    Returns:
        Process exit code (see module docstring).
    """
    from grid_client.src.config import ClientSettings

    try:
        settings = ClientSettings()
    except ValidationError as exc:
        configure_logging()
        logger.error("Invalid configuration: %s", exc)
        return EXIT_FATAL

    configure_logging(settings.log_level)
    log_config_summary(settings)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: _handle_signal(shutdown_event))

    try:
        result = await run_client(settings, shutdown_event=shutdown_event)
    except InvalidArgumentError:
        logger.error("Cannot build batch plan", exc_info=True)
        return EXIT_FATAL
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    report = build_report(result)
    sys.stdout.write(render_report(report))

    try:
        save_results(result, report, settings.output_dir)
    except OSError:
        logger.error("Error saving results to %s", settings.output_dir, exc_info=True)

    code = exit_code(result)
    if code == EXIT_OK:
        logger.info("Data aggregation completed successfully")
    else:
        logger.warning(
            "Data aggregation incomplete: %d failed batch(es), %d serial(s) missing",
            result.summary.total_failed,
            result.summary.total_requested - result.summary.total_fetched,
        )
    return code


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event."""
    logger.info("Received shutdown signal, stopping after the current batch")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the ``energygrid-client`` console script."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
