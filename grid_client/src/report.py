"""
Report building, console rendering and JSON persistence for a finished run.

Operations:
- build_report(result): Plain-dict report (summary, status split, power
  stats, every terminal failure with its serials).
- render_report(report): Human-readable console text for the report.
- save_results(result, report, output_dir): Write ``device_data.json`` and
  ``report.json`` and return their paths.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from grid_client.src.models import AggregateResult

logger = logging.getLogger(__name__)

DEVICE_DATA_FILE = "device_data.json"
REPORT_FILE = "report.json"
_RULE = "=" * 60


def build_report(result: AggregateResult) -> dict[str, Any]:
    """Turn an AggregateResult into a JSON-serialisable report dict."""
    fetched = result.summary.total_fetched
    device_status = {
        status: {
            "count": count,
            "percent": round(count / fetched * 100, 1) if fetched else 0.0,
        }
        for status, count in sorted(result.device_status.items())
    }

    power_stats: dict[str, Any] | None = None
    if result.power is not None:
        power_stats = {
            "unit": "kW",
            "total": round(result.power.total, 2),
            "average": round(result.power.average, 2),
            "max": round(result.power.maximum, 2),
            "min": round(result.power.minimum, 2),
            "sample_count": result.power.sample_count,
        }

    summary = result.summary.model_dump()
    summary["elapsed_s"] = round(summary["elapsed_s"], 2)
    summary["average_batch_s"] = round(summary["average_batch_s"], 2)

    return {
        "summary": summary,
        "device_status": device_status,
        "power_stats": power_stats,
        "errors": [
            {
                "kind": str(failure.kind),
                "error": failure.error,
                "status_code": failure.status_code,
                "attempts": failure.attempts,
                "batch": list(failure.batch),
            }
            for failure in result.failures
        ],
        "missing_serials": result.missing_serials,
    }


def render_report(report: dict[str, Any]) -> str:
    """Render a report dict from :func:`build_report` as console text."""
    summary = report["summary"]
    lines = [
        _RULE,
        "AGGREGATION REPORT",
        _RULE,
        "",
        "Summary:",
        f"   Total Devices Requested: {summary['total_requested']}",
        f"   Successfully Fetched: {summary['total_fetched']}",
        f"   Failed Batches: {summary['total_failed']}",
        f"   Batches Processed: {summary['batches_processed']}/{summary['total_batches']}",
        f"   Total Time: {summary['elapsed_s']:.2f}s",
        f"   Average Time/Batch: {summary['average_batch_s']:.2f}s",
    ]
    if summary["cancelled"]:
        lines.append(f"   Run stopped early: {summary['stop_reason']}")

    lines += ["", "Device Status:"]
    if report["device_status"]:
        for status, entry in report["device_status"].items():
            lines.append(f"   {status}: {entry['count']} ({entry['percent']:.1f}%)")
    else:
        lines.append("   (no devices fetched)")

    lines += ["", "Power Statistics:"]
    power = report["power_stats"]
    if power is not None:
        unit = power["unit"]
        lines += [
            f"   Total Power: {power['total']:.2f} {unit}",
            f"   Average Power: {power['average']:.2f} {unit}",
            f"   Max Power: {power['max']:.2f} {unit}",
            f"   Min Power: {power['min']:.2f} {unit}",
        ]
    else:
        lines.append("   (no power readings)")

    if report["errors"]:
        lines += ["", "Errors:"]
        for idx, err in enumerate(report["errors"], start=1):
            lines.append(
                f"   {idx}. [{err['kind']}] {err['error']} - Batch: {', '.join(err['batch'])}"
            )

    lines += ["", _RULE]
    return "\n".join(lines) + "\n"


def save_results(
    result: AggregateResult,
    report: dict[str, Any],
    output_dir: str | Path,
) -> tuple[Path, Path]:
    """Write the raw records and the report as pretty-printed JSON.

    Args:
        result: The finished run.
        report: Report dict from :func:`build_report`.
        output_dir: Target directory; created if missing.

    Returns:
        ``(device_data_path, report_path)``.

    Raises:
        OSError: If the directory or files cannot be written.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    data_path = out / DEVICE_DATA_FILE
    report_path = out / REPORT_FILE
    records = [record.model_dump(mode="json") for record in result.records]
    data_path.write_text(json.dumps(records, indent=2))
    report_path.write_text(json.dumps(report, indent=2))

    logger.info(
        "Results saved to %s (%s: %d devices, %s)",
        out,
        DEVICE_DATA_FILE,
        len(records),
        REPORT_FILE,
    )
    return data_path, report_path
