"""Renderers turning a SpeedTestResult into text, JSON or CSV"""

import csv
import json
import logging
import sys
from typing import List, Optional, TextIO

from .types import (
    SpeedTestResult,
    ThroughputResult,
    format_bytes,
)

logger = logging.getLogger(__name__)

PLOT_WIDTH = 40

CSV_HEADER = [
    "test_type",
    "payload_size",
    "min",
    "q1",
    "median",
    "q3",
    "max",
    "avg",
    "attempts",
    "successes",
    "skipped",
    "target_successes",
]


def _out(file: Optional[TextIO]) -> TextIO:
    return file if file is not None else sys.stdout


def render_boxplot(minimum: float, q1: float, median: float, q3: float, maximum: float,
                   width: int = PLOT_WIDTH) -> str:
    """
    Draw a horizontal ASCII box plot, e.g. ``|----====:=====------|``.

    Whiskers are ``-``, the box is ``=`` split by ``:`` at the median. Segment
    lengths are truncated, so the plot is at most ``width + 3`` characters.
    """
    value_range = maximum - minimum
    if value_range <= 0:
        return "|:|"
    scale = width / value_range
    plot = (
        "|"
        + "-" * int((q1 - minimum) * scale)
        + "=" * int((median - q1) * scale)
        + ":"
        + "=" * int((q3 - median) * scale)
        + "-" * int((maximum - q3) * scale)
        + "|"
    )
    logger.debug("boxplot input: %s, %s, %s, %s, %s -> %d chars", minimum, q1, median, q3, maximum, len(plot))
    return plot


def print_simple(result: SpeedTestResult, file: Optional[TextIO] = None) -> None:
    """One line: ``↓ 450.0 Mbps  ↑ 120.0 Mbps  ⏱ 12.0ms``."""
    parts = []
    if result.download is not None:
        parts.append(f"↓ {result.download.overall_mbps:.1f} Mbps")
    if result.upload is not None:
        parts.append(f"↑ {result.upload.overall_mbps:.1f} Mbps")
    if result.latency is not None:
        parts.append(f"⏱ {result.latency.avg_ms:.1f}ms")
    print("  ".join(parts), file=_out(file))


def print_json(result: SpeedTestResult, pretty: bool = False, file: Optional[TextIO] = None) -> None:
    """The full result as one JSON document."""
    indent = 2 if pretty else None
    print(json.dumps(result.to_dict(), indent=indent), file=_out(file))


def _fmt(value: float) -> str:
    return f"{value:.2f}"


def _csv_rows(result: SpeedTestResult) -> List[List[str]]:
    rows = []
    latency = result.latency
    if latency is not None and latency.summary is not None:
        summary = latency.summary
        count = len(latency.samples)
        rows.append([
            "latency", "0",
            _fmt(summary.min), _fmt(summary.q1), _fmt(summary.median),
            _fmt(summary.q3), _fmt(summary.max), _fmt(summary.avg),
            str(count), str(count), "0", str(count),
        ])

    for throughput in result.throughput_results():
        for attempts in throughput.attempt_stats:
            stat = throughput.stats_for(attempts.payload_size)
            if stat is not None:
                values = [_fmt(v) for v in stat.summary.as_tuple()]
            else:
                values = [""] * 6
            rows.append(
                [throughput.test_type.value, str(int(attempts.payload_size))]
                + values
                + [str(attempts.attempts), str(attempts.successes),
                   str(attempts.skipped), str(attempts.target_successes)]
            )
    return rows


def print_csv(result: SpeedTestResult, file: Optional[TextIO] = None) -> None:
    """
    One header plus one row for latency and each tested payload size.

    Sizes that produced no samples keep their attempt columns and leave the
    statistics empty. Skipped sizes are never tested and get no row.
    """
    writer = csv.writer(_out(file), lineterminator="\n")
    writer.writerow(CSV_HEADER)
    writer.writerows(_csv_rows(result))


def _print_throughput(throughput: ThroughputResult, verbose: bool, out: TextIO) -> None:
    label = throughput.test_type.label
    for attempts in throughput.attempt_stats:
        size = format_bytes(int(attempts.payload_size))
        counts = f" | {attempts.attempts:>3}/{attempts.successes:>3}/{attempts.skipped:>3}" if verbose else ""
        stat = throughput.stats_for(attempts.payload_size)

        if stat is None:
            print(
                f"{label:<9} {size:<7}|  min N/A     max N/A     avg N/A    {counts} (insufficient samples)",
                file=out,
            )
            continue

        s = stat.summary
        print(f"{label:<9} {size:<7}|  min {s.min:<7.2f} max {s.max:<7.2f} avg {s.avg:<7.2f}{counts}", file=out)
        if attempts.insufficient:
            print(
                f"{'':20}insufficient samples: collected "
                f"{attempts.successes}/{attempts.target_successes} successful runs",
                file=out,
            )
        if verbose:
            print(render_boxplot(s.min, s.q1, s.median, s.q3, s.max) + "\n", file=out)

    for payload_size in throughput.skipped_sizes:
        print(f"{label:<9} {format_bytes(int(payload_size)):<7}|  skipped (time threshold reached)", file=out)


def print_summary(result: SpeedTestResult, verbose: bool = False, file: Optional[TextIO] = None) -> None:
    """Human readable report: metadata, latency and the per payload size table."""
    out = _out(file)
    print(result.metadata, file=out)

    latency = result.latency
    if latency is not None and latency.summary is not None:
        print(
            f"Avg GET request latency {latency.avg_ms:.2f} ms "
            f"(min {latency.min_ms:.2f} ms, max {latency.max_ms:.2f} ms, {len(latency.samples)} samples)",
            file=out,
        )
    else:
        print("Latency: N/A (no successful probes)", file=out)

    print("\nSummary Statistics", file=out)
    if verbose:
        print("Type     Payload |  min/max/avg in mbit/s | attempts/success/skipped", file=out)
    else:
        print("Type     Payload |  min/max/avg in mbit/s", file=out)
    for throughput in result.throughput_results():
        _print_throughput(throughput, verbose, out)

    for throughput in result.throughput_results():
        print(f"{throughput.test_type.label} speed: {throughput.overall_mbps:.2f} Mbps", file=out)

