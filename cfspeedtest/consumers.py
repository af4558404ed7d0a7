"""Event consumers: a headless collector, a dashboard reducer and a live status line"""

import enum
import logging
import queue
import threading
import time
from typing import List, Optional, TextIO, Tuple

from .events import (
    AttemptFailed,
    Complete,
    Error,
    LatencyComplete,
    LatencySample,
    MetadataReady,
    PayloadComplete,
    PayloadSkipped,
    PhaseStart,
    SpeedTestEvent,
    Subscription,
    ThroughputComplete,
    ThroughputSample,
    TransferProgress,
)
from .types import (
    LatencyResult,
    Metadata,
    PayloadAttemptStats,
    PayloadSize,
    SpeedTestResult,
    TestType,
    ThroughputResult,
    format_bytes,
)

logger = logging.getLogger(__name__)

REDRAW_INTERVAL = 0.05  # seconds


class HeadlessCollector:
    """
    Fold the event stream into plain attributes, for scripts and the non-interactive CLI.

    Example:
        >>> collector = HeadlessCollector()
        >>> sub = run.subscribe()
        >>> run.start()
        >>> collector.consume(sub)
        >>> collector.result.download.overall_mbps
    """

    def __init__(self):
        self.metadata: Optional[Metadata] = None
        self.latency: Optional[LatencyResult] = None
        self.latency_samples: List[float] = []
        self.download: Optional[ThroughputResult] = None
        self.upload: Optional[ThroughputResult] = None
        self.attempt_stats: List[PayloadAttemptStats] = []
        self.skipped: List[Tuple[TestType, PayloadSize]] = []
        self.failed_attempts = 0
        self.errors: List[str] = []
        self.progress_ticks = 0
        self.result: Optional[SpeedTestResult] = None

    def handle_event(self, event: SpeedTestEvent) -> None:
        if isinstance(event, MetadataReady):
            self.metadata = event.metadata
        elif isinstance(event, LatencySample):
            self.latency_samples.append(event.rtt_ms)
        elif isinstance(event, LatencyComplete):
            self.latency = event.result
        elif isinstance(event, TransferProgress):
            self.progress_ticks += 1
        elif isinstance(event, AttemptFailed):
            self.failed_attempts += 1
        elif isinstance(event, PayloadSkipped):
            self.skipped.append((event.test_type, event.payload_size))
        elif isinstance(event, PayloadComplete):
            self.attempt_stats.append(event.attempt_stats)
        elif isinstance(event, ThroughputComplete):
            if event.test_type is TestType.DOWNLOAD:
                self.download = event.result
            else:
                self.upload = event.result
        elif isinstance(event, Complete):
            self.result = event.result
        elif isinstance(event, Error):
            self.errors.append(event.message)

    def consume(self, subscription: Subscription) -> Optional[SpeedTestResult]:
        """Read the subscription until the end of stream; returns the final result if any."""
        for event in subscription:
            self.handle_event(event)
        return self.result


class Phase(enum.Enum):
    CONNECTING = "connecting"
    LATENCY = "latency"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    RESULTS = "results"


# share of the overall progress bar: (start, width)
_PHASE_SPAN = {
    Phase.DOWNLOAD: (0.2, 0.4),
    Phase.UPLOAD: (0.6, 0.4),
}


class DashboardState:
    """State of the interactive view, updated by one event at a time."""

    def __init__(self, latency_total: int = 0):
        self.phase = Phase.CONNECTING
        self.metadata: Optional[Metadata] = None

        self.latency_samples: List[float] = []
        self.latency_index = 0
        self.latency_total = latency_total
        self.latency_result: Optional[LatencyResult] = None

        self.current_test_type: Optional[TestType] = None
        self.current_payload_size: Optional[PayloadSize] = None
        self.current_mbps = 0.0
        self.throughput_samples: List[Tuple[TestType, PayloadSize, float]] = []
        self.throughput_index = 0
        self.throughput_total = 0
        self.chart_data: List[float] = []
        self.phase_sizes = 0
        self.sizes_done = 0

        self.transfer_bytes = 0
        self.transfer_total = 0
        self.transfer_mbps = 0.0

        self.download_result: Optional[ThroughputResult] = None
        self.upload_result: Optional[ThroughputResult] = None
        self.final_result: Optional[SpeedTestResult] = None
        self.skipped: List[Tuple[TestType, PayloadSize]] = []
        self.errors: List[str] = []

    def handle_event(self, event: SpeedTestEvent) -> None:
        if isinstance(event, MetadataReady):
            self.metadata = event.metadata
            self.phase = Phase.LATENCY
        elif isinstance(event, LatencySample):
            self.latency_samples.append(event.rtt_ms)
            self.latency_index = event.index
            self.latency_total = event.total
        elif isinstance(event, LatencyComplete):
            self.latency_result = event.result
        elif isinstance(event, PhaseStart):
            self.phase = Phase.DOWNLOAD if event.test_type is TestType.DOWNLOAD else Phase.UPLOAD
            self.current_test_type = event.test_type
            self.current_payload_size = None
            self.chart_data = []
            self.throughput_index = 0
            self.throughput_total = event.nr_tests
            self.current_mbps = 0.0
            self.phase_sizes = len(event.payload_sizes)
            self.sizes_done = 0
        elif isinstance(event, ThroughputSample):
            self.throughput_samples.append((event.test_type, event.payload_size, event.mbps))
            self.current_payload_size = event.payload_size
            self.current_mbps = event.mbps
            self.throughput_index = event.index
            self.throughput_total = event.total
            self.chart_data.append(event.mbps)
        elif isinstance(event, TransferProgress):
            self.current_payload_size = event.payload_size
            self.transfer_bytes = event.bytes_so_far
            self.transfer_total = event.total_bytes
            self.transfer_mbps = event.current_mbps
        elif isinstance(event, PayloadSkipped):
            self.skipped.append((event.test_type, event.payload_size))
            self.sizes_done += 1
        elif isinstance(event, PayloadComplete):
            self.sizes_done += 1
            self.throughput_index = 0
        elif isinstance(event, ThroughputComplete):
            if event.test_type is TestType.DOWNLOAD:
                self.download_result = event.result
            else:
                self.upload_result = event.result
        elif isinstance(event, Complete):
            self.final_result = event.result
            self.phase = Phase.RESULTS
        elif isinstance(event, Error):
            self.errors.append(event.message)

    def overall_progress(self) -> float:
        """
        Overall progress as a fraction in [0, 1].

        Latency covers 0-20%, download 20-60%, upload 60-100%. Within a
        throughput phase, finished payload sizes count fully and the current
        size counts by its accepted samples.
        """
        if self.phase is Phase.CONNECTING:
            return 0.0
        if self.phase is Phase.RESULTS:
            return 1.0
        if self.phase is Phase.LATENCY:
            if self.latency_total == 0:
                return 0.0
            return min(self.latency_index / self.latency_total, 1.0) * 0.2

        start, width = _PHASE_SPAN[self.phase]
        if self.phase_sizes == 0:
            return start
        current = self.throughput_index / self.throughput_total if self.throughput_total else 0.0
        fraction = min((self.sizes_done + current) / self.phase_sizes, 1.0)
        return start + fraction * width

    def status_line(self) -> str:
        """One-line rendering of the current state."""
        percent = f"[{self.overall_progress() * 100:3.0f}%]"
        if self.phase is Phase.CONNECTING:
            return f"{percent} Connecting..."
        if self.phase is Phase.LATENCY:
            last = f"  {self.latency_samples[-1]:.2f} ms" if self.latency_samples else ""
            return f"{percent} Latency {self.latency_index}/{self.latency_total}{last}"
        if self.phase is Phase.RESULTS:
            return f"{percent} Done"

        label = self.current_test_type.label if self.current_test_type else ""
        size = str(self.current_payload_size) if self.current_payload_size else ""
        transfer = ""
        if self.transfer_total:
            transfer = f"  {format_bytes(self.transfer_bytes)}/{format_bytes(self.transfer_total)}"
        return (
            f"{percent} {label} {size}  {self.throughput_index}/{self.throughput_total}"
            f"{transfer}  {self.transfer_mbps:.2f} Mbps"
        )


class LiveView(threading.Thread):
    """
    Render a DashboardState as a single, continuously rewritten line.

    Redraws happen at most every REDRAW_INTERVAL seconds; the line is finished
    with a newline once the stream ends.
    """

    def __init__(self, subscription: Subscription, stream: TextIO, latency_total: int = 0,
                 interval: float = REDRAW_INTERVAL):
        super().__init__(name="cfspeedtest-live-view", daemon=True)
        self.subscription = subscription
        self.stream = stream
        self.interval = interval
        self.state = DashboardState(latency_total)
        self._width = 0

    def run(self) -> None:
        last_draw = 0.0
        dirty = True
        while True:
            try:
                event = self.subscription.get(timeout=self.interval)
            except queue.Empty:
                pass
            else:
                if event is None:
                    break
                self.state.handle_event(event)
                dirty = True
            now = time.monotonic()
            if dirty and now - last_draw >= self.interval:
                self._draw()
                last_draw = now
                dirty = False
        self._draw()
        self.stream.write("\n")
        logger.debug("Live view finished; %d progress updates dropped", self.subscription.dropped)
        self.stream.flush()

    def _draw(self) -> None:
        line = self.state.status_line()
        padding = " " * max(self._width - len(line), 0)
        self._width = len(line)
        self.stream.write(f"\r{line}{padding}")
        self.stream.flush()
