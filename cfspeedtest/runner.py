"""
Run orchestration: metadata, latency, download and upload phases in sequence.

A run is driven by a single thread and never overlaps two transfers, since
concurrent transfers would corrupt each other's throughput figures. Progress is
published on an EventBus so any number of consumers can follow along.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

import requests

from .constants import BASE_URL, TIME_THRESHOLD
from .errors import MetadataError, SpeedTestCancelled
from .events import (
    Complete,
    Error,
    EventBus,
    LatencyComplete,
    LatencySample,
    MetadataReady,
    PhaseStart,
    SpeedTestEvent,
    Subscription,
    ThroughputComplete,
    TransferProgress,
)
from .metadata import fetch_metadata
from .retry import ClockFn, SleepFn
from .sampler import LatencyProbe, make_sampler
from .scheduler import run_throughput_phase
from .stats import calc_stats
from .types import (
    LatencyResult,
    PayloadSize,
    RunContext,
    SpeedTestConfig,
    SpeedTestResult,
    Success,
    TestType,
    ThroughputResult,
)

logger = logging.getLogger(__name__)

EmitFn = Callable[[SpeedTestEvent], None]


def _discard(event: SpeedTestEvent) -> None:
    pass


def cancellable_sleep(cancel: threading.Event) -> SleepFn:
    """A sleep that wakes up and raises as soon as the run is cancelled."""
    def sleep(seconds: float) -> None:
        if cancel.wait(seconds):
            raise SpeedTestCancelled()
    return sleep


def run_latency_phase(probe: LatencyProbe, count: int, emit: EmitFn = _discard) -> LatencyResult:
    """
    Run every configured latency probe; failed probes become Error events.

    Adaptive skipping never applies here.
    """
    samples = []
    for i in range(count):
        outcome = probe.sample()
        if isinstance(outcome, Success):
            samples.append(outcome.value)
            emit(LatencySample(rtt_ms=outcome.value, index=i + 1, total=count))
        else:
            logger.warning("Latency test %d/%d failed: %s", i + 1, count, outcome.reason)
            emit(Error(f"Latency test {i + 1}: {outcome.reason}"))

    result = LatencyResult(samples=tuple(samples), summary=calc_stats(samples) if samples else None)
    if samples:
        logger.info(
            "Avg GET request latency %.2f ms over %d samples (RTT excluding server processing time)",
            result.avg_ms, len(samples),
        )
    emit(LatencyComplete(result))
    return result


def run_speed_test(
    session: requests.Session,
    config: Optional[SpeedTestConfig] = None,
    bus: Optional[EventBus] = None,
    base_url: str = BASE_URL,
    sleep: Optional[SleepFn] = None,
    clock: ClockFn = time.perf_counter,
    cancel: Optional[threading.Event] = None,
    time_threshold: float = TIME_THRESHOLD,
) -> SpeedTestResult:
    """
    Run a complete speedtest on the calling thread.

    Args:
        session: HTTP session (see client.build_session); used sequentially
        config: Run configuration, defaults to SpeedTestConfig()
        bus: Event bus to publish progress on; events are discarded when None
        base_url: Speed endpoint root
        sleep: Retry delay function; defaults to a sleep that honours cancel
        clock: Monotonic clock for the adaptive time threshold
        cancel: Set it to stop the run at the next request, chunk or delay
        time_threshold: Seconds per payload size before larger sizes are skipped

    Returns:
        SpeedTestResult with metadata, latency and the enabled directions

    Raises:
        MetadataError: if the trace endpoint cannot be reached; nothing else is tested
        SpeedTestCancelled: if cancel was set
    """
    config = config or SpeedTestConfig()
    emit: EmitFn = bus.publish if bus is not None else _discard
    cancel = cancel or threading.Event()
    if sleep is None:
        sleep = cancellable_sleep(cancel)
    context = RunContext()

    logger.info("Fetching server metadata...")
    try:
        metadata = fetch_metadata(session, base_url)
    except MetadataError as e:
        emit(Error(f"Error fetching metadata: {e}"))
        raise
    emit(MetadataReady(metadata))

    logger.info("Running %d latency tests...", config.nr_latency_tests)
    probe = LatencyProbe(session, base_url, context=context, cancel=cancel)
    latency = run_latency_phase(probe, config.nr_latency_tests, emit)

    payload_sizes = config.payload_sizes()
    results = {}
    for test_type in config.directions():
        emit(PhaseStart(test_type=test_type, payload_sizes=tuple(payload_sizes), nr_tests=config.nr_tests))
        results[test_type] = _run_direction(
            session, config, test_type, payload_sizes, emit, base_url, sleep, clock, cancel, time_threshold,
        )

    result = SpeedTestResult(
        metadata=metadata,
        latency=latency,
        download=results.get(TestType.DOWNLOAD),
        upload=results.get(TestType.UPLOAD),
    )
    emit(Complete(result))
    return result


def _run_direction(session, config, test_type, payload_sizes, emit, base_url, sleep, clock, cancel,
                   time_threshold) -> ThroughputResult:
    def on_progress(payload_size: PayloadSize, done: int, total: int, mbps: float) -> None:
        emit(TransferProgress(
            test_type=test_type,
            payload_size=payload_size,
            bytes_so_far=done,
            total_bytes=total,
            current_mbps=mbps,
        ))

    logger.info("Running %s tests...", test_type.value)
    sampler = make_sampler(test_type, session, base_url, on_progress=on_progress, cancel=cancel)
    result = run_throughput_phase(
        sampler,
        payload_sizes,
        config.nr_tests,
        disable_dynamic_max_payload_size=config.disable_dynamic_max_payload_size,
        emit=emit,
        sleep=sleep,
        clock=clock,
        time_threshold=time_threshold,
    )
    emit(ThroughputComplete(test_type=test_type, result=result))
    return result


class SpeedTestRun:
    """
    A speedtest running on a background thread.

    Subscribe before calling start() to see every event. The bus is closed when
    the run ends, whether it completed, failed or was cancelled, so consumers
    iterating their subscription always terminate.

    Example:
        >>> run = SpeedTestRun(build_session(), SpeedTestConfig(nr_tests=3))
        >>> events = run.subscribe()
        >>> run.start()
        >>> for event in events:
        ...     print(event)
        >>> result = run.result()
    """

    def __init__(
        self,
        session: requests.Session,
        config: Optional[SpeedTestConfig] = None,
        base_url: str = BASE_URL,
        bus: Optional[EventBus] = None,
        sleep: Optional[SleepFn] = None,
        clock: ClockFn = time.perf_counter,
        time_threshold: float = TIME_THRESHOLD,
    ):
        self.session = session
        self.config = config or SpeedTestConfig()
        self.base_url = base_url
        self.bus = bus or EventBus()
        self._sleep = sleep
        self._clock = clock
        self._time_threshold = time_threshold
        self._cancel = threading.Event()
        self._future: Optional[Future] = None

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        return self.bus.subscribe(maxsize)

    def start(self) -> "SpeedTestRun":
        if self._future is not None:
            raise RuntimeError("SpeedTestRun can only be started once")
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cfspeedtest")
        self._future = executor.submit(self._run)
        executor.shutdown(wait=False)
        return self

    def _run(self) -> SpeedTestResult:
        try:
            return run_speed_test(
                self.session,
                self.config,
                bus=self.bus,
                base_url=self.base_url,
                sleep=self._sleep,
                clock=self._clock,
                cancel=self._cancel,
                time_threshold=self._time_threshold,
            )
        finally:
            self.bus.close()

    def cancel(self) -> None:
        """Stop network activity at the next suspension point."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def result(self, timeout: Optional[float] = None) -> SpeedTestResult:
        """
        Wait for the run and return its result.

        Raises:
            RuntimeError: if the run was never started
            concurrent.futures.TimeoutError: if timeout expires first
            MetadataError, SpeedTestCancelled: as raised by the run
        """
        if self._future is None:
            raise RuntimeError("SpeedTestRun was not started")
        return self._future.result(timeout)
