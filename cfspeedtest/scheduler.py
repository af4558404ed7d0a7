"""Adaptive payload-size scheduling for one throughput direction"""

import logging
import time
from typing import Callable, List, Optional, Sequence

from .constants import TIME_THRESHOLD
from .events import (
    AttemptFailed,
    PayloadComplete,
    PayloadSkipped,
    SpeedTestEvent,
    ThroughputSample,
)
from .retry import ClockFn, SleepFn, run_with_retries
from .sampler import ThroughputSampler
from .stats import calc_stats
from .types import (
    Measurement,
    PayloadAttemptStats,
    PayloadSize,
    PayloadStats,
    ThroughputResult,
)

logger = logging.getLogger(__name__)

EmitFn = Callable[[SpeedTestEvent], None]


def _discard(event: SpeedTestEvent) -> None:
    pass


def run_throughput_phase(
    sampler: ThroughputSampler,
    payload_sizes: Sequence[PayloadSize],
    nr_tests: int,
    disable_dynamic_max_payload_size: bool = False,
    emit: Optional[EmitFn] = None,
    sleep: SleepFn = time.sleep,
    clock: ClockFn = time.perf_counter,
    time_threshold: float = TIME_THRESHOLD,
) -> ThroughputResult:
    """
    Test each payload size in ascending order and aggregate the samples.

    Once a size's whole retry loop (transfers plus retry delays) takes longer
    than time_threshold, every larger size is reported as skipped instead of
    tested, unless disable_dynamic_max_payload_size is set.

    The overall throughput is the average of the largest size that produced
    at least one sample.
    """
    emit = emit or _discard
    test_type = sampler.test_type

    def on_sample(payload_size, value, index, total):
        emit(ThroughputSample(test_type=test_type, payload_size=payload_size, mbps=value, index=index, total=total))

    def on_failure(payload_size, outcome, attempt, max_attempts, retry_in):
        emit(AttemptFailed(
            test_type=test_type,
            payload_size=payload_size,
            attempt=attempt,
            max_attempts=max_attempts,
            reason=outcome.reason,
            status_code=outcome.status_code,
            retry_in=retry_in,
        ))

    measurements: List[Measurement] = []
    stats: List[PayloadStats] = []
    attempt_stats: List[PayloadAttemptStats] = []
    skipped_sizes: List[PayloadSize] = []
    skip_remaining = False

    for payload_size in sorted(payload_sizes):
        if skip_remaining:
            skipped_sizes.append(payload_size)
            emit(PayloadSkipped(test_type=test_type, payload_size=payload_size))
            continue

        logger.debug("running %s tests for payload_size %s", test_type.value, payload_size)
        run = run_with_retries(
            sampler, payload_size, nr_tests,
            sleep=sleep, clock=clock, on_sample=on_sample, on_failure=on_failure,
        )
        attempt_stats.append(run.attempt_stats)
        measurements.extend(Measurement(test_type, payload_size, value) for value in run.samples)

        payload_stats = None
        if run.samples:
            payload_stats = PayloadStats(test_type, payload_size, calc_stats(run.samples))
            stats.append(payload_stats)
        emit(PayloadComplete(attempt_stats=run.attempt_stats, stats=payload_stats, elapsed=run.elapsed))

        if not disable_dynamic_max_payload_size and run.elapsed > time_threshold:
            logger.info(
                "%s %s took %.2fs, exceeding the %.0fs threshold; skipping larger payloads",
                test_type.label, payload_size, run.elapsed, time_threshold,
            )
            skip_remaining = True

    overall_mbps = stats[-1].summary.avg if stats else 0.0
    return ThroughputResult(
        test_type=test_type,
        overall_mbps=overall_mbps,
        measurements=tuple(measurements),
        stats=tuple(stats),
        attempt_stats=tuple(attempt_stats),
        skipped_sizes=tuple(skipped_sizes),
    )
