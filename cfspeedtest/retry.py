"""Bounded retry loop that turns unreliable attempts into a target number of samples"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from .constants import (
    MAX_ATTEMPT_FACTOR,
    RETRY_BASE_BACKOFF_MS,
    RETRY_MAX_BACKOFF_MS,
    RETRY_MAX_EXPONENT,
)
from .sampler import ThroughputSampler
from .types import (
    FatalFailure,
    PayloadAttemptStats,
    PayloadSize,
    RetryableFailure,
    Success,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], None]
ClockFn = Callable[[], float]
# (payload_size, value, successes, target)
SampleCallback = Callable[[PayloadSize, float, int, int], None]
# (payload_size, outcome, attempt, max_attempts, retry_in or None)
FailureCallback = Callable[
    [PayloadSize, Union[RetryableFailure, FatalFailure], int, int, Optional[float]], None
]


@dataclass(frozen=True)
class PayloadRun:
    """Accepted samples and attempt statistics of one retry loop."""

    samples: Tuple[float, ...]
    attempt_stats: PayloadAttemptStats
    elapsed: float  # seconds, including retry delays


def max_attempts_for(target_successes: int) -> int:
    return max(target_successes * MAX_ATTEMPT_FACTOR, target_successes)


def compute_retry_delay(attempt: int, retry_after: Optional[float] = None) -> float:
    """
    Delay in seconds before the next attempt.

    A server supplied Retry-After wins. Otherwise back off exponentially from
    250ms (capped at 3s) with +/-20% jitter: even attempts wait longer, odd
    attempts shorter, so clients started together drift apart.

    Args:
        attempt: 1-based number of the attempt that just failed
        retry_after: Retry-After hint in seconds, if the server sent one
    """
    if retry_after is not None:
        return retry_after

    exponent = min(max(attempt - 1, 0), RETRY_MAX_EXPONENT)
    delay_ms = min(RETRY_BASE_BACKOFF_MS * (1 << exponent), RETRY_MAX_BACKOFF_MS)
    jitter = delay_ms // 5
    if attempt % 2 == 0:
        delay_ms = min(delay_ms + jitter, RETRY_MAX_BACKOFF_MS)
    else:
        delay_ms = delay_ms - jitter
    return delay_ms / 1000


def _describe_status(status_code: Optional[int]) -> str:
    return str(status_code) if status_code is not None else "transport error"


def run_with_retries(
    sampler: ThroughputSampler,
    payload_size: PayloadSize,
    target_successes: int,
    sleep: SleepFn = time.sleep,
    clock: ClockFn = time.perf_counter,
    on_sample: Optional[SampleCallback] = None,
    on_failure: Optional[FailureCallback] = None,
) -> PayloadRun:
    """
    Sample one payload size until enough attempts succeeded or the budget ran out.

    Retryable failures are retried after compute_retry_delay(); a fatal failure
    ends the loop immediately. Collecting fewer than target_successes samples is
    reported through the returned attempt stats, never raised.

    Args:
        sampler: Download or upload sampler performing one attempt per call
        payload_size: Size under test
        target_successes: Accepted samples wanted
        sleep: Called with the retry delay in seconds
        clock: Monotonic clock used to time the whole loop
        on_sample: Called after every accepted sample
        on_failure: Called after every failed attempt

    Returns:
        PayloadRun with the accepted samples and attempt statistics
    """
    test_type = sampler.test_type
    max_attempts = max_attempts_for(target_successes)
    samples: List[float] = []
    attempts = 0
    skipped = 0

    start = clock()
    while len(samples) < target_successes and attempts < max_attempts:
        attempts += 1
        outcome = sampler.sample(payload_size)

        if isinstance(outcome, Success):
            samples.append(outcome.value)
            if on_sample is not None:
                on_sample(payload_size, outcome.value, len(samples), target_successes)
            continue

        skipped += 1
        if isinstance(outcome, FatalFailure):
            logger.warning(
                "%s %s failed (%s) after %.0fms: %s. aborting this payload",
                test_type.label, payload_size, _describe_status(outcome.status_code),
                outcome.wall_time * 1000, outcome.reason,
            )
            if on_failure is not None:
                on_failure(payload_size, outcome, attempts, max_attempts, None)
            break

        delay = None
        if attempts < max_attempts:
            delay = compute_retry_delay(attempts, outcome.retry_after)
            logger.warning(
                "%s %s failed (%s) after %.0fms: %s. retrying in %.0fms (%d/%d)",
                test_type.label, payload_size, _describe_status(outcome.status_code),
                outcome.wall_time * 1000, outcome.reason, delay * 1000, attempts, max_attempts,
            )
        if on_failure is not None:
            on_failure(payload_size, outcome, attempts, max_attempts, delay)
        if delay is not None:
            sleep(delay)
    elapsed = clock() - start

    stats = PayloadAttemptStats(
        test_type=test_type,
        payload_size=payload_size,
        attempts=attempts,
        successes=len(samples),
        skipped=skipped,
        target_successes=target_successes,
    )
    if stats.insufficient:
        logger.warning(
            "%s %s collected %d/%d successful samples after %d attempts",
            test_type.label, payload_size, stats.successes, target_successes, attempts,
        )
    return PayloadRun(samples=tuple(samples), attempt_stats=stats, elapsed=elapsed)
