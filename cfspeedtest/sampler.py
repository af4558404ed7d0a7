"""
Single measurement attempts against the speed endpoints.

Each sampler performs exactly one request and classifies what happened as an
AttemptOutcome: Success, RetryableFailure or FatalFailure. Nothing here retries
or sleeps; that is the retry policy's job.
"""

import logging
import re
import socket
import threading
import time
from typing import Callable, Optional

import requests
from urllib3.exceptions import ReadTimeoutError

from .constants import (
    BASE_URL,
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_PATH,
    RETRYABLE_STATUS_CODES,
    UPLOAD_FILL_BYTE,
    UPLOAD_PATH,
)
from .errors import SpeedTestCancelled
from .types import (
    AttemptOutcome,
    FatalFailure,
    PayloadSize,
    RetryableFailure,
    RunContext,
    Success,
    TestType,
)

logger = logging.getLogger(__name__)

# (payload_size, bytes_so_far, total_bytes, current_mbps)
ProgressCallback = Callable[[PayloadSize, int, int, float], None]

SERVER_TIMING_RE = re.compile(r'cfRequestDuration;\s*dur=([0-9]+(?:\.[0-9]+)?)')


def parse_server_timing(header: Optional[str]) -> Optional[float]:
    """
    Extract the server processing time from a Server-Timing header.

    Args:
        header: Header value, e.g. ``cfRequestDuration;dur=12.34``

    Returns:
        Server time in milliseconds, or None if absent or malformed
    """
    if not header:
        return None
    match = SERVER_TIMING_RE.search(header)
    if not match:
        return None
    return float(match.group(1))


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After as seconds; only the integer form is understood."""
    if value is None:
        return None
    value = value.strip()
    if not (value.isascii() and value.isdigit()):
        return None
    return float(int(value))


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _is_timeout(error: requests.RequestException) -> bool:
    if isinstance(error, requests.Timeout):
        return True
    # read timeouts while streaming a body come back wrapped in ConnectionError
    return any(isinstance(arg, (ReadTimeoutError, socket.timeout)) for arg in error.args)


def classify_transport_error(error: requests.RequestException, wall_time: float) -> AttemptOutcome:
    """Timeouts are worth retrying; refused connections, TLS and DNS failures are not."""
    if _is_timeout(error):
        return RetryableFailure(wall_time=wall_time, reason=str(error))
    return FatalFailure(wall_time=wall_time, reason=str(error))


def classify_status(response: requests.Response, wall_time: float) -> AttemptOutcome:
    """Outcome for a response whose status is not 2xx."""
    status_code = response.status_code
    if is_retryable_status(status_code):
        return RetryableFailure(
            wall_time=wall_time,
            reason="retryable HTTP status",
            status_code=status_code,
            retry_after=parse_retry_after(response.headers.get('Retry-After')),
        )
    return FatalFailure(wall_time=wall_time, reason="non-retryable HTTP status", status_code=status_code)


class _Sampler:
    def __init__(
        self,
        session: requests.Session,
        base_url: str = BASE_URL,
        cancel: Optional[threading.Event] = None,
    ):
        self.session = session
        self.base_url = base_url.rstrip('/')
        self.cancel = cancel

    def _check_cancel(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise SpeedTestCancelled()


class ThroughputSampler(_Sampler):
    """Base for the download and upload samplers; ``sample`` returns Mbit/s on success."""

    test_type: TestType

    def __init__(
        self,
        session: requests.Session,
        base_url: str = BASE_URL,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ):
        super().__init__(session, base_url, cancel)
        self.on_progress = on_progress

    def _report(self, payload_size: PayloadSize, done: int, total: int, mbps: float) -> None:
        if self.on_progress is not None:
            self.on_progress(payload_size, done, total, mbps)

    def sample(self, payload_size: PayloadSize) -> AttemptOutcome:
        raise NotImplementedError


class DownloadSampler(ThroughputSampler):
    """GET __down?bytes=N, timing the request and the full body drain."""

    test_type = TestType.DOWNLOAD

    def sample(self, payload_size: PayloadSize) -> AttemptOutcome:
        self._check_cancel()
        total = int(payload_size)
        url = f"{self.base_url}/{DOWNLOAD_PATH}"

        start = time.perf_counter()
        try:
            response = self.session.get(url, params={'bytes': total}, stream=True)
        except requests.RequestException as e:
            return classify_transport_error(e, time.perf_counter() - start)

        received = 0
        with response:
            if not _is_success(response.status_code):
                # error bodies are not payload, never reported as progress
                return classify_status(response, time.perf_counter() - start)
            try:
                # stream the body so large payloads are never buffered in memory
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    self._check_cancel()
                    received += len(chunk)
                    elapsed = time.perf_counter() - start
                    if elapsed > 0:
                        self._report(payload_size, received, total, (received * 8) / (elapsed * 1e6))
            except requests.RequestException as e:
                return classify_transport_error(e, time.perf_counter() - start)
        duration = time.perf_counter() - start

        mbits = (received * 8) / (duration * 1e6) if duration > 0 else 0.0
        logger.debug(
            "Download %s: %.2f Mbps (%d bytes in %.0fms, status %d)",
            payload_size, mbits, received, duration * 1000, response.status_code,
        )
        return Success(value=mbits, wall_time=duration, status_code=response.status_code)


class UploadSampler(ThroughputSampler):
    """POST an N-byte body to __up, timing only the send and the status line."""

    test_type = TestType.UPLOAD

    def sample(self, payload_size: PayloadSize) -> AttemptOutcome:
        self._check_cancel()
        total = int(payload_size)
        url = f"{self.base_url}/{UPLOAD_PATH}"
        payload = UPLOAD_FILL_BYTE * total

        self._report(payload_size, 0, total, 0.0)
        start = time.perf_counter()
        try:
            response = self.session.post(url, data=payload, stream=True)
        except requests.RequestException as e:
            return classify_transport_error(e, time.perf_counter() - start)
        duration = time.perf_counter() - start

        # Drain after the clock stopped so reading the echo never skews the result
        with response:
            try:
                response.content
            except requests.RequestException as e:
                logger.debug("Draining upload response failed: %s", e)

        if not _is_success(response.status_code):
            return classify_status(response, duration)

        mbits = (total * 8) / (duration * 1e6) if duration > 0 else 0.0
        self._report(payload_size, total, total, mbits)
        logger.debug(
            "Upload %s: %.2f Mbps (%d bytes in %.0fms, status %d)",
            payload_size, mbits, total, duration * 1000, response.status_code,
        )
        return Success(value=mbits, wall_time=duration, status_code=response.status_code)


_SAMPLERS = {
    TestType.DOWNLOAD: DownloadSampler,
    TestType.UPLOAD: UploadSampler,
}


def make_sampler(
    test_type: TestType,
    session: requests.Session,
    base_url: str = BASE_URL,
    on_progress: Optional[ProgressCallback] = None,
    cancel: Optional[threading.Event] = None,
) -> ThroughputSampler:
    """Pick the sampler implementation for a direction."""
    return _SAMPLERS[test_type](session, base_url, on_progress=on_progress, cancel=cancel)


class LatencyProbe(_Sampler):
    """
    Zero-byte download measuring round-trip time minus server processing time.

    The Server-Timing estimate can exceed the measured RTT under noise; such
    samples are clamped to 0 and reported once per run through the RunContext.
    """

    def __init__(
        self,
        session: requests.Session,
        base_url: str = BASE_URL,
        context: Optional[RunContext] = None,
        cancel: Optional[threading.Event] = None,
    ):
        super().__init__(session, base_url, cancel)
        self.context = context if context is not None else RunContext()

    def sample(self) -> AttemptOutcome:
        self._check_cancel()
        url = f"{self.base_url}/{DOWNLOAD_PATH}"

        start = time.perf_counter()
        try:
            response = self.session.get(url, params={'bytes': 0})
        except requests.RequestException as e:
            return classify_transport_error(e, time.perf_counter() - start)
        duration = time.perf_counter() - start
        total_ms = duration * 1000

        if not _is_success(response.status_code):
            return classify_status(response, duration)

        server_timing = response.headers.get('Server-Timing')
        server_ms = parse_server_timing(server_timing) or 0.0
        latency = total_ms - server_ms
        logger.debug(
            "latency: total_ms=%.3f server_ms=%.3f latency=%.3f server_timing=%s",
            total_ms, server_ms, latency, server_timing,
        )
        if latency < 0:
            if not self.context.warned_negative_latency:
                self.context.warned_negative_latency = True
                logger.warning(
                    "negative latency after server timing subtraction; clamping to 0.0 "
                    "(total_ms=%.3f server_ms=%.3f)", total_ms, server_ms,
                )
            latency = 0.0
        return Success(value=latency, wall_time=duration, status_code=response.status_code)
