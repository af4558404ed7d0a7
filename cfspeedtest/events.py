"""
Engine events and the fan-out bus that delivers them to independent consumers.

Every subscriber gets its own bounded queue. Progress ticks are best-effort and
are dropped when a subscriber's queue is full; every other event waits (for a
bounded time) until the subscriber has room, so lifecycle events survive a slow
consumer without letting it stall the run forever.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import ClassVar, Iterator, List, Optional, Tuple

from .constants import EVENT_QUEUE_SIZE, LIFECYCLE_PUT_TIMEOUT
from .types import (
    LatencyResult,
    Metadata,
    PayloadAttemptStats,
    PayloadSize,
    PayloadStats,
    SpeedTestResult,
    TestType,
    ThroughputResult,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpeedTestEvent:
    best_effort: ClassVar[bool] = False


@dataclass(frozen=True)
class MetadataReady(SpeedTestEvent):
    metadata: Metadata


@dataclass(frozen=True)
class LatencySample(SpeedTestEvent):
    rtt_ms: float
    index: int
    total: int


@dataclass(frozen=True)
class LatencyComplete(SpeedTestEvent):
    result: LatencyResult


@dataclass(frozen=True)
class PhaseStart(SpeedTestEvent):
    test_type: TestType
    payload_sizes: Tuple[PayloadSize, ...]
    nr_tests: int


@dataclass(frozen=True)
class ThroughputSample(SpeedTestEvent):
    test_type: TestType
    payload_size: PayloadSize
    mbps: float
    index: int
    total: int


@dataclass(frozen=True)
class TransferProgress(SpeedTestEvent):
    best_effort: ClassVar[bool] = True

    test_type: TestType
    payload_size: PayloadSize
    bytes_so_far: int
    total_bytes: int
    current_mbps: float


@dataclass(frozen=True)
class AttemptFailed(SpeedTestEvent):
    """A throughput attempt failed; retry_in is None when no retry follows."""

    test_type: TestType
    payload_size: PayloadSize
    attempt: int
    max_attempts: int
    reason: str
    status_code: Optional[int] = None
    retry_in: Optional[float] = None


@dataclass(frozen=True)
class PayloadSkipped(SpeedTestEvent):
    test_type: TestType
    payload_size: PayloadSize


@dataclass(frozen=True)
class PayloadComplete(SpeedTestEvent):
    attempt_stats: PayloadAttemptStats
    stats: Optional[PayloadStats]
    elapsed: float


@dataclass(frozen=True)
class ThroughputComplete(SpeedTestEvent):
    test_type: TestType
    result: ThroughputResult


@dataclass(frozen=True)
class Complete(SpeedTestEvent):
    result: SpeedTestResult


@dataclass(frozen=True)
class Error(SpeedTestEvent):
    message: str


_END_OF_STREAM = object()


class Subscription:
    """One consumer's view of the event stream."""

    def __init__(self, maxsize: int = EVENT_QUEUE_SIZE):
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize)
        self.dropped = 0  # best-effort events lost to a full queue
        self.lost = 0  # lifecycle events lost after the put timeout
        self.finished = False

    def _offer(self, item: object, timeout: Optional[float]) -> bool:
        try:
            if timeout is None:
                self._queue.put_nowait(item)
            else:
                self._queue.put(item, timeout=timeout)
            return True
        except queue.Full:
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[SpeedTestEvent]:
        """
        Next event, or None once the stream has ended.

        Raises:
            queue.Empty: if timeout expires first
        """
        if self.finished:
            return None
        item = self._queue.get(timeout=timeout)
        if item is _END_OF_STREAM:
            self.finished = True
            return None
        return item  # type: ignore[return-value]

    def drain(self) -> List[SpeedTestEvent]:
        """All events that are ready right now, without blocking."""
        events = []
        while not self.finished:
            try:
                event = self._get_nowait()
            except queue.Empty:
                break
            if event is None:
                break
            events.append(event)
        return events

    def _get_nowait(self) -> Optional[SpeedTestEvent]:
        item = self._queue.get_nowait()
        if item is _END_OF_STREAM:
            self.finished = True
            return None
        return item  # type: ignore[return-value]

    def __iter__(self) -> Iterator[SpeedTestEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event


class EventBus:
    """Single-producer, multi-consumer fan-out of engine events."""

    def __init__(self, maxsize: int = EVENT_QUEUE_SIZE, put_timeout: float = LIFECYCLE_PUT_TIMEOUT):
        self.maxsize = maxsize
        self.put_timeout = put_timeout
        self._subscribers: List[Subscription] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        sub = Subscription(maxsize or self.maxsize)
        with self._lock:
            if self._closed:
                sub._offer(_END_OF_STREAM, None)
            else:
                self._subscribers.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    def publish(self, event: SpeedTestEvent) -> None:
        with self._lock:
            if self._closed:
                logger.debug("Dropping %s published after close", type(event).__name__)
                return
            subscribers = list(self._subscribers)

        for sub in subscribers:
            if event.best_effort:
                if not sub._offer(event, None):
                    sub.dropped += 1
            elif not sub._offer(event, self.put_timeout):
                sub.lost += 1
                logger.warning(
                    "Subscriber queue full for %.1fs, dropping %s", self.put_timeout, type(event).__name__
                )

    def close(self) -> None:
        """End the stream for every subscriber."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = list(self._subscribers)
            self._subscribers.clear()

        for sub in subscribers:
            if not sub._offer(_END_OF_STREAM, self.put_timeout):
                logger.warning("Could not deliver end of stream to a stalled subscriber")
