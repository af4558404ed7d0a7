"""Value types shared by the engine, its consumers and the renderers"""

import enum
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from .constants import DEFAULT_NR_LATENCY_TESTS, DEFAULT_NR_TESTS


def format_bytes(num_bytes: int) -> str:
    """Render a byte count the way payload sizes are labelled (100KB, 25MB)."""
    if 1_000 <= num_bytes <= 999_999:
        return f"{num_bytes // 1_000}KB"
    if 1_000_000 <= num_bytes <= 999_999_999:
        return f"{num_bytes // 1_000_000}MB"
    return f"{num_bytes} bytes"


class TestType(enum.Enum):
    """Direction of a throughput test"""
    __test__ = False  # keep pytest from collecting this as a test class

    DOWNLOAD = "download"
    UPLOAD = "upload"

    @property
    def label(self) -> str:
        return self.value.capitalize()


_PAYLOAD_ALIASES = {
    "100k": 100_000,
    "1m": 1_000_000,
    "10m": 10_000_000,
    "25m": 25_000_000,
    "100m": 100_000_000,
}


class PayloadSize(enum.IntEnum):
    """Byte sizes used for throughput tests, ordered by byte count"""

    K100 = 100_000
    M1 = 1_000_000
    M10 = 10_000_000
    M25 = 25_000_000
    M100 = 100_000_000

    def __str__(self) -> str:
        return format_bytes(int(self))

    @classmethod
    def sizes_up_to(cls, max_size: "PayloadSize") -> List["PayloadSize"]:
        """All sizes up to and including ``max_size``, ascending."""
        return [size for size in cls if size <= max_size]

    @classmethod
    def parse(cls, text: str) -> "PayloadSize":
        """
        Parse a CLI-style payload size.

        Accepts ``100k``, ``100kb``, ``100000`` and ``100_000`` (any case) and the
        same spellings for 1m, 10m, 25m and 100m.

        Raises:
            ValueError: for anything else
        """
        value = text.strip().lower()
        if value.endswith("b") and value[:-1] in _PAYLOAD_ALIASES:
            value = value[:-1]
        if value in _PAYLOAD_ALIASES:
            return cls(_PAYLOAD_ALIASES[value])
        digits = value.replace("_", "")
        if digits.isdigit() and int(digits) in cls._value2member_map_:
            return cls(int(digits))
        raise ValueError("Value needs to be one of 100k, 1m, 10m, 25m or 100m")


@dataclass(frozen=True)
class Metadata:
    """Connection metadata reported by the trace endpoint."""

    ip: str
    colo: str
    country: str

    def __str__(self) -> str:
        return f"Country: {self.country}\nIp: {self.ip}\nColo: {self.colo}"

    def to_dict(self) -> Dict[str, str]:
        return {"ip": self.ip, "colo": self.colo, "country": self.country}


@dataclass(frozen=True)
class Measurement:
    """One accepted throughput sample."""

    test_type: TestType
    payload_size: PayloadSize
    mbps: float

    def __str__(self) -> str:
        return f"{self.test_type.label}: \t{self.payload_size}\t-> {self.mbps}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_type": self.test_type.value,
            "payload_size": int(self.payload_size),
            "mbps": self.mbps,
        }


# Attempt outcomes. wall_time is in seconds; status_code is None for transport errors.

@dataclass(frozen=True)
class Success:
    value: float  # Mbit/s for throughput tests, ms for latency probes
    wall_time: float
    status_code: int


@dataclass(frozen=True)
class RetryableFailure:
    wall_time: float
    reason: str
    status_code: Optional[int] = None
    retry_after: Optional[float] = None


@dataclass(frozen=True)
class FatalFailure:
    wall_time: float
    reason: str
    status_code: Optional[int] = None


AttemptOutcome = Union[Success, RetryableFailure, FatalFailure]


@dataclass(frozen=True)
class StatSummary:
    min: float
    q1: float
    median: float
    q3: float
    max: float
    avg: float

    def as_tuple(self) -> Tuple[float, float, float, float, float, float]:
        return (self.min, self.q1, self.median, self.q3, self.max, self.avg)

    def to_dict(self) -> Dict[str, float]:
        return {
            "min": self.min,
            "q1": self.q1,
            "median": self.median,
            "q3": self.q3,
            "max": self.max,
            "avg": self.avg,
        }


@dataclass(frozen=True)
class PayloadAttemptStats:
    """Attempt bookkeeping for one (direction, payload size) retry loop."""

    test_type: TestType
    payload_size: PayloadSize
    attempts: int
    successes: int
    skipped: int
    target_successes: int

    @property
    def insufficient(self) -> bool:
        return self.successes < self.target_successes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_type": self.test_type.value,
            "payload_size": int(self.payload_size),
            "attempts": self.attempts,
            "successes": self.successes,
            "skipped": self.skipped,
            "target_successes": self.target_successes,
        }


@dataclass(frozen=True)
class PayloadStats:
    """Statistics over the accepted samples of one payload size."""

    test_type: TestType
    payload_size: PayloadSize
    summary: StatSummary

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "test_type": self.test_type.value,
            "payload_size": int(self.payload_size),
        }
        out.update(self.summary.to_dict())
        return out


@dataclass(frozen=True)
class LatencyResult:
    """Latency samples in milliseconds and their summary (None when every probe failed)."""

    samples: Tuple[float, ...]
    summary: Optional[StatSummary]

    @property
    def avg_ms(self) -> float:
        return self.summary.avg if self.summary else 0.0

    @property
    def min_ms(self) -> float:
        return self.summary.min if self.summary else 0.0

    @property
    def max_ms(self) -> float:
        return self.summary.max if self.summary else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avg_ms": self.avg_ms,
            "min_ms": self.min_ms,
            "max_ms": self.max_ms,
            "summary": self.summary.to_dict() if self.summary else None,
            "samples": list(self.samples),
        }


@dataclass(frozen=True)
class ThroughputResult:
    """Everything measured for one direction."""

    test_type: TestType
    overall_mbps: float
    measurements: Tuple[Measurement, ...] = ()
    stats: Tuple[PayloadStats, ...] = ()
    attempt_stats: Tuple[PayloadAttemptStats, ...] = ()
    skipped_sizes: Tuple[PayloadSize, ...] = ()

    def samples_for(self, payload_size: PayloadSize) -> List[float]:
        return [m.mbps for m in self.measurements if m.payload_size == payload_size]

    def stats_for(self, payload_size: PayloadSize) -> Optional[PayloadStats]:
        for stat in self.stats:
            if stat.payload_size == payload_size:
                return stat
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_type": self.test_type.value,
            "overall_mbps": self.overall_mbps,
            "measurements": [m.to_dict() for m in self.measurements],
            "stats": [s.to_dict() for s in self.stats],
            "attempt_stats": [a.to_dict() for a in self.attempt_stats],
            "skipped_sizes": [int(s) for s in self.skipped_sizes],
        }


@dataclass(frozen=True)
class SpeedTestResult:
    """Result of a full speedtest run, handed to the output renderers."""

    metadata: Metadata
    latency: Optional[LatencyResult]
    download: Optional[ThroughputResult] = None
    upload: Optional[ThroughputResult] = None

    def throughput_results(self) -> List[ThroughputResult]:
        return [r for r in (self.download, self.upload) if r is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "latency": self.latency.to_dict() if self.latency else None,
            "download": self.download.to_dict() if self.download else None,
            "upload": self.upload.to_dict() if self.upload else None,
        }


@dataclass(frozen=True)
class SpeedTestConfig:
    """Immutable configuration of a single run."""

    nr_tests: int = DEFAULT_NR_TESTS
    nr_latency_tests: int = DEFAULT_NR_LATENCY_TESTS
    max_payload_size: PayloadSize = PayloadSize.M25
    disable_dynamic_max_payload_size: bool = False
    download: bool = True
    upload: bool = True

    def __post_init__(self):
        if self.nr_tests < 1:
            raise ValueError("nr_tests must be at least 1")
        if self.nr_latency_tests < 0:
            raise ValueError("nr_latency_tests cannot be negative")

    def payload_sizes(self) -> List[PayloadSize]:
        return PayloadSize.sizes_up_to(self.max_payload_size)

    def directions(self) -> List[TestType]:
        out = []
        if self.download:
            out.append(TestType.DOWNLOAD)
        if self.upload:
            out.append(TestType.UPLOAD)
        return out


@dataclass
class RunContext:
    """Per-run diagnostic state (one-shot warnings)."""

    warned_negative_latency: bool = False
