import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import pytest

from cfspeedtest.client import build_session

TRACE_BODY = (
    "fl=123f45\n"
    "h=speed.cloudflare.com\n"
    "ip=203.0.113.7\n"
    "ts=1700000000.123\n"
    "visit_scheme=https\n"
    "uag=python-requests/2.31\n"
    "colo=FRA\n"
    "loc=DE\n"
    "tls=TLSv1.3\n"
)


@dataclass
class Reply:
    status: int = 200
    body: Optional[bytes] = None  # None on __down echoes the requested byte count
    headers: Dict[str, str] = field(default_factory=dict)
    delay: float = 0.0
    times: Optional[int] = None  # None repeats forever


@dataclass
class RecordedRequest:
    method: str
    path: str
    query: Dict[str, List[str]]
    body_length: int


class ScriptedHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def do_GET(self):
        self._respond("GET", 0)

    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        self.rfile.read(length)
        self._respond("POST", length)

    def _respond(self, method, body_length):
        url = urlsplit(self.path)
        query = parse_qs(url.query)
        self.server.record(RecordedRequest(method, url.path, query, body_length))
        reply = self.server.next_reply(method, url.path)
        if reply.delay:
            time.sleep(reply.delay)

        body = reply.body
        if body is None:
            body = b"0" * int(query.get("bytes", ["0"])[0]) if url.path == "/__down" else b""
        self.send_response(reply.status)
        for name, value in reply.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


class ScriptedServer(ThreadingHTTPServer):
    """Local HTTP server replaying scripted replies per (method, path)."""

    daemon_threads = True

    def __init__(self):
        super().__init__(("127.0.0.1", 0), ScriptedHandler)
        self._lock = threading.Lock()
        self._routes: Dict[tuple, List[Reply]] = {
            ("GET", "/cdn-cgi/trace"): [Reply(body=TRACE_BODY.encode())],
            ("GET", "/__down"): [Reply(headers={"Server-Timing": "cfRequestDuration;dur=0.5"})],
            ("POST", "/__up"): [Reply()],
        }
        self.requests: List[RecordedRequest] = []

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.server_address[1]}"

    def on(self, method, path, status=200, body=None, headers=None, delay=0.0, times=None):
        """
        Queue a reply. Replies with ``times`` are used up in order before the
        route falls back to its last (repeating) reply.
        """
        reply = Reply(status=status, body=body, headers=headers or {}, delay=delay, times=times)
        with self._lock:
            replies = self._routes.setdefault((method, path), [])
            if times is None:
                replies[:] = [r for r in replies if r.times is not None]
                replies.append(reply)
            else:
                limited = [r for r in replies if r.times is not None]
                sticky = [r for r in replies if r.times is None]
                replies[:] = limited + [reply] + sticky
        return self

    def next_reply(self, method, path) -> Reply:
        with self._lock:
            replies = self._routes.get((method, path))
            if not replies:
                return Reply(status=404, body=b"")
            reply = replies[0]
            if reply.times is not None:
                reply.times -= 1
                if reply.times <= 0:
                    replies.pop(0)
            return reply

    def record(self, request: RecordedRequest) -> None:
        with self._lock:
            self.requests.append(request)

    def requests_to(self, path) -> List[RecordedRequest]:
        with self._lock:
            return [r for r in self.requests if r.path == path]

    def handle_error(self, request, client_address):
        # clients that timed out close the socket under a delayed reply
        pass


@pytest.fixture
def server():
    srv = ScriptedServer()
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()


@pytest.fixture
def session():
    s = build_session(timeout=5)
    yield s
    s.close()


@pytest.fixture
def closed_port_url():
    """URL of a local port nothing listens on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"http://127.0.0.1:{port}"


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class SleepRecorder:
    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: List[float] = []
        self.clock = clock

    def __call__(self, seconds):
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return SleepRecorder(clock)


@pytest.fixture(autouse=True)
def reset_package_logger():
    logger = logging.getLogger("cfspeedtest")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture
def speedtest_result():
    """A finished run: download with an under-sampled and an empty size, upload cut short."""
    from cfspeedtest.stats import calc_stats
    from cfspeedtest.types import (
        LatencyResult,
        Measurement,
        Metadata,
        PayloadAttemptStats,
        PayloadSize,
        PayloadStats,
        SpeedTestResult,
        TestType,
        ThroughputResult,
    )

    down, up = TestType.DOWNLOAD, TestType.UPLOAD
    k100, m1, m10 = PayloadSize.K100, PayloadSize.M1, PayloadSize.M10
    download = ThroughputResult(
        test_type=down,
        overall_mbps=450.0,
        measurements=(
            Measurement(down, k100, 100.0),
            Measurement(down, k100, 200.0),
            Measurement(down, k100, 300.0),
            Measurement(down, m1, 450.0),
        ),
        stats=(
            PayloadStats(down, k100, calc_stats([100.0, 200.0, 300.0])),
            PayloadStats(down, m1, calc_stats([450.0])),
        ),
        attempt_stats=(
            PayloadAttemptStats(down, k100, attempts=3, successes=3, skipped=0, target_successes=3),
            PayloadAttemptStats(down, m1, attempts=2, successes=1, skipped=1, target_successes=3),
            PayloadAttemptStats(down, m10, attempts=1, successes=0, skipped=1, target_successes=3),
        ),
    )
    upload = ThroughputResult(
        test_type=up,
        overall_mbps=120.0,
        measurements=(Measurement(up, k100, 120.0),) * 3,
        stats=(PayloadStats(up, k100, calc_stats([120.0] * 3)),),
        attempt_stats=(
            PayloadAttemptStats(up, k100, attempts=3, successes=3, skipped=0, target_successes=3),
        ),
        skipped_sizes=(m1, m10),
    )
    latency = LatencyResult(samples=(10.0, 12.0, 14.0), summary=calc_stats([10.0, 12.0, 14.0]))
    return SpeedTestResult(
        metadata=Metadata(ip="203.0.113.7", colo="FRA", country="DE"),
        latency=latency,
        download=download,
        upload=upload,
    )
