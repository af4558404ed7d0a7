import threading

import pytest

from cfspeedtest.errors import MetadataError, SpeedTestCancelled
from cfspeedtest.events import (
    Complete,
    Error,
    EventBus,
    LatencyComplete,
    LatencySample,
    MetadataReady,
    PayloadComplete,
    PhaseStart,
    ThroughputComplete,
    ThroughputSample,
    TransferProgress,
)
from cfspeedtest.consumers import HeadlessCollector
from cfspeedtest.retry import compute_retry_delay
from cfspeedtest.runner import SpeedTestRun, cancellable_sleep, run_speed_test
from cfspeedtest.types import Metadata, PayloadSize, SpeedTestConfig, TestType

SMALL = SpeedTestConfig(nr_tests=2, nr_latency_tests=3, max_payload_size=PayloadSize.M1)


def lifecycle(events):
    return [e for e in events if not isinstance(e, TransferProgress)]


def test_full_run(server, session):
    bus = EventBus()
    sub = bus.subscribe(maxsize=10_000)

    result = run_speed_test(session, SMALL, bus=bus, base_url=server.url)
    bus.close()
    events = lifecycle(list(sub))

    assert result.metadata == Metadata(ip="203.0.113.7", colo="FRA", country="DE")
    assert len(result.latency.samples) == 3
    assert [s.payload_size for s in result.download.stats] == [PayloadSize.K100, PayloadSize.M1]
    assert [s.payload_size for s in result.upload.stats] == [PayloadSize.K100, PayloadSize.M1]
    assert result.download.overall_mbps == result.download.stats[-1].summary.avg

    assert isinstance(events[0], MetadataReady)
    assert [type(e) for e in events[1:5]] == [LatencySample] * 3 + [LatencyComplete]
    assert isinstance(events[5], PhaseStart)
    assert events[5].test_type is TestType.DOWNLOAD
    assert events[5].payload_sizes == (PayloadSize.K100, PayloadSize.M1)
    assert isinstance(events[-1], Complete)
    assert events[-1].result == result

    phases = [e.test_type for e in events if isinstance(e, (PhaseStart, ThroughputComplete))]
    assert phases == [TestType.DOWNLOAD, TestType.DOWNLOAD, TestType.UPLOAD, TestType.UPLOAD]
    download_end = next(i for i, e in enumerate(events) if isinstance(e, ThroughputComplete))
    download_samples = [i for i, e in enumerate(events)
                        if isinstance(e, ThroughputSample) and e.test_type is TestType.DOWNLOAD]
    assert len(download_samples) == 4
    assert max(download_samples) < download_end
    assert sum(isinstance(e, PayloadComplete) for e in events) == 4


def test_requests_hit_the_expected_endpoints(server, session):
    run_speed_test(session, SMALL, base_url=server.url)

    down = [r.query["bytes"][0] for r in server.requests_to("/__down")]
    assert down == ["0"] * 3 + ["100000"] * 2 + ["1000000"] * 2
    assert [r.body_length for r in server.requests_to("/__up")] == [100_000] * 2 + [1_000_000] * 2


def test_download_only(server, session):
    config = SpeedTestConfig(nr_tests=1, nr_latency_tests=1, max_payload_size=PayloadSize.K100, upload=False)

    result = run_speed_test(session, config, base_url=server.url)

    assert result.upload is None
    assert result.download is not None
    assert server.requests_to("/__up") == []


def test_metadata_failure_aborts_the_run(server, session):
    server.on("GET", "/cdn-cgi/trace", status=503)
    bus = EventBus()
    sub = bus.subscribe()

    with pytest.raises(MetadataError):
        run_speed_test(session, SMALL, bus=bus, base_url=server.url)
    bus.close()

    events = list(sub)
    assert len(events) == 1
    assert isinstance(events[0], Error)
    assert events[0].message.startswith("Error fetching metadata:")
    assert server.requests_to("/__down") == []


def test_failed_latency_probe_becomes_an_error_event(server, session):
    server.on("GET", "/__down", status=500, body=b"", times=1)
    config = SpeedTestConfig(nr_tests=1, nr_latency_tests=2, max_payload_size=PayloadSize.K100, download=False)
    bus = EventBus()
    sub = bus.subscribe()

    result = run_speed_test(session, config, bus=bus, base_url=server.url)
    bus.close()

    errors = [e for e in sub if isinstance(e, Error)]
    assert [e.message.split(":")[0] for e in errors] == ["Latency test 1"]
    assert len(result.latency.samples) == 1


def test_no_latency_samples(server, session):
    server.on("GET", "/__down", status=404, body=b"")
    config = SpeedTestConfig(nr_tests=1, nr_latency_tests=2, max_payload_size=PayloadSize.K100, download=False)

    result = run_speed_test(session, config, base_url=server.url)

    assert result.latency.samples == ()
    assert result.latency.summary is None


def test_background_run(server, session):
    run = SpeedTestRun(session, SMALL, base_url=server.url)
    collector = HeadlessCollector()
    sub = run.subscribe()

    run.start()
    collector.consume(sub)
    result = run.result(timeout=30)

    assert run.done()
    assert collector.result == result
    assert collector.metadata == result.metadata
    assert collector.download == result.download
    assert collector.progress_ticks > 0
    assert collector.errors == []


def test_background_run_metadata_failure(server, session):
    server.on("GET", "/cdn-cgi/trace", status=500)
    run = SpeedTestRun(session, SMALL, base_url=server.url)
    collector = HeadlessCollector()
    sub = run.subscribe()

    run.start()
    collector.consume(sub)

    with pytest.raises(MetadataError):
        run.result(timeout=30)
    assert collector.result is None
    assert len(collector.errors) == 1


def test_cancel_stops_the_run(server, session):
    run = SpeedTestRun(session, SMALL, base_url=server.url)
    sub = run.subscribe()
    run.cancel()

    run.start()
    events = list(sub)

    with pytest.raises(SpeedTestCancelled):
        run.result(timeout=30)
    assert run.cancelled
    assert not any(isinstance(e, Complete) for e in events)
    assert server.requests_to("/__down") == []


def test_cancel_interrupts_retry_delay(server, session):
    server.on("GET", "/__down", status=429, body=b"", headers={"Retry-After": "30"})
    config = SpeedTestConfig(nr_tests=1, nr_latency_tests=0, max_payload_size=PayloadSize.K100, upload=False)
    run = SpeedTestRun(session, config, base_url=server.url)
    sub = run.subscribe()
    run.start()

    for event in sub:
        if type(event).__name__ == "AttemptFailed":
            run.cancel()

    with pytest.raises(SpeedTestCancelled):
        run.result(timeout=5)


def test_result_requires_start(session):
    run = SpeedTestRun(session)
    with pytest.raises(RuntimeError):
        run.result()


def test_start_only_once(server, session):
    run = SpeedTestRun(session, SMALL, base_url=server.url).start()
    with pytest.raises(RuntimeError):
        run.start()
    run.result(timeout=30)


def test_cancellable_sleep():
    cancel = threading.Event()
    sleep = cancellable_sleep(cancel)
    sleep(0)

    cancel.set()
    with pytest.raises(SpeedTestCancelled):
        sleep(10)


def test_unreadable_retry_after_is_retried_with_backoff(server, session, sleeper):
    # latin-1 byte 0xb2 decodes to a superscript digit that int() rejects
    server.on("GET", "/__down", status=503, body=b"", headers={"Retry-After": "\u00b2"}, times=1)
    config = SpeedTestConfig(nr_tests=1, nr_latency_tests=0, max_payload_size=PayloadSize.K100, upload=False)

    result = run_speed_test(session, config, base_url=server.url, sleep=sleeper)

    assert len(result.download.measurements) == 1
    assert sleeper.calls == [compute_retry_delay(1)]
