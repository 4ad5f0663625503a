"""
Tests for the monitoring session scheduler, validation and session manager.
Probes are faked and time is driven by the FakeClock fixture.
"""

import asyncio
import dataclasses

import pytest
from aiohttp import test_utils, web

from gauge_segments import Severity
from monitor_errors import MonitorError, ValidationError
from monitor_session import (
    MonitorSession,
    SessionConfig,
    SessionManager,
    SessionState,
    build_session_config,
)
from single_probe import RequestSpec, Sample


URL = "https://api.example.com/health"


def _config(interval: int = 2, duration: int = 6, latency_max: float = 250.0) -> SessionConfig:
    return SessionConfig(
        request=RequestSpec(url=URL),
        interval_seconds=interval,
        duration_seconds=duration,
        latency_scale_max=latency_max,
    )


def _fixed_probe(clock, latency_ms: float = 50.0, size_bytes: int = 1024, calls=None):
    async def probe(config, calibrator):
        if calls is not None:
            calls.append(clock())
        clock.advance(latency_ms / 1000)
        calibrator.observe(size_bytes)
        return Sample(
            timestamp="12:00:00",
            latency_ms=latency_ms,
            bandwidth_kbs=size_bytes / (latency_ms / 1000) / 1024,
        )
    return probe


def _failing_probe():
    async def probe(config, calibrator):
        return Sample(timestamp="12:00:00", latency_ms=0.0, bandwidth_kbs=0.0,
                      error="Connection Error: Cannot connect to host")
    return probe


def _run(session: MonitorSession):
    async def scenario():
        return await session.run()
    return asyncio.run(scenario())


# --- Validation ---

@pytest.mark.parametrize("kwargs, message", [
    (dict(url="not a url"), "Invalid URL format"),
    (dict(url="ftp://example.com/file"), "Invalid URL format"),
    (dict(url=""), "Invalid URL format"),
    (dict(url="http://[::1"), "Invalid URL format"),
    (dict(url="http://example.com:abc/"), "Invalid URL format"),
    (dict(url="http://example.com:99999/"), "Invalid URL format"),
    (dict(url=URL, interval="0"), "Interval must be between 1 and 10 seconds"),
    (dict(url=URL, interval="11"), "Interval must be between 1 and 10 seconds"),
    (dict(url=URL, interval="5", duration="4"), "Duration must be at least the interval length"),
    (dict(url=URL, latency_max="0"), "Latency Max Value must be between 1 and 1000 ms"),
    (dict(url=URL, latency_max="1001"), "Latency Max Value must be between 1 and 1000 ms"),
    (dict(url=URL, interval="abc"), "Interval must be a number"),
    (dict(url=URL, interval="2.7"), "Interval must be a whole number"),
    (dict(url=URL, interval=2.7), "Interval must be a whole number"),
    (dict(url=URL, duration=30.5), "Duration must be a whole number"),
    (dict(url=URL, method="GE T"), "Invalid HTTP method"),
    (dict(url=URL, headers={"X-A": "a\r\nb"}), "must not contain control characters"),
    (dict(url=URL, headers={"Bad Name": "x"}), "Invalid header name"),
])
def test_invalid_parameters_are_rejected(kwargs, message) -> None:
    with pytest.raises(ValidationError, match=message):
        build_session_config(**kwargs)


def test_blank_fields_use_defaults() -> None:
    config = build_session_config(f"  {URL}  ", interval="", duration=" ", latency_max=None)

    assert config.request.url == URL
    assert config.request.method == "GET"
    assert dict(config.request.headers) == {"Accept": "application/json"}
    assert (config.interval_seconds, config.duration_seconds, config.latency_scale_max) == (2, 30, 250.0)
    assert config.timeout_seconds == 3.0
    assert config.expected_heartbeats == 16


def test_integral_numbers_are_accepted_as_text_or_numbers() -> None:
    from_text = build_session_config(URL, "2.0", "6", "100")
    from_numbers = build_session_config(URL, 2.0, 6, 100)

    assert from_text.interval_seconds == from_numbers.interval_seconds == 2
    assert isinstance(from_numbers.interval_seconds, int)
    assert from_text.latency_scale_max == from_numbers.latency_scale_max == 100.0


def test_rejected_url_leaves_session_idle(clock) -> None:
    manager = SessionManager(probe=_fixed_probe(clock), clock=clock, sleep=clock.sleep)

    with pytest.raises(ValidationError):
        manager.submit("http://[::1", "1", "2", "250")
    assert manager.current is None


def test_parsed_config_carries_request_details() -> None:
    config = build_session_config(
        URL, "5", "60", "500", method="post", headers={"X-Token": "abc"}, body="{}", device_info="MacBook (macOS)"
    )

    assert config.request.method == "POST"
    assert dict(config.request.headers) == {"X-Token": "abc"}
    assert config.request.body == "{}"
    assert config.device_info == "MacBook (macOS)"
    assert config.expected_heartbeats == 13


def test_config_is_frozen() -> None:
    config = _config()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.interval_seconds = 5


# --- Scheduling ---

def test_always_succeeding_endpoint(clock) -> None:
    calls = []
    session = MonitorSession(_config(2, 6), probe=_fixed_probe(clock, calls=calls), clock=clock, sleep=clock.sleep)

    status = _run(session)

    assert session.state is SessionState.COMPLETED
    assert len(session.samples) == 4
    assert all(s.error is None for s in session.samples)
    assert status.avg_latency == pytest.approx(50.0)
    assert status.avg_bandwidth == pytest.approx(20.0)
    # Fixed-rate: probes start on the 2s grid regardless of probe duration
    assert calls == pytest.approx([0.0, 2.0, 4.0, 6.0])
    assert clock.sleeps == pytest.approx([1.95, 1.95, 1.95])


def test_always_failing_endpoint(clock) -> None:
    session = MonitorSession(_config(2, 6), probe=_failing_probe(), clock=clock, sleep=clock.sleep)

    status = _run(session)

    assert session.state is SessionState.COMPLETED
    assert len(session.samples) == 4
    assert all(s.error for s in session.samples)
    assert status.avg_latency == 0.0
    assert status.avg_bandwidth == 0.0
    assert status.failure_rate == 1.0
    assert session.bandwidth_scale_max is None


@pytest.mark.parametrize("interval, duration", [(1, 1), (1, 5), (2, 6), (3, 10), (4, 9), (10, 10), (7, 30)])
def test_natural_completion_collects_duration_over_interval_plus_one(clock, interval, duration) -> None:
    session = MonitorSession(_config(interval, duration), probe=_fixed_probe(clock, latency_ms=1.0),
                             clock=clock, sleep=clock.sleep)

    _run(session)

    assert len(session.samples) == duration // interval + 1
    assert session.state is SessionState.COMPLETED


def test_elapsed_duration_stops_early_when_probes_overrun(clock) -> None:
    # 2.5s probes on a 2s grid: the 2s tick is skipped, 6s elapsed after two probes
    session = MonitorSession(_config(2, 6), probe=_fixed_probe(clock, latency_ms=2500.0),
                             clock=clock, sleep=clock.sleep)

    _run(session)

    assert session.state is SessionState.COMPLETED
    assert len(session.samples) == 2
    assert clock.sleeps == pytest.approx([1.5])


def test_cancel_after_second_heartbeat(clock) -> None:
    session = MonitorSession(_config(1, 9), probe=_fixed_probe(clock), clock=clock, sleep=clock.sleep)

    def stop_after_two(sample):
        if len(session.samples) == 2:
            session.stop()

    session.on_sample(stop_after_two)
    status = _run(session)

    assert session.config.expected_heartbeats == 10
    assert session.state is SessionState.CANCELLED
    assert len(session.samples) == 2
    assert status.avg_latency == pytest.approx(50.0)
    assert status.heartbeat_count == 2


def test_stop_during_wait_cancels_pending_timer(clock) -> None:
    calls = []

    async def sleep_then_stop(delay):
        session.stop()
        await clock.sleep(delay)

    session = MonitorSession(_config(2, 20), probe=_fixed_probe(clock, calls=calls), clock=clock,
                             sleep=sleep_then_stop)
    _run(session)

    assert session.state is SessionState.CANCELLED
    assert len(calls) == 1
    assert len(session.samples) == 1


def test_in_flight_probe_result_is_kept(clock) -> None:
    inner = _fixed_probe(clock)

    async def probe(config, calibrator):
        session.stop()
        await asyncio.sleep(0)
        return await inner(config, calibrator)

    session = MonitorSession(_config(2, 20), probe=probe, clock=clock, sleep=clock.sleep)
    _run(session)

    assert session.state is SessionState.CANCELLED
    assert len(session.samples) == 1
    assert session.samples[0].latency_ms == 50.0
    assert clock.sleeps == []


def test_stop_before_first_probe_yields_empty_session(clock) -> None:
    calls = []
    session = MonitorSession(_config(), probe=_fixed_probe(clock, calls=calls), clock=clock, sleep=clock.sleep)

    async def scenario():
        session.start()
        session.stop()
        return await session.wait()

    status = asyncio.run(scenario())

    assert calls == []
    assert session.state is SessionState.CANCELLED
    assert status.avg_latency == 0.0
    assert status.avg_bandwidth == 0.0


def test_session_cannot_start_twice(clock) -> None:
    session = MonitorSession(_config(), probe=_fixed_probe(clock), clock=clock, sleep=clock.sleep)
    _run(session)

    with pytest.raises(MonitorError):
        asyncio.run(session.run())
    assert session.state is SessionState.COMPLETED


def test_probe_receives_frozen_snapshot(clock) -> None:
    seen = []
    inner = _fixed_probe(clock)

    async def probe(config, calibrator):
        seen.append(config)
        return await inner(config, calibrator)

    config = _config(1, 2)
    session = MonitorSession(config, probe=probe, clock=clock, sleep=clock.sleep)
    _run(session)

    assert len(seen) == 3
    assert all(c is config for c in seen)


def test_bandwidth_scale_is_monotone_over_session(clock) -> None:
    sizes = iter([4096, 2048, 1024, 512, 128])
    scales = []

    async def probe(config, calibrator):
        clock.advance(0.1)
        calibrator.observe(next(sizes))
        return Sample(timestamp="12:00:00", latency_ms=100.0, bandwidth_kbs=1.0)

    session = MonitorSession(_config(1, 4), probe=probe, clock=clock, sleep=clock.sleep)
    session.on_sample(lambda s: scales.append(session.bandwidth_scale_max))
    _run(session)

    assert len(scales) == 5
    assert all(a <= b for a, b in zip(scales, scales[1:]))
    assert scales[-1] == pytest.approx(80.0)


# --- Views ---

def test_view_and_gauges_switch_from_current_to_average(clock) -> None:
    latencies = iter([100.0, 300.0])

    async def probe(config, calibrator):
        latency = next(latencies)
        clock.advance(latency / 1000)
        calibrator.observe(2048)
        return Sample(timestamp="12:00:00", latency_ms=latency, bandwidth_kbs=2048 / (latency / 1000) / 1024)

    session = MonitorSession(_config(1, 1), probe=probe, clock=clock, sleep=clock.sleep)
    running_views = []
    session.on_sample(lambda s: running_views.append((session.view(), session.latency_gauge())))

    _run(session)

    view, gauge = running_views[-1]
    assert view.is_running
    assert view.display_latency == 300.0
    assert gauge.display_value == "300.00"
    assert gauge.angle_degrees == 0.0

    final = session.view()
    assert not final.is_running
    assert final.display_latency == pytest.approx(200.0)

    bandwidth = session.bandwidth_gauge()
    assert bandwidth.scale_max == pytest.approx(40.0)
    assert bandwidth.value == pytest.approx((20.0 + 20.0 / 3) / 2)


def test_status_record(clock) -> None:
    session = MonitorSession(_config(2, 6), probe=_failing_probe(), clock=clock, sleep=clock.sleep)

    idle = session.status()
    assert idle.state is SessionState.IDLE
    assert idle.heartbeat_count == 0
    assert idle.elapsed_seconds == 0.0
    assert idle.avg_latency is None

    _run(session)
    done = session.status()

    assert done.state is SessionState.COMPLETED
    assert done.url == URL
    assert done.heartbeat_count == 4
    assert done.expected_heartbeats == 4
    assert done.elapsed_seconds == pytest.approx(6.0)
    assert done.last_error == "Connection Error: Cannot connect to host"
    assert done.last_measured_at == "12:00:00"
    assert done.started_at is not None


def test_uncalibrated_bandwidth_gauge_is_neutral(clock) -> None:
    session = MonitorSession(_config(), probe=_failing_probe(), clock=clock, sleep=clock.sleep)

    gauge = session.bandwidth_gauge()

    assert gauge.scale_max == 10.0
    assert gauge.color == "#666666"
    assert session.latency_gauge().color == Severity.GREAT.value


# --- Session manager ---

def test_new_session_stops_the_running_one(clock) -> None:
    manager = SessionManager(probe=_fixed_probe(clock), clock=clock, sleep=clock.sleep)

    async def scenario():
        first = manager.start(_config(1, 10))
        second = manager.start(_config(2, 6))
        await first.wait()
        await second.wait()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.state is SessionState.CANCELLED
    assert first.samples == []
    assert second.state is SessionState.COMPLETED
    assert len(second.samples) == 4
    assert manager.current is second


def test_replace_waits_for_in_flight_probe(clock) -> None:
    counts = {"in_flight": 0, "peak": 0}
    gate = {}
    inner = _fixed_probe(clock)

    async def probe(config, calibrator):
        counts["in_flight"] += 1
        counts["peak"] = max(counts["peak"], counts["in_flight"])
        await gate["open"].wait()
        counts["in_flight"] -= 1
        return await inner(config, calibrator)

    manager = SessionManager(probe=probe, clock=clock, sleep=clock.sleep)

    async def scenario():
        gate["open"] = asyncio.Event()
        first = manager.start(_config(1, 10))
        await asyncio.sleep(0)
        assert counts["in_flight"] == 1

        replacing = asyncio.create_task(manager.replace(_config(1, 1)))
        await asyncio.sleep(0)
        assert manager.current is first

        gate["open"].set()
        second = await replacing
        await second.wait()
        return first, second

    first, second = asyncio.run(scenario())

    assert counts["peak"] == 1
    assert first.state is SessionState.CANCELLED
    assert len(first.samples) == 1
    assert second.state is SessionState.COMPLETED
    assert len(second.samples) == 2


def test_rejected_submit_leaves_running_session_alone(clock) -> None:
    manager = SessionManager(probe=_fixed_probe(clock), clock=clock, sleep=clock.sleep)

    async def scenario():
        session = manager.submit(URL, "1", "5", "250")
        with pytest.raises(ValidationError):
            manager.submit("not a url", "1", "5", "250")
        assert not session.stop_requested
        assert manager.current is session
        return await session.wait()

    status = asyncio.run(scenario())

    assert status.state is SessionState.COMPLETED
    assert status.heartbeat_count == 6


# --- End to end over HTTP ---

def test_session_probes_real_endpoint() -> None:
    async def handler(request):
        return web.Response(body=b"y" * 1024)

    app = web.Application()
    app.router.add_get("/beat", handler)

    async def scenario():
        async with test_utils.TestServer(app) as server:
            config = build_session_config(str(server.make_url("/beat")), "1", "1", "250", timeout=2.0)
            session = MonitorSession(config)
            status = await session.run()
            return session, status

    session, status = asyncio.run(scenario())

    assert status.state is SessionState.COMPLETED
    assert status.heartbeat_count == 2
    assert all(s.ok for s in session.samples)
    assert session.bandwidth_scale_max == pytest.approx(20.0)
