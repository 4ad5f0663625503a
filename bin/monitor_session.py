#!/usr/bin/env python3
"""
FLOW-HB Monitoring Session

Drives repeated probes of one endpoint at a fixed cadence for a bounded
duration, collecting heartbeats into the session log.

State Machine:
    IDLE → RUNNING → COMPLETED
              ↓
          CANCELLED

Scheduling is fixed-rate: probe k is due at start + k × interval. One probe
is in flight at a time; a probe that overruns its slot skips ahead to the
next aligned tick instead of firing probes back to back.

Stopping condition, checked after every probe:
    heartbeats ≥ floor(duration / interval) + 1  OR  elapsed ≥ duration

The +1 counts the probe at t=0: a 6s session at a 2s interval yields
heartbeats at 0, 2, 4 and 6.

Each session owns its task handle and cancellation token. The probe only
ever sees the frozen SessionConfig captured at start.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Awaitable, Callable, Mapping, Optional, Union
from urllib.parse import urlsplit

import aiohttp

from bandwidth_calibrator import BandwidthCalibrator
from gauge_projector import GaugeReading, project
from gauge_segments import bandwidth_segments, latency_segments
from monitor_errors import MonitorError, ValidationError
from session_stats import SessionStats, ViewModel
from single_probe import DEFAULT_HEADERS, DEFAULT_TIMEOUT_SEC, RequestSpec, Sample, probe_single


USER_AGENT = "FLOW-HB/1.0"

DEFAULT_INTERVAL_SEC = 2
DEFAULT_DURATION_SEC = 30
DEFAULT_LATENCY_MAX_MS = 250.0

INTERVAL_RANGE = (1, 10)
LATENCY_MAX_RANGE = (1.0, 1000.0)


ProbeFn = Callable[["SessionConfig", BandwidthCalibrator], Awaitable[Sample]]
SampleListener = Callable[[Sample], None]


# =============================================================================
# CONFIGURATION SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class SessionConfig:
    """Frozen parameters for one session. Validated on construction."""
    request: RequestSpec
    interval_seconds: int = DEFAULT_INTERVAL_SEC
    duration_seconds: int = DEFAULT_DURATION_SEC
    latency_scale_max: float = DEFAULT_LATENCY_MAX_MS
    timeout_seconds: float = DEFAULT_TIMEOUT_SEC
    device_info: Optional[str] = None

    def __post_init__(self):
        try:
            parts = urlsplit(self.request.url)
            # .port raises for non-numeric or out-of-range ports
            parts.port
        except ValueError:
            raise ValidationError("Invalid URL format")
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValidationError("Invalid URL format")

        lo, hi = INTERVAL_RANGE
        if not lo <= self.interval_seconds <= hi:
            raise ValidationError(f"Interval must be between {lo} and {hi} seconds")

        if self.duration_seconds < self.interval_seconds:
            raise ValidationError("Duration must be at least the interval length")

        lo, hi = LATENCY_MAX_RANGE
        if not lo <= self.latency_scale_max <= hi:
            raise ValidationError(f"Latency Max Value must be between {lo:g} and {hi:g} ms")

        if self.timeout_seconds <= 0:
            raise ValidationError("Timeout must be positive")

    @property
    def expected_heartbeats(self) -> int:
        return self.duration_seconds // self.interval_seconds + 1


def _parse_number(raw: Union[str, int, float, None], default, name: str, cast=int):
    """
    Blank means default. Text and numbers go through the same check, so 2,
    2.0 and "2.0" are accepted for an int field while 2.7 and "2.7" are not.
    """
    if raw is None:
        return default
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        value = float(raw)
    else:
        text = str(raw).strip()
        if not text:
            return default
        try:
            value = float(text)
        except ValueError:
            raise ValidationError(f"{name} must be a number, got {text!r}")
    if cast is int:
        if not value.is_integer():
            raise ValidationError(f"{name} must be a whole number, got {raw!r}")
        return int(value)
    return cast(value)


def build_session_config(
    url: str,
    interval: Union[str, int, None] = None,
    duration: Union[str, int, None] = None,
    latency_max: Union[str, float, None] = None,
    method: str = "GET",
    headers: Optional[Mapping[str, str]] = None,
    body: Optional[Union[str, bytes]] = None,
    timeout: float = DEFAULT_TIMEOUT_SEC,
    device_info: Optional[str] = None,
) -> SessionConfig:
    """
    Parse raw form values into a validated SessionConfig.

    Raises:
        ValidationError: Malformed URL or out-of-range parameters
    """
    url = (url or "").strip()
    if not url:
        raise ValidationError("Invalid URL format")

    request = RequestSpec(
        url=url,
        method=method or "GET",
        headers=DEFAULT_HEADERS if headers is None else headers,
        body=body or None,
    )

    return SessionConfig(
        request=request,
        interval_seconds=_parse_number(interval, DEFAULT_INTERVAL_SEC, "Interval"),
        duration_seconds=_parse_number(duration, DEFAULT_DURATION_SEC, "Duration"),
        latency_scale_max=_parse_number(latency_max, DEFAULT_LATENCY_MAX_MS, "Latency Max Value", float),
        timeout_seconds=float(timeout),
        device_info=device_info,
    )


# =============================================================================
# SESSION
# =============================================================================

class SessionState(Enum):
    """Monitoring session states."""
    IDLE = auto()
    RUNNING = auto()
    COMPLETED = auto()
    CANCELLED = auto()


@dataclass(frozen=True)
class SessionStatus:
    """Structured status for status panels and summaries."""
    state: SessionState
    url: str
    interval_seconds: int
    duration_seconds: int
    started_at: Optional[str]
    last_measured_at: Optional[str]
    elapsed_seconds: float
    heartbeat_count: int
    expected_heartbeats: int
    last_error: Optional[str]
    avg_latency: Optional[float]
    avg_bandwidth: Optional[float]
    failure_rate: float


class MonitorSession:
    """
    One run of the scheduler, from start to completion or cancellation.

    Args:
        config: Frozen session parameters
        probe: Async probe callable; defaults to an aiohttp probe owned by
            the session
        clock: Monotonic clock in seconds
        sleep: Async sleep used for the inter-probe wait
    """

    def __init__(
        self,
        config: SessionConfig,
        probe: Optional[ProbeFn] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self._probe = probe
        self._clock = clock
        self._sleep = sleep

        self.state = SessionState.IDLE
        self.samples: list[Sample] = []
        self.stats = SessionStats()
        self.calibrator = BandwidthCalibrator()

        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self._t_start: Optional[float] = None
        self._t_end: Optional[float] = None

        self._task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._waiting = False
        self._listeners: list[SampleListener] = []

    # --- Public API ---

    def on_sample(self, listener: SampleListener) -> None:
        """Register a callback invoked with every new heartbeat."""
        self._listeners.append(listener)

    def start(self) -> asyncio.Task:
        """Start the probe loop on the running event loop. First probe fires immediately."""
        if self.state is not SessionState.IDLE:
            raise MonitorError(f"Session already started (state={self.state.name})")

        self.samples.clear()
        self.stats = SessionStats()
        self.calibrator.reset()
        self.started_at = datetime.now()
        self._t_start = self._clock()
        self.state = SessionState.RUNNING

        req = self.config.request
        print(f"[Monitor] Started: {req.method} {req.url} | interval={self.config.interval_seconds}s "
              f"duration={self.config.duration_seconds}s expected={self.config.expected_heartbeats}")

        self._task = asyncio.create_task(self._run())
        return self._task

    def stop(self) -> None:
        """
        Request cancellation. An in-flight probe finishes and its heartbeat is
        kept; a pending wait is cancelled; no probe fires afterwards.
        """
        if self.state is not SessionState.RUNNING or self._stop_requested:
            return
        self._stop_requested = True
        print("[Monitor] Stop requested")
        if self._waiting and self._task is not None:
            self._task.cancel()

    async def wait(self) -> SessionStatus:
        if self._task is not None:
            await self._task
        return self.status()

    async def run(self) -> SessionStatus:
        """Start and wait for the session to finish."""
        self.start()
        return await self.wait()

    # --- Loop ---

    def _http_probe(self, http: aiohttp.ClientSession) -> ProbeFn:
        async def probe(config: SessionConfig, calibrator: BandwidthCalibrator) -> Sample:
            return await probe_single(
                http,
                config.request,
                timeout=config.timeout_seconds,
                calibrator=calibrator,
                device_info=config.device_info,
            )
        return probe

    async def _run(self) -> None:
        http: Optional[aiohttp.ClientSession] = None
        probe = self._probe
        if probe is None:
            http = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
            probe = self._http_probe(http)

        tick = 0
        try:
            while not self._stop_requested:
                sample = await probe(self.config, self.calibrator)
                self._record(sample)

                if self._stop_requested:
                    break
                if self._should_complete():
                    self._finish(SessionState.COMPLETED)
                    return

                tick, delay = self._next_tick(tick)
                self._waiting = True
                try:
                    await self._sleep(delay)
                finally:
                    self._waiting = False

        except asyncio.CancelledError:
            # Our own stop() cancels the wait; anything else propagates
            if not self._stop_requested:
                raise
        finally:
            if self.state is SessionState.RUNNING:
                self._finish(SessionState.CANCELLED)
            if http is not None:
                await http.close()

    def _record(self, sample: Sample) -> None:
        self.samples.append(sample)
        self.stats.add(sample)
        for listener in self._listeners:
            listener(sample)

    def _should_complete(self) -> bool:
        return (
            len(self.samples) >= self.config.expected_heartbeats
            or self.elapsed_seconds >= self.config.duration_seconds
        )

    def _next_tick(self, tick: int) -> tuple[int, float]:
        """Next aligned tick strictly after the current one, skipping overrun slots."""
        interval = self.config.interval_seconds
        now = self._clock()
        aligned = int((now - self._t_start) // interval) + 1
        next_tick = max(tick + 1, aligned)
        if next_tick > tick + 1:
            print(f"[Monitor] Probe overran interval; skipped {next_tick - tick - 1} tick(s)")
        delay = self._t_start + next_tick * interval - now
        return next_tick, max(0.0, delay)

    def _finish(self, state: SessionState) -> None:
        self._t_end = self._clock()
        self.finished_at = datetime.now()
        avg_latency, avg_bandwidth = self.stats.finalize()
        self.state = state
        print(f"[Monitor] {state.name}: {len(self.samples)}/{self.config.expected_heartbeats} heartbeats | "
              f"avg latency={avg_latency:.2f} ms avg bandwidth={avg_bandwidth:.2f} KB/s")

    # --- Views ---

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def is_finished(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.CANCELLED)

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def bandwidth_scale_max(self) -> Optional[float]:
        return self.calibrator.scale_max

    @property
    def elapsed_seconds(self) -> float:
        if self._t_start is None:
            return 0.0
        end = self._t_end if self._t_end is not None else self._clock()
        return end - self._t_start

    def view(self) -> ViewModel:
        return self.stats.view(self.is_running)

    def latency_gauge(self) -> GaugeReading:
        scale = self.config.latency_scale_max
        return project(self.view().display_latency, scale, latency_segments(scale))

    def bandwidth_gauge(self) -> GaugeReading:
        segments = bandwidth_segments(self.calibrator.scale_max)
        return project(self.view().display_bandwidth, self.calibrator.scale_or(), segments)

    def status(self) -> SessionStatus:
        finished = self.is_finished
        return SessionStatus(
            state=self.state,
            url=self.config.request.url,
            interval_seconds=self.config.interval_seconds,
            duration_seconds=self.config.duration_seconds,
            started_at=self.started_at.strftime("%H:%M:%S") if self.started_at else None,
            last_measured_at=self.samples[-1].timestamp if self.samples else None,
            elapsed_seconds=self.elapsed_seconds,
            heartbeat_count=len(self.samples),
            expected_heartbeats=self.config.expected_heartbeats,
            last_error=self.stats.last_error,
            avg_latency=self.stats.avg_latency if finished else None,
            avg_bandwidth=self.stats.avg_bandwidth if finished else None,
            failure_rate=self.stats.failure_rate,
        )


# =============================================================================
# SESSION MANAGER
# =============================================================================

class SessionManager:
    """
    Holds the current session and guarantees at most one running loop:
    starting a new session stops the previous one first.
    """

    def __init__(
        self,
        probe: Optional[ProbeFn] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._probe = probe
        self._clock = clock
        self._sleep = sleep
        self.current: Optional[MonitorSession] = None

    def start(self, config: SessionConfig) -> MonitorSession:
        """
        Stop the previous session and start a new one without waiting. The old
        session's in-flight probe may still be finishing when the new session
        fires its first probe; use replace() to rule that out.
        """
        if self.current is not None and self.current.is_running:
            print("[Monitor] Stopping previous session before starting a new one")
            self.current.stop()

        session = MonitorSession(config, probe=self._probe, clock=self._clock, sleep=self._sleep)
        self.current = session
        session.start()
        return session

    async def replace(self, config: SessionConfig) -> MonitorSession:
        """Stop the previous session, wait for its in-flight probe, then start."""
        previous = self.current
        if previous is not None and previous.is_running:
            print("[Monitor] Waiting for previous session to stop")
            previous.stop()
            await previous.wait()
        return self.start(config)

    def submit(self, url: str, interval=None, duration=None, latency_max=None, **kwargs) -> MonitorSession:
        """Validate raw form values, then start. A rejected submit leaves the current session alone."""
        config = build_session_config(url, interval, duration, latency_max, **kwargs)
        return self.start(config)

    def stop(self) -> None:
        if self.current is not None:
            self.current.stop()
