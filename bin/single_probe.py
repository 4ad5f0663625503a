#!/usr/bin/env python3
"""
FLOW-HB Single Probe Module

Performs one timed HTTP request against the monitored endpoint and turns the
outcome into a heartbeat.

This module is used by monitor_session.py and provides:
- RequestSpec / Sample: fixed-shape request and heartbeat records
- fetch_via_http(): timed request that raises classified ProbeErrors
- probe_single(): core async probe, never raises for probe failures
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from http import HTTPStatus
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

import aiohttp

from bandwidth_calibrator import BandwidthCalibrator
from monitor_errors import NetworkError, ProbeError, ProbeTimeoutError, ProtocolError, ValidationError


DEFAULT_TIMEOUT_SEC = 3.0
DEFAULT_HEADERS = {"Accept": "application/json"}

# RFC 7230 token, used for methods and header names
TOKEN_RE = re.compile(r"[!#$%&'*+.^_`|~0-9A-Za-z-]+")


def _default_headers() -> Mapping[str, str]:
    return MappingProxyType(dict(DEFAULT_HEADERS))


@dataclass(frozen=True)
class RequestSpec:
    """Immutable description of the probe request."""
    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=_default_headers, hash=False)
    body: Optional[Union[str, bytes]] = None

    def __post_init__(self):
        method = (self.method or "GET").strip().upper()
        if not TOKEN_RE.fullmatch(method):
            raise ValidationError(f"Invalid HTTP method: {self.method!r}")
        for name, value in self.headers.items():
            if not TOKEN_RE.fullmatch(str(name)):
                raise ValidationError(f"Invalid header name: {name!r}")
            if any(c in str(value) for c in "\r\n\x00"):
                raise ValidationError(f"Header {name!r} must not contain control characters")
        object.__setattr__(self, "method", method)
        # Freeze the header map so a later form edit cannot leak in
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


@dataclass(frozen=True)
class Sample:
    """One heartbeat. latency_ms and bandwidth_kbs are 0 on failure."""
    timestamp: str
    latency_ms: float
    bandwidth_kbs: float
    error: Optional[str] = None
    device_info: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "latency": self.latency_ms,
            "bandwidth": self.bandwidth_kbs,
            "error": self.error,
            "deviceInfo": self.device_info,
        }


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def compute_bandwidth_kbs(size_bytes: int, latency_ms: float) -> float:
    """Payload bandwidth in KB/s; 0 when no time elapsed."""
    if latency_ms <= 0:
        return 0.0
    return size_bytes / (latency_ms / 1000) / 1024


async def fetch_via_http(
    session: aiohttp.ClientSession,
    request: RequestSpec,
    timeout: float,
) -> Tuple[bytes, float]:
    """
    Issue the request and read the full body.

    Args:
        session: aiohttp ClientSession
        request: Request to issue
        timeout: Total timeout in seconds

    Returns:
        Tuple of (body: bytes, latency_ms: float)

    Raises:
        ProbeTimeoutError: Timeout exceeded
        ProtocolError: Non-2xx status
        NetworkError: Any transport-level failure
    """
    t0 = time.monotonic()
    try:
        async with session.request(
            request.method,
            request.url,
            headers=dict(request.headers),
            data=request.body,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            if not 200 <= response.status < 300:
                try:
                    status_name = HTTPStatus(response.status).phrase
                except ValueError:
                    status_name = "Unknown"
                raise ProtocolError(f"HTTP {response.status}: {status_name}", response.status)

            content = await response.read()
            t1 = time.monotonic()

    # aiohttp timeouts subclass both; check timeout first
    except asyncio.TimeoutError:
        raise ProbeTimeoutError(f"Request Timeout after {timeout:g}s")
    except aiohttp.ClientError as e:
        raise NetworkError(f"Connection Error: {str(e) or type(e).__name__}")

    return content, (t1 - t0) * 1000


async def probe_single(
    session: aiohttp.ClientSession,
    request: RequestSpec,
    timeout: float = DEFAULT_TIMEOUT_SEC,
    calibrator: Optional[BandwidthCalibrator] = None,
    device_info: Optional[str] = None,
) -> Sample:
    """
    Probe the endpoint once and return the heartbeat.

    Failures never raise: they come back as a Sample with zero latency and
    bandwidth and the classified message in `error`. No retries happen here.

    Args:
        session: aiohttp ClientSession
        request: Request to issue
        timeout: Total timeout in seconds
        calibrator: Receives the raw payload size on success only
        device_info: Opaque device/location label copied onto the sample

    Returns:
        Sample for this probe
    """
    try:
        content, latency_ms = await fetch_via_http(session, request, timeout)
    except ProbeError as e:
        return Sample(
            timestamp=_timestamp(),
            latency_ms=0.0,
            bandwidth_kbs=0.0,
            error=str(e),
            device_info=device_info,
        )

    size_bytes = len(content)
    if calibrator is not None:
        calibrator.observe(size_bytes)

    return Sample(
        timestamp=_timestamp(),
        latency_ms=latency_ms,
        bandwidth_kbs=compute_bandwidth_kbs(size_bytes, latency_ms),
        device_info=device_info,
    )


# Standalone main for probing a single URL once
async def main_single():
    """
    Standalone main function for testing a single probe.
    Can be called directly for debugging/testing.
    """
    request = RequestSpec(url="https://jsonplaceholder.typicode.com/posts/1")
    calibrator = BandwidthCalibrator()

    async with aiohttp.ClientSession() as session:
        sample = await probe_single(session, request, calibrator=calibrator)

    if sample.error:
        print(f"Error: {sample.error}")
    else:
        print(f"Success: {request.method} {request.url}")
        print(f"  Latency:   {sample.latency_ms:.2f} ms")
        print(f"  Bandwidth: {sample.bandwidth_kbs:.2f} KB/s")
        print(f"  Scale max: {calibrator.scale_max:.2f} KB/s")


if __name__ == "__main__":
    asyncio.run(main_single())
