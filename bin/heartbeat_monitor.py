#!/usr/bin/env python3
"""
FLOW-HB Heartbeat Monitor (command line)

Probes a single HTTP endpoint at a fixed interval for a fixed duration and
reports per-heartbeat latency and payload bandwidth, then the session
averages.

Examples:
  python heartbeat_monitor.py --url https://jsonplaceholder.typicode.com/posts/1
  python heartbeat_monitor.py --url https://example.com/api --interval 5 --duration 60 \\
      --header "Accept: application/json" --export heartbeats.json
  python heartbeat_monitor.py --config monitor.json

Author: FLOW-HB Team
Version: 1.0.0
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from tqdm.asyncio import tqdm

from gauge_segments import bandwidth_segments, latency_segments, log_line_colors
from heartbeat_export import export_heartbeats
from monitor_errors import ValidationError
from monitor_session import (
    DEFAULT_DURATION_SEC,
    DEFAULT_INTERVAL_SEC,
    DEFAULT_LATENCY_MAX_MS,
    MonitorSession,
    SessionConfig,
    SessionStatus,
    build_session_config,
)
from single_probe import DEFAULT_HEADERS, DEFAULT_TIMEOUT_SEC, Sample


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class Config:
    """Command line configuration. Numeric fields stay raw until validated."""
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HEADERS))
    body: Optional[str] = None

    interval: Any = DEFAULT_INTERVAL_SEC
    duration: Any = DEFAULT_DURATION_SEC
    latency_max: Any = DEFAULT_LATENCY_MAX_MS
    timeout_sec: float = DEFAULT_TIMEOUT_SEC

    device: Optional[str] = None

    # Output options
    export_path: Optional[str] = None
    report_path: Optional[str] = None
    progress: bool = True

    def to_session_config(self) -> SessionConfig:
        """Validate into a SessionConfig. Raises ValidationError."""
        return build_session_config(
            self.url,
            interval=self.interval,
            duration=self.duration,
            latency_max=self.latency_max,
            method=self.method,
            headers=self.headers,
            body=self.body,
            timeout=self.timeout_sec,
            device_info=self.device,
        )


def parse_header(raw: str) -> tuple[str, str]:
    """Parse 'Name: value' into a header pair."""
    name, sep, value = raw.partition(":")
    if not sep or not name.strip():
        raise ValidationError(f"Header must look like 'Name: value', got {raw!r}")
    return name.strip(), value.strip()


def parse_args(argv: Optional[list[str]] = None) -> Config:
    """Parse command line arguments or JSON config file."""
    p = argparse.ArgumentParser(
        description="FLOW-HB endpoint heartbeat monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python heartbeat_monitor.py --config monitor.json
  python heartbeat_monitor.py --url https://example.com/api --interval 2 --duration 30
"""
    )

    p.add_argument("--config", type=str, help="Path to JSON config file")

    # Request
    p.add_argument("--url", type=str, help="Endpoint to probe")
    p.add_argument("--method", type=str, default="GET")
    p.add_argument("--header", dest="headers", action="append", default=None,
                   help="Request header 'Name: value' (repeatable)")
    p.add_argument("--body", type=str, default=None)

    # Sampling
    p.add_argument("--interval", type=str, default=str(DEFAULT_INTERVAL_SEC),
                   help="Seconds between heartbeats (1-10)")
    p.add_argument("--duration", type=str, default=str(DEFAULT_DURATION_SEC),
                   help="Total monitoring time in seconds")
    p.add_argument("--latency_max", type=str, default=f"{DEFAULT_LATENCY_MAX_MS:g}",
                   help="Latency gauge scale in ms (1-1000)")
    p.add_argument("--timeout", dest="timeout_sec", type=float, default=DEFAULT_TIMEOUT_SEC)

    p.add_argument("--device", type=str, default=None, help="Device/location label")

    # Output
    p.add_argument("--export", dest="export_path", type=str, default=None,
                   help="Write heartbeat log (.json, .csv or .parquet)")
    p.add_argument("--report", dest="report_path", type=str, default=None,
                   help="Write JSON session overview")
    p.add_argument("--no_progress", action="store_true")

    args = p.parse_args(argv)

    # Load from JSON config if provided
    if args.config:
        cfg_path = Path(args.config)
        with cfg_path.open("r") as f:
            data = json.load(f)

        return Config(
            url=data.get("url", ""),
            method=data.get("method", "GET"),
            headers=dict(data.get("headers", DEFAULT_HEADERS)),
            body=data.get("body"),
            interval=data.get("interval", DEFAULT_INTERVAL_SEC),
            duration=data.get("duration", DEFAULT_DURATION_SEC),
            latency_max=data.get("latency_max", DEFAULT_LATENCY_MAX_MS),
            timeout_sec=float(data.get("timeout", DEFAULT_TIMEOUT_SEC)),
            device=data.get("device"),
            export_path=data.get("export"),
            report_path=data.get("report"),
            progress=bool(data.get("progress", True)),
        )

    if not args.url:
        p.error("--url is required unless --config is provided")

    headers = dict(DEFAULT_HEADERS)
    if args.headers:
        headers = dict(parse_header(h) for h in args.headers)

    return Config(
        url=args.url,
        method=args.method,
        headers=headers,
        body=args.body,
        interval=args.interval,
        duration=args.duration,
        latency_max=args.latency_max,
        timeout_sec=args.timeout_sec,
        device=args.device,
        export_path=args.export_path,
        report_path=args.report_path,
        progress=not args.no_progress,
    )


# =============================================================================
# REPORTING
# =============================================================================

def format_heartbeat(sample: Sample, session: MonitorSession) -> str:
    """One log line per heartbeat, with the segment colors it falls in."""
    if sample.error:
        return f"[{sample.timestamp}] ERROR {sample.error}"
    lat_color, bw_color = log_line_colors(
        sample.latency_ms,
        sample.bandwidth_kbs,
        latency_segments(session.config.latency_scale_max),
        bandwidth_segments(session.bandwidth_scale_max),
    )
    return (f"[{sample.timestamp}] Latency: {sample.latency_ms:.2f} ms ({lat_color}) | "
            f"Bandwidth: {sample.bandwidth_kbs:.2f} KB/s ({bw_color})")


def write_overview(*, session: MonitorSession, path: str) -> str:
    """Write JSON overview report."""
    status = session.status()
    cfg = session.config

    report = {
        "flow_hb_version": "1.0.0",
        "script_inputs": {
            "url": cfg.request.url,
            "method": cfg.request.method,
            "headers": dict(cfg.request.headers),
            "interval_sec": cfg.interval_seconds,
            "duration_sec": cfg.duration_seconds,
            "latency_max_ms": cfg.latency_scale_max,
            "timeout_sec": cfg.timeout_seconds,
            "device": cfg.device_info,
        },
        "summary": {
            "state": status.state.name,
            "started_at": status.started_at,
            "last_measured_at": status.last_measured_at,
            "elapsed_sec": round(status.elapsed_seconds, 3),
            "heartbeats": status.heartbeat_count,
            "expected_heartbeats": status.expected_heartbeats,
            "avg_latency_ms": status.avg_latency,
            "avg_bandwidth_kbs": status.avg_bandwidth,
            "success_avg_latency_ms": session.stats.success_avg_latency,
            "success_avg_bandwidth_kbs": session.stats.success_avg_bandwidth,
            "failure_rate_percent": round(status.failure_rate * 100.0, 2),
            "bandwidth_scale_max_kbs": session.bandwidth_scale_max,
        },
        "heartbeats": [s.to_dict() for s in session.samples],
        "timestamp_local": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime()),
    }

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w") as f:
        json.dump(report, f, indent=2)

    return str(out.resolve())


def print_summary(status: SessionStatus, session: MonitorSession) -> None:
    print("\n" + "=" * 72)
    print("FINAL SUMMARY")
    print("=" * 72)
    print(f"URL:                   {status.url}")
    print(f"State:                 {status.state.name}")
    print(f"Interval:              {status.interval_seconds} seconds")
    print(f"Duration:              {status.duration_seconds} seconds")
    print(f"Elapsed time:          {status.elapsed_seconds:.2f}s")
    print(f"Total heartbeats:      {status.heartbeat_count} / {status.expected_heartbeats}")
    print(f"Failed heartbeats:     {session.stats.failures} ({status.failure_rate * 100:.2f}%)")
    print(f"Average latency:       {status.avg_latency or 0.0:.2f} ms")
    print(f"Average bandwidth:     {status.avg_bandwidth or 0.0:.2f} KB/s")
    if session.stats.failures:
        print(f"Avg latency (ok only): {session.stats.success_avg_latency:.2f} ms")


# =============================================================================
# MAIN
# =============================================================================

async def run_monitor(cfg: Config) -> MonitorSession:
    """Run one session to completion or until interrupted."""
    session_config = cfg.to_session_config()
    session = MonitorSession(session_config)

    pbar = None
    if cfg.progress:
        pbar = tqdm(total=session_config.expected_heartbeats, desc="Heartbeats", unit="hb")

    def on_sample(sample: Sample) -> None:
        line = format_heartbeat(sample, session)
        if pbar is not None:
            pbar.write(line)
            pbar.update(1)
        else:
            print(line)

    session.on_sample(on_sample)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, session.stop)

    try:
        await session.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
        if pbar is not None:
            pbar.close()

    return session


async def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    print("=" * 72)
    print("FLOW-HB Heartbeat Monitor")
    print("=" * 72)

    try:
        cfg = parse_args(argv)
        session = await run_monitor(cfg)
    except ValidationError as e:
        print(f"[Config] Error: {e}")
        return 2

    print_summary(session.status(), session)

    if cfg.export_path:
        try:
            exported = export_heartbeats(session.samples, cfg.export_path)
            print(f"[Export] Heartbeats: {exported}")
        except (ValueError, OSError) as e:
            print(f"[Export] Failed: {e}")

    if cfg.report_path:
        try:
            overview = write_overview(session=session, path=cfg.report_path)
            print(f"[Report] Overview: {overview}")
        except OSError as e:
            print(f"[Report] Failed: {e}")

    print("=" * 72)
    return 0


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
