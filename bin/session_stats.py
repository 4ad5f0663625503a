#!/usr/bin/env python3
"""
FLOW-HB Session Statistics

Running and final aggregates over a session's heartbeats, and the
"current vs. average" selection the gauges display.

Averages fold failed heartbeats in as zero contributions (they stay in the
denominator). The success-only averages and failure rate are kept alongside
so callers can choose either view.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from single_probe import Sample


@dataclass(frozen=True)
class ViewModel:
    """Values a dashboard shows: current while running, averages after."""
    display_latency: float
    display_bandwidth: float
    is_running: bool


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class SessionStats:
    """Aggregator fed one heartbeat at a time by the scheduler."""

    def __init__(self):
        self._samples: list[Sample] = []
        self.current_latency = 0.0
        self.current_bandwidth = 0.0
        self.avg_latency = 0.0
        self.avg_bandwidth = 0.0
        self.finalized = False

    def add(self, sample: Sample) -> None:
        self._samples.append(sample)
        self.current_latency = sample.latency_ms
        self.current_bandwidth = sample.bandwidth_kbs

    def finalize(self) -> tuple[float, float]:
        """Compute final averages over every heartbeat; 0 when empty."""
        self.avg_latency = _mean([s.latency_ms for s in self._samples])
        self.avg_bandwidth = _mean([s.bandwidth_kbs for s in self._samples])
        self.finalized = True
        return self.avg_latency, self.avg_bandwidth

    @property
    def count(self) -> int:
        return len(self._samples)

    @property
    def failures(self) -> int:
        return sum(1 for s in self._samples if not s.ok)

    @property
    def failure_rate(self) -> float:
        if not self._samples:
            return 0.0
        return self.failures / len(self._samples)

    @property
    def success_avg_latency(self) -> float:
        return _mean([s.latency_ms for s in self._samples if s.ok])

    @property
    def success_avg_bandwidth(self) -> float:
        return _mean([s.bandwidth_kbs for s in self._samples if s.ok])

    @property
    def last_error(self) -> Optional[str]:
        return self._samples[-1].error if self._samples else None

    def view(self, is_running: bool) -> ViewModel:
        if is_running:
            return ViewModel(self.current_latency, self.current_bandwidth, True)
        return ViewModel(self.avg_latency, self.avg_bandwidth, False)
