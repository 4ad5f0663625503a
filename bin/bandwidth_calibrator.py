#!/usr/bin/env python3
"""
FLOW-HB Bandwidth Calibrator

Tracks the bandwidth gauge's upper bound from observed payload sizes so the
scale needs no user configuration. The bound only ever grows within a
session, which keeps the gauge from jittering when payloads shrink.
"""

from __future__ import annotations

from typing import Optional


TARGET_TIME_SEC = 0.1       # "bandwidth if the payload arrived in 100ms"
HEADROOM = 2.0
MIN_SCALE_KBS = 1.0
UNCALIBRATED_SCALE_KBS = 10.0


class BandwidthCalibrator:
    """Monotone upper bound for the bandwidth gauge, in KB/s."""

    def __init__(self, target_time_sec: float = TARGET_TIME_SEC, headroom: float = HEADROOM):
        self.target_time_sec = target_time_sec
        self.headroom = headroom
        self._scale_max: Optional[float] = None

    def candidate(self, size_bytes: int) -> float:
        return (size_bytes / self.target_time_sec) / 1024 * self.headroom

    def observe(self, size_bytes: int) -> float:
        """Fold in one successful payload size; returns the new bound."""
        self._scale_max = max(self._scale_max or 0.0, self.candidate(size_bytes), MIN_SCALE_KBS)
        return self._scale_max

    def reset(self) -> None:
        self._scale_max = None

    @property
    def scale_max(self) -> Optional[float]:
        """Current bound, or None before the first successful probe."""
        return self._scale_max

    def scale_or(self, default: float = UNCALIBRATED_SCALE_KBS) -> float:
        return self._scale_max if self._scale_max is not None else default
