#!/usr/bin/env python3
"""
FLOW-HB Gauge Segments

Derives the five colored threshold bands a gauge (and the heartbeat log)
uses for a given scale maximum.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence


class Severity(Enum):
    """Band severity, best to worst. Value is the display color."""
    GREAT = "#006400"
    GOOD = "#4CAF50"
    MODERATE = "#FFC107"
    SUBPAR = "#FF5722"
    POOR = "#D32F2F"

    @property
    def title(self) -> str:
        return "Sub Par" if self is Severity.SUBPAR else self.name.capitalize()


NEUTRAL_COLOR = "#666666"
BAND_FRACTIONS = (0.2, 0.4, 0.6, 0.8, 1.0)
SEVERITY_ORDER = (
    Severity.GREAT,
    Severity.GOOD,
    Severity.MODERATE,
    Severity.SUBPAR,
    Severity.POOR,
)


@dataclass(frozen=True)
class Segment:
    """One colored band; covers (previous upper_bound, upper_bound]."""
    upper_bound: float
    color: Severity
    label: str


def build_segments(
    scale_max: Optional[float],
    higher_is_better: bool = False,
    unit: Optional[str] = None,
) -> tuple[Segment, ...]:
    """
    Build the five bands at 20% steps of scale_max.

    Args:
        scale_max: Upper bound the gauge treats as 100%
        higher_is_better: Reverse severity so the top band is GREAT (bandwidth)
        unit: If given, labels show value ranges in that unit instead of percents

    Returns:
        Five segments ascending by upper_bound, or an empty tuple when
        scale_max is missing or not positive
    """
    if scale_max is None or scale_max <= 0:
        return ()

    severities = SEVERITY_ORDER[::-1] if higher_is_better else SEVERITY_ORDER

    segments = []
    lower = 0.0
    lower_pct = 0
    for fraction, severity in zip(BAND_FRACTIONS, severities):
        # Last band is pinned to scale_max to avoid float drift
        upper = scale_max if fraction == 1.0 else scale_max * fraction
        upper_pct = int(round(fraction * 100))
        if unit is None:
            label = f"{severity.title} ({lower_pct}-{upper_pct}%)"
        else:
            label = f"{severity.title} ({lower:.2f}-{upper:.2f} {unit})"
        segments.append(Segment(upper_bound=upper, color=severity, label=label))
        lower = upper
        lower_pct = upper_pct

    return tuple(segments)


def latency_segments(scale_max: float) -> tuple[Segment, ...]:
    return build_segments(scale_max)


def bandwidth_segments(scale_max: Optional[float]) -> tuple[Segment, ...]:
    return build_segments(scale_max, higher_is_better=True, unit="KB/s")


def segment_color(value: float, segments: Sequence[Segment]) -> str:
    """
    Color for a value: first band whose upper bound is >= value, else the
    last band. Neutral gray when there are no bands.
    """
    if not segments:
        return NEUTRAL_COLOR
    for segment in segments:
        if value <= segment.upper_bound:
            return segment.color.value
    return segments[-1].color.value


def log_line_colors(
    latency_ms: float,
    bandwidth_kbs: float,
    latency_bands: Sequence[Segment],
    bandwidth_bands: Sequence[Segment],
) -> tuple[str, str]:
    """(latency color, bandwidth color) for one heartbeat log line."""
    return segment_color(latency_ms, latency_bands), segment_color(bandwidth_kbs, bandwidth_bands)
