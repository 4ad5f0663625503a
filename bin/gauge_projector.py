#!/usr/bin/env python3
"""
FLOW-HB Gauge Projector

Maps a scalar reading onto a half-circle gauge: needle angle, active color,
and the boundary marker positions drawn around the arc.

The gauge spans the 9 o'clock point (fraction 0) through 12 to 3 o'clock
(fraction 1). Needle rotation is expressed two ways:
- angle_degrees: CSS-style rotation, -180 (empty) to 0 (full)
- angle_radians: canvas arc angle, pi (empty) to 2*pi (full)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from gauge_segments import Segment, segment_color


# Original dashboard geometry (300x200 canvas)
GAUGE_CENTER = (150.0, 160.0)
GAUGE_RADIUS = 120.0
MARKER_OFFSET = 20.0


@dataclass(frozen=True)
class GaugeReading:
    """Everything a renderer needs for one gauge."""
    value: float
    scale_max: float
    fraction: float
    angle_degrees: float
    angle_radians: float
    color: str

    @property
    def display_value(self) -> str:
        return format_value(self.value)


@dataclass(frozen=True)
class Marker:
    """Boundary label placed just outside the arc."""
    value: float
    label: str
    x: float
    y: float


def gauge_fraction(value: float, scale_max: float) -> float:
    """Needle fraction in [0, 1]. Values above scale pin to 1."""
    if scale_max <= 0:
        return 0.0
    return max(0.0, min(value / scale_max, 1.0))


def needle_angle(value: float, scale_max: float) -> float:
    """Needle rotation in degrees, -180 at zero up to 0 at full scale."""
    return -180.0 + gauge_fraction(value, scale_max) * 180.0


def project(value: float, scale_max: float, segments: Sequence[Segment]) -> GaugeReading:
    """
    Project a reading onto the gauge.

    Only the needle is clamped; `value` is carried through unchanged so the
    numeric readout can exceed the scale.
    """
    fraction = gauge_fraction(value, scale_max)
    return GaugeReading(
        value=value,
        scale_max=scale_max,
        fraction=fraction,
        angle_degrees=-180.0 + fraction * 180.0,
        angle_radians=math.pi + fraction * math.pi,
        color=segment_color(value, segments),
    )


def format_value(value: float) -> str:
    return f"{value:.2f}"


def format_marker(marker: float, two_decimals: bool) -> str:
    """Bandwidth markers keep two decimals; latency markers are rounded."""
    return f"{marker:.2f}" if two_decimals else str(int(round(marker)))


def zone_stops(segments: Sequence[Segment], scale_max: float) -> list[tuple[float, str]]:
    """
    (fraction, color) pairs for drawing the colored arc, each stop being the
    end of a zone. Matches the ECharts gauge axisLine color format.
    """
    if scale_max <= 0:
        return []
    return [(gauge_fraction(s.upper_bound, scale_max), s.color.value) for s in segments]


def marker_positions(
    segments: Sequence[Segment],
    scale_max: float,
    two_decimals: bool = False,
    center: tuple[float, float] = GAUGE_CENTER,
    radius: float = GAUGE_RADIUS,
) -> list[Marker]:
    """Boundary labels at each segment's upper bound."""
    if not segments or scale_max <= 0:
        return []

    cx, cy = center
    text_radius = radius + MARKER_OFFSET
    markers = []
    for segment in segments:
        angle = math.pi + gauge_fraction(segment.upper_bound, scale_max) * math.pi
        markers.append(Marker(
            value=segment.upper_bound,
            label=format_marker(segment.upper_bound, two_decimals),
            x=cx + text_radius * math.cos(angle),
            y=cy + text_radius * math.sin(angle),
        ))
    return markers
