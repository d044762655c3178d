"""
Presentation interpolation.

When a new authoritative snapshot arrives, the position shown on screen and
the freshly corrected prediction disagree. Instead of jumping, the displayed
state carries the difference as an offset that decays to zero over a short
window. The estimator never sees these offsets.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from kinematics.estimator import normalize_heading, shortest_turn
from trackcore.config import SMOOTHING_DURATION_SECONDS
from trackcore.models import KinematicState


@dataclass(frozen=True)
class SmoothingOffsets:
    lat: float
    lon: float
    heading: float
    started_at: float
    duration: float = SMOOTHING_DURATION_SECONDS

    def decay_factor(self, now: float) -> float:
        """1 at the start of the window, easing out (cubic) to 0 at its end."""
        if self.duration <= 0:
            return 0.0
        t = (now - self.started_at) / self.duration
        if t <= 0.0:
            return 1.0
        if t >= 1.0:
            return 0.0
        ease = 1.0 - (1.0 - t) ** 3
        return 1.0 - ease

    def is_active(self, now: float) -> bool:
        return now - self.started_at < self.duration


def begin_smoothing(
    displayed: KinematicState,
    corrected: KinematicState,
    now: float,
    duration: float = SMOOTHING_DURATION_SECONDS,
) -> SmoothingOffsets:
    """Offsets that, added to `corrected`, reproduce what was on screen at `now`."""
    return SmoothingOffsets(
        lat=displayed.lat - corrected.lat,
        lon=displayed.lon - corrected.lon,
        heading=shortest_turn(corrected.heading, displayed.heading),
        started_at=now,
        duration=duration,
    )


def apply_smoothing(state: KinematicState, offsets: Optional[SmoothingOffsets], now: float) -> KinematicState:
    if offsets is None:
        return state
    factor = offsets.decay_factor(now)
    if factor == 0.0:
        return state
    return replace(
        state,
        lat=state.lat + offsets.lat * factor,
        lon=state.lon + offsets.lon * factor,
        heading=normalize_heading(state.heading + offsets.heading * factor),
    )


def quantize_altitude(altitude_ft: float, step: int = 25) -> int:
    """Display altitude rounded to the nearest `step` feet."""
    return int(round(altitude_ft / step) * step)
