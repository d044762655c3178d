"""
Kinematic state estimation (dead reckoning).

Rates are derived from two consecutive authoritative snapshots and held
constant until the next one; prediction is a linear extrapolation of heading,
speed and altitude plus a great-circle projection of the position. Nothing in
here knows about rendering or smoothing: see kinematics.presentation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple, Union

from trackcore.config import KTS_TO_KM_PER_S, KTS_TO_MS, LNAV_MIN_OFFSET_KM
from trackcore.geodesy import destination_point
from trackcore.models import AircraftSnapshot, KinematicState, PhysicsRates, ZERO_RATES
from trackcore.path_utils import RouteLine

logger = logging.getLogger(__name__)

StateLike = Union[AircraftSnapshot, KinematicState]


def shortest_turn(start: float, end: float) -> float:
    """
    Signed smallest rotation from heading `start` to heading `end`, in (-180, 180].
    Positive is clockwise (right turn).
    """
    diff = (end - start + 180.0) % 360.0 - 180.0
    if diff == -180.0:
        return 180.0
    return diff


def normalize_heading(heading: float) -> float:
    result = heading % 360.0
    # -1e-15 % 360 rounds to 360.0
    return 0.0 if result >= 360.0 else result


def compute_rates(previous: StateLike, current: StateLike, dt_seconds: float) -> PhysicsRates:
    """
    Turn, climb and acceleration rates between two snapshots.
    Non-positive dt (out-of-order or duplicate batches) yields zero rates.
    """
    if dt_seconds <= 0:
        return ZERO_RATES

    turn = shortest_turn(previous.heading, current.heading) / dt_seconds
    climb = (current.altitude - previous.altitude) / dt_seconds  # ft/sec
    accel = (current.groundspeed - previous.groundspeed) / dt_seconds

    return PhysicsRates(turn_rate=turn, climb_rate=climb, accel_rate=accel)


def _extrapolate(last: StateLike, rates: PhysicsRates, elapsed: float) -> Tuple[float, float, float]:
    heading = normalize_heading(last.heading + rates.turn_rate * elapsed)
    speed = max(0.0, last.groundspeed + rates.accel_rate * elapsed)
    altitude = last.altitude + rates.climb_rate * elapsed
    return heading, speed, altitude


def predict_position(lat: float, lon: float, heading: float, speed_kts: float, time_sec: float) -> Tuple[float, float]:
    """Straight great-circle projection at constant speed and heading."""
    distance_m = speed_kts * KTS_TO_MS * time_sec
    return destination_point(lat, lon, heading, distance_m / 1000.0)


def predict_state(last: StateLike, rates: PhysicsRates, elapsed_seconds: float) -> KinematicState:
    """
    Dead-reckon `last` forward by elapsed_seconds using constant rates.

    Heading wraps into [0, 360), speed never goes negative, altitude is not
    clamped. The position is projected along the predicted heading at the
    predicted speed.
    """
    heading, speed, altitude = _extrapolate(last, rates, elapsed_seconds)
    lat, lon = predict_position(last.lat, last.lon, heading, speed, elapsed_seconds)
    return KinematicState(lat=lat, lon=lon, heading=heading, groundspeed=speed, altitude=altitude)


@dataclass(frozen=True)
class LnavContext:
    """
    Lateral-navigation state: where the aircraft sits on a resolved route
    (distance along it at the reference time) and its lateral offset from the
    centerline, positive to the right.
    """
    route: RouteLine
    start_distance_km: float
    offset_km: float = 0.0

    @classmethod
    def engage(cls, path: Sequence[Tuple[float, float]], position: Tuple[float, float]) -> Optional[LnavContext]:
        """Snap `position` onto `path`. Returns None when the path is unusable."""
        try:
            route = RouteLine(path)
            along, offset = route.locate(position)
        except ValueError as exc:
            logger.debug(f"Cannot engage LNAV: {exc}")
            return None
        return cls(route=route, start_distance_km=along, offset_km=offset)

    def advanced(self, distance_km: float) -> LnavContext:
        return replace(self, start_distance_km=self.start_distance_km + distance_km)


def predict_position_on_route(
    lnav: LnavContext,
    speed_kts: float,
    time_elapsed_sec: float,
) -> Tuple[float, float, float]:
    """
    Position after flying `time_elapsed_sec` along the route at `speed_kts`,
    keeping the lateral offset. Returns (lat, lon, route bearing).
    Beyond the end of the route the terminal point is returned.
    """
    route = lnav.route
    travel_km = speed_kts * KTS_TO_KM_PER_S * time_elapsed_sec
    distance_km = lnav.start_distance_km + travel_km

    if distance_km >= route.length_km:
        lat, lon = route.along(route.length_km)
        return lat, lon, route.bearing_at(route.length_km)

    lat, lon = route.along(distance_km)
    bearing = route.bearing_at(distance_km)

    if abs(lnav.offset_km) < LNAV_MIN_OFFSET_KM:
        return lat, lon, bearing

    side = 90.0 if lnav.offset_km > 0 else -90.0
    lat, lon = destination_point(lat, lon, bearing + side, abs(lnav.offset_km))
    return lat, lon, bearing


def predict_state_on_route(
    last: StateLike,
    rates: PhysicsRates,
    lnav: LnavContext,
    elapsed_seconds: float,
) -> KinematicState:
    """
    Route-constrained variant of predict_state. Progress along the route uses
    the last reported ground speed; heading follows the route.
    """
    _, speed, altitude = _extrapolate(last, rates, elapsed_seconds)
    lat, lon, bearing = predict_position_on_route(lnav, last.groundspeed, elapsed_seconds)
    return KinematicState(
        lat=lat,
        lon=lon,
        heading=normalize_heading(bearing),
        groundspeed=speed,
        altitude=altitude,
    )
