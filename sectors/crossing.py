"""
Airspace crossing prediction.

For each active sector the aircraft's position now and LOOKAHEAD_SECONDS
ahead are tested for containment; a change between the two means the
aircraft is entering or leaving, and the straight chord between the two
positions is intersected with the sector boundary to time the crossing.
Results for several sectors are then composed into one status.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

from kinematics.estimator import LnavContext, predict_position, predict_position_on_route
from sectors.sectorset import SectorPolygon
from trackcore.config import KTS_TO_KM_PER_MIN, LOOKAHEAD_SECONDS, MIN_TRACKED_SPEED_KTS
from trackcore.geodesy import haversine_km, line_intersect_polygon, point_in_polygon
from trackcore.models import (
    AircraftSnapshot,
    CrossingState,
    CrossingStatus,
    KinematicState,
    OUTSIDE,
)

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]
StateLike = Union[AircraftSnapshot, KinematicState]
SectorLike = Union[SectorPolygon, BaseGeometry]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def minutes_to_boundary(
    current: Coordinate,
    future: Coordinate,
    polygon: BaseGeometry,
    speed_kts: float,
) -> Optional[int]:
    """
    Whole minutes until the straight chord current -> future first meets the
    polygon boundary, at speed_kts. None when speed is not positive or the
    chord never meets the boundary.
    """
    speed_km_min = speed_kts * KTS_TO_KM_PER_MIN
    if speed_km_min <= 0:
        return None

    try:
        intersects = line_intersect_polygon([current, future], polygon)
    except (ValueError, ShapelyError) as exc:
        logger.debug(f"Boundary intersection failed: {exc}")
        return None
    if not intersects:
        return None

    dist_km = min(haversine_km(current[0], current[1], lat, lon) for lat, lon in intersects)
    return _round_half_up(dist_km / speed_km_min)


def _geometry(sector: SectorLike) -> BaseGeometry:
    return sector.geometry if isinstance(sector, SectorPolygon) else sector


def _sector_id(sector: SectorLike) -> Optional[str]:
    return sector.id if isinstance(sector, SectorPolygon) else None


def classify(
    state: StateLike,
    sector: Optional[SectorLike],
    lnav: Optional[LnavContext] = None,
    lookahead_seconds: float = LOOKAHEAD_SECONDS,
    min_speed_kts: float = MIN_TRACKED_SPEED_KTS,
) -> CrossingStatus:
    """
    Relationship of one aircraft to one sector: inside, outside, entering or
    leaving, with minutes until the crossing for the latter two.

    Aircraft slower than min_speed_kts (taxiing, parked) are always outside.
    """
    if sector is None or not state.groundspeed or state.groundspeed < min_speed_kts:
        return OUTSIDE

    polygon = _geometry(sector)
    sector_id = _sector_id(sector)
    current = (state.lat, state.lon)

    inside_now = point_in_polygon(current, polygon)

    if lnav is not None:
        lat, lon, _ = predict_position_on_route(lnav, state.groundspeed, lookahead_seconds)
        future = (lat, lon)
    else:
        future = predict_position(state.lat, state.lon, state.heading, state.groundspeed, lookahead_seconds)

    inside_future = point_in_polygon(future, polygon)

    # The crossing search always uses the straight chord now -> future, even
    # when the future point came from the route-constrained prediction.
    if inside_now and not inside_future:
        return CrossingStatus(
            state=CrossingState.LEAVING,
            minutes_until_event=minutes_to_boundary(current, future, polygon, state.groundspeed),
            active_sector=sector_id,
        )
    if not inside_now and inside_future:
        return CrossingStatus(
            state=CrossingState.ENTERING,
            minutes_until_event=minutes_to_boundary(current, future, polygon, state.groundspeed),
            active_sector=sector_id,
        )
    if inside_now:
        return CrossingStatus(state=CrossingState.INSIDE, active_sector=sector_id)
    return OUTSIDE


def compose_statuses(results: Iterable[Tuple[str, CrossingStatus]]) -> CrossingStatus:
    """
    Combine per-sector results (in active-selection order) into one status.

    leaving one sector + entering another -> transition (leaving -> entering,
    timed by the leaving sector); otherwise inside > leaving > entering >
    outside. Within each category the first sector wins.
    """
    inside_sec: Optional[Tuple[str, CrossingStatus]] = None
    leaving_sec: Optional[Tuple[str, CrossingStatus]] = None
    entering_sec: Optional[Tuple[str, CrossingStatus]] = None

    for sector_id, status in results:
        if status.state is CrossingState.INSIDE and inside_sec is None:
            inside_sec = (sector_id, status)
        elif status.state is CrossingState.LEAVING and leaving_sec is None:
            leaving_sec = (sector_id, status)
        elif status.state is CrossingState.ENTERING and entering_sec is None:
            entering_sec = (sector_id, status)

    if leaving_sec and entering_sec and leaving_sec[0] != entering_sec[0]:
        return CrossingStatus(
            state=CrossingState.TRANSITION,
            minutes_until_event=leaving_sec[1].minutes_until_event,
            active_sector=leaving_sec[0],
            secondary_sector=entering_sec[0],
        )
    for picked in (inside_sec, leaving_sec, entering_sec):
        if picked:
            sector_id, status = picked
            return CrossingStatus(
                state=status.state,
                minutes_until_event=status.minutes_until_event,
                active_sector=sector_id,
            )
    return OUTSIDE


def classify_against(
    state: StateLike,
    sectors: Sequence[SectorPolygon],
    lnav: Optional[LnavContext] = None,
    lookahead_seconds: float = LOOKAHEAD_SECONDS,
    min_speed_kts: float = MIN_TRACKED_SPEED_KTS,
) -> CrossingStatus:
    """Classify against every active sector and compose the results."""
    results: List[Tuple[str, CrossingStatus]] = []
    for sector in sectors:
        results.append(
            (sector.id, classify(state, sector, lnav, lookahead_seconds, min_speed_kts))
        )
    return compose_statuses(results)
