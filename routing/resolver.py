"""
Flight-plan route resolution.

Turns a route string such as "RIC1/34L DCT BOREE H65 TESAT ARBEY2/16R" plus
departure/arrival positions into:
  * a dense great-circle path (rendering, deviation, LNAV prediction),
  * key waypoints with their role (airport/sid/star/enroute/airway),
  * per-leg airway labels (midpoint + bearing).

Resolution is best effort: unknown tokens, missing procedures and degenerate
geometry are skipped, never raised.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from routing.navdata import AirwayFix, NavPoint, NavRegistry
from trackcore.config import ROUTE_SEGMENT_POINTS
from trackcore.geodesy import great_circle_path, initial_bearing_deg, midpoint

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]

ROLE_AIRPORT = "airport"
ROLE_SID = "sid"
ROLE_STAR = "star"
ROLE_ENROUTE = "enroute"
ROLE_AIRWAY = "airway"


@dataclass(slots=True, frozen=True)
class RouteWaypoint:
    lat: float
    lon: float
    name: str
    role: str


@dataclass(slots=True, frozen=True)
class RouteLabel:
    lat: float
    lon: float
    text: str
    bearing: float


@dataclass(frozen=True)
class RouteResolutionResult:
    path: Tuple[Coordinate, ...] = ()
    waypoints: Tuple[RouteWaypoint, ...] = ()
    labels: Tuple[RouteLabel, ...] = ()


def _is_valid_point(p) -> bool:
    return (
        p is not None
        and len(p) == 2
        and all(isinstance(v, (int, float)) and math.isfinite(v) for v in p)
    )


def tokenize_route(route: str) -> List[str]:
    """Upper-cased, whitespace-split tokens with DCT removed."""
    return [tok for tok in (route or "").upper().split() if tok != "DCT"]


def _planar_distance(p1: Coordinate, p2: Coordinate) -> float:
    # Plain degree-space distance, only used to pick airway indices.
    return math.sqrt((p1[0] - p2[0]) ** 2 + (p1[1] - p2[1]) ** 2)


def _nearest_indices(fixes: Sequence[AirwayFix], entry: Coordinate, exit_: Coordinate) -> Tuple[int, int]:
    start_index = end_index = -1
    min_start = min_end = math.inf
    for j, fix in enumerate(fixes):
        p = fix.coordinate
        if not _is_valid_point(p):
            continue
        d_start = _planar_distance(p, entry)
        d_end = _planar_distance(p, exit_)
        if d_start < min_start:
            min_start, start_index = d_start, j
        if d_end < min_end:
            min_end, end_index = d_end, j
    return start_index, end_index


def _leg_label(p1: Coordinate, p2: Coordinate, text: str) -> Optional[RouteLabel]:
    """Label at the great-circle midpoint, oriented from the midpoint toward the leg end."""
    if not (_is_valid_point(p1) and _is_valid_point(p2)):
        return None
    if p1[0] == p2[0] and p1[1] == p2[1]:
        return None
    try:
        mid_lat, mid_lon = midpoint(p1[0], p1[1], p2[0], p2[1])
        bearing = initial_bearing_deg(mid_lat, mid_lon, p2[0], p2[1])
    except (ValueError, ZeroDivisionError) as exc:
        logger.debug(f"Skipping label {text}: {exc}")
        return None
    if not (math.isfinite(mid_lat) and math.isfinite(mid_lon) and math.isfinite(bearing)):
        return None
    return RouteLabel(lat=mid_lat, lon=mid_lon, text=text, bearing=bearing)


def _procedure_token(token: str) -> Tuple[str, str]:
    name, _, runway = token.partition("/")
    return name, runway


def densify(key_points: Sequence[Coordinate], segment_points: int = ROUTE_SEGMENT_POINTS) -> List[Coordinate]:
    """
    Concatenate great-circle sub-paths between consecutive key points, sharing
    endpoints. Coincident neighbours are skipped.
    """
    clean = [p for p in key_points if _is_valid_point(p)]
    if len(clean) < 2:
        return list(clean)

    full_path: List[Coordinate] = []
    for p1, p2 in zip(clean[:-1], clean[1:]):
        if p1[0] == p2[0] and p1[1] == p2[1]:
            continue
        segment = great_circle_path(p1, p2, segment_points)
        if not segment:
            logger.debug(f"No great circle between {p1} and {p2}")
            continue
        if not full_path:
            full_path.extend(segment)
        elif full_path[-1] == segment[0]:
            full_path.extend(segment[1:])
        else:
            full_path.extend(segment)
    return [p for p in full_path if _is_valid_point(p)]


def resolve_route(
    route: str,
    start: Optional[Coordinate],
    end: Optional[Coordinate],
    registry: NavRegistry,
    departure_id: str = "",
    arrival_id: str = "",
    segment_points: int = ROUTE_SEGMENT_POINTS,
) -> RouteResolutionResult:
    key_points: List[Coordinate] = []
    markers: List[RouteWaypoint] = []
    labels: List[RouteLabel] = []

    departure_id = (departure_id or "").upper()
    arrival_id = (arrival_id or "").upper()

    # 1. Departure seed
    if _is_valid_point(start):
        key_points.append(tuple(start))
        markers.append(RouteWaypoint(start[0], start[1], departure_id, ROLE_AIRPORT))

    tokens = tokenize_route(route)
    if not tokens:
        if _is_valid_point(end):
            key_points.append(tuple(end))
            markers.append(RouteWaypoint(end[0], end[1], arrival_id, ROLE_AIRPORT))
        return RouteResolutionResult(
            path=tuple(densify(key_points, segment_points)),
            waypoints=tuple(markers),
        )

    # 2. SID replaces the departure seed
    if "/" in tokens[0]:
        proc_name, runway = _procedure_token(tokens[0])
        sid_points = [p for p in registry.sid(departure_id, proc_name, runway) if _is_valid_point(p.coordinate)]
        if sid_points:
            if key_points:
                key_points.pop()
                markers = [m for m in markers if m.role != ROLE_AIRPORT]
            for p in sid_points:
                key_points.append(p.coordinate)
                markers.append(RouteWaypoint(p.lat, p.lon, p.name or proc_name, ROLE_SID))
            tokens.pop(0)
        else:
            logger.debug(f"No SID {proc_name} runway {runway} at {departure_id}")

    # 3. STAR is held aside and appended last
    star_points: List[NavPoint] = []
    if tokens and "/" in tokens[-1]:
        proc_name, runway = _procedure_token(tokens[-1])
        star_points = [p for p in registry.star(arrival_id, proc_name, runway) if _is_valid_point(p.coordinate)]
        if star_points:
            tokens.pop()
        else:
            logger.debug(f"No STAR {proc_name} runway {runway} at {arrival_id}")

    # 4. Enroute tokens
    for i, token in enumerate(tokens):
        point = registry.lookup_point(token)
        if point is not None:
            if _is_valid_point(point):
                key_points.append(tuple(point))
                markers.append(RouteWaypoint(point[0], point[1], token, ROLE_ENROUTE))
            continue

        fixes = registry.airway(token)
        if fixes is None:
            logger.debug(f"Unknown route token {token}")
            continue

        prev_loc = key_points[-1] if key_points else None
        next_loc: Optional[Coordinate] = None
        if i < len(tokens) - 1:
            next_loc = registry.lookup_point(tokens[i + 1])
        elif star_points:
            next_loc = star_points[0].coordinate
        elif _is_valid_point(end):
            next_loc = tuple(end)

        if not (_is_valid_point(prev_loc) and _is_valid_point(next_loc)):
            logger.debug(f"Airway {token} has no usable entry/exit anchor")
            continue

        start_index, end_index = _nearest_indices(fixes, prev_loc, next_loc)
        if start_index == -1 or end_index == -1:
            continue

        if start_index == end_index:
            # One-hop pass-through: label the direct leg only
            label = _leg_label(prev_loc, next_loc, token)
            if label:
                labels.append(label)
            continue

        step = 1 if start_index <= end_index else -1
        seg_start = prev_loc
        for k in range(start_index + step, end_index, step):
            fix = fixes[k]
            if not _is_valid_point(fix.coordinate):
                continue
            seg_end = fix.coordinate
            label = _leg_label(seg_start, seg_end, token)
            if label:
                labels.append(label)
            key_points.append(seg_end)
            if fix.ident:
                markers.append(RouteWaypoint(fix.lat, fix.lon, fix.ident, ROLE_AIRWAY))
            seg_start = seg_end

        label = _leg_label(seg_start, next_loc, token)
        if label:
            labels.append(label)

    # 5. STAR, then the arrival unless it is already the last point
    for p in star_points:
        key_points.append(p.coordinate)
        markers.append(RouteWaypoint(p.lat, p.lon, p.name, ROLE_STAR))

    if _is_valid_point(end):
        last = key_points[-1] if key_points else None
        if last is None or last[0] != end[0] or last[1] != end[1]:
            key_points.append(tuple(end))
        markers.append(RouteWaypoint(end[0], end[1], arrival_id, ROLE_AIRPORT))

    # 6. Densify
    return RouteResolutionResult(
        path=tuple(densify(key_points, segment_points)),
        waypoints=tuple(markers),
        labels=tuple(labels),
    )


@dataclass
class RouteResolver:
    """
    Resolver bound to one navigation registry, memoising results by
    (route string, departure id, arrival id). Build a new resolver when the
    registry is reloaded.
    """
    registry: NavRegistry
    segment_points: int = ROUTE_SEGMENT_POINTS
    max_cache: int = 512
    _cache: Dict[Tuple[str, str, str], RouteResolutionResult] = field(default_factory=dict, repr=False)

    def resolve(self, route: str, departure_id: str, arrival_id: str) -> RouteResolutionResult:
        key = (route or "", (departure_id or "").upper(), (arrival_id or "").upper())
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        start = self.registry.airport(key[1])
        end = self.registry.airport(key[2])
        result = resolve_route(
            key[0], start, end, self.registry,
            departure_id=key[1], arrival_id=key[2],
            segment_points=self.segment_points,
        )
        if len(self._cache) >= self.max_cache:
            self._cache.pop(next(iter(self._cache)))
        self._cache[key] = result
        logger.debug(
            f"Resolved route {key[1]}->{key[2]}: {len(result.waypoints)} waypoints, "
            f"{len(result.path)} path points, {len(result.labels)} labels"
        )
        return result

    def clear(self) -> None:
        self._cache.clear()
