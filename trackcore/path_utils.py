from __future__ import annotations

import math
from typing import Dict, List, Sequence, Tuple

import numpy as np

from trackcore.geodesy import (
    EARTH_RADIUS_KM,
    NM_PER_KM,
    destination_point,
    haversine_km,
    initial_bearing_deg,
)

Coordinate = Tuple[float, float]

KM_PER_DEG = EARTH_RADIUS_KM * math.pi / 180.0


def point_to_polyline_distance_km(
    point: Coordinate,
    polyline: Sequence[Coordinate],
) -> Dict[str, object]:
    """
    Compute the minimum distance from a point to a polyline and where it lands.

    Returns:
        {"distance_km": float, "position": float, "segment": int, "t": float,
         "closest": (lat, lon), "side": float}
        distance_km: closest lateral distance to any segment in km
        position: 0-1 fraction along the path where the closest point lies
        segment / t: index of the closest segment and the 0-1 parameter on it
        side: > 0 when the point lies right of the direction of travel, < 0 left

    Uses a local equirectangular projection around the query point, vectorized
    with numpy; good enough for the short legs of a densified route.
    """
    if len(polyline) < 2:
        raise ValueError("Polyline must contain at least two points")

    n = len(polyline)
    coords = np.array(polyline, dtype=np.float64)

    cos_lat = np.cos(np.radians(point[0]))

    # Project all points to local XY (km), x east / y north
    xy = np.empty((n, 2), dtype=np.float64)
    xy[:, 0] = coords[:, 1] * KM_PER_DEG * cos_lat
    xy[:, 1] = coords[:, 0] * KM_PER_DEG

    px = point[1] * KM_PER_DEG * cos_lat
    py = point[0] * KM_PER_DEG

    seg_starts = xy[:-1]
    seg_vec = xy[1:] - seg_starts
    w = np.array([px, py]) - seg_starts

    seg_len_sq = np.sum(seg_vec ** 2, axis=1)
    dot_product = np.sum(w * seg_vec, axis=1)

    # Zero-length segments collapse onto their start point
    with np.errstate(divide='ignore', invalid='ignore'):
        t = dot_product / seg_len_sq
    t = np.nan_to_num(t, nan=0.0, posinf=0.0, neginf=0.0)
    t = np.clip(t, 0.0, 1.0)

    closest_pts = seg_starts + t[:, np.newaxis] * seg_vec
    dists = np.sqrt((px - closest_pts[:, 0]) ** 2 + (py - closest_pts[:, 1]) ** 2)

    min_idx = int(np.argmin(dists))
    min_dist = float(dists[min_idx])

    seg_lengths = np.sqrt(seg_len_sq)
    total_length = np.sum(seg_lengths) or 1.0
    cum_length = np.sum(seg_lengths[:min_idx]) + t[min_idx] * seg_lengths[min_idx]

    cx, cy = closest_pts[min_idx]
    closest = (float(cy / KM_PER_DEG), float(cx / (KM_PER_DEG * cos_lat)) if cos_lat else point[1])

    dx, dy = seg_vec[min_idx]
    wx, wy = w[min_idx]
    cross = dx * wy - dy * wx

    return {
        "distance_km": min_dist,
        "position": float(cum_length / total_length),
        "segment": min_idx,
        "t": float(t[min_idx]),
        "closest": closest,
        "side": float(-cross),
    }


class RouteLine:
    """
    A resolved route polyline with cumulative great-circle distances, used to
    advance a position along the route (lateral-navigation prediction).
    """

    def __init__(self, points: Sequence[Coordinate]):
        if len(points) < 2:
            raise ValueError("Route line needs at least two points")
        self.points: List[Coordinate] = [(float(lat), float(lon)) for lat, lon in points]
        seg = [
            haversine_km(a[0], a[1], b[0], b[1])
            for a, b in zip(self.points[:-1], self.points[1:])
        ]
        self._cum = np.concatenate([[0.0], np.cumsum(seg)])
        if self._cum[-1] <= 0.0:
            raise ValueError("Route line has zero length")

    @property
    def length_km(self) -> float:
        return float(self._cum[-1])

    def _segment_for(self, distance_km: float) -> int:
        idx = int(np.searchsorted(self._cum, distance_km, side="right")) - 1
        return min(max(idx, 0), len(self.points) - 2)

    def along(self, distance_km: float) -> Coordinate:
        """Point at distance_km from the start, clamped to the route's ends."""
        if distance_km <= 0.0:
            return self.points[0]
        if distance_km >= self.length_km:
            return self.points[-1]

        idx = self._segment_for(distance_km)
        start = self.points[idx]
        end = self.points[idx + 1]
        remaining = distance_km - float(self._cum[idx])
        if start == end:
            return start
        bearing = initial_bearing_deg(start[0], start[1], end[0], end[1])
        return destination_point(start[0], start[1], bearing, remaining)

    def bearing_at(self, distance_km: float, sample_ahead_km: float = 0.5) -> float:
        """Local route bearing, sampled from distance_km toward a point slightly ahead."""
        here = self.along(distance_km)
        ahead = self.along(min(distance_km + sample_ahead_km, self.length_km))
        if here == ahead:
            # At the terminal point: fall back to the final leg's direction
            behind = self.along(max(distance_km - sample_ahead_km, 0.0))
            if behind == here:
                return 0.0
            return initial_bearing_deg(behind[0], behind[1], here[0], here[1])
        return initial_bearing_deg(here[0], here[1], ahead[0], ahead[1])

    def locate(self, point: Coordinate) -> Tuple[float, float]:
        """
        Snap a position onto the route.

        Returns (distance along the route in km, signed lateral offset in km);
        the offset is positive to the right of the direction of travel.
        """
        hit = point_to_polyline_distance_km(point, self.points)
        idx = int(hit["segment"])
        a, b = self.points[idx], self.points[idx + 1]
        along_km = float(self._cum[idx]) + float(hit["t"]) * haversine_km(a[0], a[1], b[0], b[1])
        offset = float(hit["distance_km"])
        if hit["side"] < 0:
            offset = -offset
        return along_km, offset


def split_route_at_position(
    path: Sequence[Coordinate],
    position: Coordinate,
    snap_nm: float = 1.0,
) -> Tuple[List[Coordinate], List[Coordinate]]:
    """
    Split a dense route into the part already flown and the part ahead.

    When the aircraft is within snap_nm of the route, the remaining route is
    shifted by the aircraft's offset so the drawn line starts under it.
    """
    if not path or len(path) < 2:
        return [], []
    if position is None or not all(math.isfinite(v) for v in position):
        return list(path), []

    hit = point_to_polyline_distance_km(position, path)
    split_index = int(hit["segment"])

    past = list(path[: split_index + 1])
    past.append(tuple(position))
    future_source = list(path[split_index + 1:])

    if hit["distance_km"] * NM_PER_KM < snap_nm:
        snap_lat, snap_lon = hit["closest"]
        d_lat = position[0] - snap_lat
        d_lon = position[1] - snap_lon
        future = [tuple(position)] + [(lat + d_lat, lon + d_lon) for lat, lon in future_source]
    else:
        future = [tuple(position)] + future_source

    return past, future
