from __future__ import annotations

import math
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np
from shapely.geometry import LineString, MultiPolygon, Point, Polygon
from shapely.geometry.base import BaseGeometry

EARTH_RADIUS_KM = 6371.0
NM_PER_KM = 0.539957

Coordinate = Tuple[float, float]  # (lat, lon)
Ring = Sequence[Coordinate]
PolygonLike = Union[BaseGeometry, Ring]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers."""
    lat1_r, lon1_r = math.radians(lat1), math.radians(lon1)
    lat2_r, lon2_r = math.radians(lat2), math.radians(lon2)
    return angular_distance(lat1_r, lon1_r, lat2_r, lon2_r) * EARTH_RADIUS_KM


def haversine_nm(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in nautical miles."""
    return haversine_km(lat1, lon1, lat2, lon2) * NM_PER_KM


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    y = math.sin(math.radians(lon2 - lon1)) * math.cos(math.radians(lat2))
    x = math.cos(math.radians(lat1)) * math.sin(math.radians(lat2)) - math.sin(math.radians(lat1)) * math.cos(
        math.radians(lat2)
    ) * math.cos(math.radians(lon2 - lon1))
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360.0) % 360.0


def angular_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2.0) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2.0) ** 2
    return 2.0 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _normalize_lon(lon: float) -> float:
    return (lon + 540.0) % 360.0 - 180.0


def destination_point(lat: float, lon: float, bearing_deg: float, distance_km: float) -> Coordinate:
    """
    Calculate destination point given start point, bearing, and distance (km).
    """
    if distance_km == 0.0:
        return lat, lon

    R = EARTH_RADIUS_KM
    d = distance_km

    lat1 = math.radians(lat)
    lon1 = math.radians(lon)
    brng = math.radians(bearing_deg)

    lat2 = math.asin(math.sin(lat1) * math.cos(d / R) +
                     math.cos(lat1) * math.sin(d / R) * math.cos(brng))
    lon2 = lon1 + math.atan2(math.sin(brng) * math.sin(d / R) * math.cos(lat1),
                             math.cos(d / R) - math.sin(lat1) * math.sin(lat2))

    return math.degrees(lat2), _normalize_lon(math.degrees(lon2))


def midpoint(lat1: float, lon1: float, lat2: float, lon2: float) -> Coordinate:
    """Great-circle midpoint of two positions."""
    lat1_r, lon1_r = math.radians(lat1), math.radians(lon1)
    lat2_r, lon2_r = math.radians(lat2), math.radians(lon2)
    dlon = lon2_r - lon1_r

    bx = math.cos(lat2_r) * math.cos(dlon)
    by = math.cos(lat2_r) * math.sin(dlon)
    lat_m = math.atan2(
        math.sin(lat1_r) + math.sin(lat2_r),
        math.sqrt((math.cos(lat1_r) + bx) ** 2 + by ** 2),
    )
    lon_m = lon1_r + math.atan2(by, math.cos(lat1_r) + bx)
    return math.degrees(lat_m), _normalize_lon(math.degrees(lon_m))


def great_circle_path(p1: Coordinate, p2: Coordinate, n: int = 100) -> List[Coordinate]:
    """
    Densify the great-circle segment p1 -> p2 into n points (both endpoints included).

    Coincident or antipodal pairs have no unique great circle; those return an
    empty list, as does n < 2.
    """
    if n < 2:
        return []

    lat1, lon1 = math.radians(p1[0]), math.radians(p1[1])
    lat2, lon2 = math.radians(p2[0]), math.radians(p2[1])
    d = angular_distance(lat1, lon1, lat2, lon2)
    sin_d = math.sin(d)
    if not math.isfinite(d) or d == 0.0 or abs(sin_d) < 1e-12:
        return []

    f = np.linspace(0.0, 1.0, n)
    a = np.sin((1.0 - f) * d) / sin_d
    b = np.sin(f * d) / sin_d

    x = a * math.cos(lat1) * math.cos(lon1) + b * math.cos(lat2) * math.cos(lon2)
    y = a * math.cos(lat1) * math.sin(lon1) + b * math.cos(lat2) * math.sin(lon2)
    z = a * math.sin(lat1) + b * math.sin(lat2)

    lats = np.degrees(np.arctan2(z, np.sqrt(x ** 2 + y ** 2)))
    lons = np.degrees(np.arctan2(y, x))

    path = [(float(la), float(lo)) for la, lo in zip(lats, lons)]
    # Pin the endpoints so callers can compare them exactly.
    path[0] = (float(p1[0]), float(p1[1]))
    path[-1] = (float(p2[0]), float(p2[1]))
    return path


def _is_ring(value) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) > 0
        and isinstance(value[0], (list, tuple))
        and len(value[0]) == 2
        and isinstance(value[0][0], (int, float))
    )


def point_in_polygon(point: Coordinate, polygon: Union[PolygonLike, Iterable[PolygonLike]]) -> bool:
    """
    True when (lat, lon) lies inside the polygon, or inside any member when a
    collection of polygons is supplied. Shapely geometries are in (lon, lat)
    order; plain rings are (lat, lon) like the rest of this module.
    """
    if isinstance(polygon, BaseGeometry) or _is_ring(polygon):
        if not isinstance(polygon, BaseGeometry) and len(polygon) < 3:
            return False
        return _as_geometry(polygon).covers(Point(point[1], point[0]))
    return any(point_in_polygon(point, member) for member in polygon)


def _as_geometry(polygon: PolygonLike) -> BaseGeometry:
    if isinstance(polygon, BaseGeometry):
        return polygon
    return Polygon([(lon, lat) for lat, lon in polygon])


def _rings(geometry: BaseGeometry) -> List[BaseGeometry]:
    if isinstance(geometry, Polygon):
        return [geometry.exterior, *geometry.interiors]
    if isinstance(geometry, MultiPolygon):
        rings: List[BaseGeometry] = []
        for part in geometry.geoms:
            rings.extend(_rings(part))
        return rings
    return [geometry.boundary]


def line_intersect_polygon(line: Sequence[Coordinate], polygon: PolygonLike) -> List[Coordinate]:
    """
    All points where the 2-point segment `line` crosses the polygon boundary
    (every ring of every member). Returned as (lat, lon); empty when the
    segment never touches the boundary.
    """
    if len(line) != 2:
        raise ValueError("Intersection line must contain exactly two points")
    (lat1, lon1), (lat2, lon2) = line
    if lat1 == lat2 and lon1 == lon2:
        raise ValueError("Intersection line is degenerate")

    segment = LineString([(lon1, lat1), (lon2, lat2)])
    crossings: List[Coordinate] = []
    for ring in _rings(_as_geometry(polygon)):
        hit = segment.intersection(ring)
        if hit.is_empty:
            continue
        for part in getattr(hit, "geoms", [hit]):
            if isinstance(part, Point):
                crossings.append((part.y, part.x))
            else:
                # Collinear overlap: the segment runs along the edge.
                crossings.extend((y, x) for x, y in part.coords)
    return crossings
