"""
Navigation registry: read-only lookup tables consumed by the route resolver.

The registry is produced by an external ingestion step; this module only
defines the value object and reads its already-ingested JSON form:

    {
      "waypoints": {"BOREE": [-33.2, 151.1], "TESAT": "-355604.200+1471333.300"},
      "airports":  {"YSSY": [-33.946, 151.177]},
      "airways":   {"H65": [{"lat": .., "lon": .., "id": "BOREE"}, "TESAT", ...]},
      "sids":      {"YSSY": {"RIC1": {"34L": [{"lat": .., "lon": .., "name": ..}, "BOREE"]}}},
      "stars":     {...same shape as sids...}
    }

A reload builds a new registry; nothing here is mutated after construction.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]

_COORD_RE = re.compile(r"^([+-]\d+\.?\d*)([+-]\d+\.?\d*)$")


@dataclass(slots=True, frozen=True)
class NavPoint:
    name: str
    lat: float
    lon: float

    @property
    def coordinate(self) -> Coordinate:
        return self.lat, self.lon


@dataclass(slots=True, frozen=True)
class AirwayFix:
    lat: float
    lon: float
    ident: str = ""

    @property
    def coordinate(self) -> Coordinate:
        return self.lat, self.lon


def parse_coordinate_string(coord_str: str) -> Optional[Coordinate]:
    """
    Parse a packed DMS position such as "-355604.200+1471333.300".
    Latitude carries 2 degree digits, longitude 3. Returns None when the
    string is not in that form.
    """
    if not isinstance(coord_str, str):
        return None
    match = _COORD_RE.match(coord_str.strip())
    if not match:
        return None

    def _parse_dms(raw: str, is_lon: bool) -> float:
        sign = -1.0 if raw.startswith("-") else 1.0
        clean = raw[1:]
        deg_len = 3 if is_lon else 2
        deg = float(clean[:deg_len])
        minutes = float(clean[deg_len:deg_len + 2])
        seconds = float(clean[deg_len + 2:])
        return sign * (deg + minutes / 60.0 + seconds / 3600.0)

    try:
        lat = _parse_dms(match.group(1), is_lon=False)
        lon = _parse_dms(match.group(2), is_lon=True)
    except ValueError:
        return None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    return lat, lon


def _coerce_coordinate(value: Any) -> Optional[Coordinate]:
    if isinstance(value, str):
        return parse_coordinate_string(value)
    if isinstance(value, dict):
        value = (value.get("lat"), value.get("lon"))
    if isinstance(value, (list, tuple)) and len(value) >= 2:
        try:
            lat, lon = float(value[0]), float(value[1])
        except (TypeError, ValueError):
            return None
        if math.isfinite(lat) and math.isfinite(lon):
            return lat, lon
    return None


ProcedureTable = Mapping[str, Mapping[str, Mapping[str, Tuple[NavPoint, ...]]]]


@dataclass(frozen=True)
class NavRegistry:
    waypoints: Mapping[str, Coordinate] = field(default_factory=dict)
    airports: Mapping[str, Coordinate] = field(default_factory=dict)
    airways: Mapping[str, Tuple[AirwayFix, ...]] = field(default_factory=dict)
    sids: ProcedureTable = field(default_factory=dict)
    stars: ProcedureTable = field(default_factory=dict)

    def __post_init__(self):
        for name in ("waypoints", "airports", "airways", "sids", "stars"):
            table = getattr(self, name)
            if not isinstance(table, MappingProxyType):
                object.__setattr__(self, name, MappingProxyType(dict(table)))

    def lookup_point(self, name: str) -> Optional[Coordinate]:
        """Waypoint (or navaid) by name, falling back to airport identifiers."""
        coords = self.waypoints.get(name)
        if coords is None:
            coords = self.airports.get(name)
        return coords

    def airport(self, ident: str) -> Optional[Coordinate]:
        return self.airports.get(ident)

    def airway(self, ident: str) -> Optional[Tuple[AirwayFix, ...]]:
        return self.airways.get(ident)

    def sid(self, airport: str, name: str, runway: str) -> Tuple[NavPoint, ...]:
        return tuple(self.sids.get(airport, {}).get(name, {}).get(runway, ()))

    def star(self, airport: str, name: str, runway: str) -> Tuple[NavPoint, ...]:
        return tuple(self.stars.get(airport, {}).get(name, {}).get(runway, ()))

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> NavRegistry:
        """Build a registry from its JSON form, skipping malformed entries."""
        skipped = 0

        waypoints: Dict[str, Coordinate] = {}
        for name, value in (raw.get("waypoints") or {}).items():
            coords = _coerce_coordinate(value)
            if coords is None:
                skipped += 1
                continue
            waypoints[str(name).upper()] = coords

        airports: Dict[str, Coordinate] = {}
        for code, value in (raw.get("airports") or {}).items():
            coords = _coerce_coordinate(value)
            if coords is None:
                skipped += 1
                continue
            airports[str(code).upper()] = coords

        def _resolve_named(name: str) -> Optional[Coordinate]:
            coords = waypoints.get(name) or airports.get(name)
            # "CS VOR" -> "CS"
            if coords is None and " " in name:
                short = name.split(" ")[0]
                coords = waypoints.get(short) or airports.get(short)
            return coords

        airways: Dict[str, Tuple[AirwayFix, ...]] = {}
        for ident, entries in (raw.get("airways") or {}).items():
            fixes: List[AirwayFix] = []
            for entry in entries or []:
                if isinstance(entry, str) and parse_coordinate_string(entry) is None:
                    name = entry.strip().replace("/", "")
                    coords = _resolve_named(name.upper())
                    label = name
                else:
                    coords = _coerce_coordinate(entry)
                    label = str(entry.get("id", "")) if isinstance(entry, dict) else ""
                    if not label and isinstance(entry, (list, tuple)) and len(entry) > 2:
                        label = str(entry[2])
                if coords is None:
                    skipped += 1
                    continue
                fixes.append(AirwayFix(lat=coords[0], lon=coords[1], ident=label))
            if len(fixes) > 1:
                airways[str(ident).upper()] = tuple(fixes)

        def _procedures(section: Any) -> Dict[str, Dict[str, Dict[str, Tuple[NavPoint, ...]]]]:
            nonlocal skipped
            table: Dict[str, Dict[str, Dict[str, Tuple[NavPoint, ...]]]] = {}
            for airport, procs in (section or {}).items():
                for proc_name, runways in (procs or {}).items():
                    for runway, entries in (runways or {}).items():
                        points: List[NavPoint] = []
                        for entry in entries or []:
                            if isinstance(entry, str):
                                direct = parse_coordinate_string(entry)
                                if direct is not None:
                                    points.append(NavPoint("WPT", direct[0], direct[1]))
                                    continue
                                coords = _resolve_named(entry.strip().upper())
                                name = entry.strip()
                            else:
                                coords = _coerce_coordinate(entry)
                                name = str(entry.get("name", "")) if isinstance(entry, dict) else ""
                            if coords is None:
                                skipped += 1
                                continue
                            points.append(NavPoint(name or proc_name, coords[0], coords[1]))
                        if points:
                            table.setdefault(str(airport).upper(), {}).setdefault(
                                str(proc_name).upper(), {}
                            )[str(runway).upper()] = tuple(points)
            return table

        sids = _procedures(raw.get("sids"))
        stars = _procedures(raw.get("stars"))

        if skipped:
            logger.info(f"Navigation registry: skipped {skipped} malformed entries")

        return cls(waypoints=waypoints, airports=airports, airways=airways, sids=sids, stars=stars)


def load_nav_registry(path: str | Path) -> NavRegistry:
    with Path(path).open("r", encoding="utf-8") as handle:
        raw = json.load(handle)
    registry = NavRegistry.from_dict(raw)
    logger.info(
        f"Loaded navigation registry from {path}: "
        f"{len(registry.airports)} airports, {len(registry.waypoints)} waypoints, "
        f"{len(registry.airways)} airways, {len(registry.sids)} SID airports, "
        f"{len(registry.stars)} STAR airports"
    )
    return registry
