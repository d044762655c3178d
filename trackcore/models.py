from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(slots=True, frozen=True)
class FlightPlan:
    departure: str = ""
    arrival: str = ""
    route: str = ""
    rules: Optional[str] = None  # "I" (IFR) / "V" (VFR)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> Optional[FlightPlan]:
        if not raw:
            return None
        return cls(
            departure=str(raw.get("departure") or "").strip().upper(),
            arrival=str(raw.get("arrival") or "").strip().upper(),
            route=str(raw.get("route") or ""),
            rules=raw.get("flight_rules", raw.get("rules")),
        )

    @property
    def is_ifr(self) -> bool:
        return (self.rules or "").upper() == "I"


@dataclass(slots=True, frozen=True)
class AircraftSnapshot:
    """
    One authoritative position report for a tracked aircraft.
    Memory-optimized storage using __slots__, frozen so registries can share it.
    """
    entity_id: int
    callsign: str
    lat: float
    lon: float
    altitude: float  # ft
    groundspeed: float  # kts
    heading: float  # degrees 0-360
    flight_plan: Optional[FlightPlan] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> Optional[AircraftSnapshot]:
        """
        Parse a network pilot record. Accepts both the feed's field names
        (cid, latitude, longitude) and the short ones (id, lat, lon).
        Returns None for records without a usable id or position.
        """
        try:
            entity_id = int(raw.get("cid", raw.get("id")))
            lat = float(raw.get("latitude", raw.get("lat")))
            lon = float(raw.get("longitude", raw.get("lon")))
        except (TypeError, ValueError):
            return None
        if not (math.isfinite(lat) and math.isfinite(lon)):
            return None

        plan_raw = raw.get("flight_plan")
        plan = FlightPlan.from_dict(plan_raw) if isinstance(plan_raw, dict) else None
        if plan is not None and plan.rules is None and raw.get("flight_rules"):
            plan = FlightPlan(plan.departure, plan.arrival, plan.route, raw.get("flight_rules"))

        return cls(
            entity_id=entity_id,
            callsign=str(raw.get("callsign") or "").strip(),
            lat=lat,
            lon=lon,
            altitude=_float_or_zero(raw.get("altitude")),
            groundspeed=_float_or_zero(raw.get("groundspeed")),
            heading=_float_or_zero(raw.get("heading")),
            flight_plan=plan,
        )

    @property
    def position(self) -> Tuple[float, float]:
        return self.lat, self.lon

    def to_state(self) -> KinematicState:
        return KinematicState(
            lat=self.lat,
            lon=self.lon,
            heading=self.heading,
            groundspeed=self.groundspeed,
            altitude=self.altitude,
        )


def _float_or_zero(value: Any) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


@dataclass(slots=True, frozen=True)
class SnapshotBatch:
    timestamp: float  # seconds
    snapshots: Tuple[AircraftSnapshot, ...] = ()

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> SnapshotBatch:
        """
        Build a batch from the traffic endpoint payload:
        {"serverTime": <ms>, "pilots": [...]} or {"timestamp": <s>, "pilots": [...]}.
        Unusable pilot records are dropped.
        """
        if "timestamp" in raw:
            timestamp = float(raw["timestamp"])
        else:
            timestamp = float(raw.get("serverTime", 0)) / 1000.0
        snapshots: List[AircraftSnapshot] = []
        for record in raw.get("pilots") or []:
            snap = AircraftSnapshot.from_dict(record)
            if snap is not None:
                snapshots.append(snap)
        return cls(timestamp=timestamp, snapshots=tuple(snapshots))


@dataclass(slots=True, frozen=True)
class PhysicsRates:
    turn_rate: float = 0.0  # deg/s
    climb_rate: float = 0.0  # ft/s
    accel_rate: float = 0.0  # kts/s


ZERO_RATES = PhysicsRates()


@dataclass(slots=True, frozen=True)
class KinematicState:
    lat: float
    lon: float
    heading: float
    groundspeed: float
    altitude: float

    @property
    def position(self) -> Tuple[float, float]:
        return self.lat, self.lon


class CrossingState(str, Enum):
    INSIDE = "inside"
    OUTSIDE = "outside"
    ENTERING = "entering"
    LEAVING = "leaving"
    TRANSITION = "transition"


@dataclass(slots=True, frozen=True)
class CrossingStatus:
    state: CrossingState = CrossingState.OUTSIDE
    minutes_until_event: Optional[int] = None
    active_sector: Optional[str] = None
    secondary_sector: Optional[str] = None  # only for TRANSITION


OUTSIDE = CrossingStatus()


@dataclass(slots=True, frozen=True)
class DisplayState:
    """Per-entity output of a prediction tick, consumed by rendering."""
    entity_id: int
    callsign: str
    state: KinematicState
    track: Tuple[Tuple[float, float], ...] = ()
    status: CrossingStatus = OUTSIDE
    deviation_nm: float = 0.0
    off_course: bool = False
    # cached route split at the displayed position
    route_past: Tuple[Tuple[float, float], ...] = ()
    route_future: Tuple[Tuple[float, float], ...] = ()
