"""
Per-aircraft state reconciliation.

A TrackRegistry owns the tracked entities. Snapshot batches are merged under
a single writer lock; each pass builds a fresh immutable entity map and swaps
it in, so prediction ticks read whatever map is current without locking.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from kinematics.estimator import (
    LnavContext,
    compute_rates,
    predict_state,
    predict_state_on_route,
)
from kinematics.presentation import SmoothingOffsets, apply_smoothing, begin_smoothing
from routing.deviation import is_off_course, route_deviation_nm
from routing.resolver import RouteResolutionResult, RouteResolver
from sectors.crossing import classify_against
from sectors.sectorset import SectorPolygon, SectorSet
from trackcore.config import (
    DEVIATION_IFR_ONLY,
    HISTORY_CAPACITY,
    LOOKAHEAD_SECONDS,
    MIN_TRACKED_SPEED_KTS,
    OFF_COURSE_NM,
    SMOOTHING_DURATION_SECONDS,
)
from trackcore.history import PositionHistory
from trackcore.models import (
    AircraftSnapshot,
    CrossingStatus,
    DisplayState,
    KinematicState,
    OUTSIDE,
    PhysicsRates,
    SnapshotBatch,
    ZERO_RATES,
)
from trackcore.path_utils import split_route_at_position

logger = logging.getLogger(__name__)

RouteKey = Tuple[str, str, str]


@dataclass(frozen=True)
class TrackedEntity:
    """
    Everything known about one aircraft as of its last snapshot. Instances are
    never mutated once published; the history buffer is copied before a push.
    """
    entity_id: int
    callsign: str
    last_snapshot: AircraftSnapshot
    last_update: float
    rates: PhysicsRates
    history: PositionHistory
    route_key: Optional[RouteKey] = None
    cached_route: Optional[RouteResolutionResult] = None
    lnav: Optional[LnavContext] = None
    smoothing: Optional[SmoothingOffsets] = None
    status: CrossingStatus = OUTSIDE
    deviation_nm: float = 0.0

    def predict(self, elapsed_seconds: float) -> KinematicState:
        """Raw estimator output, elapsed_seconds after the last snapshot."""
        elapsed = max(0.0, elapsed_seconds)
        if self.lnav is not None:
            return predict_state_on_route(self.last_snapshot, self.rates, self.lnav, elapsed)
        return predict_state(self.last_snapshot, self.rates, elapsed)


class TrackRegistry:
    def __init__(
        self,
        resolver: Optional[RouteResolver] = None,
        sectors: Optional[SectorSet] = None,
        history_capacity: int = HISTORY_CAPACITY,
        lookahead_seconds: float = LOOKAHEAD_SECONDS,
        min_tracked_speed_kts: float = MIN_TRACKED_SPEED_KTS,
        smoothing_duration: float = SMOOTHING_DURATION_SECONDS,
        off_course_nm: float = OFF_COURSE_NM,
        deviation_ifr_only: bool = DEVIATION_IFR_ONLY,
    ):
        self.resolver = resolver
        self.sectors = sectors if sectors is not None else SectorSet()
        self.history_capacity = history_capacity
        self.lookahead_seconds = lookahead_seconds
        self.min_tracked_speed_kts = min_tracked_speed_kts
        self.smoothing_duration = smoothing_duration
        self.off_course_nm = off_course_nm
        self.deviation_ifr_only = deviation_ifr_only

        self._lock = threading.Lock()
        self._entities: Mapping[int, TrackedEntity] = MappingProxyType({})
        self._active_sector_ids: Tuple[str, ...] = ()

    # --- Read side (lock-free) ---

    def get(self, entity_id: int) -> Optional[TrackedEntity]:
        return self._entities.get(entity_id)

    def entity_ids(self) -> List[int]:
        return list(self._entities)

    def __len__(self) -> int:
        return len(self._entities)

    @property
    def active_sector_ids(self) -> Tuple[str, ...]:
        return self._active_sector_ids

    def predict(self, now: float) -> Dict[int, DisplayState]:
        """Displayable state of every tracked aircraft at time `now` (seconds)."""
        entities = self._entities
        frame: Dict[int, DisplayState] = {}
        for entity_id, entity in entities.items():
            state = entity.predict(now - entity.last_update)
            state = apply_smoothing(state, entity.smoothing, now)
            route_past: List[Tuple[float, float]] = []
            route_future: List[Tuple[float, float]] = []
            if entity.cached_route is not None:
                route_past, route_future = split_route_at_position(entity.cached_route.path, (state.lat, state.lon))
            frame[entity_id] = DisplayState(
                entity_id=entity_id,
                callsign=entity.callsign,
                state=state,
                track=tuple(entity.history) + ((state.lat, state.lon),),
                status=entity.status,
                deviation_nm=entity.deviation_nm,
                off_course=is_off_course(entity.deviation_nm, self.off_course_nm),
                route_past=tuple(route_past),
                route_future=tuple(route_future),
            )
        return frame

    # --- Write side ---

    def apply_batch(
        self,
        batch: SnapshotBatch,
        active_sector_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, int]:
        """
        Merge one snapshot batch. Aircraft missing from the batch are dropped.
        Returns counts of added, updated, removed and skipped entities.
        """
        with self._lock:
            if active_sector_ids is not None:
                self._active_sector_ids = tuple(active_sector_ids)
            active = self.sectors.select(self._active_sector_ids)

            previous = self._entities
            updated: Dict[int, TrackedEntity] = {}
            added = skipped = 0

            latest: Dict[int, AircraftSnapshot] = {}
            for snap in batch.snapshots:
                if snap.entity_id in latest:
                    logger.debug(f"Duplicate snapshot for entity {snap.entity_id} in batch; keeping the last")
                latest[snap.entity_id] = snap

            for snap in latest.values():
                existing = previous.get(snap.entity_id)
                try:
                    updated[snap.entity_id] = self._reconcile(existing, snap, batch.timestamp, active)
                except (ValueError, ArithmeticError) as exc:
                    skipped += 1
                    logger.warning(f"Skipping snapshot for {snap.callsign or snap.entity_id}: {exc}")
                    if existing is not None:
                        updated[snap.entity_id] = existing
                    continue
                if existing is None:
                    added += 1

            removed = [eid for eid in previous if eid not in updated]
            for eid in removed:
                logger.debug(f"Entity {eid} ({previous[eid].callsign}) left coverage")

            self._entities = MappingProxyType(updated)

        summary = {
            "added": added,
            "updated": len(updated) - added,
            "removed": len(removed),
            "skipped": skipped,
        }
        logger.info(
            f"Batch @ {batch.timestamp:.0f}: {summary['added']} new, {summary['updated']} updated, "
            f"{summary['removed']} removed, {summary['skipped']} skipped"
        )
        return summary

    def _reconcile(
        self,
        existing: Optional[TrackedEntity],
        snap: AircraftSnapshot,
        timestamp: float,
        active: Sequence[SectorPolygon],
    ) -> TrackedEntity:
        if existing is not None:
            dt = timestamp - existing.last_update
            if dt <= 0:
                logger.debug(f"Non-positive dt ({dt:.1f}s) for {snap.callsign}; rates reset")
            rates = compute_rates(existing.last_snapshot, snap, dt)
            history = existing.history.copy()
            history.push(snap.position)

            displayed = apply_smoothing(existing.predict(dt), existing.smoothing, timestamp)
            smoothing = begin_smoothing(displayed, snap.to_state(), timestamp, self.smoothing_duration)
        else:
            rates = ZERO_RATES
            history = PositionHistory(self.history_capacity, [snap.position])
            smoothing = None

        route_key, cached_route = self._route_for(existing, snap)

        lnav = None
        if existing is not None and existing.lnav is not None and cached_route and len(cached_route.path) > 1:
            # Re-snap onto the (possibly new) route at the reported position
            lnav = LnavContext.engage(cached_route.path, snap.position)

        deviation = route_deviation_nm(snap.lat, snap.lon, cached_route.path) if cached_route else 0.0

        status = OUTSIDE
        if active:
            status = classify_against(
                snap, active, lnav,
                lookahead_seconds=self.lookahead_seconds,
                min_speed_kts=self.min_tracked_speed_kts,
            )

        return TrackedEntity(
            entity_id=snap.entity_id,
            callsign=snap.callsign,
            last_snapshot=snap,
            last_update=timestamp,
            rates=rates,
            history=history,
            route_key=route_key,
            cached_route=cached_route,
            lnav=lnav,
            smoothing=smoothing,
            status=status,
            deviation_nm=deviation,
        )

    def _route_for(
        self,
        existing: Optional[TrackedEntity],
        snap: AircraftSnapshot,
    ) -> Tuple[Optional[RouteKey], Optional[RouteResolutionResult]]:
        plan = snap.flight_plan
        if self.resolver is None or plan is None:
            return None, None
        if self.deviation_ifr_only and not plan.is_ifr:
            return None, None

        registry = self.resolver.registry
        if registry.airport(plan.departure) is None or registry.airport(plan.arrival) is None:
            return None, None

        key = (plan.route, plan.departure, plan.arrival)
        if existing is not None and existing.route_key == key and existing.cached_route is not None:
            return key, existing.cached_route
        return key, self.resolver.resolve(plan.route, plan.departure, plan.arrival)

    def update_sector_selection(self, active_sector_ids: Iterable[str]) -> None:
        """Change the active sectors and reclassify every entity from its last snapshot."""
        with self._lock:
            self._active_sector_ids = tuple(active_sector_ids)
            active = self.sectors.select(self._active_sector_ids)
            updated = {}
            for entity_id, entity in self._entities.items():
                status = OUTSIDE
                if active:
                    status = classify_against(
                        entity.last_snapshot, active, entity.lnav,
                        lookahead_seconds=self.lookahead_seconds,
                        min_speed_kts=self.min_tracked_speed_kts,
                    )
                updated[entity_id] = replace(entity, status=status)
            self._entities = MappingProxyType(updated)

    def set_resolver(self, resolver: Optional[RouteResolver]) -> None:
        """Swap in a resolver for a reloaded registry; cached routes re-resolve on the next batch."""
        with self._lock:
            self.resolver = resolver
            self._entities = MappingProxyType({
                entity_id: replace(entity, route_key=None, cached_route=None, lnav=None)
                for entity_id, entity in self._entities.items()
            })

    def engage_lnav(self, entity_id: int) -> bool:
        """
        Constrain an aircraft's prediction to its resolved route, keeping its
        current lateral offset. Returns False when no route is available.
        """
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None or entity.cached_route is None or len(entity.cached_route.path) < 2:
                return False
            lnav = LnavContext.engage(entity.cached_route.path, entity.last_snapshot.position)
            if lnav is None:
                return False
            self._replace(replace(entity, lnav=lnav))
        logger.info(f"LNAV engaged for {entity.callsign} (offset {lnav.offset_km:.2f} km)")
        return True

    def disengage_lnav(self, entity_id: int) -> bool:
        with self._lock:
            entity = self._entities.get(entity_id)
            if entity is None or entity.lnav is None:
                return False
            self._replace(replace(entity, lnav=None))
        return True

    def _replace(self, entity: TrackedEntity) -> None:
        entities = dict(self._entities)
        entities[entity.entity_id] = entity
        self._entities = MappingProxyType(entities)
