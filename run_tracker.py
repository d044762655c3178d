from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Dict, Iterator, List, Optional

sys.path.insert(0, str(Path(__file__).resolve().parent))

from kinematics.presentation import quantize_altitude
from routing.navdata import load_nav_registry
from routing.resolver import RouteResolver
from sectors.sectorset import SectorSet, load_sector_set
from trackcore.config import POLL_INTERVAL_SECONDS
from trackcore.models import DisplayState, SnapshotBatch
from tracking.registry import TrackRegistry

logger = logging.getLogger(__name__)


def iter_batches(path: Path) -> Iterator[SnapshotBatch]:
    """One traffic payload per line; blank and malformed lines are skipped."""
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.warning(f"{path}:{line_no}: invalid JSON ({exc})")
                continue
            yield SnapshotBatch.from_dict(raw)


def frame_to_dict(state: DisplayState) -> Dict:
    return {
        "id": state.entity_id,
        "callsign": state.callsign,
        "lat": round(state.state.lat, 6),
        "lon": round(state.state.lon, 6),
        "heading": round(state.state.heading, 1),
        "groundspeed": round(state.state.groundspeed, 1),
        "altitude": quantize_altitude(state.state.altitude),
        "status": state.status.state.value,
        "minutes": state.status.minutes_until_event,
        "sector": state.status.active_sector,
        "next_sector": state.status.secondary_sector,
        "deviation_nm": round(state.deviation_nm, 2),
        "off_course": state.off_course,
        "track_points": len(state.track),
        "route_past": [list(p) for p in state.route_past],
        "route_future": [list(p) for p in state.route_future],
    }


def summarize(frame: Dict[int, DisplayState]) -> str:
    counts = Counter(s.status.state.value for s in frame.values())
    off_course = sum(1 for s in frame.values() if s.off_course)
    parts = [f"{name}={counts[name]}" for name in sorted(counts)]
    return f"{len(frame)} aircraft ({', '.join(parts) or 'none'}), {off_course} off course"


def replay(
    registry: TrackRegistry,
    batches: Iterator[SnapshotBatch],
    tick: float,
    active_sector_ids: List[str],
    output: Optional[Path] = None,
) -> int:
    """Apply each batch, then run prediction ticks up to the next batch. Returns frames produced."""
    frames = 0
    handle = output.open("w", encoding="utf-8") if output else None
    try:
        pending = next(batches, None)
        first = True
        while pending is not None:
            batch = pending
            registry.apply_batch(batch, active_sector_ids if first else None)
            first = False

            pending = next(batches, None)
            horizon = pending.timestamp if pending is not None else batch.timestamp + POLL_INTERVAL_SECONDS
            now = batch.timestamp
            while now < horizon:
                frame = registry.predict(now)
                frames += 1
                if handle:
                    handle.write(json.dumps({"time": now, "aircraft": [frame_to_dict(s) for s in frame.values()]}) + "\n")
                now += tick
            current = registry.predict(batch.timestamp)
            logger.info(f"t={batch.timestamp:.0f}: {summarize(current)}")
            if logger.isEnabledFor(logging.DEBUG):
                for state in current.values():
                    status = state.status
                    logger.debug(
                        f"  {state.callsign:<8} {status.state.value:<10} "
                        f"sector={status.active_sector or '-'} minutes={status.minutes_until_event} "
                        f"dev={state.deviation_nm:.1f}nm"
                    )
    finally:
        if handle:
            handle.close()
    return frames


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay recorded traffic batches through the tracker")
    parser.add_argument("--batches", type=Path, required=True, help="JSONL file of traffic payloads")
    parser.add_argument("--nav", type=Path, default=None, help="Navigation registry JSON")
    parser.add_argument("--sectors", type=Path, default=None, help="Sector GeoJSON FeatureCollection")
    parser.add_argument("--sector", action="append", default=[], help="Active sector id (repeatable, in priority order)")
    parser.add_argument("--sector-prefix", default=None, help="Only load sectors whose id starts with this prefix")
    parser.add_argument("--tick", type=float, default=1.0, help="Prediction tick in seconds")
    parser.add_argument("--output", type=Path, default=None, help="Write predicted frames as JSONL")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    if args.tick <= 0:
        parser.error("--tick must be positive")
    if not args.batches.exists():
        parser.error(f"Batch file not found: {args.batches}")

    resolver = RouteResolver(load_nav_registry(args.nav)) if args.nav else None
    sectors = load_sector_set(args.sectors, id_prefix=args.sector_prefix) if args.sectors else SectorSet()

    active = args.sector or sectors.ids
    unknown = [sid for sid in active if sid not in sectors]
    if unknown:
        logger.warning(f"Ignoring unknown sectors: {', '.join(unknown)}")

    registry = TrackRegistry(resolver=resolver, sectors=sectors)
    frames = replay(registry, iter_batches(args.batches), args.tick, active, args.output)
    logger.info(f"Replay finished: {frames} frames, {len(registry)} aircraft tracked at the end")


if __name__ == "__main__":
    main()
