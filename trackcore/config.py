from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

TRACKER_CONFIG_PATH = Path(__file__).resolve().parent / "tracker_config.json"

# Unit conversions
KTS_TO_MS = 0.514444
KTS_TO_KM_PER_MIN = 0.0308667
KTS_TO_KM_PER_S = KTS_TO_MS / 1000.0


@lru_cache(maxsize=None)
def load_tracker_config(path: str | Path | None = None) -> Dict[str, Any]:
    cfg_path = Path(path) if path else TRACKER_CONFIG_PATH
    with cfg_path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def require_section(name: str, config: Dict[str, Any] | None = None) -> Dict[str, Any]:
    cfg = (config if config is not None else load_tracker_config()).get(name)
    if cfg is None:
        raise KeyError(f"Missing configuration section for '{name}' in tracker_config.json")
    return cfg


CONFIG = load_tracker_config()

HISTORY_CAPACITY = int(require_section("history", CONFIG)["capacity"])

PREDICTION_CFG = require_section("prediction", CONFIG)
LOOKAHEAD_SECONDS = float(PREDICTION_CFG["lookahead_seconds"])
MIN_TRACKED_SPEED_KTS = float(PREDICTION_CFG["min_tracked_speed_kts"])
LNAV_MIN_OFFSET_KM = float(PREDICTION_CFG.get("lnav_min_offset_km", 0.1))

ROUTE_SEGMENT_POINTS = int(require_section("route", CONFIG)["segment_points"])

SMOOTHING_DURATION_SECONDS = float(require_section("smoothing", CONFIG)["duration_seconds"])

DEVIATION_CFG = require_section("deviation", CONFIG)
OFF_COURSE_NM = float(DEVIATION_CFG["off_course_nm"])
DEVIATION_IFR_ONLY = bool(DEVIATION_CFG.get("ifr_only", True))

POLL_INTERVAL_SECONDS = float(require_section("reconciliation", CONFIG)["poll_interval_seconds"])
