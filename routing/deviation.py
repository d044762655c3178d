from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

from trackcore.config import OFF_COURSE_NM
from trackcore.geodesy import NM_PER_KM
from trackcore.path_utils import point_to_polyline_distance_km

logger = logging.getLogger(__name__)


def route_deviation_nm(lat: float, lon: float, path: Optional[Sequence[Tuple[float, float]]]) -> float:
    """
    Cross-track distance (NM) from the position to the resolved dense route.
    0 when no usable path is supplied.
    """
    if not path or len(path) < 2:
        return 0.0
    try:
        hit = point_to_polyline_distance_km((lat, lon), path)
    except ValueError as exc:
        logger.debug(f"Deviation unavailable: {exc}")
        return 0.0
    return float(hit["distance_km"]) * NM_PER_KM


def is_off_course(deviation_nm: float, threshold_nm: float = OFF_COURSE_NM) -> bool:
    return deviation_nm > threshold_nm
