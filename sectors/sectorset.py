from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.geometry.base import BaseGeometry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectorPolygon:
    """A monitored airspace sector; geometry is in (lon, lat) order."""
    id: str
    geometry: BaseGeometry

    @classmethod
    def from_feature(cls, feature: Dict[str, Any]) -> Optional[SectorPolygon]:
        props = feature.get("properties") or {}
        sector_id = props.get("id") or props.get("label")
        geom_raw = feature.get("geometry")
        if not sector_id or not geom_raw:
            return None
        try:
            geometry = shape(geom_raw)
        except (ValueError, TypeError, AttributeError, KeyError) as exc:
            logger.debug(f"Skipping sector {sector_id}: {exc}")
            return None
        if not isinstance(geometry, (Polygon, MultiPolygon)) or geometry.is_empty:
            return None
        return cls(id=str(sector_id), geometry=geometry)


class SectorSet:
    """Immutable collection of sectors keyed by id, in load order."""

    def __init__(self, sectors: Iterable[SectorPolygon] = ()):
        self._sectors: Dict[str, SectorPolygon] = {}
        for sector in sectors:
            self._sectors[sector.id] = sector

    def get(self, sector_id: str) -> Optional[SectorPolygon]:
        return self._sectors.get(sector_id)

    def select(self, ids: Iterable[str]) -> List[SectorPolygon]:
        """Sectors for the given ids, in the requested order; unknown ids are skipped."""
        selected = []
        for sector_id in ids:
            sector = self._sectors.get(sector_id)
            if sector is not None:
                selected.append(sector)
        return selected

    @property
    def ids(self) -> List[str]:
        return list(self._sectors)

    def __contains__(self, sector_id: object) -> bool:
        return sector_id in self._sectors

    def __iter__(self) -> Iterator[SectorPolygon]:
        return iter(self._sectors.values())

    def __len__(self) -> int:
        return len(self._sectors)

    @classmethod
    def from_geojson(cls, data: Mapping[str, Any], id_prefix: Optional[str] = None) -> SectorSet:
        features = data.get("features") if data.get("type") == "FeatureCollection" else [data]
        sectors = []
        for feature in features or []:
            sector = SectorPolygon.from_feature(feature)
            if sector is None:
                continue
            if id_prefix and not sector.id.startswith(id_prefix):
                continue
            sectors.append(sector)
        return cls(sectors)


def load_sector_set(path: str | Path, id_prefix: Optional[str] = None) -> SectorSet:
    with Path(path).open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    sectors = SectorSet.from_geojson(data, id_prefix=id_prefix)
    logger.info(f"Loaded {len(sectors)} sectors from {path}" + (f" (prefix {id_prefix})" if id_prefix else ""))
    return sectors
