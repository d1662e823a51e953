from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from jarticingest.settings import AppConfig, RegionSection


@dataclass(frozen=True)
class RegionBox:
    name: str
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def contains(self, lng: float, lat: float) -> bool:
        return self.min_lon <= lng <= self.max_lon and self.min_lat <= lat <= self.max_lat


def regions_from_config(config: AppConfig) -> list[RegionBox]:
    return [_from_section(section) for section in config.regions]


def _from_section(section: RegionSection) -> RegionBox:
    return RegionBox(
        name=section.name,
        min_lon=section.min_lon,
        min_lat=section.min_lat,
        max_lon=section.max_lon,
        max_lat=section.max_lat,
    )


def fallback_region_label(lng: float, lat: float) -> str:
    return f"area_{lat:.2f}_{lng:.2f}"


def resolve_region(lng: float, lat: float, regions: Iterable[RegionBox]) -> str:
    """Return the first region containing the point, else a label embedding the coordinates."""

    for region in regions:
        if region.contains(lng, lat):
            return region.name
    return fallback_region_label(lng, lat)
