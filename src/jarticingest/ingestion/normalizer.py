"""Feature -> TrafficObservation normalization.

The JARTIC feed is loose about shapes: point coordinates arrive either flat (`[lng, lat]`) or
wrapped one level deep (`[[lng, lat]]`), and every count field is optional. This module resolves
each feature into exactly one canonical row, or raises a `MalformedFeatureError` for that feature
alone so the caller can skip it and keep going.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from jarticingest.ingestion.errors import (
    MalformedFeatureError,
    UnsupportedGeometryError,
    classify_ingest_error,
)
from jarticingest.ingestion.regions import RegionBox, resolve_region
from jarticingest.ingestion.schemas import GeoPoint, TrafficObservation
from jarticingest.settings import FieldMapping


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlatPair:
    """Coordinates encoded as `[lng, lat]` (extra ordinates such as altitude are ignored)."""

    lng: float
    lat: float


@dataclass(frozen=True)
class NestedPair:
    """Coordinates encoded as `[[lng, lat], ...]`; only the first pair is used."""

    lng: float
    lat: float


GeometryEncoding = Union[FlatPair, NestedPair]


def _is_number(value: Any) -> bool:
    # bool is an int subclass; a `true` coordinate is never a valid ordinate.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _as_pair(value: Any) -> Optional[tuple[float, float]]:
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        return None
    lng, lat = value[0], value[1]
    if not (_is_number(lng) and _is_number(lat)):
        return None
    return float(lng), float(lat)


def classify_coordinates(value: Any) -> GeometryEncoding:
    """Decide which of the two known coordinate encodings `value` uses.

    Dispatch is on the type of the first element: a number means a flat pair, a list means a
    singly nested pair. Anything else (strings, empty arrays, deeper nesting) is rejected.
    """

    if not isinstance(value, (list, tuple)) or not value:
        raise UnsupportedGeometryError(f"coordinates must be a non-empty array, got {value!r}")

    head = value[0]
    if _is_number(head):
        pair = _as_pair(value)
        if pair is not None:
            return FlatPair(*pair)
    elif isinstance(head, (list, tuple)):
        pair = _as_pair(head)
        if pair is not None:
            return NestedPair(*pair)

    raise UnsupportedGeometryError(f"unsupported coordinate shape: {value!r}")


def parse_coordinates(value: Any) -> tuple[float, float]:
    encoding = classify_coordinates(value)
    return encoding.lng, encoding.lat


def coerce_count(value: Any) -> int:
    """Best-effort non-negative count.

    Missing, non-numeric, negative (upstream sentinel) and non-integral values such as `3.9` or
    `"2.5"` all become 0; a vehicle count with a fractional part is not a count.
    """

    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if value >= 0 else 0
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number < 0 or not number.is_integer():
        return 0
    return int(number)


def _coerce_code(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _is_present(properties: Mapping[str, Any], name: str) -> bool:
    return properties.get(name) is not None


@dataclass(frozen=True)
class VolumeCounts:
    volume_up: int
    volume_down: int
    small_vehicle_count: int
    large_vehicle_count: int

    @property
    def total_volume(self) -> int:
        return self.volume_up + self.volume_down


def _direction_counts(
    properties: Mapping[str, Any], total_field: str, small_field: str, large_field: str
) -> tuple[int, int, int]:
    """Return (volume, small, large) for one direction.

    The volume is rebuilt from the small/large sub-counts when either is reported; otherwise the
    reported directional total is used and that direction contributes nothing to the class split.
    """

    if _is_present(properties, small_field) or _is_present(properties, large_field):
        small = coerce_count(properties.get(small_field))
        large = coerce_count(properties.get(large_field))
        return small + large, small, large
    return coerce_count(properties.get(total_field)), 0, 0


def extract_counts(properties: Mapping[str, Any], fields: FieldMapping) -> VolumeCounts:
    """Derive directional and vehicle-class counts from upstream properties, per direction."""

    up, small_up, large_up = _direction_counts(properties, fields.volume_up, fields.small_up, fields.large_up)
    down, small_down, large_down = _direction_counts(
        properties, fields.volume_down, fields.small_down, fields.large_down
    )
    return VolumeCounts(
        volume_up=up,
        volume_down=down,
        small_vehicle_count=small_up + small_down,
        large_vehicle_count=large_up + large_down,
    )


def normalize_feature(
    feature: Any,
    *,
    index: int,
    dataset_type: str,
    time_code: str,
    observed_at: datetime,
    regions: Sequence[RegionBox] = (),
    fields: Optional[FieldMapping] = None,
    station_code_prefix: str = "station_",
    srid: int = 4326,
) -> TrafficObservation:
    """Map one raw GeoJSON feature to a `TrafficObservation`.

    `index` is the feature's position in the collection; it is only used to synthesize a station
    code when the feed omits one, so every input feature yields a row.
    """

    fields = fields or FieldMapping()
    if not isinstance(feature, Mapping):
        raise MalformedFeatureError(f"feature #{index} is not an object")

    geometry = feature.get("geometry")
    if not isinstance(geometry, Mapping) or "coordinates" not in geometry:
        raise MalformedFeatureError(f"feature #{index} has no geometry coordinates")
    lng, lat = parse_coordinates(geometry["coordinates"])

    properties = feature.get("properties") or {}
    if not isinstance(properties, Mapping):
        raise MalformedFeatureError(f"feature #{index} properties is not an object")

    code = _coerce_code(properties.get(fields.observation_code))
    counts = extract_counts(properties, fields)

    try:
        return TrafficObservation(
            observation_code=code or f"{station_code_prefix}{index}",
            road_type=_coerce_code(properties.get(fields.road_type)),
            dataset_type=dataset_type,
            time_code=time_code,
            observed_at=observed_at,
            volume_up=counts.volume_up,
            volume_down=counts.volume_down,
            small_vehicle_count=counts.small_vehicle_count,
            large_vehicle_count=counts.large_vehicle_count,
            total_volume=counts.total_volume,
            location=GeoPoint(lon=lng, lat=lat, srid=srid),
            raw_properties=dict(properties),
            region=resolve_region(lng, lat, regions),
        )
    except ValidationError as exc:
        raise MalformedFeatureError(f"feature #{index} failed validation: {exc}") from exc


@dataclass(frozen=True)
class FeatureFailure:
    index: int
    code: str
    message: str


@dataclass
class NormalizeResult:
    rows: list[TrafficObservation] = field(default_factory=list)
    failures: list[FeatureFailure] = field(default_factory=list)


def normalize_features(
    features: Iterable[Any],
    *,
    dataset_type: str,
    time_code: str,
    observed_at: datetime,
    regions: Sequence[RegionBox] = (),
    fields: Optional[FieldMapping] = None,
    station_code_prefix: str = "station_",
    srid: int = 4326,
) -> NormalizeResult:
    """Normalize every feature, recording (not raising) per-feature failures."""

    result = NormalizeResult()
    for index, feature in enumerate(features):
        try:
            row = normalize_feature(
                feature,
                index=index,
                dataset_type=dataset_type,
                time_code=time_code,
                observed_at=observed_at,
                regions=regions,
                fields=fields,
                station_code_prefix=station_code_prefix,
                srid=srid,
            )
        except MalformedFeatureError as exc:
            info = classify_ingest_error(exc)
            logger.warning("Skipping feature #%s (%s): %s", index, info.code, info.message)
            result.failures.append(FeatureFailure(index=index, code=info.code, message=info.message))
            continue
        result.rows.append(row)
    return result
