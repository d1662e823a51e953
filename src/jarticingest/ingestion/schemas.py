from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


NaturalKey = tuple[str, str, str]


class GeoPoint(BaseModel):
    lon: float
    lat: float
    srid: int = 4326

    def to_ewkt(self) -> str:
        return f"SRID={self.srid};POINT({self.lon} {self.lat})"


class TrafficObservation(BaseModel):
    """One normalized 5-minute count for a station, keyed by (station, time code, dataset type)."""

    observation_code: str
    road_type: Optional[str] = None
    dataset_type: str
    time_code: str
    observed_at: datetime
    volume_up: int = Field(default=0, ge=0)
    volume_down: int = Field(default=0, ge=0)
    small_vehicle_count: int = Field(default=0, ge=0)
    large_vehicle_count: int = Field(default=0, ge=0)
    total_volume: int = Field(default=0, ge=0)
    location: GeoPoint
    raw_properties: dict[str, Any] = Field(default_factory=dict)
    region: Optional[str] = None

    @model_validator(mode="after")
    def _check_total(self) -> "TrafficObservation":
        if self.total_volume != self.volume_up + self.volume_down:
            raise ValueError("total_volume must equal volume_up + volume_down")
        return self

    @property
    def natural_key(self) -> NaturalKey:
        return (self.observation_code, self.time_code, self.dataset_type)
