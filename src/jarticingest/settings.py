from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(root: Path, value: str | Path) -> Path:
    path = Path(value)
    return path if path.is_absolute() else (root / path)


class PathsSection(BaseModel):
    state_dir: Path = Path("data/state")


class FeedSection(BaseModel):
    base_url: str = "https://api.jartic-open-traffic.org/geoserver"
    endpoint: str = "wfs"
    type_name: str = "t_travospublic_measure_5m"
    version: str = "2.0.0"
    srs_name: str = "EPSG:4326"
    output_format: str = "application/json"
    time_field: str = "時間コード"
    geometry_field: str = "ジオメトリ"
    # min_lon, min_lat, max_lon, max_lat
    bbox: tuple[float, float, float, float] = (122.0, 20.0, 154.0, 46.0)
    request_timeout_seconds: int = 30
    probe_attempts: int = Field(default=12, ge=1)
    probe_step_minutes: int = 5


class FieldMapping(BaseModel):
    observation_code: str = "常時観測点コード"
    road_type: str = "道路種別"
    volume_up: str = "上り交通量"
    volume_down: str = "下り交通量"
    small_up: str = "上り・小型交通量"
    large_up: str = "上り・大型交通量"
    small_down: str = "下り・小型交通量"
    large_down: str = "下り・大型交通量"


class IngestionSection(BaseModel):
    dataset_type: str = "様式1"
    batch_size: int = 20
    batch_pause_seconds: float = 1.0
    station_code_prefix: str = "station_"
    fields: FieldMapping = Field(default_factory=FieldMapping)


class SinkSection(BaseModel):
    backend: str = "duckdb"  # duckdb | postgis
    duckdb_path: Path = Path("data/jartic.duckdb")
    table: str = "jartic_traffic"
    srid: int = 4326
    # Credentials stay in the environment (.env), never in YAML.
    dsn_env: str = "JARTIC_DB_URL"


class RegionSection(BaseModel):
    name: str
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float


def _default_regions() -> list[RegionSection]:
    return [
        RegionSection(name="Tokyo", min_lon=138.94, min_lat=35.50, max_lon=139.92, max_lat=35.90),
        RegionSection(name="Kanagawa", min_lon=138.91, min_lat=35.12, max_lon=139.80, max_lat=35.67),
        RegionSection(name="Saitama", min_lon=138.71, min_lat=35.75, max_lon=139.90, max_lat=36.28),
        RegionSection(name="Chiba", min_lon=139.74, min_lat=34.90, max_lon=140.87, max_lat=36.10),
        RegionSection(name="Osaka", min_lon=135.09, min_lat=34.27, max_lon=135.75, max_lat=35.05),
        RegionSection(name="Aichi", min_lon=136.67, min_lat=34.57, max_lon=137.84, max_lat=35.42),
    ]


class AppConfig(BaseModel):
    paths: PathsSection = Field(default_factory=PathsSection)
    feed: FeedSection = Field(default_factory=FeedSection)
    ingestion: IngestionSection = Field(default_factory=IngestionSection)
    sink: SinkSection = Field(default_factory=SinkSection)
    regions: list[RegionSection] = Field(default_factory=_default_regions)

    def resolve_paths(self, root: Optional[Path] = None) -> "AppConfig":
        repo_root = project_root() if root is None else root
        updated_paths = self.paths.model_copy(
            update={"state_dir": _resolve_path(repo_root, self.paths.state_dir)}
        )
        updated_sink = self.sink.model_copy(
            update={"duckdb_path": _resolve_path(repo_root, self.sink.duckdb_path)}
        )
        return self.model_copy(update={"paths": updated_paths, "sink": updated_sink})


def _maybe_load_dotenv() -> None:
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return

    load_dotenv()


def load_config(config_path: str | Path | None = None) -> AppConfig:
    _maybe_load_dotenv()

    root = project_root()
    candidate = config_path or os.getenv("JARTIC_CONFIG", "configs/config.yaml")
    path = _resolve_path(root, candidate)
    if not path.exists():
        path = root / "configs/config.example.yaml"
    if not path.exists():
        return AppConfig().resolve_paths(root)

    data: dict[str, Any] = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return AppConfig.model_validate(data).resolve_paths(root)


def load_sink_dsn(config: AppConfig) -> str:
    """Read the PostGIS connection string from the environment variable named in config."""

    dsn = os.getenv(config.sink.dsn_env, "").strip()
    if not dsn:
        raise ValueError(
            f"Missing sink credentials. Set {config.sink.dsn_env} in .env or environment variables."
        )
    return dsn


_CONFIG: AppConfig | None = None


def get_config() -> AppConfig:
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG
