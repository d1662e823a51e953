from __future__ import annotations

from typing import Any, Sequence

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, execute_values

from jarticingest.ingestion.errors import SinkError
from jarticingest.ingestion.schemas import TrafficObservation


_MUTABLE_COLUMNS: tuple[str, ...] = (
    "road_type",
    "observed_at",
    "volume_up",
    "volume_down",
    "small_vehicle_count",
    "large_vehicle_count",
    "total_volume",
    "geom",
    "raw_properties",
    "region",
)

_INSERT_COLUMNS: tuple[str, ...] = (
    "observation_code",
    "road_type",
    "dataset_type",
    "time_code",
    "observed_at",
    "volume_up",
    "volume_down",
    "small_vehicle_count",
    "large_vehicle_count",
    "total_volume",
    "geom",
    "raw_properties",
    "region",
)

_TEMPLATE = "(%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, ST_SetSRID(ST_MakePoint(%s, %s), %s), %s, %s)"


def _row_params(row: TrafficObservation) -> tuple[Any, ...]:
    return (
        row.observation_code,
        row.road_type,
        row.dataset_type,
        row.time_code,
        row.observed_at,
        row.volume_up,
        row.volume_down,
        row.small_vehicle_count,
        row.large_vehicle_count,
        row.total_volume,
        row.location.lon,
        row.location.lat,
        row.location.srid,
        Json(row.raw_properties),
        row.region,
    )


def build_upsert_statement(table: str) -> sql.Composed:
    updates = sql.SQL(", ").join(
        sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(col)) for col in _MUTABLE_COLUMNS
    )
    return sql.SQL(
        "INSERT INTO {table} ({cols}) VALUES %s "
        "ON CONFLICT (observation_code, time_code, dataset_type) DO UPDATE SET {updates}"
    ).format(
        table=sql.Identifier(table),
        cols=sql.SQL(", ").join(sql.Identifier(col) for col in _INSERT_COLUMNS),
        updates=updates,
    )


class PostgisObservationSink:
    """Upserts into an existing PostGIS table; the table and its unique key are managed elsewhere."""

    def __init__(self, dsn: str, table: str = "jartic_traffic", connect=psycopg2.connect) -> None:
        self.table = table
        self._conn = connect(dsn)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def upsert(self, rows: Sequence[TrafficObservation]) -> int:
        if not rows:
            return 0
        statement = build_upsert_statement(self.table)
        try:
            with self._conn.cursor() as cur:
                execute_values(cur, statement, [_row_params(row) for row in rows], template=_TEMPLATE)
            self._conn.commit()
        except psycopg2.Error as exc:
            self._conn.rollback()
            raise SinkError(f"postgis upsert of {len(rows)} rows failed: {exc}") from exc
        return len(rows)

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True
