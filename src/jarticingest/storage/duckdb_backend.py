from __future__ import annotations

import json
from datetime import timezone
from pathlib import Path
from typing import Any, Optional, Sequence

from jarticingest.ingestion.errors import SinkError
from jarticingest.ingestion.schemas import TrafficObservation


KEY_COLUMNS: tuple[str, ...] = ("observation_code", "time_code", "dataset_type")

MUTABLE_COLUMNS: tuple[str, ...] = (
    "road_type",
    "observed_at",
    "volume_up",
    "volume_down",
    "small_vehicle_count",
    "large_vehicle_count",
    "total_volume",
    "lon",
    "lat",
    "geom",
    "raw_properties",
    "region",
)

COLUMNS: tuple[str, ...] = KEY_COLUMNS + MUTABLE_COLUMNS


def _import_duckdb():
    try:
        import duckdb
    except ImportError as exc:
        raise RuntimeError("duckdb is required. Install the project dependencies.") from exc
    return duckdb


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def row_values(row: TrafficObservation) -> tuple[Any, ...]:
    # Stored as naive UTC: DuckDB TIMESTAMP round-trips without extra timezone packages.
    observed_at = row.observed_at
    if observed_at.tzinfo is not None:
        observed_at = observed_at.astimezone(timezone.utc).replace(tzinfo=None)
    return (
        row.observation_code,
        row.time_code,
        row.dataset_type,
        row.road_type,
        observed_at,
        row.volume_up,
        row.volume_down,
        row.small_vehicle_count,
        row.large_vehicle_count,
        row.total_volume,
        row.location.lon,
        row.location.lat,
        row.location.to_ewkt(),
        json.dumps(row.raw_properties, ensure_ascii=False, sort_keys=True),
        row.region,
    )


class DuckdbObservationSink:
    """Local DuckDB table with natural-key upserts; one transaction per batch."""

    def __init__(self, database: str | Path = ":memory:", table: str = "jartic_traffic") -> None:
        duckdb = _import_duckdb()
        if str(database) != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        self.table = table
        self._con = duckdb.connect(database=str(database))
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_schema(self) -> None:
        table = _quote_ident(self.table)
        self._con.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                observation_code VARCHAR NOT NULL,
                time_code VARCHAR NOT NULL,
                dataset_type VARCHAR NOT NULL,
                road_type VARCHAR,
                observed_at TIMESTAMP NOT NULL,
                volume_up INTEGER NOT NULL,
                volume_down INTEGER NOT NULL,
                small_vehicle_count INTEGER NOT NULL,
                large_vehicle_count INTEGER NOT NULL,
                total_volume INTEGER NOT NULL,
                lon DOUBLE NOT NULL,
                lat DOUBLE NOT NULL,
                geom VARCHAR NOT NULL,
                raw_properties VARCHAR,
                region VARCHAR,
                PRIMARY KEY (observation_code, time_code, dataset_type)
            )
            """
        )

    def _upsert_sql(self) -> str:
        cols = ", ".join(COLUMNS)
        placeholders = ", ".join(["?"] * len(COLUMNS))
        conflict = ", ".join(KEY_COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in MUTABLE_COLUMNS)
        return (
            f"INSERT INTO {_quote_ident(self.table)} ({cols}) VALUES ({placeholders}) "
            f"ON CONFLICT ({conflict}) DO UPDATE SET {updates}"
        )

    def upsert(self, rows: Sequence[TrafficObservation]) -> int:
        if not rows:
            return 0
        params = [row_values(row) for row in rows]
        self._con.execute("BEGIN TRANSACTION")
        try:
            self._con.executemany(self._upsert_sql(), params)
            self._con.execute("COMMIT")
        except Exception as exc:
            self._con.execute("ROLLBACK")
            raise SinkError(f"duckdb upsert of {len(rows)} rows failed: {exc}") from exc
        return len(rows)

    def fetch_rows(self, *, where: Optional[str] = None, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        sql = f"SELECT {', '.join(COLUMNS)} FROM {_quote_ident(self.table)}"
        if where:
            sql += f" WHERE {where}"
        sql += " ORDER BY observation_code, time_code, dataset_type"
        cursor = self._con.execute(sql, list(params))
        names = [desc[0] for desc in cursor.description]
        out = []
        for values in cursor.fetchall():
            record = dict(zip(names, values))
            if record.get("raw_properties") is not None:
                record["raw_properties"] = json.loads(record["raw_properties"])
            out.append(record)
        return out

    def close(self) -> None:
        if self._closed:
            return
        self._con.close()
        self._closed = True
