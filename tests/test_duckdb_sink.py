from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from jarticingest.ingestion.errors import SinkError
from jarticingest.ingestion.schemas import GeoPoint, TrafficObservation
from jarticingest.storage import duckdb_backend
from jarticingest.storage.duckdb_backend import DuckdbObservationSink


def _row(code: str = "3110010", volume_up: int = 10, volume_down: int = 5, **kwargs) -> TrafficObservation:
    values = dict(
        observation_code=code,
        road_type="3",
        dataset_type="様式1",
        time_code="202401011200",
        observed_at=datetime(2024, 1, 1, 3, 7, tzinfo=timezone.utc),
        volume_up=volume_up,
        volume_down=volume_down,
        total_volume=volume_up + volume_down,
        location=GeoPoint(lon=139.7, lat=35.68),
        raw_properties={"上り交通量": volume_up, "下り交通量": volume_down},
        region="Tokyo",
    )
    values.update(kwargs)
    return TrafficObservation(**values)


@pytest.fixture
def sink():
    sink = DuckdbObservationSink(":memory:")
    sink.ensure_schema()
    yield sink
    sink.close()


def test_upsert_inserts_rows(sink) -> None:
    assert sink.upsert([_row("A"), _row("B")]) == 2

    rows = sink.fetch_rows()
    assert [r["observation_code"] for r in rows] == ["A", "B"]
    first = rows[0]
    assert first["total_volume"] == 15
    assert first["geom"] == "SRID=4326;POINT(139.7 35.68)"
    assert first["raw_properties"] == {"上り交通量": 10, "下り交通量": 5}
    assert first["observed_at"] == datetime(2024, 1, 1, 3, 7)
    assert first["region"] == "Tokyo"


def test_repeated_natural_key_keeps_one_row_with_latest_values(sink) -> None:
    sink.upsert([_row("A", 10, 5)])
    sink.upsert([_row("A", 1, 2, location=GeoPoint(lon=135.5, lat=34.7), region="Osaka")])

    rows = sink.fetch_rows()
    assert len(rows) == 1
    row = rows[0]
    assert (row["volume_up"], row["volume_down"], row["total_volume"]) == (1, 2, 3)
    assert row["raw_properties"] == {"上り交通量": 1, "下り交通量": 2}
    assert (row["lon"], row["lat"]) == (135.5, 34.7)
    assert row["geom"] == "SRID=4326;POINT(135.5 34.7)"
    assert row["region"] == "Osaka"


def test_different_dataset_type_is_a_different_key(sink) -> None:
    sink.upsert([_row("A"), _row("A", dataset_type="様式2")])
    assert len(sink.fetch_rows()) == 2


def test_failed_batch_is_rolled_back(sink, monkeypatch) -> None:
    sink.upsert([_row("A", 10, 5)])

    original = duckdb_backend.row_values

    def corrupt(row):
        values = original(row)
        if row.observation_code == "BAD":
            # volume_up column cannot hold text.
            return values[:5] + ("not-a-number",) + values[6:]
        return values

    monkeypatch.setattr(duckdb_backend, "row_values", corrupt)
    with pytest.raises(SinkError):
        sink.upsert([_row("B"), _row("A", 7, 7), _row("BAD")])

    rows = sink.fetch_rows()
    assert [r["observation_code"] for r in rows] == ["A"]
    assert rows[0]["volume_up"] == 10


def test_close_is_idempotent() -> None:
    sink = DuckdbObservationSink(":memory:")
    sink.close()
    sink.close()
    assert sink.closed


def test_total_volume_invariant_is_enforced() -> None:
    with pytest.raises(ValidationError):
        _row(total_volume=99)
