from __future__ import annotations

import pytest
from pydantic import ValidationError

from jarticingest.ingestion.errors import SinkUnavailableError
from jarticingest.ingestion.ledger import read_ledger_entries, safe_append_ledger_entry
from jarticingest.ingestion.regions import regions_from_config, resolve_region
from jarticingest.settings import AppConfig, load_config, load_sink_dsn
from jarticingest.storage.backend import create_sink, open_sink


def test_load_config_reads_yaml(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "feed:\n  probe_attempts: 6\n  bbox: [139.0, 35.0, 140.0, 36.0]\n"
        "ingestion:\n  batch_size: 50\n"
        "regions:\n  - {name: Center, min_lon: 139.4, min_lat: 35.4, max_lon: 139.6, max_lat: 35.6}\n",
        encoding="utf-8",
    )
    config = load_config(path)

    assert config.feed.probe_attempts == 6
    assert config.feed.bbox == (139.0, 35.0, 140.0, 36.0)
    assert config.ingestion.batch_size == 50
    assert config.sink.duckdb_path.is_absolute()
    regions = regions_from_config(config)
    assert [r.name for r in regions] == ["Center"]
    assert resolve_region(139.5, 35.5, regions) == "Center"


def test_default_regions_are_ordered() -> None:
    regions = regions_from_config(AppConfig())
    # Yokohama-ish point sits in both Tokyo and Kanagawa boxes; first match wins.
    assert resolve_region(139.6, 35.6, regions) == "Tokyo"
    assert resolve_region(135.5, 34.7, regions) == "Osaka"


def test_sink_dsn_comes_from_environment(monkeypatch) -> None:
    config = AppConfig()
    monkeypatch.delenv("JARTIC_DB_URL", raising=False)
    with pytest.raises(ValueError):
        load_sink_dsn(config)
    monkeypatch.setenv("JARTIC_DB_URL", "postgresql://u:p@db/traffic")
    assert load_sink_dsn(config) == "postgresql://u:p@db/traffic"


def test_open_sink_closes_on_error(config) -> None:
    captured = {}
    with pytest.raises(RuntimeError):
        with open_sink(config) as sink:
            captured["sink"] = sink
            raise RuntimeError("boom")
    assert captured["sink"].closed
    assert config.sink.duckdb_path.exists()


def test_unknown_backend_is_rejected(config) -> None:
    bad = config.model_copy(update={"sink": config.sink.model_copy(update={"backend": "sqlite"})})
    with pytest.raises(ValueError):
        create_sink(bad)


def test_postgis_sink_without_dsn_is_unavailable(monkeypatch, config) -> None:
    monkeypatch.delenv("JARTIC_DB_URL", raising=False)
    postgis = config.model_copy(update={"sink": config.sink.model_copy(update={"backend": "postgis"})})
    with pytest.raises(SinkUnavailableError, match="JARTIC_DB_URL"):
        create_sink(postgis)


def test_zero_lookback_attempts_are_rejected(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("feed:\n  probe_attempts: 0\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(path)


def test_ledger_appends_and_skips_corrupt_lines(tmp_path) -> None:
    path = tmp_path / "state" / "ledger.jsonl"
    safe_append_ledger_entry(path, {"event": "run_completed", "ok": True})
    with path.open("a", encoding="utf-8") as f:
        f.write("{not json\n")
    safe_append_ledger_entry(path, {"event": "run_failed", "ok": False})

    assert [e["event"] for e in read_ledger_entries(path)] == ["run_completed", "run_failed"]
    assert read_ledger_entries(tmp_path / "missing.jsonl") == []
