from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Protocol, Sequence

from jarticingest.ingestion.errors import SinkUnavailableError
from jarticingest.ingestion.schemas import TrafficObservation
from jarticingest.settings import AppConfig, get_config, load_sink_dsn


SINK_BACKENDS = ("duckdb", "postgis")


class ObservationSink(Protocol):
    def upsert(self, rows: Sequence[TrafficObservation]) -> int:
        ...

    def close(self) -> None:
        ...


def _open_backend(config: AppConfig, backend: str) -> ObservationSink:
    if backend == "duckdb":
        from jarticingest.storage.duckdb_backend import DuckdbObservationSink

        sink = DuckdbObservationSink(database=config.sink.duckdb_path, table=config.sink.table)
        try:
            sink.ensure_schema()
        except Exception:
            sink.close()
            raise
        return sink

    from jarticingest.storage.postgis_backend import PostgisObservationSink

    return PostgisObservationSink(dsn=load_sink_dsn(config), table=config.sink.table)


def create_sink(config: Optional[AppConfig] = None) -> ObservationSink:
    resolved = config or get_config()
    backend = resolved.sink.backend.lower()
    if backend not in SINK_BACKENDS:
        raise ValueError(f"Unknown sink backend: {resolved.sink.backend!r}")
    try:
        return _open_backend(resolved, backend)
    except Exception as exc:
        raise SinkUnavailableError(f"could not open {backend} sink: {exc}") from exc


@contextmanager
def open_sink(config: Optional[AppConfig] = None) -> Iterator[ObservationSink]:
    """Yield the configured sink for one run and always close it afterwards."""

    sink = create_sink(config)
    try:
        yield sink
    finally:
        sink.close()
