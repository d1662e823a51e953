from __future__ import annotations

from typing import Any, Optional

import pytest

from jarticingest.settings import AppConfig


def _make_feature(
    coordinates: Any = (139.7, 35.68),
    *,
    code: Optional[object] = "3110010",
    **properties: Any,
) -> dict[str, Any]:
    props: dict[str, Any] = {"道路種別": "3", "時間コード": 202401011200}
    if code is not None:
        props["常時観測点コード"] = code
    props.update(properties)
    coords = list(coordinates) if isinstance(coordinates, tuple) else coordinates
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": coords},
        "properties": props,
    }


@pytest.fixture
def config(tmp_path) -> AppConfig:
    base = AppConfig()
    return base.model_copy(
        update={
            "feed": base.feed.model_copy(update={"base_url": "https://example.test", "probe_attempts": 3}),
            "sink": base.sink.model_copy(update={"duckdb_path": tmp_path / "jartic.duckdb"}),
            "paths": base.paths.model_copy(update={"state_dir": tmp_path / "state"}),
        }
    ).resolve_paths(root=tmp_path)


@pytest.fixture
def make_feature():
    return _make_feature
