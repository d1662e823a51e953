from __future__ import annotations

import json

import httpx
import pytest

from jarticingest.ingestion.errors import (
    MalformedFeatureError,
    SinkError,
    SinkUnavailableError,
    UnsupportedGeometryError,
    UpstreamUnavailableError,
    classify_ingest_error,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.test/wfs")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.parametrize(
    ("status", "code"),
    [(429, "rate_limited"), (401, "auth"), (403, "auth"), (503, "http_503")],
)
def test_http_status_errors(status: int, code: str) -> None:
    assert classify_ingest_error(_status_error(status)).code == code


def test_network_errors() -> None:
    request = httpx.Request("GET", "https://example.test/wfs")
    assert classify_ingest_error(httpx.ReadTimeout("slow", request=request)).code == "timeout"
    assert classify_ingest_error(httpx.ConnectError("refused", request=request)).code == "connect_error"
    assert (
        classify_ingest_error(httpx.ConnectError("[Errno -2] Name or service not known", request=request)).code
        == "dns"
    )


def test_pipeline_errors() -> None:
    assert classify_ingest_error(UnsupportedGeometryError("x")).code == "unsupported_geometry"
    assert classify_ingest_error(MalformedFeatureError("x")).code == "malformed_feature"
    assert classify_ingest_error(SinkError("x")).code == "sink_rejected"
    assert classify_ingest_error(SinkUnavailableError("x")).code == "sink_unavailable"
    assert (
        classify_ingest_error(UpstreamUnavailableError("x", attempts=3)).code == "upstream_unavailable"
    )


def test_bad_json_and_unknown() -> None:
    with pytest.raises(json.JSONDecodeError) as excinfo:
        json.loads("<html>")
    assert classify_ingest_error(excinfo.value).code == "bad_payload"
    assert classify_ingest_error(RuntimeError("???")).code == "unknown"
