from __future__ import annotations

import json
from dataclasses import dataclass


class IngestError(RuntimeError):
    """Base class for failures raised by the ingestion pipeline."""


class ProbeExhaustedError(IngestError):
    """Raised when a bounded probe runs out of attempts without a successful result."""

    def __init__(self, message: str, *, attempts: int, last_cursor: object = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_cursor = last_cursor


class UpstreamUnavailableError(ProbeExhaustedError):
    """No populated time bucket was found within the probe window. Fatal for a run."""


class FeedResponseError(IngestError):
    """The feed answered 2xx but the body is not a feature collection."""


class MalformedFeatureError(IngestError):
    """A single feature cannot be normalized; only that feature is skipped."""


class UnsupportedGeometryError(MalformedFeatureError):
    """Geometry coordinates are neither a flat `[lng, lat]` pair nor a singly nested one."""


class SinkError(IngestError):
    """The sink rejected a batch write."""


class SinkUnavailableError(SinkError):
    """The sink could not be opened (missing credentials, connection refused, bad path)."""


@dataclass(frozen=True)
class IngestErrorInfo:
    code: str
    kind: str
    message: str


def classify_ingest_error(exc: Exception) -> IngestErrorInfo:
    """Classify common ingestion failures into stable codes for logs and the run ledger."""

    # Import lazily so normalization-only code paths don't require httpx types.
    try:
        import httpx  # type: ignore
    except Exception:  # pragma: no cover
        httpx = None  # type: ignore

    text = str(exc)
    lower = text.lower()

    if isinstance(exc, UnsupportedGeometryError):
        return IngestErrorInfo(code="unsupported_geometry", kind="feature", message=text)
    if isinstance(exc, MalformedFeatureError):
        return IngestErrorInfo(code="malformed_feature", kind="feature", message=text)
    if isinstance(exc, UpstreamUnavailableError):
        return IngestErrorInfo(code="upstream_unavailable", kind="upstream", message=text)
    if isinstance(exc, FeedResponseError):
        return IngestErrorInfo(code="bad_payload", kind="upstream", message=text)
    if isinstance(exc, SinkUnavailableError):
        return IngestErrorInfo(code="sink_unavailable", kind="sink", message=text)
    if isinstance(exc, SinkError):
        return IngestErrorInfo(code="sink_rejected", kind="sink", message=text)

    if httpx is not None and isinstance(exc, httpx.HTTPStatusError):
        status = int(exc.response.status_code)
        if status == 429:
            return IngestErrorInfo(code="rate_limited", kind="http", message=f"HTTP 429 rate limited: {text}")
        if status in {401, 403}:
            return IngestErrorInfo(code="auth", kind="http", message=f"HTTP {status} auth error: {text}")
        return IngestErrorInfo(code=f"http_{status}", kind="http", message=f"HTTP {status}: {text}")

    if httpx is not None and isinstance(exc, httpx.TimeoutException):
        return IngestErrorInfo(code="timeout", kind="network", message=text)

    if httpx is not None and isinstance(exc, httpx.ConnectError):
        if "no route to host" in lower or "errno 113" in lower:
            return IngestErrorInfo(code="no_route", kind="network", message=text)
        if "name or service not known" in lower or "temporary failure in name resolution" in lower:
            return IngestErrorInfo(code="dns", kind="network", message=text)
        return IngestErrorInfo(code="connect_error", kind="network", message=text)

    if isinstance(exc, json.JSONDecodeError):
        return IngestErrorInfo(code="bad_payload", kind="upstream", message=text)

    return IngestErrorInfo(code="unknown", kind="unknown", message=text)

