"""JARTIC open-traffic WFS client and time-bucket prober.

The feed publishes 5-minute counts on a fixed cadence but with unpredictable latency, so the
bucket for "now" is often still empty. `JarticFeedClient.probe_latest` walks backwards from the
current JST 5-minute boundary, one bucket per attempt, and returns the first bucket that has at
least one feature.

Resource lifetime:
- The client owns an `httpx.Client` and should be closed via `close()` (or used as a context
  manager) to avoid connection leaks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from jarticingest.ingestion.errors import (
    FeedResponseError,
    ProbeExhaustedError,
    UpstreamUnavailableError,
)
from jarticingest.ingestion.probe import BoundedProbePolicy
from jarticingest.settings import AppConfig, FeedSection, get_config
from jarticingest.utils.time import bucket_time_codes


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedQuery:
    """A single WFS GetFeature request scoped to one time bucket."""

    time_code: str
    params: dict[str, Any]


@dataclass(frozen=True)
class ProbeResult:
    collection: dict[str, Any]
    time_code: str
    attempts: int

    @property
    def features(self) -> list[Any]:
        return list(self.collection.get("features") or [])


def build_cql_filter(feed: FeedSection, time_code: str) -> str:
    min_lon, min_lat, max_lon, max_lat = feed.bbox
    bbox = f"BBOX({feed.geometry_field},{min_lon},{min_lat},{max_lon},{max_lat},'{feed.srs_name}')"
    return f"{feed.time_field}={time_code} AND {bbox}"


def build_feed_query(config: AppConfig, time_code: str) -> FeedQuery:
    feed = config.feed
    params = {
        "service": "WFS",
        "version": feed.version,
        "request": "GetFeature",
        "typeNames": feed.type_name,
        "srsName": feed.srs_name,
        "outputFormat": feed.output_format,
        "exceptions": "application/json",
        "cql_filter": build_cql_filter(feed, time_code),
    }
    return FeedQuery(time_code=time_code, params=params)


def _has_features(collection: dict[str, Any]) -> bool:
    return bool(collection.get("features"))


class JarticFeedClient:
    def __init__(
        self,
        config: Optional[AppConfig] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.config = config or get_config()
        self._http = http_client or httpx.Client(
            base_url=self.config.feed.base_url,
            timeout=self.config.feed.request_timeout_seconds,
            headers={"accept": "application/json"},
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "JarticFeedClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def fetch_bucket(self, time_code: str) -> dict[str, Any]:
        """Fetch the feature collection for one bucket; transport/HTTP errors propagate."""

        query = build_feed_query(self.config, time_code)
        response = self._http.get(self.config.feed.endpoint, params=query.params)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict) or not isinstance(payload.get("features"), list):
            raise FeedResponseError(f"feed response for {time_code} is not a feature collection")
        return payload

    def probe_latest(self, now: Optional[datetime] = None) -> ProbeResult:
        """Return the newest populated bucket within the configured lookback window."""

        feed = self.config.feed
        codes = bucket_time_codes(
            now or datetime.now(timezone.utc), feed.probe_attempts, feed.probe_step_minutes
        )

        # Each step moves to the next older token in the window.
        older = dict(zip(codes, codes[1:]))
        policy: BoundedProbePolicy[str, dict[str, Any]] = BoundedProbePolicy(
            max_attempts=len(codes),
            step=lambda code: older[code],
            is_success=_has_features,
        )
        try:
            outcome = policy.run(codes[0], self.fetch_bucket)
        except ProbeExhaustedError as exc:
            oldest = exc.last_cursor if isinstance(exc.last_cursor, str) else codes[-1]
            raise UpstreamUnavailableError(
                f"no populated time bucket between {codes[0]} and {oldest} "
                f"({exc.attempts} attempts)",
                attempts=exc.attempts,
                last_cursor=oldest,
            ) from exc

        time_code = outcome.cursor
        logger.info(
            "Resolved time bucket %s after %s attempt(s) (%s features).",
            time_code,
            outcome.attempts,
            len(outcome.value["features"]),
        )
        return ProbeResult(collection=outcome.value, time_code=time_code, attempts=outcome.attempts)
