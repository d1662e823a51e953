"""One ingestion run: probe -> normalize -> upsert.

Only an exhausted probe (`UpstreamUnavailableError`) fails the run. Malformed features and
failed batches are logged and reported as counts so the freshest bucket lands even when part of
it cannot be stored; the next run re-covers the same bucket if it is still the newest.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from jarticingest.ingestion.feed_client import JarticFeedClient
from jarticingest.ingestion.normalizer import FeatureFailure, normalize_features
from jarticingest.ingestion.regions import regions_from_config
from jarticingest.ingestion.upserter import BatchFailure, BatchedUpserter, dedupe_by_natural_key
from jarticingest.settings import AppConfig
from jarticingest.storage.backend import ObservationSink


logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    time_code: str
    probe_attempts: int
    features_seen: int
    rows_normalized: int
    malformed_features: int
    duplicate_rows: int
    rows_written: int
    batches_total: int
    batches_failed: int
    feature_failures: list[FeatureFailure] = field(default_factory=list)
    batch_failures: list[BatchFailure] = field(default_factory=list)

    def to_ledger_entry(self) -> dict[str, Any]:
        return asdict(self)


def run_ingest(
    config: AppConfig,
    *,
    sink: ObservationSink,
    feed_client: Optional[JarticFeedClient] = None,
    now: Optional[datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    current = now or datetime.now(timezone.utc)
    owns_client = feed_client is None
    client = feed_client or JarticFeedClient(config=config)
    try:
        probe = client.probe_latest(now=current)
    finally:
        if owns_client:
            client.close()

    features = probe.features
    ingestion = config.ingestion
    normalized = normalize_features(
        features,
        dataset_type=ingestion.dataset_type,
        time_code=probe.time_code,
        observed_at=current,
        regions=regions_from_config(config),
        fields=ingestion.fields,
        station_code_prefix=ingestion.station_code_prefix,
        srid=config.sink.srid,
    )
    rows = dedupe_by_natural_key(normalized.rows)
    duplicates = len(normalized.rows) - len(rows)
    if duplicates:
        logger.warning("Dropped %s duplicate row(s) sharing a natural key (kept last).", duplicates)

    upserter = BatchedUpserter(
        sink,
        batch_size=ingestion.batch_size,
        pause_seconds=ingestion.batch_pause_seconds,
        sleep=sleep,
    )
    upserted = upserter.upsert_all(rows)

    report = RunReport(
        time_code=probe.time_code,
        probe_attempts=probe.attempts,
        features_seen=len(features),
        rows_normalized=len(normalized.rows),
        malformed_features=len(normalized.failures),
        duplicate_rows=duplicates,
        rows_written=upserted.rows_written,
        batches_total=upserted.batches_total,
        batches_failed=upserted.batches_failed,
        feature_failures=normalized.failures,
        batch_failures=upserted.failures,
    )
    logger.info(
        "Run for bucket %s: %s features, %s rows written, %s malformed, %s/%s batches failed.",
        report.time_code,
        report.features_seen,
        report.rows_written,
        report.malformed_features,
        report.batches_failed,
        report.batches_total,
    )
    return report
