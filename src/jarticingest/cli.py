from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from jarticingest.ingestion.errors import UpstreamUnavailableError, classify_ingest_error
from jarticingest.ingestion.ledger import safe_append_ledger_entry
from jarticingest.ingestion.pipeline import run_ingest
from jarticingest.logging_config import configure_logging
from jarticingest.settings import AppConfig, load_config
from jarticingest.storage.backend import open_sink
from jarticingest.utils.time import parse_time_code


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_UPSTREAM_UNAVAILABLE = 2


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Ingest the newest populated JARTIC 5-minute bucket into the observation table."
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Config YAML path (default: $JARTIC_CONFIG or configs/config.yaml).",
    )
    parser.add_argument(
        "--backend",
        choices=["duckdb", "postgis"],
        default=None,
        help="Override sink backend (default: config sink.backend).",
    )
    parser.add_argument(
        "--database",
        default=None,
        help="Override DuckDB file path (default: config sink.duckdb_path).",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Rows per upsert batch (default: config ingestion.batch_size).",
    )
    parser.add_argument(
        "--probe-attempts",
        type=int,
        default=None,
        help="How many 5-minute buckets to try, newest first (default: config feed.probe_attempts).",
    )
    parser.add_argument(
        "--dataset-type",
        default=None,
        help="Dataset type tag stored with every row (default: config ingestion.dataset_type).",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override the root log level (default: from configs/logging.yaml).",
    )
    parser.add_argument(
        "--ledger-path",
        default=None,
        help="Run ledger JSONL path (default: <paths.state_dir>/ingest_ledger.jsonl).",
    )
    return parser.parse_args(argv)


def _override_config(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    sink_update: dict[str, object] = {}
    if args.backend:
        sink_update["backend"] = args.backend
    if args.database:
        sink_update["duckdb_path"] = Path(args.database)

    ingestion_update: dict[str, object] = {}
    if args.batch_size is not None:
        ingestion_update["batch_size"] = int(args.batch_size)
    if args.dataset_type:
        ingestion_update["dataset_type"] = args.dataset_type

    feed_update: dict[str, object] = {}
    if args.probe_attempts is not None:
        feed_update["probe_attempts"] = int(args.probe_attempts)

    updated = config.model_copy(
        update={
            "sink": config.sink.model_copy(update=sink_update),
            "ingestion": config.ingestion.model_copy(update=ingestion_update),
            "feed": config.feed.model_copy(update=feed_update),
        }
    )
    return updated.resolve_paths()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(level=args.log_level)

    config = _override_config(load_config(args.config), args)
    ledger_path = Path(args.ledger_path) if args.ledger_path else config.paths.state_dir / "ingest_ledger.jsonl"
    started = datetime.now(timezone.utc)
    entry: dict[str, object] = {
        "generated_at_utc": started.isoformat(),
        "source": "jartic",
        "dataset_type": config.ingestion.dataset_type,
        "backend": config.sink.backend,
    }

    try:
        with open_sink(config) as sink:
            report = run_ingest(config, sink=sink, now=started)
    except UpstreamUnavailableError as exc:
        info = classify_ingest_error(exc)
        logger.error("Upstream unavailable: %s", exc)
        safe_append_ledger_entry(
            ledger_path,
            {**entry, "event": "run_failed", "ok": False, "error_code": info.code, "error": info.message},
        )
        return EXIT_UPSTREAM_UNAVAILABLE
    except Exception as exc:  # noqa: BLE001 - record the outcome before exiting
        info = classify_ingest_error(exc)
        logger.exception("Run failed (%s): %s", info.code, info.message)
        safe_append_ledger_entry(
            ledger_path,
            {**entry, "event": "run_failed", "ok": False, "error_code": info.code, "error": info.message},
        )
        return EXIT_RUN_FAILED

    safe_append_ledger_entry(
        ledger_path,
        {
            **entry,
            "event": "run_completed",
            "ok": True,
            "bucket_start": parse_time_code(report.time_code).isoformat(),
            **report.to_ledger_entry(),
        },
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
