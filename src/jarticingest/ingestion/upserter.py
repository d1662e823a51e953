from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Sequence, TypeVar

from jarticingest.ingestion.errors import classify_ingest_error
from jarticingest.ingestion.schemas import NaturalKey, TrafficObservation
from jarticingest.storage.backend import ObservationSink


logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    for offset in range(0, len(items), size):
        yield items[offset : offset + size]


def dedupe_by_natural_key(rows: Iterable[TrafficObservation]) -> list[TrafficObservation]:
    """Keep the last row per natural key, preserving first-seen order of keys.

    SQL upserts reject a statement that touches the same key twice, so a batch must not
    carry duplicates.
    """

    latest: dict[NaturalKey, TrafficObservation] = {}
    for row in rows:
        latest[row.natural_key] = row
    return list(latest.values())


@dataclass(frozen=True)
class BatchFailure:
    batch_index: int
    offset: int
    size: int
    code: str
    message: str


@dataclass
class UpsertReport:
    rows_written: int = 0
    batches_total: int = 0
    batches_failed: int = 0
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def batches_succeeded(self) -> int:
        return self.batches_total - self.batches_failed


class BatchedUpserter:
    """Write rows in fixed-size batches, pausing between batches.

    A failed batch is recorded and the remaining batches are still attempted; nothing is
    retried within the run.
    """

    def __init__(
        self,
        sink: ObservationSink,
        batch_size: int = 20,
        pause_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.sink = sink
        self.batch_size = int(batch_size)
        self.pause_seconds = max(0.0, float(pause_seconds))
        self._sleep = sleep

    def upsert_all(self, rows: Sequence[TrafficObservation]) -> UpsertReport:
        report = UpsertReport()
        for number, batch in enumerate(chunked(rows, self.batch_size), start=1):
            if number > 1 and self.pause_seconds > 0:
                self._sleep(self.pause_seconds)

            report.batches_total += 1
            offset = (number - 1) * self.batch_size
            try:
                report.rows_written += self.sink.upsert(batch)
            except Exception as exc:  # noqa: BLE001 - one batch must not stop the rest
                info = classify_ingest_error(exc)
                report.batches_failed += 1
                report.failures.append(
                    BatchFailure(
                        batch_index=number,
                        offset=offset,
                        size=len(batch),
                        code=info.code,
                        message=info.message,
                    )
                )
                logger.error(
                    "Batch %s (rows %s-%s) failed (%s): %s",
                    number,
                    offset,
                    offset + len(batch) - 1,
                    info.code,
                    info.message,
                )
                continue
            logger.debug("Batch %s upserted %s rows.", number, len(batch))

        logger.info(
            "Upserted %s rows in %s batch(es); %s failed.",
            report.rows_written,
            report.batches_total,
            report.batches_failed,
        )
        return report
