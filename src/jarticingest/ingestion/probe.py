from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from jarticingest.ingestion.errors import ProbeExhaustedError, classify_ingest_error


logger = logging.getLogger(__name__)

C = TypeVar("C")
R = TypeVar("R")


@dataclass(frozen=True)
class ProbeOutcome(Generic[C, R]):
    cursor: C
    value: R
    attempts: int


@dataclass(frozen=True)
class BoundedProbePolicy(Generic[C, R]):
    """Try `attempt(cursor)` for successive cursors until one result passes `is_success`.

    Exceptions from `attempt` count as an unsuccessful attempt; the probe moves on to the next
    cursor. When `max_attempts` cursors have been tried, `ProbeExhaustedError` is raised.
    """

    max_attempts: int
    step: Callable[[C], C]
    is_success: Callable[[R], bool]

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def run(self, start: C, attempt: Callable[[C], R]) -> ProbeOutcome[C, R]:
        cursor = start
        for number in range(1, self.max_attempts + 1):
            if number > 1:
                cursor = self.step(cursor)
            try:
                value = attempt(cursor)
            except Exception as exc:  # noqa: BLE001 - a failed attempt is treated as empty
                info = classify_ingest_error(exc)
                logger.warning(
                    "Probe attempt %s/%s at %s failed (%s): %s",
                    number,
                    self.max_attempts,
                    cursor,
                    info.code,
                    info.message,
                )
                continue
            if self.is_success(value):
                return ProbeOutcome(cursor=cursor, value=value, attempts=number)
            logger.info("Probe attempt %s/%s at %s returned no data.", number, self.max_attempts, cursor)

        raise ProbeExhaustedError(
            f"no successful result after {self.max_attempts} attempts (last cursor: {cursor})",
            attempts=self.max_attempts,
            last_cursor=cursor,
        )
