"""Scheduling record table backed by the ``srs`` slice."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from drillsync.application.scheduler import schedule, validate_quality
from drillsync.application.slices import SliceGateway
from drillsync.domain.constants import SRS_SLICE, WEAK_EASE_THRESHOLD, WEAK_MIN_REPETITIONS
from drillsync.domain.models import ScheduleRecord
from drillsync.domain.timefmt import utcnow

logger = logging.getLogger(__name__)


@dataclass
class WeakCriteria:
    """
    Criteria for a record to count as "weak".

    All thresholds are optional. If not set, that criterion is not checked.
    A single pass doesn't establish a pattern, so by default the record needs
    at least two consecutive passing repetitions. A failed grade resets
    repetitions, so a recently failed record is left to the due queue.
    """

    max_ease: float | None = WEAK_EASE_THRESHOLD  # ease strictly below this
    min_repetitions: int | None = WEAK_MIN_REPETITIONS

    def matches(self, record: ScheduleRecord) -> bool:
        if self.max_ease is not None and record.ease_factor >= self.max_ease:
            return False
        if self.min_repetitions is not None and record.repetitions < self.min_repetitions:
            return False
        return True


class ScheduleStore:
    """One ScheduleRecord per exercise key, persisted as a single slice."""

    def __init__(self, gateway: SliceGateway, clock: Callable[[], datetime] = utcnow):
        self.gateway = gateway
        self._clock = clock

    def _raw_table(self) -> dict[str, Any]:
        data = self.gateway.get(SRS_SLICE)
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed {SRS_SLICE} slice ({type(data).__name__})")
            return {}
        return data

    def load_all(self) -> dict[str, ScheduleRecord]:
        """Parse the whole table, skipping malformed entries."""
        records: dict[str, ScheduleRecord] = {}
        for key, entry in self._raw_table().items():
            try:
                records[key] = ScheduleRecord.from_dict(entry)
            except ValueError as e:
                logger.debug(f"Skipping schedule entry {key}: {e}")
        return records

    def get(self, key: str) -> ScheduleRecord | None:
        entry = self._raw_table().get(key)
        if entry is None:
            return None
        try:
            return ScheduleRecord.from_dict(entry)
        except ValueError:
            return None

    def keys(self) -> list[str]:
        return list(self.load_all())

    def record_review(
        self,
        key: str,
        quality: Any,
        label: str | None = None,
        now: datetime | None = None,
    ) -> ScheduleRecord:
        """Validate the grade, schedule the key, and persist the result."""
        grade = validate_quality(quality)
        table = self._raw_table()
        current = self.get(key)
        updated = schedule(current, grade, now=now or self._clock(), label=label)
        table[key] = updated.to_dict()
        self.gateway.set(SRS_SLICE, table)
        logger.debug(
            f"[review] {key} grade={grade.name.lower()} interval={updated.interval} "
            f"ease={updated.ease_factor} reviews={updated.review_count}"
        )
        return updated

    def due(self, now: datetime | None = None) -> list[tuple[str, ScheduleRecord]]:
        """Due records, most overdue first, then hardest (lowest ease) first."""
        now = now or self._clock()
        due = [(k, r) for k, r in self.load_all().items() if r.is_due(now)]
        due.sort(key=lambda item: (item[1].next_review, item[1].ease_factor))
        return due

    def due_count(self, now: datetime | None = None) -> int:
        return len(self.due(now))

    def weakest(
        self, count: int = 10, criteria: WeakCriteria | None = None
    ) -> list[tuple[str, ScheduleRecord]]:
        """Weak records ordered by ascending ease factor, capped at count."""
        criteria = criteria or WeakCriteria()
        weak = [(k, r) for k, r in self.load_all().items() if criteria.matches(r)]
        weak.sort(key=lambda item: item[1].ease_factor)
        return weak[:count]

    def clear(self) -> None:
        self.gateway.set(SRS_SLICE, {})
        logger.info("Cleared all scheduling records")
