"""
Exercise outcomes, activity heatmap and streak counters.

Each table is its own slice so it merges independently:
    exercise-progress  key -> {status, hintsUsed, solutionViewed, selfRating, lastAttempted}
    activity           YYYY-MM-DD -> {exercises: n}
    streaks            {current, longest, lastActiveDate}
"""

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta
from typing import Any

from drillsync.application.slices import SliceGateway
from drillsync.domain.constants import ACTIVITY_SLICE, EXERCISE_PROGRESS_SLICE, STREAKS_SLICE
from drillsync.domain.models import ExerciseProgress, SelfRating
from drillsync.domain.timefmt import day_key, utcnow

logger = logging.getLogger(__name__)


class ExerciseProgressStore:
    def __init__(self, gateway: SliceGateway, clock: Callable[[], datetime] = utcnow):
        self.gateway = gateway
        self._clock = clock

    def _raw_table(self) -> dict[str, Any]:
        data = self.gateway.get(EXERCISE_PROGRESS_SLICE)
        return data if isinstance(data, dict) else {}

    def load_all(self) -> dict[str, ExerciseProgress]:
        entries: dict[str, ExerciseProgress] = {}
        for key, raw in self._raw_table().items():
            try:
                entries[key] = ExerciseProgress.from_dict(raw)
            except ValueError as e:
                logger.debug(f"Skipping progress entry {key}: {e}")
        return entries

    def get(self, key: str) -> ExerciseProgress | None:
        return self.load_all().get(key)

    def update(self, key: str, **changes: Any) -> ExerciseProgress:
        """
        Apply field changes to one entry and stamp lastAttempted.

        Accepts ExerciseProgress field names (hints_used=True, self_rating=...).
        """
        allowed = {f.name for f in fields(ExerciseProgress)} - {"last_attempted"}
        unknown = set(changes) - allowed
        if unknown:
            raise TypeError(f"unknown progress fields: {sorted(unknown)}")

        current = self.get(key) or ExerciseProgress()
        values = asdict(current)
        values.update(changes)
        values["self_rating"] = SelfRating(values["self_rating"])
        values["last_attempted"] = self._clock()
        updated = ExerciseProgress(**values)

        table = self._raw_table()
        table[key] = updated.to_dict()
        self.gateway.set(EXERCISE_PROGRESS_SLICE, table)
        return updated

    def rate(self, key: str, rating: SelfRating) -> ExerciseProgress:
        return self.update(key, self_rating=rating, status="completed")


@dataclass
class StreakState:
    current: int = 0
    longest: int = 0
    last_active_date: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "StreakState":
        if not isinstance(data, dict):
            return cls()
        try:
            return cls(
                current=int(data.get("current") or 0),
                longest=int(data.get("longest") or 0),
                last_active_date=data.get("lastActiveDate") or None,
            )
        except (TypeError, ValueError):
            return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "longest": self.longest,
            "lastActiveDate": self.last_active_date,
        }


class ActivityTracker:
    """Daily exercise counts plus the consecutive-day streak."""

    def __init__(self, gateway: SliceGateway, clock: Callable[[], datetime] = utcnow):
        self.gateway = gateway
        self._clock = clock

    def _today(self) -> str:
        return day_key(self._clock())

    def _yesterday(self) -> str:
        return day_key(self._clock() - timedelta(days=1))

    def activity(self) -> dict[str, int]:
        data = self.gateway.get(ACTIVITY_SLICE)
        if not isinstance(data, dict):
            return {}
        counts: dict[str, int] = {}
        for date, entry in data.items():
            if isinstance(entry, dict) and isinstance(entry.get("exercises"), int | float):
                counts[date] = int(entry["exercises"])
        return counts

    def streaks(self) -> StreakState:
        return StreakState.from_dict(self.gateway.get(STREAKS_SLICE))

    def record_activity(self) -> None:
        today = self._today()

        data = self.gateway.get(ACTIVITY_SLICE)
        activity = data if isinstance(data, dict) else {}
        entry = activity.get(today)
        count = entry.get("exercises", 0) if isinstance(entry, dict) else 0
        activity[today] = {"exercises": int(count) + 1}
        self.gateway.set(ACTIVITY_SLICE, activity)

        streak = self.streaks()
        if streak.last_active_date != today:
            if streak.last_active_date == self._yesterday():
                streak.current += 1
            else:
                streak.current = 1
            streak.last_active_date = today
        streak.longest = max(streak.longest, streak.current)
        self.gateway.set(STREAKS_SLICE, streak.to_dict())

    def current_streak(self) -> int:
        streak = self.streaks()
        if not streak.last_active_date:
            return 0
        # Broken if the last active day is before yesterday
        if streak.last_active_date < self._yesterday():
            return 0
        return streak.current

    def longest_streak(self) -> int:
        return self.streaks().longest

    def today_count(self) -> int:
        return self.activity().get(self._today(), 0)
