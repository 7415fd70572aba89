"""
Domain models for scheduling, practice sessions and sync.

These are pure data structures with no I/O. Persisted models carry
``to_dict``/``from_dict`` pairs that speak the camelCase JSON shape the
browser client writes, so slices round-trip between devices unchanged.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

from drillsync.domain.timefmt import format_ts, parse_ts


class Quality(IntEnum):
    """Self-reported review outcome, weakest to strongest."""

    FAIL = 0
    HARD = 1
    GOOD = 2
    EASY = 3


class SelfRating(IntEnum):
    """Rating buttons shown after an exercise's solution is revealed."""

    NONE = 0
    GOT_IT = 1
    STRUGGLED = 2
    PEEKED = 3


class Policy(str, Enum):
    REVIEW = "review"
    WEAKEST = "weakest"
    MIXED = "mixed"
    DISCOVER = "discover"


class SessionPhase(str, Enum):
    CONFIGURING = "configuring"
    ACTIVE = "active"
    COMPLETE = "complete"


class SessionOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"


class SyncStatus(str, Enum):
    LOGGED_OUT = "logged-out"
    SYNCED = "synced"
    SYNCING = "syncing"
    OFFLINE = "offline"


def _quality_from_stored(value: Any) -> Quality:
    # Older clients stored the raw SM-2 score (0-5) instead of the ordinal.
    number = int(value)
    if number <= Quality.EASY:
        return Quality(max(number, 0))
    return {4: Quality.GOOD}.get(number, Quality.EASY)


@dataclass(frozen=True)
class ScheduleRecord:
    """
    Mastery state for one exercise key.

    Attributes:
        ease_factor: Interval growth multiplier (never below the floor).
        interval: Days until the next scheduled review.
        repetitions: Consecutive successful reviews (reset on failure).
        next_review: The record is due once now >= next_review.
        last_quality: Last self-reported grade.
        review_count: Total reviews ever recorded; authority proxy when merging.
        last_reviewed: When the last review happened.
        label: Display name captured at write time for offline rendering.
    """

    ease_factor: float
    interval: int
    repetitions: int
    next_review: datetime
    last_quality: Quality
    review_count: int
    last_reviewed: datetime | None = None
    label: str | None = None

    def is_due(self, now: datetime) -> bool:
        return self.next_review <= now

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "easeFactor": self.ease_factor,
            "interval": self.interval,
            "repetitions": self.repetitions,
            "nextReview": format_ts(self.next_review),
            "lastQuality": int(self.last_quality),
            "reviewCount": self.review_count,
        }
        if self.last_reviewed is not None:
            data["lastReviewed"] = format_ts(self.last_reviewed)
        if self.label:
            data["label"] = self.label
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ScheduleRecord":
        """Build a record from its stored shape; raises ValueError if malformed."""
        if not isinstance(data, dict):
            raise ValueError(f"schedule entry must be an object, got {type(data).__name__}")

        next_review = parse_ts(data.get("nextReview"))
        if next_review is None:
            raise ValueError(f"invalid nextReview: {data.get('nextReview')!r}")

        try:
            ease = float(data["easeFactor"])
            interval = int(data.get("interval", 0))
            repetitions = int(data.get("repetitions", 0))
            review_count = int(data.get("reviewCount") or 0)
            last_quality = _quality_from_stored(data.get("lastQuality", 0))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"malformed schedule entry: {e}") from e

        label = data.get("label")
        return cls(
            ease_factor=ease,
            interval=interval,
            repetitions=repetitions,
            next_review=next_review,
            last_quality=last_quality,
            review_count=review_count,
            last_reviewed=parse_ts(data.get("lastReviewed")),
            label=label if isinstance(label, str) else None,
        )


@dataclass
class ExerciseProgress:
    """One entry of the exercise-outcome table."""

    status: str = "attempted"
    hints_used: bool = False
    solution_viewed: bool = False
    self_rating: SelfRating = SelfRating.NONE
    last_attempted: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "hintsUsed": self.hints_used,
            "solutionViewed": self.solution_viewed,
            "selfRating": int(self.self_rating),
            "lastAttempted": format_ts(self.last_attempted) if self.last_attempted else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ExerciseProgress":
        if not isinstance(data, dict):
            raise ValueError("exercise progress entry must be an object")
        try:
            rating = SelfRating(int(data.get("selfRating") or 0))
        except ValueError as e:
            raise ValueError(f"invalid selfRating: {data.get('selfRating')!r}") from e
        return cls(
            status=str(data.get("status", "attempted")),
            hints_used=bool(data.get("hintsUsed", False)),
            solution_viewed=bool(data.get("solutionViewed", False)),
            self_rating=rating,
            last_attempted=parse_ts(data.get("lastAttempted")),
        )


@dataclass
class QueueItem:
    """
    A key plus the content references needed to render it.

    Built per session and never persisted.
    """

    key: str
    label: str | None = None
    module: int | None = None
    category: str | None = None
    problem: str | None = None
    variant: str | None = None
    content: Any = None


@dataclass
class SessionState:
    """Position and running tally of one practice session."""

    queue: list[QueueItem]
    index: int = 0
    completed: int = 0
    skipped: int = 0

    @property
    def current(self) -> QueueItem | None:
        if 0 <= self.index < len(self.queue):
            return self.queue[self.index]
        return None

    @property
    def total(self) -> int:
        return len(self.queue)


@dataclass(frozen=True)
class SessionSummary:
    completed: int
    skipped: int
    got_it: int
    struggled: int
    peeked: int
    total: int


@dataclass
class SyncRecord:
    """
    Remote-side row: one slice for one (user, course).

    ``data`` is the slice's JSON value; ``client_updated`` is the ISO
    timestamp the pushing client stamped on it.
    """

    key: str
    data: Any
    client_updated: str | None = None
    id: str | None = None
    user: str | None = None
    course: str | None = None
