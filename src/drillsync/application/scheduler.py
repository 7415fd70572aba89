"""
SM-2 scheduler for exercise reviews.

Pure computation: given the previous record (or None) and a grade, return
the next record. Persistence is the record store's job.

Each grade maps onto the classic SM-2 response score:
    EASY = 5  solved without help
    GOOD = 4  solved with hints
    HARD = 3  struggled (SM-2 minimum correct)
    FAIL = 1  needed the solution (reset)
"""

from datetime import datetime, timedelta
from typing import Any

from drillsync.domain.constants import (
    DEFAULT_EASE_FACTOR,
    FAIL_INTERVAL_DAYS,
    FIRST_INTERVAL_DAYS,
    MIN_EASE_FACTOR,
    PASSING_SCORE,
    SECOND_INTERVAL_DAYS,
)
from drillsync.domain.exceptions import InvalidQualityError
from drillsync.domain.models import ExerciseProgress, Quality, ScheduleRecord, SelfRating
from drillsync.domain.timefmt import utcnow

SM2_SCORES = {
    Quality.FAIL: 1,
    Quality.HARD: 3,
    Quality.GOOD: 4,
    Quality.EASY: 5,
}


def validate_quality(value: Any) -> Quality:
    """
    Boundary check for user-supplied grades.

    Accepts a Quality, an ordinal 0-3, or a grade name ("good").
    Raises InvalidQualityError for anything else.
    """
    if isinstance(value, Quality):
        return value
    if isinstance(value, str):
        name = value.strip().upper()
        if name in Quality.__members__:
            return Quality[name]
        if name.isdigit():
            value = int(name)
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return Quality(value)
        except ValueError:
            pass
    raise InvalidQualityError(
        f"invalid quality {value!r}; expected one of "
        + ", ".join(q.name.lower() for q in Quality)
        + " (or 0-3)"
    )


def adjust_ease(ease_factor: float, quality: Quality) -> float:
    penalty = 5 - SM2_SCORES[quality]
    updated = ease_factor + (0.1 - penalty * (0.08 + penalty * 0.02))
    return round(max(updated, MIN_EASE_FACTOR), 2)


def schedule(
    record: ScheduleRecord | None,
    quality: Quality,
    now: datetime | None = None,
    label: str | None = None,
) -> ScheduleRecord:
    """
    Compute the next scheduling state after one review.

    Args:
        record: Current state, or None for a first review.
        quality: Validated grade (see validate_quality).
        now: Review time; defaults to the current UTC time.
        label: Display name to store; the previous label is kept when omitted.

    Returns:
        A new ScheduleRecord. The input is never mutated.
    """
    now = now or utcnow()

    ease = record.ease_factor if record else DEFAULT_EASE_FACTOR
    interval = record.interval if record else 0
    repetitions = record.repetitions if record else 0
    review_count = record.review_count if record else 0

    if SM2_SCORES[quality] >= PASSING_SCORE:
        if repetitions == 0:
            next_interval = FIRST_INTERVAL_DAYS
        elif repetitions == 1:
            next_interval = SECOND_INTERVAL_DAYS
        else:
            next_interval = round(interval * ease)
        interval = max(next_interval, interval)
        repetitions += 1
    else:
        repetitions = 0
        interval = FAIL_INTERVAL_DAYS

    return ScheduleRecord(
        ease_factor=adjust_ease(ease, quality),
        interval=interval,
        repetitions=repetitions,
        next_review=now + timedelta(days=interval),
        last_quality=quality,
        review_count=review_count + 1,
        last_reviewed=now,
        label=label or (record.label if record else None),
    )


def derive_quality(progress: ExerciseProgress | None) -> Quality | None:
    """
    Derive a grade from how the learner interacted with an exercise.

    The normal flow is attempt, open the solution to check, then self-rate,
    so viewing the solution alone is not a penalty when a rating exists.
    Returns None when there is nothing to grade.
    """
    if progress is None:
        return None

    rating = progress.self_rating
    if rating == SelfRating.GOT_IT:
        return Quality.GOOD if progress.hints_used else Quality.EASY
    if rating == SelfRating.STRUGGLED:
        return Quality.HARD
    if rating == SelfRating.PEEKED:
        return Quality.FAIL

    # No self-rating yet
    if not progress.solution_viewed:
        return Quality.HARD if progress.hints_used else Quality.GOOD
    return Quality.FAIL
