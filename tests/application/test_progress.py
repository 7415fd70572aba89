import pytest
from conftest import NOW

from drillsync.application.progress import ActivityTracker, ExerciseProgressStore
from drillsync.domain.constants import ACTIVITY_SLICE, EXERCISE_PROGRESS_SLICE, STREAKS_SLICE
from drillsync.domain.models import SelfRating


@pytest.fixture
def progress(gateway, clock):
    return ExerciseProgressStore(gateway, clock=clock)


@pytest.fixture
def tracker(gateway, clock):
    return ActivityTracker(gateway, clock=clock)


# --- Exercise progress ---


def test_update_stamps_last_attempted(progress, gateway):
    entry = progress.update("m1_loop_v1", hints_used=True)

    assert entry.hints_used is True
    assert entry.status == "attempted"
    assert entry.last_attempted == NOW
    raw = gateway.get(EXERCISE_PROGRESS_SLICE)["m1_loop_v1"]
    assert raw == {
        "status": "attempted",
        "hintsUsed": True,
        "solutionViewed": False,
        "selfRating": 0,
        "lastAttempted": "2024-03-10T12:00:00.000Z",
    }


def test_update_merges_with_existing(progress):
    progress.update("m1_loop_v1", hints_used=True)
    entry = progress.update("m1_loop_v1", solution_viewed=True)
    assert entry.hints_used is True
    assert entry.solution_viewed is True


def test_update_rejects_unknown_fields(progress):
    with pytest.raises(TypeError):
        progress.update("m1_loop_v1", hintz=True)


def test_rate_completes_exercise(progress):
    entry = progress.rate("m1_loop_v1", SelfRating.STRUGGLED)
    assert entry.status == "completed"
    assert progress.get("m1_loop_v1").self_rating == SelfRating.STRUGGLED


def test_malformed_progress_entries_are_skipped(progress, gateway):
    gateway.set(EXERCISE_PROGRESS_SLICE, {"bad": {"selfRating": 9}, "junk": "x"})
    assert progress.load_all() == {}


# --- Activity and streaks ---


def test_record_activity_counts_today(tracker, gateway):
    tracker.record_activity()
    tracker.record_activity()

    assert tracker.today_count() == 2
    assert gateway.get(ACTIVITY_SLICE) == {"2024-03-10": {"exercises": 2}}
    assert tracker.current_streak() == 1


def test_streak_grows_on_consecutive_days(tracker, clock):
    tracker.record_activity()
    clock.advance(days=1)
    tracker.record_activity()

    assert tracker.current_streak() == 2
    assert tracker.longest_streak() == 2


def test_streak_breaks_after_a_missed_day(tracker, clock):
    tracker.record_activity()
    clock.advance(days=1)
    tracker.record_activity()
    clock.advance(days=2)

    assert tracker.current_streak() == 0

    tracker.record_activity()
    assert tracker.current_streak() == 1
    assert tracker.longest_streak() == 2


def test_streak_still_alive_the_next_day(tracker, clock):
    tracker.record_activity()
    clock.advance(days=1)
    assert tracker.current_streak() == 1


def test_malformed_streaks_reset(tracker, gateway):
    gateway.set(STREAKS_SLICE, {"current": "many"})
    assert tracker.current_streak() == 0
    tracker.record_activity()
    assert tracker.streaks().current == 1
