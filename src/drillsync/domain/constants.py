"""Centralized constants for drillsync.

All magic numbers and defaults live here so every layer imports from a
single source of truth.
"""

# ---------- Scheduler (SM-2) ----------
DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
FIRST_INTERVAL_DAYS = 1
SECOND_INTERVAL_DAYS = 6
FAIL_INTERVAL_DAYS = 1
PASSING_SCORE = 3  # SM-2 minimum correct response

# ---------- Queue Builder ----------
MIN_SESSION_SIZE = 5
WEAKEST_POOL_FACTOR = 2
DEFAULT_SESSION_SIZE = 10
WEAK_EASE_THRESHOLD = 2.5
WEAK_MIN_REPETITIONS = 2

# ---------- Sync ----------
SYNC_DEBOUNCE_SECONDS = 3.0
INITIAL_PULL_DELAY = 0.5  # seconds, lets the first render settle
REQUEST_TIMEOUT = 30.0
RESPONSIVENESS_TIMEOUT = 2.0
MAX_SLICE_BYTES = 1_048_576
SYNC_COLLECTION = "sync_data"
PAGE_SIZE = 200

# ---------- Slices ----------
SRS_SLICE = "srs"
EXERCISE_PROGRESS_SLICE = "exercise-progress"
ACTIVITY_SLICE = "activity"
STREAKS_SLICE = "streaks"

SYNCED_SLICES = [
    "progress",
    EXERCISE_PROGRESS_SLICE,
    SRS_SLICE,
    "personal-notes",
    STREAKS_SLICE,
    ACTIVITY_SLICE,
    "last-module",
    "focus-mode",
    "timer-sound",
]

# ---------- Backup ----------
BACKUP_FORMAT_VERSION = 1
