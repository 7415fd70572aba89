"""
Merge strategies for reconciling a local slice with its remote copy.

Every strategy is total: both absent gives absent, one side absent gives
the other side, and only when both sides hold data does the
slice-specific rule run. Malformed input degrades to "absent" instead of
raising, so one corrupt slice cannot abort a pull.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from drillsync.domain.constants import ACTIVITY_SLICE, EXERCISE_PROGRESS_SLICE, SRS_SLICE
from drillsync.domain.timefmt import parse_ts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeContext:
    """
    Slice-level timestamps available to a strategy.

    Attributes:
        remote_updated: client_updated stamped on the remote record.
        local_updated: When this device last wrote the slice.
    """

    remote_updated: datetime | None = None
    local_updated: datetime | None = None


MergeStrategy = Callable[[Any, Any, MergeContext], Any]


def _table(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def _entry(table: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = table.get(key)
    return value if isinstance(value, dict) else None


def _count(entry: dict[str, Any], field: str) -> float:
    value = entry.get(field)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return value


def _per_entry(
    local: Any, remote: Any, pick: Callable[[dict[str, Any], dict[str, Any]], dict[str, Any]]
) -> dict[str, Any] | None:
    """Union both key sets; keys on one side keep that side, shared keys use ``pick``."""
    local_table = _table(local)
    remote_table = _table(remote)
    if local_table is None:
        return remote_table
    if remote_table is None:
        return local_table

    merged: dict[str, Any] = {}
    for key in [*local_table, *(k for k in remote_table if k not in local_table)]:
        left = _entry(local_table, key)
        right = _entry(remote_table, key)
        if left is None and right is None:
            continue
        if left is None:
            merged[key] = right
        elif right is None:
            merged[key] = left
        else:
            merged[key] = pick(left, right)
    return merged


# ---------- Strategies ----------


def last_writer_wins(local: Any, remote: Any, context: MergeContext) -> Any:
    """
    Whole-slice replacement for simple values (last module, UI flags).

    Without a remote timestamp there is nothing to compare, so local is
    kept. With both timestamps the later write wins and ties go to remote.
    With only a remote timestamp, remote wins: a successful earlier push
    means the server is at least as fresh as this device's last sync.
    """
    if local is None:
        return remote
    if remote is None:
        return local
    if context.remote_updated is None:
        return local
    if context.local_updated is None:
        return remote
    return remote if context.remote_updated >= context.local_updated else local


def merge_by_review_count(local: Any, remote: Any, context: MergeContext) -> Any:
    """
    Scheduling tables: the entry with more reviews wins; on a tie the later
    nextReview wins (further scheduling is more current).
    """

    def pick(left: dict[str, Any], right: dict[str, Any]) -> dict[str, Any]:
        left_count = _count(left, "reviewCount")
        right_count = _count(right, "reviewCount")
        if left_count != right_count:
            return left if left_count > right_count else right
        return _later(left, right, "nextReview")

    return _per_entry(local, remote, pick)


def merge_by_recency(local: Any, remote: Any, context: MergeContext) -> Any:
    """Exercise-outcome tables: the later lastAttempted wins."""

    def pick(left: dict[str, Any], right: dict[str, Any]) -> dict[str, Any]:
        return _later(left, right, "lastAttempted")

    return _per_entry(local, remote, pick)


def merge_activity_max(local: Any, remote: Any, context: MergeContext) -> Any:
    """
    Activity heatmaps: per-date maximum of the exercise counter.

    A device can only undercount a day it was offline for, never
    overcount, so the maximum loses nothing.
    """

    def pick(left: dict[str, Any], right: dict[str, Any]) -> dict[str, Any]:
        left_count = _count(left, "exercises")
        right_count = _count(right, "exercises")
        winner = right if right_count > left_count else left
        return {**winner, "exercises": max(left_count, right_count)}

    return _per_entry(local, remote, pick)


def _later(left: dict[str, Any], right: dict[str, Any], field: str) -> dict[str, Any]:
    """Entry with the later timestamp in ``field``; ties and unknowns favour remote."""
    left_ts = parse_ts(left.get(field))
    right_ts = parse_ts(right.get(field))
    if left_ts is None:
        return right
    if right_ts is None:
        return left
    return right if right_ts >= left_ts else left


# ---------- Registry ----------

DEFAULT_STRATEGIES: dict[str, MergeStrategy] = {
    SRS_SLICE: merge_by_review_count,
    EXERCISE_PROGRESS_SLICE: merge_by_recency,
    ACTIVITY_SLICE: merge_activity_max,
}


def strategy_for(
    name: str, strategies: Mapping[str, MergeStrategy] | None = None
) -> MergeStrategy:
    registry = DEFAULT_STRATEGIES if strategies is None else strategies
    return registry.get(name, last_writer_wins)


def merge_slice(
    name: str,
    local: Any,
    remote: Any,
    context: MergeContext | None = None,
    strategies: Mapping[str, MergeStrategy] | None = None,
) -> Any:
    """
    Merge one slice. Never raises.

    Returns None only when neither side holds usable data.
    """
    if local is None:
        return remote
    if remote is None:
        return local

    strategy = strategy_for(name, strategies)
    try:
        return strategy(local, remote, context or MergeContext())
    except Exception as e:
        logger.warning(f"[merge] {name}: strategy {strategy.__name__} failed ({e}); keeping local")
        return local
