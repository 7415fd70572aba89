"""
Queue builder for practice sessions.

Selects and orders exercise keys under one of four policies:
1. review   - due records (most overdue first)
2. weakest  - lowest ease factor first
3. mixed    - due then weakest, deduplicated
4. discover - never-attempted keys first, each partition shuffled

The builder never interprets keys itself; eligibility is decided by the
caller's predicate.
"""

import logging
import random
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from datetime import datetime

from drillsync.application.record_store import ScheduleStore, WeakCriteria
from drillsync.domain.constants import MIN_SESSION_SIZE, WEAKEST_POOL_FACTOR
from drillsync.domain.models import Policy, QueueItem, ScheduleRecord

logger = logging.getLogger(__name__)

KeyFilter = Callable[[str], bool]

_VARIANT_SUFFIX = re.compile(r"_v\d+$")


def _accept_all(key: str) -> bool:
    return True


def base_key(key: str) -> str:
    """Strip a trailing variant marker: ``m1_loop_v2`` -> ``m1_loop``."""
    return _VARIANT_SUFFIX.sub("", key)


def _dedupe(keys: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for key in keys:
        if key not in seen:
            seen.add(key)
            ordered.append(key)
    return ordered


class QueueBuilder:
    def __init__(
        self,
        store: ScheduleStore,
        catalog: Iterable[str] = (),
        min_pool: int = MIN_SESSION_SIZE,
        weak_criteria: WeakCriteria | None = None,
        rng: random.Random | None = None,
    ):
        """
        Args:
            store: Scheduling records to select from.
            catalog: Every known exercise key; the universe for discover.
            min_pool: Minimum qualifying keys for review/weakest sessions.
            weak_criteria: What counts as weak; defaults to WeakCriteria().
            rng: Source of randomness for shuffling (seed it in tests).
        """
        self.store = store
        self.catalog = list(catalog)
        self.min_pool = min_pool
        self.weak_criteria = weak_criteria or WeakCriteria()
        self._rng = rng or random.Random()

    # ---------- Candidate pools ----------

    def _due_keys(self, now: datetime | None) -> list[str]:
        return [key for key, _ in self.store.due(now)]

    def _weak_keys(self, pool_size: int) -> list[str]:
        return [key for key, _ in self.store.weakest(pool_size, self.weak_criteria)]

    def candidates(
        self,
        policy: Policy | str,
        count: int,
        is_eligible: KeyFilter | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        """Filtered, deduplicated candidates before minimum-pool and count rules."""
        policy = Policy(policy)
        is_eligible = is_eligible or _accept_all

        if policy == Policy.REVIEW:
            pool = self._due_keys(now)
        elif policy == Policy.WEAKEST:
            pool = self._weak_keys(count * WEAKEST_POOL_FACTOR)
        elif policy == Policy.MIXED:
            pool = self._due_keys(now) + self._weak_keys(count)
        else:
            return self.discover(len(self._universe()), is_eligible)

        return [key for key in _dedupe(pool) if is_eligible(key)]

    # ---------- Public API ----------

    def build(
        self,
        policy: Policy | str,
        count: int,
        is_eligible: KeyFilter | None = None,
        now: datetime | None = None,
        pad: bool = False,
    ) -> list[str]:
        """
        Build an ordered list of at most ``count`` keys.

        Returns an empty list when review/weakest find fewer than
        ``min_pool`` keys, or when mixed finds none. With ``pad=True`` a
        usable queue shorter than ``count`` is topped up with other
        eligible recorded keys in random order.
        """
        policy = Policy(policy)
        is_eligible = is_eligible or _accept_all
        if count <= 0:
            return []

        if policy == Policy.DISCOVER:
            return self.discover(count, is_eligible)

        keys = self.candidates(policy, count, is_eligible, now)

        if policy in (Policy.REVIEW, Policy.WEAKEST) and len(keys) < self.min_pool:
            logger.info(
                f"[queue] {policy.value}: only {len(keys)} eligible keys "
                f"(need {self.min_pool}), declining"
            )
            return []
        if policy == Policy.MIXED and not keys:
            return []

        if pad and len(keys) < count:
            chosen = set(keys)
            extras = [k for k in self.store.keys() if k not in chosen and is_eligible(k)]
            self._rng.shuffle(extras)
            keys = keys + extras

        return keys[:count]

    def discover(self, count: int, is_eligible: KeyFilter | None = None) -> list[str]:
        """Unattempted keys first, then attempted ones; each group shuffled."""
        is_eligible = is_eligible or _accept_all
        records = self.store.load_all()

        unseen: list[str] = []
        seen: list[str] = []
        for key in self._universe(records):
            if not is_eligible(key):
                continue
            if key in records or base_key(key) in records:
                seen.append(key)
            else:
                unseen.append(key)

        self._rng.shuffle(unseen)
        self._rng.shuffle(seen)
        return (unseen + seen)[: max(count, 0)]

    def preselect_mode(
        self, is_eligible: KeyFilter | None = None, now: datetime | None = None
    ) -> Policy:
        """Pick the policy most likely to yield a useful session right now."""
        is_eligible = is_eligible or _accept_all
        due = [k for k in self._due_keys(now) if is_eligible(k)]
        weak = [k for k in self._weak_keys(10) if is_eligible(k)]

        if len(due) >= self.min_pool:
            return Policy.REVIEW
        if len(weak) >= self.min_pool:
            return Policy.WEAKEST
        if due or weak:
            return Policy.MIXED
        return Policy.DISCOVER

    def resolve(
        self, keys: Iterable[str], items: Mapping[str, QueueItem] | None = None
    ) -> list[QueueItem]:
        """
        Turn keys into renderable items.

        Keys missing from ``items`` fall back to a bare item carrying the
        label captured in the scheduling record.
        """
        items = items or {}
        records = self.store.load_all()
        resolved = []
        for key in keys:
            item = items.get(key)
            if item is None and base_key(key) in items:
                item = replace(items[base_key(key)], key=key)
            if item is None:
                record = records.get(key)
                item = QueueItem(key=key, label=record.label if record else None)
            resolved.append(item)
        return resolved

    def _universe(self, records: Mapping[str, ScheduleRecord] | None = None) -> list[str]:
        if records is None:
            records = self.store.load_all()
        return _dedupe([*self.catalog, *records])


def build_queue(
    store: ScheduleStore,
    policy: Policy | str,
    count: int,
    is_eligible: KeyFilter | None = None,
    catalog: Iterable[str] = (),
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[str]:
    """Convenience wrapper for one-off queue builds."""
    builder = QueueBuilder(store, catalog=catalog, rng=rng)
    return builder.build(policy, count, is_eligible, now=now)
