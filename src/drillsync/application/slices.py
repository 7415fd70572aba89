"""
Slice gateway: the single path between application code and local storage.

Every slice is one JSON blob stored under ``<prefix>-<name>``. User-driven
writes go through ``set()`` and notify listeners (the sync engine marks the
slice dirty). Merge results go through ``load()``, which never notifies,
so a pull can never be mistaken for a user edit.
"""

import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from drillsync.domain.ports import KeyValueStore
from drillsync.domain.timefmt import format_ts, parse_ts, utcnow

logger = logging.getLogger(__name__)

MODIFIED_SUFFIX = "__modified"
PENDING_SUFFIX = "__pending"

SliceListener = Callable[[str], None]


class SliceGateway:
    def __init__(
        self,
        backend: KeyValueStore,
        prefix: str,
        tracked: Iterable[str] = (),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend
        self.prefix = prefix
        self._tracked: list[str] = []
        self._listeners: list[SliceListener] = []
        self._clock = clock
        self.track(tracked)

    # ---------- Naming ----------

    def full_key(self, name: str) -> str:
        return f"{self.prefix}-{name}"

    def name_for(self, full_key: str) -> str | None:
        """Reverse of full_key for tracked slices; None for anything else."""
        for name in self._tracked:
            if self.full_key(name) == full_key:
                return name
        return None

    # ---------- Tracking ----------

    def track(self, names: Iterable[str]) -> None:
        for name in names:
            if name and name not in self._tracked:
                self._tracked.append(name)

    @property
    def tracked(self) -> list[str]:
        return list(self._tracked)

    def is_tracked(self, name: str) -> bool:
        return name in self._tracked

    def present(self) -> list[str]:
        """Tracked slices that currently hold a value."""
        return [n for n in self._tracked if self.backend.get_item(self.full_key(n)) is not None]

    def subscribe(self, listener: SliceListener) -> Callable[[], None]:
        """Register a dirty listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---------- Reads ----------

    def get(self, name: str) -> Any | None:
        raw = self.backend.get_item(self.full_key(name))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Plain string values written by older clients
            return raw

    def modified_at(self, name: str) -> datetime | None:
        """When this device last wrote the slice (user edit or merge)."""
        return parse_ts(self._modified_map().get(name))

    # ---------- Writes ----------

    def set(self, name: str, value: Any) -> None:
        """User-driven write: persist, stamp, and notify listeners."""
        self._write(name, value, self._clock())
        if self.is_tracked(name):
            for listener in list(self._listeners):
                listener(name)

    def load(self, name: str, value: Any, modified: datetime | None = None) -> None:
        """Bulk-load write used by merges. Listeners are not notified."""
        self._write(name, value, modified)

    def remove(self, name: str) -> None:
        self.backend.remove_item(self.full_key(name))
        stamps = self._modified_map()
        if stamps.pop(name, None) is not None:
            self.backend.set_item(self.full_key(MODIFIED_SUFFIX), json.dumps(stamps))

    # ---------- Pending pushes ----------

    def pending(self) -> "set[str]":
        """Tracked slices whose local changes the remote has not confirmed yet."""
        raw = self.backend.get_item(self.full_key(PENDING_SUFFIX))
        if not raw:
            return set()
        try:
            names = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable pending slice list")
            return set()
        if not isinstance(names, list):
            return set()
        return {n for n in names if isinstance(n, str) and self.is_tracked(n)}

    def set_pending(self, names: Iterable[str]) -> None:
        key = self.full_key(PENDING_SUFFIX)
        ordered = sorted(set(names))
        if ordered:
            self.backend.set_item(key, json.dumps(ordered))
        elif self.backend.get_item(key) is not None:
            self.backend.remove_item(key)

    def _write(self, name: str, value: Any, modified: datetime | None) -> None:
        self.backend.set_item(self.full_key(name), json.dumps(value))
        if modified is not None:
            stamps = self._modified_map()
            stamps[name] = format_ts(modified)
            self.backend.set_item(self.full_key(MODIFIED_SUFFIX), json.dumps(stamps))

    def _modified_map(self) -> dict[str, str]:
        raw = self.backend.get_item(self.full_key(MODIFIED_SUFFIX))
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable slice timestamps")
            return {}
        return data if isinstance(data, dict) else {}
