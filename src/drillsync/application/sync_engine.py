"""
Cross-device sync engine.

Keeps the tracked local slices consistent with the remote record store:

- User writes reach the engine through the slice gateway listener and mark
  the slice dirty. A single debounce timer, reset on every mark, pushes
  all dirty slices after a quiet period, always reading the latest value
  at push time.
- Pulls fetch every remote slice for the course and merge it into local
  state through the gateway's bulk-load path, which never marks dirty.
- Transport failures never escape the public API: they flip the status
  to OFFLINE and leave the slices dirty for the next attempt.
- The dirty set is mirrored into the gateway, so slices that never reached
  the remote are pushed again by the next engine over the same storage.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime

from drillsync.application.merge import MergeContext, MergeStrategy, merge_slice
from drillsync.application.slices import SliceGateway
from drillsync.domain.constants import (
    INITIAL_PULL_DELAY,
    MAX_SLICE_BYTES,
    SYNC_DEBOUNCE_SECONDS,
)
from drillsync.domain.exceptions import SyncTransportError
from drillsync.domain.models import SyncRecord, SyncStatus
from drillsync.domain.ports import RemoteStore
from drillsync.domain.timefmt import format_ts, parse_ts, utcnow

logger = logging.getLogger(__name__)

StatusListener = Callable[[SyncStatus], None]


class SyncEngine:
    def __init__(
        self,
        gateway: SliceGateway,
        remote: RemoteStore,
        course: str,
        debounce: float = SYNC_DEBOUNCE_SECONDS,
        initial_pull_delay: float = INITIAL_PULL_DELAY,
        strategies: Mapping[str, MergeStrategy] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            gateway: Local slice store; the engine subscribes to its writes.
            remote: Authenticated remote record store.
            course: Course slug the remote records are filed under.
            debounce: Quiet period in seconds before dirty slices are pushed.
            initial_pull_delay: Delay before the first pull after start().
            strategies: Per-slice merge overrides (defaults to merge.DEFAULT_STRATEGIES).
        """
        self.gateway = gateway
        self.remote = remote
        self.course = course
        self.debounce = debounce
        self.initial_pull_delay = initial_pull_delay
        self.strategies = strategies
        self._clock = clock

        self._dirty: set[str] = gateway.pending()
        self._in_flight: set[str] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[StatusListener] = []
        self.status = SyncStatus.SYNCED if remote.is_authenticated else SyncStatus.LOGGED_OUT
        self.last_sync_time: datetime | None = None
        self._logged_out = False

        self._unsubscribe = gateway.subscribe(self.mark_dirty)

    # ---------- Status ----------

    def on_status(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def _set_status(self, status: SyncStatus) -> None:
        self.status = status
        for listener in list(self._listeners):
            listener(status)

    @property
    def logged_in(self) -> bool:
        return self.remote.is_authenticated and not self._logged_out

    @property
    def dirty(self) -> frozenset[str]:
        return frozenset(self._dirty)

    # ---------- Dirty tracking ----------

    def mark_dirty(self, name: str) -> None:
        """Record a local change and (re)start the debounce timer."""
        if not self.logged_in:
            return
        self._dirty.add(name)
        self._save_pending()
        self._restart_timer()

    def _save_pending(self) -> None:
        self.gateway.set_pending(self._dirty | self._in_flight)

    def _restart_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (e.g. a one-shot CLI command); the caller flushes.
            return
        self._timer = loop.call_later(self.debounce, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._spawn(self.push_dirty)

    def _spawn(self, factory: Callable[[], Awaitable[bool]]) -> asyncio.Task:
        task = asyncio.ensure_future(factory())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---------- Push ----------

    async def push_dirty(self) -> bool:
        """
        Push every dirty slice. Returns True on success.

        On failure the slices are re-marked dirty and status becomes OFFLINE.
        """
        if not self.logged_in:
            return False
        names = sorted(self._dirty)
        if not names:
            return True
        self._dirty.clear()
        self._in_flight.update(names)
        self._set_status(SyncStatus.SYNCING)

        results = await asyncio.gather(
            *(self._push_slice(name) for name in names), return_exceptions=True
        )
        self._in_flight.difference_update(names)
        failed = [name for name, result in zip(names, results, strict=True) if result is not True]
        errors = [r for r in results if isinstance(r, BaseException)]

        if failed:
            self._dirty.update(failed)
            self._save_pending()
            logger.warning(f"[sync] push failed for {', '.join(failed)}: {errors[:1]}")
            self._set_status(SyncStatus.OFFLINE)
            for error in errors:
                if not isinstance(error, SyncTransportError):
                    raise error
            return False

        self._save_pending()
        self.last_sync_time = self._clock()
        logger.debug(f"[sync] pushed {', '.join(names)}")
        self._set_status(SyncStatus.SYNCED)
        return True

    async def _push_slice(self, name: str) -> bool:
        data = self.gateway.get(name)
        if data is None:
            return True

        size = len(json.dumps(data).encode("utf-8"))
        if size > MAX_SLICE_BYTES:
            logger.warning(f"[sync] {name} is {size} bytes, over the {MAX_SLICE_BYTES} limit")
            return False

        record = SyncRecord(
            key=name,
            data=data,
            client_updated=format_ts(self._clock()),
            user=self.remote.user_id,
            course=self.course,
        )
        existing = await self.remote.find_record(self.course, name)
        if existing is not None and existing.id:
            await self.remote.update_record(existing.id, record)
        else:
            await self.remote.create_record(record)
        return True

    # ---------- Pull ----------

    async def pull_all(self) -> bool:
        """Fetch every remote slice for the course and merge it locally."""
        if not self.logged_in:
            return False
        self._set_status(SyncStatus.SYNCING)
        try:
            records = await self.remote.list_records(self.course)
        except SyncTransportError as e:
            logger.warning(f"[sync] pull failed: {e}")
            self._set_status(SyncStatus.OFFLINE)
            return False

        merged = 0
        for record in records:
            if self.merge_record(record):
                merged += 1

        self.last_sync_time = self._clock()
        logger.debug(f"[sync] pulled {len(records)} records, merged {merged}")
        self._set_status(SyncStatus.SYNCED)
        return True

    def merge_record(self, record: SyncRecord) -> bool:
        """Merge one remote record into local state. Returns True if local changed."""
        name = record.key
        if not self.gateway.is_tracked(name):
            logger.debug(f"[sync] ignoring untracked remote slice {name!r}")
            return False

        local = self.gateway.get(name)
        remote_updated = parse_ts(record.client_updated)
        context = MergeContext(
            remote_updated=remote_updated,
            local_updated=self.gateway.modified_at(name),
        )
        merged = merge_slice(name, local, record.data, context, self.strategies)
        if merged is None or merged == local:
            return False

        self.gateway.load(name, merged, modified=remote_updated)
        return True

    # ---------- Lifecycle ----------

    def start(self) -> asyncio.Task | None:
        """Schedule the initial pull once the first render has settled."""
        if not self.logged_in:
            return None

        async def delayed_pull() -> bool:
            await asyncio.sleep(self.initial_pull_delay)
            return await self.pull_all()

        return self._spawn(delayed_pull)

    async def on_visible(self) -> bool:
        return await self.pull_all()

    async def on_online(self) -> bool:
        if self._dirty:
            return await self.push_dirty()
        return True

    def flush_on_unload(self) -> asyncio.Task | None:
        """Fire-and-forget push of outstanding slices; does not wait for it."""
        if not self._dirty or not self.logged_in:
            return None
        self._cancel_timer()
        return self._spawn(self.push_dirty)

    async def flush(self) -> bool:
        """Push outstanding slices now instead of waiting for the debounce."""
        self._cancel_timer()
        return await self.push_dirty()

    async def sync_now(self) -> bool:
        """Manual retry: push anything dirty, then pull."""
        self._cancel_timer()
        pushed = await self.push_dirty()
        pulled = await self.pull_all()
        if not pushed and self.logged_in:
            # Local changes never reached the remote
            self._set_status(SyncStatus.OFFLINE)
        return pushed and pulled

    async def push_all(self) -> bool:
        """Mark every present tracked slice dirty and push (after an import)."""
        if not self.logged_in:
            return False
        self._dirty.update(self.gateway.present())
        self._save_pending()
        return await self.flush()

    def logout(self) -> None:
        """Stop syncing; local data stays as it is."""
        self._logged_out = True
        self._dirty.clear()
        self._save_pending()
        self._cancel_timer()
        self.last_sync_time = None
        self._set_status(SyncStatus.LOGGED_OUT)

    async def close(self) -> None:
        """Cancel timers, wait for in-flight tasks, and detach from the gateway."""
        self._cancel_timer()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._unsubscribe()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
