import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio
from conftest import NOW, FakeRemoteStore

from drillsync.application.record_store import ScheduleStore
from drillsync.application.slices import PENDING_SUFFIX, SliceGateway
from drillsync.application.sync_engine import SyncEngine
from drillsync.domain.constants import MAX_SLICE_BYTES, SRS_SLICE, SYNCED_SLICES
from drillsync.domain.models import SyncRecord, SyncStatus
from drillsync.domain.timefmt import format_ts

COURSE = "go-course"


@pytest_asyncio.fixture
async def engine(gateway, remote, clock):
    engine = SyncEngine(
        gateway, remote, COURSE, debounce=0.02, initial_pull_delay=0, clock=clock
    )
    yield engine
    await engine.close()


def _pushed(remote, key):
    return [w for w in remote.writes if w.key == key]


# --- push ---


@pytest.mark.asyncio
async def test_burst_of_writes_is_pushed_once_with_latest_value(engine, gateway, remote):
    gateway.set("focus-mode", 1)
    gateway.set("focus-mode", 2)
    gateway.set("focus-mode", 3)
    assert engine.dirty == {"focus-mode"}

    await asyncio.sleep(0.1)

    writes = _pushed(remote, "focus-mode")
    assert len(writes) == 1
    assert writes[0].data == 3
    assert writes[0].course == COURSE
    assert writes[0].user == "user1"
    assert writes[0].client_updated == format_ts(NOW)
    assert engine.dirty == frozenset()
    assert engine.status == SyncStatus.SYNCED


@pytest.mark.asyncio
async def test_each_write_restarts_the_debounce(gateway, remote, clock):
    engine = SyncEngine(gateway, remote, COURSE, debounce=0.3, clock=clock)
    try:
        gateway.set("focus-mode", 1)
        await asyncio.sleep(0.2)
        gateway.set("timer-sound", "bell")
        await asyncio.sleep(0.2)
        assert remote.writes == []

        await asyncio.sleep(0.3)
        assert {w.key for w in remote.writes} == {"focus-mode", "timer-sound"}
    finally:
        await engine.close()


@pytest.mark.asyncio
async def test_push_updates_existing_record(engine, gateway, remote):
    remote.put(COURSE, "last-module", 1, "2024-01-01T00:00:00.000Z")
    existing_id = remote.records[(COURSE, "last-module")].id

    gateway.set("last-module", 4)
    assert await engine.push_dirty() is True

    stored = remote.records[(COURSE, "last-module")]
    assert stored.id == existing_id
    assert stored.data == 4


@pytest.mark.asyncio
async def test_push_failure_goes_offline_and_keeps_slices_dirty(engine, gateway, remote):
    statuses = []
    engine.on_status(statuses.append)
    remote.fail = True

    gateway.set("srs", {"a": {"reviewCount": 1}})
    assert await engine.push_dirty() is False

    assert engine.status == SyncStatus.OFFLINE
    assert engine.dirty == {"srs"}
    assert statuses == [SyncStatus.SYNCING, SyncStatus.OFFLINE]

    remote.fail = False
    assert await engine.on_online() is True
    assert engine.status == SyncStatus.SYNCED
    assert engine.dirty == frozenset()
    assert _pushed(remote, "srs")[0].data == {"a": {"reviewCount": 1}}


@pytest.mark.asyncio
async def test_oversized_slice_is_not_pushed(engine, gateway, remote):
    gateway.set("personal-notes", "x" * MAX_SLICE_BYTES)

    assert await engine.push_dirty() is False
    assert remote.writes == []
    assert engine.dirty == {"personal-notes"}
    assert engine.status == SyncStatus.OFFLINE


@pytest.mark.asyncio
async def test_push_all_pushes_every_present_slice(engine, gateway, remote):
    gateway.load("srs", {"a": {"reviewCount": 1}})
    gateway.load("streaks", {"current": 2})
    assert engine.dirty == frozenset()

    assert await engine.push_all() is True
    assert {w.key for w in remote.writes} == {"srs", "streaks"}


@pytest.mark.asyncio
async def test_flush_on_unload_does_not_wait(engine, gateway, remote):
    assert engine.flush_on_unload() is None

    gateway.set("focus-mode", True)
    task = engine.flush_on_unload()
    assert task is not None
    await task
    assert _pushed(remote, "focus-mode")[0].data is True


@pytest.mark.asyncio
async def test_unpushed_slices_survive_a_restart(backend, remote, clock):
    first = SyncEngine(
        SliceGateway(backend, COURSE, tracked=SYNCED_SLICES, clock=clock),
        remote,
        COURSE,
        debounce=10,
        clock=clock,
    )
    remote.fail = True
    ScheduleStore(first.gateway, clock=clock).record_review("m1_loop_v1", "good")
    assert await first.push_dirty() is False
    await first.close()

    remote.fail = False
    gateway = SliceGateway(backend, COURSE, tracked=SYNCED_SLICES, clock=clock)
    second = SyncEngine(gateway, remote, COURSE, debounce=10, clock=clock)
    try:
        assert second.dirty == {SRS_SLICE}
        assert await second.sync_now() is True
        assert second.status == SyncStatus.SYNCED
        assert "m1_loop_v1" in remote.records[(COURSE, SRS_SLICE)].data
        assert backend.get_item(f"{COURSE}-{PENDING_SUFFIX}") is None
    finally:
        await second.close()


@pytest.mark.asyncio
async def test_pending_slices_are_persisted_until_pushed(engine, gateway, remote):
    gateway.set("focus-mode", True)
    assert gateway.pending() == {"focus-mode"}

    assert await engine.push_dirty() is True
    assert gateway.pending() == set()


# --- pull ---


@pytest.mark.asyncio
async def test_pull_merges_without_marking_dirty(engine, gateway, remote, clock):
    store = ScheduleStore(gateway, clock=clock)
    store.record_review("m1_loop_v1", "good")
    await engine.push_dirty()
    remote.writes.clear()

    remote_srs = {
        "m1_loop_v1": {**gateway.get(SRS_SLICE)["m1_loop_v1"], "reviewCount": 7},
        "m2_map_v1": gateway.get(SRS_SLICE)["m1_loop_v1"],
    }
    remote.put(COURSE, SRS_SLICE, remote_srs, format_ts(NOW))

    assert await engine.pull_all() is True

    merged = gateway.get(SRS_SLICE)
    assert merged["m1_loop_v1"]["reviewCount"] == 7
    assert "m2_map_v1" in merged
    assert engine.dirty == frozenset()
    await asyncio.sleep(0.05)
    assert remote.writes == []


@pytest.mark.asyncio
async def test_pull_ignores_untracked_slices(engine, gateway, remote):
    remote.put(COURSE, "unknown-plugin", {"x": 1}, format_ts(NOW))
    await engine.pull_all()
    assert gateway.get("unknown-plugin") is None


@pytest.mark.asyncio
async def test_pull_last_writer_wins_by_timestamp(engine, gateway, remote, clock):
    gateway.set("last-module", 2)
    engine.logout()  # keep the write local

    fresh = SyncEngine(gateway, remote, COURSE, debounce=10, clock=clock)
    try:
        remote.put(COURSE, "last-module", 5, format_ts(NOW - timedelta(hours=1)))
        await fresh.pull_all()
        assert gateway.get("last-module") == 2

        remote.put(COURSE, "last-module", 6, format_ts(NOW + timedelta(hours=1)))
        await fresh.pull_all()
        assert gateway.get("last-module") == 6
        assert gateway.modified_at("last-module") == NOW + timedelta(hours=1)
    finally:
        await fresh.close()


@pytest.mark.asyncio
async def test_pull_failure_goes_offline(engine, remote):
    remote.fail = True
    assert await engine.pull_all() is False
    assert engine.status == SyncStatus.OFFLINE


@pytest.mark.asyncio
async def test_start_schedules_initial_pull(engine, gateway, remote):
    remote.put(COURSE, "streaks", {"current": 3, "longest": 3}, format_ts(NOW))
    task = engine.start()
    await task
    assert gateway.get("streaks") == {"current": 3, "longest": 3}


@pytest.mark.asyncio
async def test_sync_now_pushes_then_pulls(engine, gateway, remote):
    gateway.set("focus-mode", False)
    remote.put(COURSE, "timer-sound", "bell", format_ts(NOW))

    assert await engine.sync_now() is True
    assert _pushed(remote, "focus-mode")
    assert gateway.get("timer-sound") == "bell"
    assert engine.last_sync_time == NOW


@pytest.mark.asyncio
async def test_sync_now_stays_offline_when_push_is_rejected(gateway, remote, clock):
    remote.read_only = True
    remote.put(COURSE, "timer-sound", "bell", format_ts(NOW))
    engine = SyncEngine(gateway, remote, COURSE, debounce=10, clock=clock)
    try:
        gateway.set("focus-mode", True)

        assert await engine.sync_now() is False
        assert gateway.get("timer-sound") == "bell"
        assert engine.status == SyncStatus.OFFLINE
        assert engine.dirty == {"focus-mode"}
        assert gateway.pending() == {"focus-mode"}
    finally:
        await engine.close()


def test_merge_record_reports_changes(gateway, remote):
    engine = SyncEngine(gateway, remote, COURSE)
    record = SyncRecord(key="activity", data={"2024-03-10": {"exercises": 2}})
    assert engine.merge_record(record) is True
    assert engine.merge_record(record) is False


# --- auth ---


@pytest.mark.asyncio
async def test_logged_out_engine_ignores_writes(gateway):
    remote = FakeRemoteStore(user_id=None)
    engine = SyncEngine(gateway, remote, COURSE, debounce=0.01)
    try:
        assert engine.status == SyncStatus.LOGGED_OUT
        gateway.set("srs", {})
        assert engine.dirty == frozenset()
        assert await engine.push_all() is False
        assert await engine.pull_all() is False
        assert engine.start() is None
    finally:
        await engine.close()


@pytest.mark.asyncio
async def test_logout_clears_state(engine, gateway, remote):
    gateway.set("srs", {})
    engine.logout()

    assert engine.status == SyncStatus.LOGGED_OUT
    assert engine.dirty == frozenset()
    gateway.set("srs", {"a": {}})
    assert engine.dirty == frozenset()
    await asyncio.sleep(0.05)
    assert remote.writes == []
