from datetime import UTC, datetime, timedelta

import pytest

from drillsync.application.slices import SliceGateway
from drillsync.domain.constants import SYNCED_SLICES
from drillsync.domain.exceptions import SyncTransportError
from drillsync.domain.models import SyncRecord
from drillsync.domain.ports import RemoteStore
from drillsync.infrastructure.local_store import InMemoryKeyValueStore

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRemoteStore(RemoteStore):
    """
    In-memory remote keyed by (course, key). Set ``fail`` to simulate an
    outage, or ``read_only`` to reject writes while reads still work.
    """

    def __init__(self, user_id: str | None = "user1"):
        self._user_id = user_id
        self.records: dict[tuple[str, str], SyncRecord] = {}
        self.fail = False
        self.read_only = False
        self.writes: list[SyncRecord] = []
        self._next_id = 1

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def _check(self) -> None:
        if self.fail:
            raise SyncTransportError("network unreachable")

    def _check_write(self) -> None:
        self._check()
        if self.read_only:
            raise SyncTransportError("write rejected")

    def put(self, course: str, key: str, data, client_updated: str | None = None) -> None:
        self.records[(course, key)] = SyncRecord(
            key=key,
            data=data,
            client_updated=client_updated,
            id=f"rec{self._next_id}",
            user=self._user_id,
            course=course,
        )
        self._next_id += 1

    async def list_records(self, course: str) -> list[SyncRecord]:
        self._check()
        return [r for (c, _), r in self.records.items() if c == course]

    async def find_record(self, course: str, key: str) -> SyncRecord | None:
        self._check()
        return self.records.get((course, key))

    async def create_record(self, record: SyncRecord) -> SyncRecord:
        self._check_write()
        self.writes.append(record)
        self.put(record.course, record.key, record.data, record.client_updated)
        return self.records[(record.course, record.key)]

    async def update_record(self, record_id: str, record: SyncRecord) -> SyncRecord:
        self._check_write()
        self.writes.append(record)
        self.records[(record.course, record.key)] = SyncRecord(
            key=record.key,
            data=record.data,
            client_updated=record.client_updated,
            id=record_id,
            user=record.user,
            course=record.course,
        )
        return self.records[(record.course, record.key)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return InMemoryKeyValueStore()


@pytest.fixture
def gateway(backend, clock):
    return SliceGateway(backend, "go-course", tracked=SYNCED_SLICES, clock=clock)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/logs
    monkeypatch.setenv("HOME", str(home))
    for var in ("DRILLSYNC_SYNC_URL", "DRILLSYNC_AUTH_TOKEN", "DRILLSYNC_COURSE_SLUG"):
        monkeypatch.delenv(var, raising=False)
    return home
