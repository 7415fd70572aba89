"""
Ports (interfaces) for local persistence and the remote record store.

Application services depend on these abstractions, not concrete
implementations.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from .models import SyncRecord


class KeyValueStore(ABC):
    """
    Port for the device-local string key/value store.

    Implementations:
        - JsonFileKeyValueStore: one JSON file on disk.
        - InMemoryKeyValueStore: process memory (tests, dry runs).
    """

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> Iterable[str]:
        pass


class RemoteStore(ABC):
    """
    Port for the authenticated per-user record service.

    Records are unique per (user, course, key); a record is only visible
    to the user who owns it.

    Implementations:
        - PocketBaseRemoteStore: PocketBase ``sync_data`` collection over HTTP.
    """

    @property
    @abstractmethod
    def user_id(self) -> str | None:
        """Authenticated user, or None when logged out."""
        pass

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @abstractmethod
    async def list_records(self, course: str) -> list[SyncRecord]:
        """
        Fetch every record the current user has for a course.

        Raises:
            SyncTransportError: on network or server failure.
        """
        pass

    @abstractmethod
    async def find_record(self, course: str, key: str) -> SyncRecord | None:
        pass

    @abstractmethod
    async def create_record(self, record: SyncRecord) -> SyncRecord:
        pass

    @abstractmethod
    async def update_record(self, record_id: str, record: SyncRecord) -> SyncRecord:
        pass

    async def close(self) -> None:  # noqa: B027
        """Release any held connections."""
