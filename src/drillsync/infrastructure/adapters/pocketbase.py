import logging
from typing import Any

import httpx

from drillsync.domain.constants import (
    PAGE_SIZE,
    REQUEST_TIMEOUT,
    RESPONSIVENESS_TIMEOUT,
    SYNC_COLLECTION,
)
from drillsync.domain.exceptions import RemoteAuthError, SyncTransportError
from drillsync.domain.models import SyncRecord
from drillsync.domain.ports import RemoteStore


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class PocketBaseRemoteStore(RemoteStore):
    """Adapter for a PocketBase server holding one ``sync_data`` row per slice."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        user_id: str | None = None,
        collection: str = SYNC_COLLECTION,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.url = url.rstrip("/")
        self.collection = collection
        self.timeout = timeout
        self._token = token
        self._user_id = user_id if token else None
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.logger.debug(f"PocketBaseRemoteStore initialized with url={self.url}")

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def token(self) -> str | None:
        return self._token

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.url, timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = kwargs.pop("headers", {})
        if self._token:
            headers["Authorization"] = self._token
        try:
            resp = await self._get_client().request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            self.logger.error(f"PocketBase {method} {path} failed: {e}")
            raise SyncTransportError(str(e)) from e

        if resp.status_code in (401, 403):
            raise RemoteAuthError(f"{method} {path} rejected: HTTP {resp.status_code}")
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            self.logger.error(f"PocketBase {method} {path} failed: HTTP {resp.status_code}")
            raise SyncTransportError(f"HTTP {resp.status_code} from {path}") from e
        if not resp.content:
            return None
        return resp.json()

    # ---------- Auth ----------

    async def is_responsive(self) -> bool:
        """Check if the server answers its health endpoint."""
        try:
            resp = await self._get_client().get("/api/health", timeout=RESPONSIVENESS_TIMEOUT)
            return resp.status_code == 200
        except httpx.HTTPError:
            return False

    async def refresh_auth(self) -> str | None:
        """
        Validate the stored token and pick up the user it belongs to.

        Tokens come from the external OAuth flow; this only refreshes them.
        Returns the user id, or None if there is no usable token.
        """
        if not self._token:
            return None
        try:
            data = await self._request("POST", "/api/collections/users/auth-refresh")
        except RemoteAuthError:
            self.logger.warning("Stored sync token was rejected; logging out")
            self.clear_auth()
            return None
        self._token = data.get("token", self._token)
        self._user_id = (data.get("record") or {}).get("id")
        return self._user_id

    def clear_auth(self) -> None:
        self._token = None
        self._user_id = None

    # ---------- Records ----------

    def _records_path(self, record_id: str | None = None) -> str:
        path = f"/api/collections/{self.collection}/records"
        return f"{path}/{record_id}" if record_id else path

    def _filter(self, course: str, key: str | None = None) -> str:
        parts = [f"user={_quote(self.user_id or '')}", f"course={_quote(course)}"]
        if key is not None:
            parts.append(f"key={_quote(key)}")
        return " && ".join(parts)

    @staticmethod
    def _to_record(item: dict[str, Any]) -> SyncRecord:
        return SyncRecord(
            key=item.get("key", ""),
            data=item.get("data"),
            client_updated=item.get("client_updated") or None,
            id=item.get("id"),
            user=item.get("user"),
            course=item.get("course"),
        )

    def _payload(self, record: SyncRecord) -> dict[str, Any]:
        return {
            "user": record.user or self.user_id,
            "course": record.course,
            "key": record.key,
            "data": record.data,
            "client_updated": record.client_updated,
        }

    async def list_records(self, course: str) -> list[SyncRecord]:
        records: list[SyncRecord] = []
        page = 1
        while True:
            data = await self._request(
                "GET",
                self._records_path(),
                params={
                    "filter": self._filter(course),
                    "sort": "-client_updated",
                    "page": page,
                    "perPage": PAGE_SIZE,
                },
            )
            records.extend(self._to_record(item) for item in data.get("items", []))
            if page >= int(data.get("totalPages") or 1):
                break
            page += 1
        return records

    async def find_record(self, course: str, key: str) -> SyncRecord | None:
        data = await self._request(
            "GET",
            self._records_path(),
            params={"filter": self._filter(course, key), "page": 1, "perPage": 1},
        )
        items = data.get("items", [])
        return self._to_record(items[0]) if items else None

    async def create_record(self, record: SyncRecord) -> SyncRecord:
        data = await self._request("POST", self._records_path(), json=self._payload(record))
        self.logger.debug(f"[create] {record.course}/{record.key} -> id={data.get('id')}")
        return self._to_record(data)

    async def update_record(self, record_id: str, record: SyncRecord) -> SyncRecord:
        data = await self._request(
            "PATCH", self._records_path(record_id), json=self._payload(record)
        )
        self.logger.debug(f"[update] {record.course}/{record.key} id={record_id}")
        return self._to_record(data)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
