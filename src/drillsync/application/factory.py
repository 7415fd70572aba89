"""
Service Factory
Centralizes wiring of the local stores, queue builder and sync engine from config.
"""

import logging
import random
from dataclasses import dataclass, field

from drillsync.application.config import AppConfig
from drillsync.application.progress import ActivityTracker, ExerciseProgressStore
from drillsync.application.queue_builder import QueueBuilder
from drillsync.application.record_store import ScheduleStore
from drillsync.application.slices import SliceGateway
from drillsync.application.sync_engine import SyncEngine
from drillsync.domain.exceptions import SyncTransportError
from drillsync.domain.models import QueueItem
from drillsync.domain.ports import KeyValueStore, RemoteStore
from drillsync.infrastructure.adapters.pocketbase import PocketBaseRemoteStore
from drillsync.infrastructure.catalog import load_catalog
from drillsync.infrastructure.local_store import JsonFileKeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    gateway: SliceGateway
    schedule: ScheduleStore
    progress: ExerciseProgressStore
    activity: ActivityTracker
    queue: QueueBuilder
    catalog: dict[str, QueueItem] = field(default_factory=dict)
    remote: RemoteStore | None = None
    sync_engine: SyncEngine | None = None

    async def close(self) -> None:
        if self.sync_engine is not None:
            await self.sync_engine.close()
        if self.remote is not None:
            await self.remote.close()


def build_local_services(
    config: AppConfig,
    backend: KeyValueStore | None = None,
    rng: random.Random | None = None,
) -> Services:
    """Everything that works offline: slices, stores, catalog and queue builder."""
    if backend is None:
        backend = JsonFileKeyValueStore(config.state_file)
    gateway = SliceGateway(backend, config.prefix, tracked=config.tracked_slices)

    catalog = load_catalog(config.catalog_path) if config.catalog_path else {}
    schedule = ScheduleStore(gateway)
    builder = QueueBuilder(
        schedule, catalog=catalog, min_pool=config.min_session_size, rng=rng
    )
    return Services(
        gateway=gateway,
        schedule=schedule,
        progress=ExerciseProgressStore(gateway),
        activity=ActivityTracker(gateway),
        queue=builder,
        catalog=catalog,
    )


async def get_remote_store(config: AppConfig) -> RemoteStore | None:
    """
    Returns the remote store for the configured server, or None when sync is off.
    A token without a known user id is refreshed to discover the user.
    """
    if not config.sync_enabled:
        return None

    remote = PocketBaseRemoteStore(
        url=config.sync_url or "",
        token=config.auth_token,
        user_id=config.user_id,
        collection=config.sync_collection,
        timeout=config.request_timeout,
    )
    if config.auth_token and not config.user_id:
        try:
            await remote.refresh_auth()
        except SyncTransportError as e:
            logger.warning(f"Could not refresh sync token: {e}")
    return remote


async def build_services(
    config: AppConfig,
    backend: KeyValueStore | None = None,
    remote: RemoteStore | None = None,
) -> Services:
    services = build_local_services(config, backend)
    if remote is None:
        remote = await get_remote_store(config)
    if remote is None:
        return services

    services.remote = remote
    services.sync_engine = SyncEngine(
        services.gateway,
        remote,
        course=config.course_slug,
        debounce=config.debounce_seconds,
        initial_pull_delay=config.initial_pull_delay,
    )
    return services
