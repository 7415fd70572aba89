"""Export and import of every tracked slice as one JSON document."""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from drillsync.application.slices import SliceGateway
from drillsync.domain.constants import BACKUP_FORMAT_VERSION
from drillsync.domain.timefmt import format_ts, utcnow

logger = logging.getLogger(__name__)

META_KEY = "_meta"


def export_slices(
    gateway: SliceGateway, clock: Callable[[], datetime] = utcnow
) -> dict[str, Any]:
    """
    Collect all present slices keyed by their full storage key.

    Raises:
        ValueError: if there is nothing to export.
    """
    data: dict[str, Any] = {}
    for name in gateway.tracked:
        value = gateway.get(name)
        if value is not None:
            data[gateway.full_key(name)] = value

    if not data:
        raise ValueError("No course data found to export.")

    data[META_KEY] = {
        "exportDate": format_ts(clock()),
        "version": BACKUP_FORMAT_VERSION,
        "keys": len(data),
    }
    return data


def import_slices(gateway: SliceGateway, payload: Any) -> int:
    """
    Restore slices from an exported document, overwriting local values.

    Writes go through the user-write path so every restored slice is
    pushed on the next sync. Returns the number of slices restored.
    """
    if not isinstance(payload, dict):
        raise ValueError("Invalid backup file: expected a JSON object.")
    if META_KEY not in payload:
        raise ValueError("Invalid backup file: missing metadata.")

    restored = 0
    for full_key, value in payload.items():
        if full_key == META_KEY:
            continue
        name = gateway.name_for(full_key)
        if name is None:
            logger.debug(f"[backup] skipping unknown key {full_key}")
            continue
        gateway.set(name, value)
        restored += 1

    logger.info(f"[backup] restored {restored} slices")
    return restored
