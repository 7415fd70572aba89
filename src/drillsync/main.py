import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

from drillsync.application.config import AppConfig
from drillsync.application.factory import build_services
from drillsync.domain.models import SyncStatus


def setup_logging(log_dir: Path, verbose: int = 1) -> tuple[logging.Logger, Path, str]:
    """
    Configure the drillsync logger with a per-run file and a stderr handler.

    Returns (logger, log_path, run_id).
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    run_id = f"{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"
    log_path = log_dir / f"run_{run_id}.log"

    logger = logging.getLogger("drillsync")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logger.addHandler(file_handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(
        logging.WARNING if verbose <= 0 else logging.INFO if verbose == 1 else logging.DEBUG
    )
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console)
    logger.propagate = False

    logger.debug(f"Logging run {run_id} to {log_path}")
    return logger, log_path, run_id


async def run_sync_logic(config: AppConfig, push_all: bool = False) -> SyncStatus:
    """Push local changes and pull remote ones once, then report the final status."""
    logger, log_path, run_id = setup_logging(config.log_dir, config.verbose)
    logger.info(f"drillsync sync run={run_id} course={config.course_slug}")

    services = await build_services(config)
    engine = services.sync_engine
    if engine is None:
        logger.warning("Sync is not configured; set sync_url and auth_token first")
        return SyncStatus.LOGGED_OUT

    try:
        if push_all:
            await engine.push_all()
        synced = await engine.sync_now()
        status = engine.status
        if not synced and status == SyncStatus.SYNCED:
            status = SyncStatus.OFFLINE
        if engine.dirty:
            logger.warning(f"Still waiting to push: {', '.join(sorted(engine.dirty))}")
        logger.info(f"Sync finished with status {status.value}")
        if engine.last_sync_time:
            logger.info(f"Last successful sync: {engine.last_sync_time:%Y-%m-%d %H:%M:%S}")
        return status
    finally:
        await services.close()
        logger.debug(f"Log written to {log_path}")
