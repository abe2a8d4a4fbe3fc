"""Background maintenance: retention purge of persisted stream events."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import structlog

from chai.event_log import event_log
from chai.settings import settings

logger = structlog.get_logger(__name__)

MAINTENANCE_INTERVAL_SECONDS = 600


async def maintenance_loop() -> None:
    """Periodically purge old events of sessions that are not streaming."""
    retention_hours = settings.event_retention_hours()
    if retention_hours <= 0:
        logger.info("Event retention disabled")
        return
    interval_s = MAINTENANCE_INTERVAL_SECONDS
    while True:
        try:
            removed = event_log.purge(timedelta(hours=retention_hours))
            if removed:
                logger.info("Purged old stream events", count=removed)
        except Exception:
            logger.exception("Maintenance loop failed")
        await asyncio.sleep(interval_s)
