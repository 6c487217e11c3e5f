"""Application startup and shutdown (schema bootstrap, timers)."""

import logging

from sqlalchemy import inspect

from .db import Base, engine
from . import models  # noqa: F401  registers tables on Base.metadata
from .notifications import notification_center

logger = logging.getLogger(__name__)


def startup() -> None:
    """Create any missing tables."""
    try:
        existing = set(inspect(engine).get_table_names())
        Base.metadata.create_all(bind=engine)
        created = sorted(set(Base.metadata.tables) - existing)
        if created:
            logger.info(f"[STARTUP] Created tables: {', '.join(created)}")
        else:
            logger.info("[STARTUP] Database schema up to date")
    except Exception as e:
        logger.critical(f"[STARTUP] Database bootstrap failed: {e}")
        raise


async def shutdown() -> None:
    await notification_center.shutdown()
    logger.info("[SHUTDOWN] Notification timers cancelled")
