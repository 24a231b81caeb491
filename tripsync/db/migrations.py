"""Database initialisation — creates cache tables at startup."""

from __future__ import annotations

import logging

from tripsync.config.settings import Settings
from tripsync.db.cache import LocalCache
from tripsync.db.remote import RemoteTripStore
from tripsync.db.repository import FallbackStore

logger = logging.getLogger(__name__)


async def init_db(settings: Settings) -> FallbackStore:
    """Create the local cache tables and return a ready-to-use store."""
    cache = LocalCache(settings.LOCAL_DATABASE_URL, retention_days=settings.RETENTION_DAYS)
    await cache.init_db()

    remote = RemoteTripStore.from_settings(settings)
    logger.info("Remote store %s.", "configured" if remote.configured else "disabled")

    return FallbackStore(
        cache,
        remote,
        share_base_url=settings.SHARE_BASE_URL,
        remote_timeout=settings.REMOTE_TIMEOUT,
    )
