"""
Startup selection between the MongoDB store and the local snapshot fallback.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from roster.config import Settings
from roster.db import LocalRiderStore, MongoRiderStore, RiderStore, RiderStoreError

logger = logging.getLogger(__name__)


class PersistenceMode(str, Enum):
    DATABASE = "database"
    LOCAL = "local"


class PersistenceUnavailableError(RuntimeError):
    """No usable store could be set up and the environment forbids degrading."""


@dataclass(frozen=True)
class Runtime:
    """Process-wide context built once at startup and shared with handlers."""

    settings: Settings
    store: Optional[RiderStore]
    mode: PersistenceMode
    connected: bool
    database_name: Optional[str] = None
    started_at: float = field(default_factory=time.time)

    @property
    def available(self) -> bool:
        if self.store is None:
            return False
        return self.mode is PersistenceMode.LOCAL or self.connected

    @classmethod
    def local(cls, settings: Settings, store: LocalRiderStore) -> "Runtime":
        return cls(
            settings=settings, store=store, mode=PersistenceMode.LOCAL, connected=False
        )


def _local_store(settings: Settings) -> LocalRiderStore:
    if settings.rider_snapshot_path:
        return LocalRiderStore.from_snapshot(settings.rider_snapshot_path)
    return LocalRiderStore()


def select_persistence(settings: Settings) -> Runtime:
    """
    Connect to MongoDB, or fall back to the local snapshot.

    Without a snapshot the failure is fatal in production; elsewhere the app
    keeps running and the availability middleware turns requests away.
    """
    if settings.use_in_memory_backends:
        logger.info("In-memory backends requested; MongoDB is not used")
        return Runtime.local(settings, _local_store(settings))

    store: Optional[MongoRiderStore] = None
    try:
        store = MongoRiderStore(
            settings.mongodb_uri,
            db_name=settings.mongodb_db_name,
            collection=settings.mongodb_collection,
            max_pool_size=settings.mongodb_max_pool_size,
            server_selection_timeout_ms=settings.mongodb_server_selection_timeout_ms,
            socket_timeout_ms=settings.mongodb_socket_timeout_ms,
        )
        logger.info(
            "Connecting to MongoDB database %s (environment=%s)",
            store.database_name,
            settings.app_env,
        )
        store.connect()
    except (RiderStoreError, ValueError) as exc:
        logger.error("MongoDB connection failed: %s", exc)
        if store is not None:
            store.close()
    else:
        logger.info("MongoDB connected: %s", store.database_name)
        return Runtime(
            settings=settings,
            store=store,
            mode=PersistenceMode.DATABASE,
            connected=True,
            database_name=store.database_name,
        )

    if settings.rider_snapshot_path:
        try:
            local_store = _local_store(settings)
        except (OSError, ValueError) as exc:
            logger.error(
                "Could not load rider snapshot %s: %s", settings.rider_snapshot_path, exc
            )
        else:
            logger.warning(
                "Falling back to local rider snapshot %s; changes will not be persisted",
                settings.rider_snapshot_path,
            )
            return Runtime.local(settings, local_store)

    if settings.is_production:
        logger.critical("No database and no local snapshot in production; aborting")
        raise PersistenceUnavailableError("MongoDB is unreachable and no fallback is configured")

    logger.warning("Continuing in %s mode despite connection failure", settings.app_env)
    return Runtime(
        settings=settings, store=None, mode=PersistenceMode.DATABASE, connected=False
    )
