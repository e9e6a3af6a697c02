"""
Initial rider data and a command-line tool for seeding or exporting the roster.
"""

from __future__ import annotations

import argparse
import logging
import sys

from roster.config import get_settings
from roster.db import (
    MongoRiderStore,
    RiderStore,
    RiderStoreError,
    load_snapshot,
    write_snapshot,
)

logger = logging.getLogger(__name__)

INITIAL_RIDERS = [
    {
        "name": "John Doe",
        "email": "john.doe@example.com",
        "position": "Senior Rider",
        "nric": "S1234567A",
        "image": "https://images.pexels.com/photos/220453/pexels-photo-220453.jpeg",
        "status": "active",
        "phone": "+1234567890",
        "vehicle": "Motorcycle",
        "license": "MC123456",
        "rating": 4.8,
        "ridesCompleted": 245,
    },
    {
        "name": "Jane Smith",
        "email": "jane.smith@example.com",
        "position": "Lead Rider",
        "nric": "S7654321B",
        "image": "https://images.pexels.com/photos/1130626/pexels-photo-1130626.jpeg",
        "status": "active",
        "phone": "+1234567891",
        "vehicle": "Bicycle",
        "license": "BC789012",
        "rating": 4.9,
        "ridesCompleted": 189,
    },
    {
        "name": "Mike Johnson",
        "email": "mike.johnson@example.com",
        "position": "Rider",
        "nric": "S2345678C",
        "image": "https://images.pexels.com/photos/614810/pexels-photo-614810.jpeg",
        "status": "inactive",
        "phone": "+1234567892",
        "vehicle": "Car",
        "license": "CR345678",
        "rating": 4.5,
        "ridesCompleted": 156,
    },
]


def seed_initial_riders(store: RiderStore, riders: list[dict] | None = None) -> int:
    """Insert the initial riders when the store is empty. Returns the count added."""
    if store.count_riders() > 0:
        return 0
    inserted = store.insert_riders(riders if riders is not None else INITIAL_RIDERS)
    logger.info("Initial riders seeded: %d", inserted)
    return inserted


def _open_store() -> MongoRiderStore:
    settings = get_settings()
    store = MongoRiderStore(
        settings.mongodb_uri,
        db_name=settings.mongodb_db_name,
        collection=settings.mongodb_collection,
        max_pool_size=settings.mongodb_max_pool_size,
        server_selection_timeout_ms=settings.mongodb_server_selection_timeout_ms,
        socket_timeout_ms=settings.mongodb_socket_timeout_ms,
    )
    store.connect()
    return store


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed or export the rider roster")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete every rider before seeding",
    )
    parser.add_argument(
        "--from-file",
        type=str,
        default=None,
        help="Seed from a JSON snapshot instead of the built-in riders",
    )
    parser.add_argument(
        "--export",
        type=str,
        default=None,
        help="Write the current roster to a JSON snapshot and exit",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )

    try:
        store = _open_store()
    except (RiderStoreError, ValueError) as exc:
        logger.error("Could not connect to MongoDB: %s", exc)
        return 1

    try:
        if args.export:
            written = write_snapshot(args.export, store.all_riders())
            logger.info("Exported %d riders to %s", written, args.export)
            return 0

        riders = None
        if args.from_file:
            riders = [record.fields() for record in load_snapshot(args.from_file)]

        if args.reset:
            store.reset()
            logger.info("Removed existing riders")

        inserted = seed_initial_riders(store, riders)
        if not inserted:
            logger.info("Roster already has riders; nothing seeded (use --reset)")
        return 0
    except (RiderStoreError, OSError, ValueError) as exc:
        logger.error("Seeding failed: %s", exc)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
