"""
Rider storage: the store interface, a MongoDB implementation and an
in-memory implementation that doubles as the offline snapshot fallback.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Protocol

from bson import ObjectId
from bson.errors import InvalidDocument
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from roster.schemas import DEFAULT_RIDER_IMAGE, RiderFields
from roster.validation import INT64_MAX, validate_rider_fields

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("name", "email", "nric")


class RiderStoreError(Exception):
    """Raised when the backing store fails to complete an operation."""


class DuplicateRiderError(RiderStoreError):
    """The store rejected a write because email or NRIC is already taken."""


class InvalidRiderIdError(RiderStoreError):
    """The rider id cannot be cast to a store identifier."""


def parse_rider_id(rider_id: str) -> ObjectId:
    if not isinstance(rider_id, str) or not ObjectId.is_valid(rider_id):
        raise InvalidRiderIdError(f"Invalid rider id: {rider_id!r}")
    return ObjectId(rider_id)


def _utcnow() -> datetime:
    # BSON dates only keep milliseconds.
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def _as_utc(value: Any) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        return _utcnow()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RiderQuery:
    search: str = ""
    status: str = "all"
    page: int = 1
    limit: int = 10

    def __post_init__(self):
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.limit < 1:
            raise ValueError("limit must be >= 1")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def status_filter(self) -> Optional[str]:
        if not self.status or self.status == "all":
            return None
        return self.status


@dataclass(frozen=True)
class RiderRecord:
    rider_id: str
    name: str
    email: str
    position: str
    nric: str
    phone: str
    license: str
    created_at: datetime
    updated_at: datetime
    image: str = DEFAULT_RIDER_IMAGE
    status: str = "active"
    vehicle: str = "Motorcycle"
    rating: float = 4.5
    rides_completed: int = 0

    def fields(self) -> dict:
        """Writable attributes under their wire names."""
        return {wire: getattr(self, attr) for wire, attr in _FIELD_NAMES.items()}

    def as_dict(self) -> dict:
        return {
            "_id": self.rider_id,
            **self.fields(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    def with_fields(self, fields: dict, updated_at: datetime) -> "RiderRecord":
        return replace(self, updated_at=updated_at, **_record_kwargs(fields))

    @classmethod
    def from_fields(
        cls, rider_id: str, fields: dict, created_at: datetime, updated_at: datetime
    ) -> "RiderRecord":
        return cls(
            rider_id=rider_id,
            created_at=created_at,
            updated_at=updated_at,
            **_record_kwargs(fields),
        )

    @classmethod
    def from_document(cls, doc: dict) -> "RiderRecord":
        return cls.from_fields(
            str(doc["_id"]),
            {key: value for key, value in doc.items() if key in _FIELD_NAMES},
            created_at=_as_utc(doc.get("createdAt")),
            updated_at=_as_utc(doc.get("updatedAt")),
        )


_FIELD_NAMES = {
    "name": "name",
    "email": "email",
    "position": "position",
    "nric": "nric",
    "image": "image",
    "status": "status",
    "phone": "phone",
    "vehicle": "vehicle",
    "license": "license",
    "rating": "rating",
    "ridesCompleted": "rides_completed",
}


def _record_kwargs(fields: dict) -> dict:
    return {
        _FIELD_NAMES[key]: value for key, value in fields.items() if key in _FIELD_NAMES
    }


class RiderStore(Protocol):
    """Interface both persistence modes implement."""

    def list_riders(self, query: RiderQuery) -> tuple[list[RiderRecord], int]:
        ...

    def get_rider(self, rider_id: str) -> Optional[RiderRecord]:
        ...

    def find_conflict(
        self, email: str, nric: str, exclude_id: Optional[str] = None
    ) -> Optional[RiderRecord]:
        ...

    def create_rider(self, fields: dict) -> RiderRecord:
        ...

    def update_rider(self, rider_id: str, fields: dict) -> Optional[RiderRecord]:
        ...

    def delete_rider(self, rider_id: str) -> bool:
        ...

    def count_riders(self) -> int:
        ...

    def insert_riders(self, riders: Iterable[dict]) -> int:
        ...

    def all_riders(self) -> list[RiderRecord]:
        ...

    def reset(self) -> None:
        ...

    def close(self) -> None:
        ...


def _matches(record: RiderRecord, query: RiderQuery) -> bool:
    status = query.status_filter
    if status is not None and record.status != status:
        return False
    if not query.search:
        return True
    needle = query.search.lower()
    return any(needle in getattr(record, name).lower() for name in SEARCH_FIELDS)


def _newest_first(record: RiderRecord) -> tuple[datetime, str]:
    return record.created_at, record.rider_id


class LocalRiderStore:
    """
    In-memory rider store.

    Serves as the fallback working set when MongoDB is unreachable and as the
    store used by tests. Records are immutable; every write swaps a whole
    record under the lock.
    """

    def __init__(self, riders: Iterable[RiderRecord] = ()):
        self._lock = threading.Lock()
        self._riders: dict[str, RiderRecord] = {}
        for record in riders:
            self._riders[record.rider_id] = record

    @classmethod
    def from_snapshot(cls, path: str | Path) -> "LocalRiderStore":
        records = load_snapshot(path)
        logger.info("Loaded %d riders from snapshot %s", len(records), path)
        return cls(records)

    def _conflict(
        self, email: str, nric: str, exclude_id: Optional[str] = None
    ) -> Optional[RiderRecord]:
        for record in self._riders.values():
            if record.rider_id == exclude_id:
                continue
            if record.email == email or record.nric == nric:
                return record
        return None

    def list_riders(self, query: RiderQuery) -> tuple[list[RiderRecord], int]:
        with self._lock:
            matched = [r for r in self._riders.values() if _matches(r, query)]
        matched.sort(key=_newest_first, reverse=True)
        return matched[query.offset : query.offset + query.limit], len(matched)

    def get_rider(self, rider_id: str) -> Optional[RiderRecord]:
        key = str(parse_rider_id(rider_id))
        with self._lock:
            return self._riders.get(key)

    def find_conflict(
        self, email: str, nric: str, exclude_id: Optional[str] = None
    ) -> Optional[RiderRecord]:
        if exclude_id is not None:
            exclude_id = str(parse_rider_id(exclude_id))
        with self._lock:
            return self._conflict(email, nric, exclude_id)

    def create_rider(self, fields: dict) -> RiderRecord:
        now = _utcnow()
        record = RiderRecord.from_fields(str(ObjectId()), fields, now, now)
        with self._lock:
            if self._conflict(record.email, record.nric):
                raise DuplicateRiderError("Email or NRIC already exists")
            self._riders[record.rider_id] = record
        return record

    def update_rider(self, rider_id: str, fields: dict) -> Optional[RiderRecord]:
        key = str(parse_rider_id(rider_id))
        with self._lock:
            existing = self._riders.get(key)
            if existing is None:
                return None
            updated = existing.with_fields(fields, _utcnow())
            if self._conflict(updated.email, updated.nric, exclude_id=key):
                raise DuplicateRiderError("Email or NRIC already exists")
            self._riders[key] = updated
        return updated

    def delete_rider(self, rider_id: str) -> bool:
        key = str(parse_rider_id(rider_id))
        with self._lock:
            return self._riders.pop(key, None) is not None

    def count_riders(self) -> int:
        with self._lock:
            return len(self._riders)

    def insert_riders(self, riders: Iterable[dict]) -> int:
        inserted = 0
        for fields in riders:
            self.create_rider(fields)
            inserted += 1
        return inserted

    def all_riders(self) -> list[RiderRecord]:
        with self._lock:
            records = list(self._riders.values())
        return sorted(records, key=_newest_first)

    def reset(self) -> None:
        """Clear all stored riders (useful in tests)."""
        with self._lock:
            self._riders.clear()

    def close(self) -> None:
        return None


@contextmanager
def _mongo_errors(action: str) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError as exc:
        raise DuplicateRiderError("Email or NRIC already exists") from exc
    except PyMongoError as exc:
        raise RiderStoreError(f"MongoDB {action} failed: {exc}") from exc
    except (OverflowError, InvalidDocument) as exc:
        raise RiderStoreError(f"MongoDB {action} failed to encode document: {exc}") from exc


def build_mongo_filter(query: RiderQuery) -> dict:
    conditions: dict[str, Any] = {}
    if query.search:
        pattern = re.escape(query.search)
        conditions["$or"] = [
            {name: {"$regex": pattern, "$options": "i"}} for name in SEARCH_FIELDS
        ]
    status = query.status_filter
    if status is not None:
        conditions["status"] = status
    return conditions


class MongoRiderStore:
    """
    pymongo-backed implementation.

    Unique indexes on email and nric are created by `connect()` and act as the
    last line of defence when two writes race past the handler pre-check.
    """

    def __init__(
        self,
        uri: Optional[str],
        *,
        db_name: str = "riderdb",
        collection: str = "riders",
        max_pool_size: int = 10,
        server_selection_timeout_ms: int = 5000,
        socket_timeout_ms: int = 45000,
        client: Optional[MongoClient] = None,
    ):
        if client is None:
            if not uri:
                raise ValueError("MONGODB_URI is required for MongoRiderStore")
            with _mongo_errors("configuration"):
                client = MongoClient(
                    uri,
                    maxPoolSize=max_pool_size,
                    serverSelectionTimeoutMS=server_selection_timeout_ms,
                    socketTimeoutMS=socket_timeout_ms,
                    tz_aware=True,
                )
        self.client = client
        self.db = self.client.get_default_database(default=db_name)
        self.collection = self.db[collection]

    @property
    def database_name(self) -> str:
        return self.db.name

    def connect(self) -> None:
        """Verify the server is reachable and make sure indexes exist."""
        with _mongo_errors("connect"):
            self.client.admin.command("ping")
            self.collection.create_index(
                [("email", ASCENDING)], unique=True, name="email_unique"
            )
            self.collection.create_index(
                [("nric", ASCENDING)], unique=True, name="nric_unique"
            )
            self.collection.create_index(
                [("createdAt", DESCENDING)], name="created_at_desc"
            )

    def list_riders(self, query: RiderQuery) -> tuple[list[RiderRecord], int]:
        conditions = build_mongo_filter(query)
        with _mongo_errors("list"):
            total = self.collection.count_documents(conditions)
            # skip/limit travel as int64, so pages past the end never reach the server.
            if query.offset >= total:
                return [], total
            cursor = (
                self.collection.find(conditions)
                .sort([("createdAt", DESCENDING), ("_id", DESCENDING)])
                .skip(query.offset)
                .limit(min(query.limit, INT64_MAX))
            )
            riders = [RiderRecord.from_document(doc) for doc in cursor]
        return riders, total

    def get_rider(self, rider_id: str) -> Optional[RiderRecord]:
        oid = parse_rider_id(rider_id)
        with _mongo_errors("get"):
            doc = self.collection.find_one({"_id": oid})
        return RiderRecord.from_document(doc) if doc else None

    def find_conflict(
        self, email: str, nric: str, exclude_id: Optional[str] = None
    ) -> Optional[RiderRecord]:
        conditions: dict[str, Any] = {"$or": [{"email": email}, {"nric": nric}]}
        if exclude_id is not None:
            conditions["_id"] = {"$ne": parse_rider_id(exclude_id)}
        with _mongo_errors("lookup"):
            doc = self.collection.find_one(conditions)
        return RiderRecord.from_document(doc) if doc else None

    def create_rider(self, fields: dict) -> RiderRecord:
        now = _utcnow()
        doc = {**fields, "createdAt": now, "updatedAt": now}
        with _mongo_errors("insert"):
            result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return RiderRecord.from_document(doc)

    def update_rider(self, rider_id: str, fields: dict) -> Optional[RiderRecord]:
        oid = parse_rider_id(rider_id)
        with _mongo_errors("update"):
            doc = self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": {**fields, "updatedAt": _utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        return RiderRecord.from_document(doc) if doc else None

    def delete_rider(self, rider_id: str) -> bool:
        oid = parse_rider_id(rider_id)
        with _mongo_errors("delete"):
            result = self.collection.delete_one({"_id": oid})
        return result.deleted_count == 1

    def count_riders(self) -> int:
        with _mongo_errors("count"):
            return self.collection.count_documents({})

    def insert_riders(self, riders: Iterable[dict]) -> int:
        now = _utcnow()
        docs = [{**fields, "createdAt": now, "updatedAt": now} for fields in riders]
        if not docs:
            return 0
        with _mongo_errors("bulk insert"):
            result = self.collection.insert_many(docs)
        return len(result.inserted_ids)

    def all_riders(self) -> list[RiderRecord]:
        with _mongo_errors("export"):
            cursor = self.collection.find({}).sort(
                [("createdAt", ASCENDING), ("_id", ASCENDING)]
            )
            return [RiderRecord.from_document(doc) for doc in cursor]

    def reset(self) -> None:
        with _mongo_errors("reset"):
            self.collection.delete_many({})

    def close(self) -> None:
        self.client.close()


def load_snapshot(path: str | Path) -> list[RiderRecord]:
    """
    Read a JSON array of riders.

    Entries that fail field validation or repeat an email/NRIC already seen
    are skipped with a warning. Missing ids and timestamps are generated.
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"Rider snapshot {path} must contain a JSON array")

    records: list[RiderRecord] = []
    emails: set[str] = set()
    nrics: set[str] = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            logger.warning("Skipping snapshot entry %d: not an object", index)
            continue
        errors = validate_rider_fields(entry)
        if errors:
            logger.warning(
                "Skipping snapshot entry %d: %s", index, "; ".join(errors)
            )
            continue
        fields = RiderFields.from_payload(entry).for_create()
        if fields["email"] in emails or fields["nric"] in nrics:
            logger.warning("Skipping snapshot entry %d: duplicate email or NRIC", index)
            continue
        try:
            created_at = _as_utc(entry.get("createdAt"))
            updated_at = _as_utc(entry.get("updatedAt") or created_at)
        except ValueError:
            logger.warning("Skipping snapshot entry %d: bad timestamp", index)
            continue
        emails.add(fields["email"])
        nrics.add(fields["nric"])

        rider_id = entry.get("_id")
        if not isinstance(rider_id, str) or not ObjectId.is_valid(rider_id):
            rider_id = ObjectId()
        records.append(
            RiderRecord.from_fields(str(ObjectId(rider_id)), fields, created_at, updated_at)
        )
    return records


def write_snapshot(path: str | Path, records: Iterable[RiderRecord]) -> int:
    payload = [record.as_dict() for record in records]
    Path(path).write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return len(payload)
