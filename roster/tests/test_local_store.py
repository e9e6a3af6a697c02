import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from roster.db import (
    DuplicateRiderError,
    InvalidRiderIdError,
    LocalRiderStore,
    RiderQuery,
    RiderRecord,
    load_snapshot,
    write_snapshot,
)

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_record(index: int, **overrides) -> RiderRecord:
    values = {
        "name": f"Rider {index}",
        "email": f"rider{index}@example.com",
        "position": "Rider",
        "nric": f"S{index:07d}A",
        "phone": "12345678",
        "license": "LIC123",
        "status": "active",
    }
    values.update(overrides)
    created = BASE_TIME + timedelta(minutes=index)
    return RiderRecord.from_fields(f"{index:024x}", values, created, created)


def make_fields(index: int, **overrides) -> dict:
    fields = make_record(index).fields()
    fields.update(overrides)
    return fields


class LocalRiderStoreQueryTests(unittest.TestCase):
    def setUp(self):
        self.store = LocalRiderStore(
            [
                make_record(1, name="Alice Tan", status="active"),
                make_record(2, name="Bob Lee", email="bob@fleet.io", status="premium"),
                make_record(3, name="Carol Ng", nric="T7777777Q", status="suspended"),
                make_record(4, name="Dan Ong", status="active"),
            ]
        )

    def _names(self, **kwargs) -> list[str]:
        riders, _ = self.store.list_riders(RiderQuery(**kwargs))
        return [rider.name for rider in riders]

    def test_newest_first(self):
        self.assertEqual(
            self._names(), ["Dan Ong", "Carol Ng", "Bob Lee", "Alice Tan"]
        )

    def test_search_matches_any_field_case_insensitively(self):
        self.assertEqual(self._names(search="ALICE"), ["Alice Tan"])
        self.assertEqual(self._names(search="fleet.io"), ["Bob Lee"])
        self.assertEqual(self._names(search="t7777"), ["Carol Ng"])
        self.assertEqual(self._names(search="nobody"), [])

    def test_status_filter_and_all(self):
        self.assertEqual(self._names(status="active"), ["Dan Ong", "Alice Tan"])
        self.assertEqual(len(self._names(status="all")), 4)
        self.assertEqual(len(self._names(status="")), 4)

    def test_search_and_status_combine(self):
        riders, total = self.store.list_riders(
            RiderQuery(search="example.com", status="active")
        )
        self.assertEqual(total, 2)
        self.assertEqual([r.name for r in riders], ["Dan Ong", "Alice Tan"])

    def test_pagination_and_total(self):
        riders, total = self.store.list_riders(RiderQuery(page=2, limit=3))
        self.assertEqual(total, 4)
        self.assertEqual([r.name for r in riders], ["Alice Tan"])

        riders, total = self.store.list_riders(RiderQuery(page=5, limit=3))
        self.assertEqual((riders, total), ([], 4))

    def test_query_rejects_bad_page(self):
        with self.assertRaises(ValueError):
            RiderQuery(page=0)
        with self.assertRaises(ValueError):
            RiderQuery(limit=0)


class LocalRiderStoreWriteTests(unittest.TestCase):
    def setUp(self):
        self.store = LocalRiderStore()

    def test_create_assigns_id_and_timestamps(self):
        rider = self.store.create_rider(make_fields(1))
        self.assertEqual(len(rider.rider_id), 24)
        self.assertEqual(rider.created_at, rider.updated_at)
        self.assertEqual(self.store.get_rider(rider.rider_id), rider)

    def test_create_enforces_unique_email_and_nric(self):
        self.store.create_rider(make_fields(1))
        with self.assertRaises(DuplicateRiderError):
            self.store.create_rider(make_fields(2, email="rider1@example.com"))
        with self.assertRaises(DuplicateRiderError):
            self.store.create_rider(make_fields(3, nric="S0000001A"))
        self.assertEqual(self.store.count_riders(), 1)

    def test_update_replaces_only_given_fields(self):
        rider = self.store.create_rider(make_fields(1, rating=4.9))
        updated = self.store.update_rider(rider.rider_id, {"name": "New Name"})
        self.assertEqual(updated.name, "New Name")
        self.assertEqual(updated.rating, 4.9)
        self.assertEqual(updated.created_at, rider.created_at)
        self.assertGreaterEqual(updated.updated_at, rider.updated_at)

    def test_update_can_keep_own_email_but_not_take_another(self):
        first = self.store.create_rider(make_fields(1))
        second = self.store.create_rider(make_fields(2))

        self.assertIsNotNone(self.store.update_rider(first.rider_id, make_fields(1)))
        self.assertIsNone(
            self.store.find_conflict("rider1@example.com", "S0000001A", first.rider_id)
        )
        with self.assertRaises(DuplicateRiderError):
            self.store.update_rider(second.rider_id, {"email": "rider1@example.com"})

    def test_missing_and_malformed_ids(self):
        missing = "0123456789abcdef01234567"
        self.assertIsNone(self.store.get_rider(missing))
        self.assertIsNone(self.store.update_rider(missing, {"name": "X"}))
        self.assertFalse(self.store.delete_rider(missing))
        with self.assertRaises(InvalidRiderIdError):
            self.store.get_rider("abc")

    def test_delete(self):
        rider = self.store.create_rider(make_fields(1))
        self.assertTrue(self.store.delete_rider(rider.rider_id))
        self.assertFalse(self.store.delete_rider(rider.rider_id))
        self.assertEqual(self.store.count_riders(), 0)


class SnapshotTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "riders.json"

    def tearDown(self):
        self.tmp.cleanup()

    def test_load_skips_invalid_and_duplicate_entries(self):
        entries = [
            make_fields(1),
            {**make_fields(2), "email": "not-an-email"},
            {**make_fields(3), "email": "RIDER1@example.com"},
            "not a rider",
            make_fields(4),
        ]
        self.path.write_text(json.dumps(entries), encoding="utf-8")

        records = load_snapshot(self.path)
        self.assertEqual([r.name for r in records], ["Rider 1", "Rider 4"])
        self.assertTrue(all(len(r.rider_id) == 24 for r in records))

    def test_load_rejects_non_array(self):
        self.path.write_text(json.dumps({"riders": []}), encoding="utf-8")
        with self.assertRaises(ValueError):
            load_snapshot(self.path)

    def test_written_snapshot_keeps_ids_and_timestamps(self):
        records = [make_record(1), make_record(2, status="premium")]
        self.assertEqual(write_snapshot(self.path, records), 2)

        store = LocalRiderStore.from_snapshot(self.path)
        self.assertEqual(store.all_riders(), records)


if __name__ == "__main__":
    unittest.main()
