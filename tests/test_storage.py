from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from merchant_match.errors import InvalidConfig
from merchant_match.fields import CanonicalField
from merchant_match.models import Table
from merchant_match.storage import ProfileStore, TableStore


class TableStoreTests(unittest.TestCase):
    def test_tables_persist_and_duplicates_are_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tables.json"
            store = TableStore(path)
            store.add(Table(name="Hold_Jan.xlsx", columns=["MID"], rows=[{"MID": "M1"}]))
            with self.assertRaises(ValueError):
                store.add(Table(name="Hold_Jan.xlsx", columns=["MID"], rows=[]))

            reloaded = TableStore(path)
            self.assertEqual([table.name for table in reloaded.tables()], ["Hold_Jan.xlsx"])
            self.assertEqual(reloaded.get("Hold_Jan.xlsx").rows, [{"MID": "M1"}])
            self.assertEqual(json.loads(path.read_text())[0]["rowCount"], 1)

            self.assertTrue(reloaded.remove("Hold_Jan.xlsx"))
            self.assertFalse(reloaded.remove("Hold_Jan.xlsx"))
            self.assertEqual(TableStore(path).tables(), [])

    def test_malformed_file_is_invalid_config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "tables.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(InvalidConfig):
                TableStore(path)


class ProfileStoreTests(unittest.TestCase):
    def test_first_profile_becomes_active_and_mappings_persist(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "profiles.json"
            store = ProfileStore(path)
            ops = store.create("Ops Desk", default_held_by="Desk A")
            store.create("Ops Desk")
            self.assertEqual(ops.id, "opsdesk")
            self.assertEqual(store.active_id, "opsdesk")
            self.assertEqual(sorted(profile.id for profile in store.profiles()), ["opsdesk", "opsdesk2"])

            store.save_mapping("opsdesk", "Hold_Jan.xlsx", {CanonicalField.IDENTIFIER: "Ref"})
            reloaded = ProfileStore(path)
            self.assertEqual(reloaded.active().column_mapping("Hold_Jan.xlsx"), {CanonicalField.IDENTIFIER: "Ref"})
            self.assertEqual(reloaded.active().default_held_by, "Desk A")

    def test_use_unknown_profile(self):
        with self.assertRaises(KeyError):
            ProfileStore().use("ghost")

    def test_export_document_shape(self):
        store = ProfileStore()
        store.create("Ops")
        document = store.export_config()
        self.assertEqual(document["version"], 1)
        self.assertEqual(document["activeProfileId"], "ops")
        self.assertTrue(document["exportedAt"].endswith("Z"))
        self.assertEqual(document["profiles"][0]["defaultHeldBy"], "")

    def test_import_round_trip(self):
        source = ProfileStore()
        profile = source.create("Ops", default_pos_ecom="ECOM")
        profile.custom_options["Current Status"] = ["Frozen"]
        document = source.export_config()

        target = ProfileStore()
        imported = target.import_config(document)
        self.assertEqual([item.id for item in imported], ["ops"])
        self.assertEqual(target.active().default_pos_ecom, "ECOM")
        self.assertEqual(target.active().options_for(CanonicalField.STATUS), ["Frozen"])

    def test_import_requires_profiles_array(self):
        store = ProfileStore()
        for payload in ({}, {"profiles": {"id": "x"}}, [], {"profiles": None}):
            with self.assertRaises(InvalidConfig):
                store.import_config(payload)
        self.assertEqual(store.profiles(), [])

    def test_import_rejects_malformed_nested_values(self):
        store = ProfileStore()
        bad_entries = [
            {"id": "a", "name": "A", "customOptions": {"Held By": 5}},
            {"id": "a", "name": "A", "customOptions": {"Held By": ["Ali", 7]}},
            {"id": "a", "name": "A", "mappings": {"Hold_Jan.xlsx": 5}},
        ]
        for entry in bad_entries:
            with self.assertRaises(InvalidConfig):
                store.import_config({"profiles": [entry]})
        self.assertEqual(store.profiles(), [])

    def test_import_is_all_or_nothing(self):
        store = ProfileStore()
        store.create("Existing")
        payload = {
            "version": 1,
            "activeProfileId": "good",
            "profiles": [{"id": "good", "name": "Good"}, {"name": "missing id"}],
        }
        with self.assertRaises(InvalidConfig):
            store.import_config(payload)
        self.assertEqual([profile.id for profile in store.profiles()], ["existing"])
        self.assertEqual(store.active_id, "existing")


if __name__ == "__main__":
    unittest.main()
