from __future__ import annotations

import unittest
from datetime import date

from merchant_match.fields import CanonicalField
from merchant_match.manual_entry import ManualEntryBook, build_entry
from merchant_match.models import MANUAL_ENTRY_TABLE, ResourceKind, UserProfile
from merchant_match.storage import TableStore


class BuildEntryTests(unittest.TestCase):
    def test_hold_entry_requires_identifier_and_name(self):
        with self.assertRaises(ValueError):
            build_entry(ResourceKind.HOLD, {CanonicalField.IDENTIFIER: "M1"})

    def test_rm_entry_requires_only_identifier(self):
        record = build_entry(ResourceKind.RM, {CanonicalField.IDENTIFIER: "M1"}, today=date(2024, 3, 5))
        self.assertEqual(record["Merchant ID"], "M1")
        self.assertEqual(record["Source"], "System Entry")
        self.assertEqual(record["Entry Date"], "03/05/2024")
        self.assertEqual(record["_type"], "RM")
        self.assertIn("Team Lead (TL)", record)
        self.assertNotIn("Current Status", record)

    def test_hold_defaults_and_profile_defaults(self):
        profile = UserProfile(id="ops", name="Ops", default_held_by="Desk A", default_pos_ecom="POS")
        record = build_entry(
            ResourceKind.HOLD,
            {CanonicalField.IDENTIFIER: "M1", CanonicalField.NAME: "Acme", CanonicalField.HELD_BY: "Ali"},
            profile=profile,
        )
        self.assertEqual(record["Current Status"], "Active")
        self.assertEqual(record["Account / Settlement Hold"], "Account Hold")
        self.assertEqual(record["Held By"], "Ali")
        self.assertEqual(record["POS/ECOM"], "POS")


class ManualEntryBookTests(unittest.TestCase):
    def test_entries_queue_in_a_virtual_table(self):
        store = TableStore()
        book = ManualEntryBook(store)
        book.add(build_entry(ResourceKind.RM, {CanonicalField.IDENTIFIER: "M1"}))
        book.add({**build_entry(ResourceKind.HOLD, {CanonicalField.IDENTIFIER: "M2", CanonicalField.NAME: "B"}), "Extra": "x"})

        table = store.get(MANUAL_ENTRY_TABLE)
        self.assertEqual(table.row_count, 2)
        self.assertIn("Current Status", table.columns)
        self.assertEqual(table.columns[-1], "Extra")
        self.assertEqual([entry["Merchant ID"] for entry in book.entries(ResourceKind.HOLD)], ["M2"])
        self.assertEqual(len(book.entries()), 2)

    def test_clear_removes_one_kind(self):
        store = TableStore()
        book = ManualEntryBook(store)
        book.add(build_entry(ResourceKind.RM, {CanonicalField.IDENTIFIER: "M1"}))
        book.add(build_entry(ResourceKind.HOLD, {CanonicalField.IDENTIFIER: "M2", CanonicalField.NAME: "B"}))

        self.assertEqual(book.clear(ResourceKind.RM), 1)
        self.assertEqual(book.entries(ResourceKind.RM), [])
        self.assertEqual(book.clear(ResourceKind.HOLD), 1)
        self.assertIsNone(store.get(MANUAL_ENTRY_TABLE))


if __name__ == "__main__":
    unittest.main()
