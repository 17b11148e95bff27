from __future__ import annotations

import tempfile
import unittest
from datetime import date
from pathlib import Path

from openpyxl import load_workbook

from merchant_match.flagging import FlagStore, find_flag_candidate
from merchant_match.index import TableIndex
from merchant_match.models import Table


def index() -> TableIndex:
    return TableIndex(
        [
            Table(name="Hold_Jan.xlsx", columns=["MID", "Merchant Name"], rows=[{"MID": "M100", "Merchant Name": "Acme"}]),
            Table(name="Notes.xlsx", columns=["Comment", "Ref"], rows=[{"Comment": "watch", "Ref": "M-300"}]),
        ]
    )


class CandidateTests(unittest.TestCase):
    def test_identifier_column_match(self):
        record = find_flag_candidate("m100", index())
        self.assertEqual(record["Merchant Name"], "Acme")
        self.assertEqual(record["Source_File"], "Hold_Jan.xlsx")

    def test_falls_back_to_any_cell(self):
        record = find_flag_candidate("M300", index())
        self.assertEqual(record["Source_File"], "Notes.xlsx")

    def test_not_found(self):
        self.assertIsNone(find_flag_candidate("M999", index()))
        self.assertIsNone(find_flag_candidate("", index()))


class FlagStoreTests(unittest.TestCase):
    def test_add_remove_and_persist(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "flagged.json"
            store = FlagStore(path)
            first = store.add(find_flag_candidate("M100", index()), today=date(2024, 3, 5))
            second = store.add(find_flag_candidate("M100", index()))

            self.assertEqual(first["flagId"], 1)
            self.assertEqual(second["flagId"], 2)
            self.assertEqual(first["Flagged_Date"], "2024-03-05")
            self.assertIn("_flaggedAt", first)
            self.assertEqual(store.duplicate_count("m-100"), 2)

            reloaded = FlagStore(path)
            self.assertEqual([entry["flagId"] for entry in reloaded.flags()], [2, 1])
            self.assertTrue(reloaded.remove(1))
            self.assertFalse(reloaded.remove(1))
            self.assertEqual(reloaded.add({"MID": "M5"})["flagId"], 3)

    def test_export_strips_internal_keys(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = FlagStore()
            store.add(find_flag_candidate("M100", index()), today=date(2024, 3, 5))
            output = store.export(Path(tmpdir) / "flagged.xlsx")

            workbook = load_workbook(output)
            self.assertEqual(workbook.sheetnames, ["Sheet1"])
            rows = [list(row) for row in workbook["Sheet1"].iter_rows(values_only=True)]
            self.assertEqual(rows[0], ["MID", "Merchant Name", "Source_File", "Flagged_Date"])
            self.assertEqual(rows[1], ["M100", "Acme", "Hold_Jan.xlsx", "2024-03-05"])

    def test_export_without_flags(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ValueError):
                FlagStore().export(Path(tmpdir) / "flagged.xlsx")


if __name__ == "__main__":
    unittest.main()
