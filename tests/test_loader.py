from __future__ import annotations

import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock

import requests
from openpyxl import Workbook

from merchant_match.loader import (
    DEFAULT_REMOTE_NAME,
    detect_header_row,
    grid_to_table,
    load_table,
    load_table_from_url,
)


class FakeResponse:
    def __init__(self, content: bytes, status: int = 200) -> None:
        self.content = content
        self.status = status
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Client Error")

    def iter_content(self, chunk_size: int = 1024):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def close(self) -> None:
        self.closed = True


def csv_bytes() -> bytes:
    return "MID,Merchant Name,Current Status\nM100,Acme,Active\nM101,Beta,Closed\n".encode("utf-8")


class HeaderDetectionTests(unittest.TestCase):
    def test_first_row_with_known_alias_wins(self):
        grid = [["FMU weekly export", ""], ["", ""], ["Org + MID", "Shop"], ["M1", "A"]]
        self.assertEqual(detect_header_row(grid), 2)

    def test_banner_with_generic_words_is_not_a_header(self):
        grid = [["Name", "Type", "ID"], ["Merchant ID", "Merchant Name", "Current Status"], ["M1", "A", "Active"]]
        self.assertEqual(detect_header_row(grid), 1)

    def test_defaults_to_first_row(self):
        self.assertEqual(detect_header_row([["a", "b"], ["1", "2"]]), 0)

    def test_blank_and_duplicate_headers_get_unique_names(self):
        table = grid_to_table("t.csv", [["MID", "", "MID", ""], ["M1", "x", "M2", "y"]])
        self.assertEqual(table.columns, ["MID", "__EMPTY", "MID_1", "__EMPTY_1"])
        self.assertEqual(table.rows[0]["MID_1"], "M2")


class LocalLoaderTests(unittest.TestCase):
    def test_xlsx_with_banner_rows_and_dates(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "Hold_Jan.xlsx"
            workbook = Workbook()
            worksheet = workbook.active
            worksheet.append(["Hold report - January"])
            worksheet.append(["MID", "Merchant Name", "Date of Hold", "Hold Amount"])
            worksheet.append(["M100", "Acme", datetime(2024, 3, 5), 1500])
            worksheet.append([None, None, None, None])
            worksheet.append(["M101", "Beta", None, 20.5])
            workbook.save(path)

            table = load_table(path)

        self.assertEqual(table.name, "Hold_Jan.xlsx")
        self.assertEqual(table.columns, ["MID", "Merchant Name", "Date of Hold", "Hold Amount"])
        self.assertEqual(table.row_count, 2)
        self.assertEqual(table.rows[0]["Date of Hold"], "2024-03-05")
        self.assertEqual(table.rows[0]["Hold Amount"], 1500)
        self.assertEqual(table.rows[1]["Date of Hold"], "")

    def test_semicolon_csv_in_legacy_encoding(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "rm.csv"
            path.write_bytes("MID;Merchant Name\nM1;Café Süd\nM2;Bäckerei Nord\n".encode("latin-1"))
            table = load_table(path)
        self.assertEqual(table.columns, ["MID", "Merchant Name"])
        self.assertEqual([row["MID"] for row in table.rows], ["M1", "M2"])
        self.assertTrue(table.rows[0]["Merchant Name"].startswith("Caf"))

    def test_custom_table_name(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "export.csv"
            path.write_bytes(csv_bytes())
            self.assertEqual(load_table(path, name="Hold_Feb.csv").name, "Hold_Feb.csv")

    def test_missing_and_unsupported_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileNotFoundError):
                load_table(Path(tmpdir) / "missing.csv")
            other = Path(tmpdir) / "notes.pdf"
            other.write_bytes(b"%PDF")
            with self.assertRaises(ValueError):
                load_table(other)

    def test_corrupt_workbook_raises_value_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.xlsx"
            path.write_bytes(b"definitely not a workbook")
            with self.assertRaises(ValueError):
                load_table(path)


class RemoteLoaderTests(unittest.TestCase):
    def test_table_named_after_url_path(self):
        response = FakeResponse(csv_bytes())
        with mock.patch("merchant_match.loader.requests.get", return_value=response) as get:
            table = load_table_from_url("https://example.com/exports/Hold_Mar.csv")
        get.assert_called_once()
        self.assertTrue(response.closed)
        self.assertEqual(table.name, "Hold_Mar.csv")
        self.assertEqual(table.row_count, 2)

    def test_default_name_without_path(self):
        workbook = Workbook()
        workbook.active.append(["MID", "Merchant Name"])
        workbook.active.append(["M1", "A"])
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "x.xlsx"
            workbook.save(path)
            content = path.read_bytes()
        with mock.patch("merchant_match.loader.requests.get", return_value=FakeResponse(content)):
            table = load_table_from_url("https://example.com/")
        self.assertEqual(table.name, DEFAULT_REMOTE_NAME)
        self.assertEqual(table.rows, [{"MID": "M1", "Merchant Name": "A"}])

    def test_http_errors_and_bad_schemes(self):
        with mock.patch("merchant_match.loader.requests.get", return_value=FakeResponse(b"", status=404)):
            with self.assertRaises(ValueError):
                load_table_from_url("https://example.com/missing.csv")
        with self.assertRaises(ValueError):
            load_table_from_url("ftp://example.com/file.csv")


if __name__ == "__main__":
    unittest.main()
