from __future__ import annotations

import re
import unittest
from datetime import date, datetime

from merchant_match.fields import CanonicalField
from merchant_match.normalization import format_currency, format_date, normalize_field_value, serial_to_date

DISPLAY_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")


class FormatDateTests(unittest.TestCase):
    def test_excel_serial_becomes_display_date(self):
        rendered = format_date(45000)
        self.assertRegex(rendered, DISPLAY_DATE_RE)
        self.assertEqual(rendered, "03/15/2023")
        self.assertEqual(serial_to_date(45000), date(2023, 3, 15))

    def test_iso_date(self):
        self.assertEqual(format_date("2024-03-05"), "03/05/2024")
        self.assertEqual(format_date("2024-03-05 00:00:00"), "03/05/2024")

    def test_month_name_date(self):
        self.assertEqual(format_date("Mar/5/2024"), "03/05/2024")

    def test_native_dates(self):
        self.assertEqual(format_date(date(2024, 12, 1)), "12/01/2024")
        self.assertEqual(format_date(datetime(2024, 1, 2, 15, 30)), "01/02/2024")

    def test_numbers_outside_serial_range_are_left_alone(self):
        self.assertEqual(format_date("12"), "12")
        self.assertEqual(format_date(70000), "70000")

    def test_unrecognized_text_is_verbatim(self):
        self.assertEqual(format_date("next tuesday"), "next tuesday")
        self.assertEqual(format_date(None), "")


class FormatCurrencyTests(unittest.TestCase):
    def test_plain_number_is_grouped_with_two_decimals(self):
        self.assertEqual(format_currency("1200.5"), "1,200.50")
        self.assertEqual(format_currency(1234567), "1,234,567.00")

    def test_already_formatted_amount_is_unchanged(self):
        self.assertEqual(format_currency("1,200.50"), "1,200.50")

    def test_symbols_and_separators_are_dropped_before_parsing(self):
        self.assertEqual(format_currency("PKR 1,200"), "1,200.00")
        self.assertEqual(format_currency("$75"), "75.00")

    def test_unparseable_residue_is_verbatim(self):
        self.assertEqual(format_currency("n/a"), "n/a")
        self.assertEqual(format_currency(""), "")


class NormalizeFieldValueTests(unittest.TestCase):
    def test_dispatches_on_field_kind(self):
        self.assertEqual(normalize_field_value(CanonicalField.HOLD_DATE, "2024-03-05"), "03/05/2024")
        self.assertEqual(normalize_field_value(CanonicalField.RELEASE_AMOUNT, "99"), "99.00")
        self.assertEqual(normalize_field_value(CanonicalField.STATUS, "Closed"), "Closed")


if __name__ == "__main__":
    unittest.main()
