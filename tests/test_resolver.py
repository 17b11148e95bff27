from __future__ import annotations

import unittest

from merchant_match.fields import CanonicalField
from merchant_match.resolver import (
    build_table_config,
    resolve_column,
    resolve_identity_columns,
    resolve_target_column,
)


class ResolveColumnTests(unittest.TestCase):
    def test_override_wins_when_column_exists(self):
        columns = ["Merchant ID", "Legacy MID"]
        self.assertEqual(resolve_column(CanonicalField.IDENTIFIER, columns, "Legacy MID"), "Legacy MID")

    def test_stale_override_is_ignored(self):
        columns = ["Merchant ID", "Name"]
        self.assertEqual(resolve_column(CanonicalField.IDENTIFIER, columns, "Gone"), "Merchant ID")

    def test_exact_label_beats_normalized_label(self):
        columns = ["merchant id", "Merchant ID"]
        self.assertEqual(resolve_column(CanonicalField.IDENTIFIER, columns), "Merchant ID")

    def test_normalized_label_beats_alias(self):
        columns = ["MID", "MERCHANT_ID"]
        self.assertEqual(resolve_column(CanonicalField.IDENTIFIER, columns), "MERCHANT_ID")

    def test_alias_membership_in_column_order(self):
        columns = ["Outlet No", "Org + MID", "MID"]
        self.assertEqual(resolve_column(CanonicalField.IDENTIFIER, columns), "Org + MID")

    def test_unresolved_field_returns_none(self):
        self.assertIsNone(resolve_column(CanonicalField.HOLD_AMOUNT, ["Merchant ID", "Name"]))

    def test_resolution_is_deterministic(self):
        columns = ["Status", "Current Status", "MID", "Hold Date", "Date of Hold"]
        overrides = {CanonicalField.IDENTIFIER: "MID"}
        first = build_table_config("Hold_Jan.xlsx", columns, overrides)
        for _ in range(5):
            again = build_table_config("Hold_Jan.xlsx", columns, overrides)
            self.assertEqual(again, first)
        self.assertEqual(first.column_for(CanonicalField.STATUS), "Current Status")
        self.assertEqual(first.column_for(CanonicalField.HOLD_DATE), "Date of Hold")


class IdentityColumnTests(unittest.TestCase):
    def test_positional_fallback_for_identifier_and_name(self):
        identifier, name = resolve_identity_columns(["Code", "Title", "Amount"])
        self.assertEqual(identifier, "Code")
        self.assertEqual(name, "Title")

    def test_name_fallback_never_reuses_identifier(self):
        identifier, name = resolve_identity_columns(["Foo", "MID"])
        self.assertEqual(identifier, "MID")
        self.assertIsNone(name)

    def test_fallback_can_be_disabled(self):
        self.assertEqual(resolve_identity_columns(["Code", "Title"], positional_fallback=False), (None, None))


class TargetColumnTests(unittest.TestCase):
    def test_target_column_uses_alias_chain(self):
        self.assertEqual(resolve_target_column(CanonicalField.CHANNEL, ["Merchant ID", "Final Seg"]), "Final Seg")

    def test_unmapped_target_is_none(self):
        self.assertIsNone(resolve_target_column(CanonicalField.CLOSED_DATE, ["Merchant ID"]))


class TableConfigTests(unittest.TestCase):
    def test_identity_columns_are_separate_from_mapping(self):
        config = build_table_config("RM_Master.xlsx", ["Org + MID", "Merchant Name", "RM", "TL"])
        self.assertEqual(config.identifier_column, "Org + MID")
        self.assertEqual(config.name_column, "Merchant Name")
        self.assertEqual(config.column_for(CanonicalField.RELATIONSHIP_MANAGER), "RM")
        self.assertEqual(config.column_for(CanonicalField.TEAM_LEAD), "TL")
        self.assertNotIn(CanonicalField.IDENTIFIER, config.mapping)


if __name__ == "__main__":
    unittest.main()
