from __future__ import annotations

import re
import unittest

from merchant_match.contracts import (
    CONFIG_EXPORT_VERSION,
    CONTRACT_VERSIONS,
    build_config_document,
    build_contract,
    utc_now_iso,
)
from merchant_match.errors import MerchantMatchError, RowNotFound, WriteError
from merchant_match.models import ResourceKind


class ContractTests(unittest.TestCase):
    def test_every_contract_is_versioned(self):
        for name, version in CONTRACT_VERSIONS.items():
            self.assertTrue(name.startswith("merchant_match."))
            self.assertRegex(version, r"^\d+\.\d+\.\d+$")
            self.assertEqual(build_contract(name), {"name": name, "version": version})

    def test_unknown_contract_name(self):
        with self.assertRaises(KeyError):
            build_contract("merchant_match.nope")

    def test_timestamps_are_utc_seconds(self):
        self.assertRegex(utc_now_iso(), r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")

    def test_config_document_shape(self):
        document = build_config_document(None, [])
        self.assertEqual(set(document), {"version", "exportedAt", "activeProfileId", "profiles"})
        self.assertEqual(document["version"], CONFIG_EXPORT_VERSION)
        self.assertIsNone(document["activeProfileId"])


class ErrorPayloadTests(unittest.TestCase):
    def test_error_payload_carries_context(self):
        error = RowNotFound("missing", resource_name="tracker.xlsx", resource_kind=ResourceKind.HOLD, row_key="M9")
        self.assertEqual(
            error.to_dict(),
            {"kind": "RowNotFound", "message": "missing", "resource_name": "tracker.xlsx", "resource_kind": "HOLD", "row_key": "M9"},
        )

    def test_cause_is_reported(self):
        try:
            try:
                raise OSError("disk full")
            except OSError as exc:
                raise WriteError("Could not write tracker.xlsx") from exc
        except MerchantMatchError as error:
            payload = error.to_dict()
        self.assertEqual(payload["kind"], "WriteError")
        self.assertTrue(re.match(r"OSError: .*disk full", payload["cause"]))


if __name__ == "__main__":
    unittest.main()
