"""Flagged merchants: find a record by identifier across every table and keep a watch list."""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Optional

from merchant_match.contracts import utc_now_iso
from merchant_match.errors import InvalidConfig
from merchant_match.index import TableIndex, all_tables
from merchant_match.keys import normalize_key
from merchant_match.models import Record
from merchant_match.resources import atomic_write_bytes
from merchant_match.storage import read_json, write_json
from merchant_match.workbook import build_export_workbook, workbook_to_bytes

logger = logging.getLogger(__name__)

SOURCE_FILE_KEY = "Source_File"
FLAGGED_DATE_KEY = "Flagged_Date"
FLAGGED_AT_KEY = "_flaggedAt"
FLAG_ID_KEY = "flagId"
EXPORT_SHEET = "Sheet1"


def find_flag_candidate(identifier: str, index: TableIndex) -> Record | None:
    """First row, in load order, whose identifier column or failing that any cell equals ``identifier``."""
    key = normalize_key(identifier)
    if not key:
        return None
    for table in index.eligible(all_tables):
        column = index.config_for(table).identifier_column
        match = None
        if column is not None:
            match = next((row for row in table.rows if normalize_key(row.get(column)) == key), None)
        if match is None:
            match = next(
                (row for row in table.rows if any(normalize_key(value) == key for value in row.values())),
                None,
            )
        if match is not None:
            return {**match, SOURCE_FILE_KEY: table.name}
    return None


def export_record(record: Record) -> Record:
    return {key: value for key, value in record.items() if not key.startswith("_") and key != FLAG_ID_KEY}


def default_export_name(today: Optional[date] = None) -> str:
    return f"Flagged_Merchants_Report_{(today or date.today()).isoformat()}.xlsx"


class FlagStore:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._flags: list[Record] = []
        self._next_id = 1
        if path is not None and path.exists():
            payload = read_json(path)
            if not isinstance(payload, dict) or not isinstance(payload.get("flags"), list):
                raise InvalidConfig(f"{path} must hold an object with a 'flags' array")
            self._flags = [dict(entry) for entry in payload["flags"]]
            known = [entry.get(FLAG_ID_KEY) for entry in self._flags if isinstance(entry.get(FLAG_ID_KEY), int)]
            self._next_id = max([int(payload.get("nextId") or 1), *(flag_id + 1 for flag_id in known)])

    def save(self) -> None:
        if self.path is not None:
            write_json(self.path, {"nextId": self._next_id, "flags": self._flags})

    def flags(self) -> list[Record]:
        """Most recent first."""
        return [dict(entry) for entry in reversed(self._flags)]

    def duplicate_count(self, identifier: str) -> int:
        key = normalize_key(identifier)
        return sum(1 for entry in self._flags if any(normalize_key(value) == key for value in export_record(entry).values()))

    def add(self, record: Record, today: Optional[date] = None) -> Record:
        entry = dict(record)
        entry[FLAGGED_DATE_KEY] = (today or date.today()).isoformat()
        entry[FLAGGED_AT_KEY] = utc_now_iso()
        entry[FLAG_ID_KEY] = self._next_id
        self._next_id += 1
        self._flags.append(entry)
        self.save()
        logger.info("Flagged merchant from %s as #%d", entry.get(SOURCE_FILE_KEY, "?"), entry[FLAG_ID_KEY])
        return dict(entry)

    def remove(self, flag_id: int) -> bool:
        before = len(self._flags)
        self._flags = [entry for entry in self._flags if entry.get(FLAG_ID_KEY) != flag_id]
        removed = len(self._flags) != before
        if removed:
            self.save()
        return removed

    def export(self, path: Path) -> Path:
        if not self._flags:
            raise ValueError("No flagged merchants to export")
        workbook = build_export_workbook([export_record(entry) for entry in self.flags()], sheet_name=EXPORT_SHEET)
        path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_bytes(path, workbook_to_bytes(workbook))
        logger.info("Exported %d flagged merchant(s) to %s", len(self._flags), path)
        return path
