"""Records typed in by the user, queued in a virtual table until appended to a linked file."""

from __future__ import annotations

import logging
from datetime import date
from typing import Mapping, Optional

from merchant_match.fields import HOLD_FIELDS, RM_FIELDS, CanonicalField
from merchant_match.keys import is_blank
from merchant_match.models import MANUAL_ENTRY_TABLE, Record, ResourceKind, Scalar, Table, UserProfile
from merchant_match.storage import TableStore

logger = logging.getLogger(__name__)

TYPE_KEY = "_type"
SOURCE_COLUMN = "Source"
ENTRY_DATE_COLUMN = "Entry Date"
SYSTEM_ENTRY = "System Entry"

HOLD_DEFAULTS = {
    CanonicalField.STATUS: "Active",
    CanonicalField.HOLD_TYPE: "Account Hold",
}


def build_entry(
    kind: ResourceKind,
    values: Mapping[CanonicalField, Scalar],
    profile: Optional[UserProfile] = None,
    today: Optional[date] = None,
) -> Record:
    kind = ResourceKind.parse(kind)
    required = (CanonicalField.IDENTIFIER, CanonicalField.NAME) if kind is ResourceKind.HOLD else (CanonicalField.IDENTIFIER,)
    missing = [canonical.label for canonical in required if is_blank(values.get(canonical))]
    if missing:
        raise ValueError(f"{kind.value} entries need: {', '.join(missing)}")

    defaults: dict[CanonicalField, Scalar] = {}
    if kind is ResourceKind.HOLD:
        defaults.update(HOLD_DEFAULTS)
        if profile is not None:
            defaults[CanonicalField.HELD_BY] = profile.default_held_by
            defaults[CanonicalField.POS_ECOM] = profile.default_pos_ecom

    layout = HOLD_FIELDS if kind is ResourceKind.HOLD else RM_FIELDS
    record: Record = {}
    for canonical in layout:
        value = values.get(canonical)
        if is_blank(value):
            value = defaults.get(canonical) or ""
        record[canonical.label] = value
    today = today or date.today()
    record[SOURCE_COLUMN] = SYSTEM_ENTRY
    record[ENTRY_DATE_COLUMN] = f"{today.month:02d}/{today.day:02d}/{today.year:04d}"
    record[TYPE_KEY] = kind.value
    return record


class ManualEntryBook:
    def __init__(self, tables: TableStore) -> None:
        self.tables = tables

    def table(self) -> Table | None:
        return self.tables.get(MANUAL_ENTRY_TABLE)

    def add(self, record: Record) -> Table:
        table = self.table()
        if table is None:
            table = Table(name=MANUAL_ENTRY_TABLE, columns=list(record), rows=[])
        else:
            for key in record:
                if key not in table.columns:
                    table.columns.append(key)
        table.rows.append(dict(record))
        self.tables.put(table)
        logger.info("Queued %s entry for %s", record.get(TYPE_KEY), record.get(CanonicalField.IDENTIFIER.label))
        return table

    def entries(self, kind: Optional[ResourceKind] = None) -> list[Record]:
        table = self.table()
        if table is None:
            return []
        if kind is None:
            return [dict(row) for row in table.rows]
        kind = ResourceKind.parse(kind)
        return [dict(row) for row in table.rows if row.get(TYPE_KEY) == kind.value]

    def clear(self, kind: ResourceKind) -> int:
        """Drop queued entries of one kind, usually after a successful append."""
        table = self.table()
        if table is None:
            return 0
        kind = ResourceKind.parse(kind)
        kept = [row for row in table.rows if row.get(TYPE_KEY) != kind.value]
        removed = len(table.rows) - len(kept)
        if not kept:
            self.tables.remove(MANUAL_ENTRY_TABLE)
        elif removed:
            table.rows = kept
            self.tables.put(table)
        return removed
