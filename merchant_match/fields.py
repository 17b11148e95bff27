"""Canonical merchant fields and the versioned alias table behind them.

The alias table lives in ``data/aliases.json`` and is loaded once at import.
Column resolution and ingestion header detection both read it from here so the
two can never disagree about what a header means.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from merchant_match.keys import normalize_key

ALIAS_TABLE_PATH = Path(__file__).resolve().parent / "data" / "aliases.json"


class FieldKind(str, Enum):
    TEXT = "text"
    DATE = "date"
    CURRENCY = "currency"
    ENUM = "enum"


class CanonicalField(str, Enum):
    IDENTIFIER = "identifier"
    NAME = "name"
    STATUS = "status"
    HOLD_TYPE = "hold-type"
    HOLD_DATE = "hold-date"
    HELD_BY = "held-by"
    POS_ECOM = "pos-ecom"
    CHANNEL = "channel"
    SEGMENT = "segment"
    HOLD_AMOUNT = "hold-amount"
    RELEASE_DATE = "release-date"
    RELEASED_BY = "released-by"
    RELEASE_AMOUNT = "release-amount"
    CLOSED_DATE = "closed-date"
    REASON = "reason"
    REMARKS = "remarks"
    AGING_DAYS = "aging-days"
    AGING_DURATION = "aging-duration"
    ADDED_BY = "added-by"
    CHAIN_ID = "chain-id"
    GROUP = "group"
    TEAM_LEAD = "team-lead"
    RELATIONSHIP_MANAGER = "relationship-manager"

    @property
    def label(self) -> str:
        return FIELD_SPECS[self].label

    @property
    def kind(self) -> FieldKind:
        return FIELD_SPECS[self].kind

    @property
    def aliases(self) -> frozenset[str]:
        return FIELD_SPECS[self].aliases

    @classmethod
    def parse(cls, value: Any) -> CanonicalField | None:
        """Accept a field value, enum name or display label; ``None`` if unknown."""
        if isinstance(value, cls):
            return value
        key = normalize_key(value)
        if not key:
            return None
        if key in _LOOKUP:
            return _LOOKUP[key]
        return reverse_lookup(key)


@dataclass(frozen=True)
class FieldSpec:
    field: CanonicalField
    label: str
    kind: FieldKind
    aliases: frozenset[str]


def _load_alias_table(path: Path) -> tuple[str, dict[CanonicalField, FieldSpec], frozenset[str]]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    version = str(payload["version"])
    entries = payload["fields"]
    specs: dict[CanonicalField, FieldSpec] = {}
    for field in CanonicalField:
        if field.value not in entries:
            raise ValueError(f"Alias table {path.name} is missing canonical field '{field.value}'")
        entry = entries[field.value]
        specs[field] = FieldSpec(
            field=field,
            label=entry["label"],
            kind=FieldKind(entry["kind"]),
            aliases=frozenset(normalize_key(alias) for alias in entry.get("aliases", []) if normalize_key(alias)),
        )
    signals = frozenset(normalize_key(signal) for signal in payload.get("headerSignals", []) if normalize_key(signal))
    return version, specs, signals


ALIAS_TABLE_VERSION, FIELD_SPECS, HEADER_SIGNALS = _load_alias_table(ALIAS_TABLE_PATH)

# Labels shorter than this ("Seg") never mark a header row.
MIN_LABEL_SIGNAL_LENGTH = 4

_LOOKUP: dict[str, CanonicalField] = {}
for _field in CanonicalField:
    _LOOKUP.setdefault(normalize_key(_field.value), _field)
    _LOOKUP.setdefault(normalize_key(_field.name), _field)
    _LOOKUP.setdefault(normalize_key(FIELD_SPECS[_field].label), _field)

# Identity fields gate every row lookup, so they are resolved once per table.
IDENTITY_FIELDS = (CanonicalField.IDENTIFIER, CanonicalField.NAME)

HOLD_FIELDS = (
    CanonicalField.IDENTIFIER,
    CanonicalField.NAME,
    CanonicalField.POS_ECOM,
    CanonicalField.RELATIONSHIP_MANAGER,
    CanonicalField.CHANNEL,
    CanonicalField.STATUS,
    CanonicalField.HOLD_TYPE,
    CanonicalField.HOLD_DATE,
    CanonicalField.HELD_BY,
    CanonicalField.HOLD_AMOUNT,
    CanonicalField.RELEASE_DATE,
    CanonicalField.RELEASED_BY,
    CanonicalField.RELEASE_AMOUNT,
    CanonicalField.CLOSED_DATE,
    CanonicalField.REASON,
    CanonicalField.REMARKS,
    CanonicalField.AGING_DAYS,
    CanonicalField.AGING_DURATION,
    CanonicalField.ADDED_BY,
)

RM_FIELDS = (
    CanonicalField.IDENTIFIER,
    CanonicalField.CHAIN_ID,
    CanonicalField.NAME,
    CanonicalField.TEAM_LEAD,
    CanonicalField.GROUP,
    CanonicalField.SEGMENT,
    CanonicalField.CHANNEL,
    CanonicalField.RELATIONSHIP_MANAGER,
)


def header_signal_keys() -> frozenset[str]:
    """Header markers: the explicit signal list plus field labels.

    Bare aliases such as ``id``, ``name`` or ``type`` do not count.
    """
    keys = set(HEADER_SIGNALS)
    for spec in FIELD_SPECS.values():
        label = normalize_key(spec.label)
        if len(label) >= MIN_LABEL_SIGNAL_LENGTH:
            keys.add(label)
    return frozenset(keys)


def reverse_lookup(column: str) -> CanonicalField | None:
    """Map a physical column name back to the canonical field it most likely holds.

    A column whose normalized key equals a field label wins over alias hits, so
    ``Seg`` maps to segment even though channel also lists ``seg`` as an alias.
    """
    key = normalize_key(column)
    if not key:
        return None
    for field in CanonicalField:
        if normalize_key(field.label) == key:
            return field
    for field in CanonicalField:
        if key in field.aliases:
            return field
    return None
