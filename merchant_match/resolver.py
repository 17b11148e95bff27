"""Map canonical merchant fields onto the physical columns of one table.

Resolution order, first hit wins:

  1. a saved override, if that column exists in the table
  2. a column named exactly like the field's display label
  3. a column whose normalized key equals the normalized label
  4. a column whose normalized key is one of the field's aliases

Anything else is unresolved. Only the identity fields (identifier, name) get a
positional default, because every row lookup depends on them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from merchant_match.fields import CanonicalField, reverse_lookup
from merchant_match.keys import normalize_key
from merchant_match.models import ColumnMapping

logger = logging.getLogger(__name__)


def resolve_column(
    canonical: CanonicalField,
    columns: Iterable[str],
    override: Optional[str] = None,
) -> str | None:
    columns = list(columns)
    if override and override in columns:
        return override

    label = canonical.label
    if label in columns:
        return label

    label_key = normalize_key(label)
    for column in columns:
        if normalize_key(column) == label_key:
            return column

    aliases = canonical.aliases
    for column in columns:
        if normalize_key(column) in aliases:
            return column
    return None


def resolve_target_column(
    canonical: CanonicalField,
    columns: Iterable[str],
    override: Optional[str] = None,
) -> str | None:
    """Resolve a write target; falls back to reverse alias lookup of each column."""
    columns = list(columns)
    column = resolve_column(canonical, columns, override)
    if column is not None:
        return column
    for candidate in columns:
        if reverse_lookup(candidate) is canonical:
            return candidate
    return None


def resolve_identity_columns(
    columns: Iterable[str],
    overrides: Optional[Mapping[CanonicalField, str]] = None,
    *,
    positional_fallback: bool = True,
) -> tuple[str | None, str | None]:
    columns = list(columns)
    overrides = overrides or {}
    identifier = resolve_column(CanonicalField.IDENTIFIER, columns, overrides.get(CanonicalField.IDENTIFIER))
    name = resolve_column(CanonicalField.NAME, columns, overrides.get(CanonicalField.NAME))
    if not positional_fallback:
        return identifier, name

    if identifier is None and columns:
        identifier = columns[0]
        logger.debug("No identifier column matched; defaulting to first column %r", identifier)
    if name is None and len(columns) > 1 and columns[1] != identifier:
        name = columns[1]
        logger.debug("No name column matched; defaulting to second column %r", name)
    return identifier, name


@dataclass
class TableConfig:
    """Resolved column layout of one table, cached per table load."""

    table_name: str
    identifier_column: str | None
    name_column: str | None
    mapping: ColumnMapping = field(default_factory=dict)

    def column_for(self, canonical: CanonicalField) -> str | None:
        if canonical is CanonicalField.IDENTIFIER:
            return self.identifier_column
        if canonical is CanonicalField.NAME:
            return self.name_column
        return self.mapping.get(canonical)


def build_table_config(
    table_name: str,
    columns: Iterable[str],
    overrides: Optional[Mapping[CanonicalField, str]] = None,
) -> TableConfig:
    columns = list(columns)
    overrides = dict(overrides or {})
    identifier, name = resolve_identity_columns(columns, overrides)

    mapping: ColumnMapping = {}
    for canonical in CanonicalField:
        if canonical in (CanonicalField.IDENTIFIER, CanonicalField.NAME):
            continue
        column = resolve_column(canonical, columns, overrides.get(canonical))
        if column is not None:
            mapping[canonical] = column

    stale = [canonical.value for canonical, column in overrides.items() if column not in columns]
    if stale:
        logger.warning("Ignoring overrides for %s in %s: column no longer present", ", ".join(stale), table_name)
    return TableConfig(table_name=table_name, identifier_column=identifier, name_column=name, mapping=mapping)
