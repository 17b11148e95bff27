"""In-memory index over the loaded tables: substring search and option lists."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator, Optional

from merchant_match.fields import CanonicalField
from merchant_match.keys import normalize_key, safe_trim
from merchant_match.models import ColumnMapping, SearchHit, Table, UserProfile
from merchant_match.resolver import TableConfig, build_table_config

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 20

DEFAULT_FIELD_OPTIONS = {
    CanonicalField.STATUS: ["Active", "Closed", "Terminated", "On Hold"],
    CanonicalField.HOLD_TYPE: ["Account Hold", "Settlement Hold"],
}

TablePredicate = Callable[[Table], bool]


def all_tables(table: Table) -> bool:
    return True


def name_contains(token: str) -> TablePredicate:
    """Eligibility predicate: the table name contains ``token`` (case-insensitive)."""
    needle = token.lower()

    def predicate(table: Table) -> bool:
        return needle in table.name.lower()

    predicate.__name__ = f"name_contains_{needle}"
    return predicate


hold_tables = name_contains("hold")


class TableIndex:
    """Holds the loaded tables and their cached column layouts.

    The index only borrows the tables; searching never mutates them, and every
    hit is a copy of the source row.
    """

    def __init__(self, tables: Iterable[Table] = (), profile: Optional[UserProfile] = None) -> None:
        self._tables: list[Table] = list(tables)
        self.profile = profile
        self._configs: dict[str, tuple[tuple[str, ...], TableConfig]] = {}

    @property
    def tables(self) -> tuple[Table, ...]:
        return tuple(self._tables)

    def get(self, name: str) -> Table | None:
        for table in self._tables:
            if table.name == name:
                return table
        return None

    def eligible(self, predicate: Optional[TablePredicate] = None) -> Iterator[Table]:
        predicate = predicate or all_tables
        return (table for table in self._tables if predicate(table))

    def overrides_for(self, table_name: str) -> ColumnMapping:
        if self.profile is None:
            return {}
        return self.profile.column_mapping(table_name)

    def config_for(self, table: Table) -> TableConfig:
        signature = tuple(table.columns)
        cached = self._configs.get(table.name)
        if cached is not None and cached[0] == signature:
            return cached[1]
        config = build_table_config(table.name, table.columns, self.overrides_for(table.name))
        self._configs[table.name] = (signature, config)
        return config

    def set_override(self, table_name: str, canonical: CanonicalField, column: str) -> ColumnMapping:
        """Pin ``canonical`` to ``column`` for one table and return the table's full override map.

        The caller persists the returned mapping through its profile store.
        """
        table = self.get(table_name)
        if table is None:
            raise KeyError(f"Table '{table_name}' is not loaded")
        if column not in table.columns:
            raise ValueError(f"Column '{column}' not found in {table_name}. Available: {table.columns}")

        mapping = dict(self.overrides_for(table_name))
        mapping[canonical] = column
        if self.profile is not None:
            self.profile.set_column_mapping(table_name, mapping)
        self._configs.pop(table_name, None)
        return mapping

    def search(
        self,
        query: str,
        canonical: CanonicalField = CanonicalField.IDENTIFIER,
        limit: int = DEFAULT_SEARCH_LIMIT,
        eligible: Optional[TablePredicate] = None,
    ) -> list[SearchHit]:
        """Substring search on the column resolved for ``canonical``.

        Tables are scanned in load order and scanning stops at ``limit`` hits,
        so later tables can be starved when earlier ones match a lot.
        """
        if not query or not query.strip():
            return []
        needle = normalize_key(query)
        if not needle:
            return []

        hits: list[SearchHit] = []
        for table in self.eligible(eligible):
            if len(hits) >= limit:
                logger.debug("Search cap of %d reached before scanning %s", limit, table.name)
                break
            column = self.config_for(table).column_for(canonical)
            if column is None:
                continue
            for row in table.rows:
                if needle in normalize_key(row.get(column)):
                    hits.append(SearchHit(record=dict(row), source_table=table.name))
                    if len(hits) >= limit:
                        break
        return hits

    def find_by_identifier(
        self,
        identifier: str,
        eligible: Optional[TablePredicate] = None,
        exclude: Optional[str] = None,
    ) -> list[SearchHit]:
        """First row per table whose identifier equals ``identifier`` after normalization."""
        key = normalize_key(identifier)
        if not key:
            return []
        hits: list[SearchHit] = []
        for table in self.eligible(eligible):
            if table.name == exclude:
                continue
            column = self.config_for(table).identifier_column
            if column is None:
                continue
            for row in table.rows:
                if normalize_key(row.get(column)) == key:
                    hits.append(SearchHit(record=dict(row), source_table=table.name))
                    break
        return hits

    def field_options(
        self,
        canonical: CanonicalField,
        eligible: Optional[TablePredicate] = None,
        custom_options: Iterable[str] = (),
    ) -> list[str]:
        """Sorted distinct values seen for a field, plus the profile's custom options."""
        if not self._tables and canonical in DEFAULT_FIELD_OPTIONS:
            return list(DEFAULT_FIELD_OPTIONS[canonical])

        options: set[str] = set()
        for table in self.eligible(eligible):
            column = self.config_for(table).column_for(canonical)
            if column is None:
                continue
            for row in table.rows:
                value = safe_trim(row.get(column))
                if value:
                    options.add(value)
        options.update(option for option in custom_options if option)
        return sorted(options)
