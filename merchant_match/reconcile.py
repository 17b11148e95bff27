"""Merge what every loaded table knows about one merchant into a single field set."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from merchant_match.fields import CanonicalField
from merchant_match.index import TableIndex
from merchant_match.keys import is_blank, normalize_key, safe_trim
from merchant_match.models import SOURCE_TABLE_KEY, Record, Scalar, SearchHit, UserProfile
from merchant_match.normalization import normalize_field_value
from merchant_match.resolver import TableConfig, build_table_config

logger = logging.getLogger(__name__)


@dataclass
class ReconciledRecord:
    """Canonical view of one merchant. Fields with no source anywhere are absent."""

    identifier: str
    fields: dict[CanonicalField, Scalar] = field(default_factory=dict)
    sources: list[str] = field(default_factory=list)

    def get(self, canonical: CanonicalField, default: Scalar = None) -> Scalar:
        return self.fields.get(canonical, default)

    def to_dict(self) -> dict[str, object]:
        return {
            "identifier": self.identifier,
            "sources": list(self.sources),
            "fields": {canonical.value: value for canonical, value in self.fields.items()},
        }

    def to_labeled_record(self) -> Record:
        """Fields keyed by display label, in canonical order, ready to patch or append."""
        return {canonical.label: self.fields[canonical] for canonical in CanonicalField if canonical in self.fields}


class RecordReconciler:
    def __init__(self, index: TableIndex, profile: Optional[UserProfile] = None) -> None:
        self.index = index
        self.profile = profile if profile is not None else index.profile

    def _config_for(self, table_name: str, record: Record) -> TableConfig:
        table = self.index.get(table_name)
        if table is not None:
            return self.index.config_for(table)
        # A hit whose table was unloaded since the search: fall back to the record's own keys.
        columns = [key for key in record if key != SOURCE_TABLE_KEY]
        return build_table_config(table_name, columns, self.index.overrides_for(table_name))

    def _profile_defaults(self) -> dict[CanonicalField, str]:
        if self.profile is None:
            return {}
        return {
            CanonicalField.HELD_BY: self.profile.default_held_by,
            CanonicalField.POS_ECOM: self.profile.default_pos_ecom,
        }

    def corroborating_sources(self, primary: Record, source_table: str) -> list[tuple[Record, TableConfig]]:
        """Primary record first, then at most one matching row per other table in load order."""
        primary_config = self._config_for(source_table, primary)
        sources = [(primary, primary_config)]
        if primary_config.identifier_column is None:
            return sources
        identifier = primary.get(primary_config.identifier_column)
        if not normalize_key(identifier):
            return sources

        for hit in self.index.find_by_identifier(safe_trim(identifier), exclude=source_table):
            table = self.index.get(hit.source_table)
            sources.append((hit.record, self.index.config_for(table)))
        return sources

    def reconcile(self, primary: Record, source_table: str) -> ReconciledRecord:
        sources = self.corroborating_sources(primary, source_table)
        primary_config = sources[0][1]
        identifier = safe_trim(primary.get(primary_config.identifier_column)) if primary_config.identifier_column else ""

        result = ReconciledRecord(identifier=identifier, sources=[source_table])
        result.sources.extend(config.table_name for _, config in sources[1:])

        for canonical in CanonicalField:
            for record, config in sources:
                column = config.column_for(canonical)
                if column is None:
                    continue
                value = record.get(column)
                if not is_blank(value):
                    result.fields[canonical] = normalize_field_value(canonical, value)
                    break

        for canonical, default in self._profile_defaults().items():
            if default and is_blank(result.fields.get(canonical)):
                result.fields[canonical] = default

        logger.debug(
            "Reconciled %s from %d source(s): %s",
            identifier or "<no identifier>",
            len(result.sources),
            ", ".join(result.sources),
        )
        return result

    def reconcile_hit(self, hit: SearchHit) -> ReconciledRecord:
        return self.reconcile(hit.record, hit.source_table)
