from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from merchant_match.fields import CanonicalField
from merchant_match.keys import normalize_key

Scalar = Union[str, int, float, bool, None]
Record = Dict[str, Scalar]
ColumnMapping = Dict[CanonicalField, str]

SOURCE_TABLE_KEY = "__sourceFile"
MANUAL_ENTRY_TABLE = "System_Manual_Entry.xlsx"


class ResourceKind(str, Enum):
    HOLD = "HOLD"
    RM = "RM"

    @property
    def token(self) -> str:
        """Normalized token a sheet name must contain to be picked for this kind."""
        return normalize_key(self.value)

    @classmethod
    def parse(cls, value: Any) -> ResourceKind:
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown resource kind '{value}'. Expected one of: HOLD, RM") from None


def coerce_scalar(value: Any) -> Scalar:
    """Squeeze an arbitrary cell value into the closed scalar type of a record."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if hasattr(value, "isoformat"):
        text = value.isoformat()
        if text.endswith("T00:00:00"):
            return text[:10]
        return text.replace("T", " ")
    return str(value)


@dataclass
class Table:
    """One ingested spreadsheet. Rows share ``columns`` but may omit any of them."""

    name: str
    columns: list[str]
    rows: list[Record] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileName": self.name,
            "rowCount": self.row_count,
            "columns": list(self.columns),
            "data": [dict(row) for row in self.rows],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Table:
        rows = [
            {str(key): coerce_scalar(value) for key, value in row.items()}
            for row in payload.get("data") or []
        ]
        columns = [str(column) for column in payload.get("columns") or []]
        if not columns and rows:
            columns = list(rows[0].keys())
        return cls(name=str(payload["fileName"]), columns=columns, rows=rows)


@dataclass(frozen=True)
class SearchHit:
    """A defensive copy of a matched row plus the table it came from."""

    record: Record
    source_table: str

    def annotated(self) -> Record:
        return {**self.record, SOURCE_TABLE_KEY: self.source_table}


@dataclass
class UpdateRequest:
    resource_kind: ResourceKind
    row_key: str
    patch: dict[CanonicalField, Scalar]

    @classmethod
    def build(cls, resource_kind: Any, row_key: str, patch: Mapping[Any, Scalar]) -> UpdateRequest:
        """Build a request from loosely typed input; unknown field names are rejected."""
        fields: dict[CanonicalField, Scalar] = {}
        for key, value in patch.items():
            canonical = CanonicalField.parse(key)
            if canonical is None:
                raise ValueError(f"Unknown field '{key}'")
            fields[canonical] = value
        return cls(resource_kind=ResourceKind.parse(resource_kind), row_key=str(row_key), patch=fields)


@dataclass
class UserProfile:
    id: str
    name: str
    default_held_by: str = ""
    default_pos_ecom: str = ""
    master_filename: Optional[str] = None
    mappings: dict[str, dict[str, str]] = field(default_factory=dict)
    custom_options: dict[str, list[str]] = field(default_factory=dict)

    def column_mapping(self, table_name: str) -> ColumnMapping:
        """Overrides saved for one table, keyed by canonical field."""
        resolved: ColumnMapping = {}
        for key, column in (self.mappings.get(table_name) or {}).items():
            canonical = CanonicalField.parse(key)
            if canonical is not None and column:
                resolved[canonical] = column
        return resolved

    def set_column_mapping(self, table_name: str, mapping: ColumnMapping) -> None:
        self.mappings[table_name] = {canonical.label: column for canonical, column in mapping.items()}

    def options_for(self, canonical: CanonicalField) -> list[str]:
        for key, options in self.custom_options.items():
            if CanonicalField.parse(key) is canonical:
                return list(options)
        return []

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "defaultHeldBy": self.default_held_by,
            "defaultPosEcom": self.default_pos_ecom,
            "mappings": {table: dict(mapping) for table, mapping in self.mappings.items()},
            "customOptions": {key: list(values) for key, values in self.custom_options.items()},
        }
        if self.master_filename:
            payload["masterFilename"] = self.master_filename
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> UserProfile:
        if not isinstance(payload, Mapping):
            raise ValueError("Profile entry must be a JSON object")
        profile_id = payload.get("id")
        name = payload.get("name")
        if not isinstance(profile_id, str) or not profile_id:
            raise ValueError("Profile entry is missing a string 'id'")
        if not isinstance(name, str):
            raise ValueError(f"Profile '{profile_id}' is missing a string 'name'")
        mappings = payload.get("mappings") or {}
        custom_options = payload.get("customOptions") or {}
        if not isinstance(mappings, Mapping) or not isinstance(custom_options, Mapping):
            raise ValueError(f"Profile '{profile_id}' has malformed mappings or customOptions")
        for table, mapping in mappings.items():
            if not isinstance(mapping, Mapping):
                raise ValueError(f"Profile '{profile_id}': mapping for '{table}' must be an object of field -> column")
        for key, values in custom_options.items():
            if not isinstance(values, list) or not all(isinstance(value, str) for value in values):
                raise ValueError(f"Profile '{profile_id}': customOptions for '{key}' must be a list of strings")
        return cls(
            id=profile_id,
            name=name,
            default_held_by=str(payload.get("defaultHeldBy") or ""),
            default_pos_ecom=str(payload.get("defaultPosEcom") or ""),
            master_filename=payload.get("masterFilename") or None,
            mappings={str(table): {str(k): str(v) for k, v in dict(mapping).items()} for table, mapping in mappings.items()},
            custom_options={str(k): [str(v) for v in values] for k, values in custom_options.items()},
        )
