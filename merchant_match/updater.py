"""Read, locate, patch and rewrite a linked spreadsheet.

Each cycle walks the same states: acquire the handle, verify access, read the
workbook, select the sheet, locate the row (update only), patch in memory, and
rewrite the whole file. Any failure before the rewrite leaves the file untouched;
the rewrite itself goes through a temp file plus ``os.replace``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from openpyxl.workbook.workbook import Workbook

from merchant_match.errors import (
    ColumnNotFound,
    MerchantMatchError,
    NoLinkedResource,
    PermissionDenied,
    RowNotFound,
    WriteError,
)
from merchant_match.fields import CanonicalField
from merchant_match.keys import normalize_key
from merchant_match.models import ColumnMapping, Record, ResourceKind, Scalar, UpdateRequest, UserProfile
from merchant_match.resolver import resolve_identity_columns, resolve_target_column
from merchant_match.resources import ResourceHandle, ResourceHandleStore, ResourceLocks
from merchant_match.workbook import SheetTable, load_workbook_bytes, read_sheet, select_sheet, workbook_to_bytes

logger = logging.getLogger(__name__)


class UpdateState(str, Enum):
    ACQUIRE = "acquire"
    VERIFY = "verify"
    READ = "read"
    SELECT_SHEET = "select-sheet"
    LOCATE_ROW = "locate-row"
    PATCH = "patch"
    REWRITE = "rewrite"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class UpdateResult:
    resource_name: str
    resource_kind: ResourceKind
    sheet_name: str
    row_key: str
    row_number: int
    changed: dict[str, Scalar] = field(default_factory=dict)
    skipped: list[CanonicalField] = field(default_factory=list)
    written: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_name": self.resource_name,
            "resource_kind": self.resource_kind.value,
            "sheet_name": self.sheet_name,
            "row_key": self.row_key,
            "row_number": self.row_number,
            "changed": dict(self.changed),
            "skipped": [canonical.value for canonical in self.skipped],
            "written": self.written,
        }


@dataclass
class AppendResult:
    resource_name: str
    resource_kind: ResourceKind
    sheet_name: str
    rows_added: int
    columns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_name": self.resource_name,
            "resource_kind": self.resource_kind.value,
            "sheet_name": self.sheet_name,
            "rows_added": self.rows_added,
            "columns": list(self.columns),
        }


def writable_keys(record: Mapping[str, Scalar]) -> list[str]:
    """Record keys that may reach a resource; ``_``-prefixed keys are transient."""
    return [key for key in record if not key.startswith("_")]


def columns_for_new_sheet(records: Sequence[Mapping[str, Scalar]]) -> list[str]:
    ordered: dict[str, None] = {}
    for record in records:
        for key in writable_keys(record):
            ordered.setdefault(key, None)
    return list(ordered)


def map_record_to_columns(
    record: Mapping[str, Scalar],
    columns: Sequence[str],
    overrides: Optional[ColumnMapping] = None,
) -> dict[str, Scalar]:
    """Place a record's values under existing columns; keys that map nowhere are dropped."""
    overrides = overrides or {}
    normalized_columns = {normalize_key(column): column for column in reversed(columns)}
    placed: dict[str, Scalar] = {}
    for key in writable_keys(record):
        value = record[key]
        if value is None or value == "":
            continue
        column: str | None = key if key in columns else normalized_columns.get(normalize_key(key))
        if column is None:
            canonical = CanonicalField.parse(key)
            if canonical is not None:
                column = resolve_target_column(canonical, columns, overrides.get(canonical))
        if column is not None and column not in placed:
            placed[column] = value
    return placed


class SpreadsheetUpdater:
    def __init__(
        self,
        handles: ResourceHandleStore,
        locks: Optional[ResourceLocks] = None,
        profile: Optional[UserProfile] = None,
    ) -> None:
        self.handles = handles
        self.locks = locks or ResourceLocks()
        self.profile = profile

    def _overrides(self, resource_name: str) -> ColumnMapping:
        if self.profile is None:
            return {}
        return self.profile.column_mapping(resource_name)

    def _enter(self, state: UpdateState, kind: ResourceKind, detail: str = "") -> None:
        logger.debug("[%s] %s %s", kind.value, state.value, detail)

    def _acquire(self, kind: ResourceKind) -> ResourceHandle:
        self._enter(UpdateState.ACQUIRE, kind)
        handle = self.handles.get(kind)
        if handle is None:
            raise NoLinkedResource(
                f"No linked file for {kind.value}. Link one with 'merchant-match link {kind.value} <path>'.",
                resource_kind=kind,
            )
        return handle

    def _verify(self, handle: ResourceHandle, kind: ResourceKind) -> None:
        self._enter(UpdateState.VERIFY, kind, handle.name)
        if handle.has_permission():
            return
        logger.info("Requesting write access to %s", handle.name)
        if not handle.request_permission():
            raise PermissionDenied(f"Permission denied. Cannot update {handle.name}.")

    def _open_sheet(self, handle: ResourceHandle, kind: ResourceKind) -> tuple[Workbook, SheetTable]:
        self._enter(UpdateState.READ, kind, handle.name)
        workbook = load_workbook_bytes(handle.read_bytes(), handle.name)
        self._enter(UpdateState.SELECT_SHEET, kind)
        worksheet = select_sheet(workbook, kind, handle.name)
        logger.debug("Selected sheet %r in %s", worksheet.title, handle.name)
        return workbook, read_sheet(worksheet)

    def _rewrite(self, handle: ResourceHandle, kind: ResourceKind, workbook: Workbook) -> None:
        self._enter(UpdateState.REWRITE, kind, handle.name)
        try:
            data = workbook_to_bytes(workbook)
        except (OSError, ValueError, TypeError) as exc:
            raise WriteError(f"Could not serialize {handle.name}: {exc}") from exc
        handle.write_bytes(data)

    def _fail(self, exc: MerchantMatchError, kind: ResourceKind, handle: Optional[ResourceHandle], row_key: Optional[str]) -> None:
        if exc.resource_kind is None:
            exc.resource_kind = kind.value
        if exc.resource_name is None and handle is not None:
            exc.resource_name = handle.name
        if exc.row_key is None:
            exc.row_key = row_key
        logger.warning("[%s] %s: %s", kind.value, UpdateState.FAILED.value, exc.message)

    def locate_row(self, table: SheetTable, row_key: str, overrides: ColumnMapping) -> tuple[int, Record]:
        identifier_column, _ = resolve_identity_columns(table.headers, overrides, positional_fallback=False)
        if identifier_column is None:
            raise ColumnNotFound(f"Could not identify a Merchant ID column in sheet '{table.title}'.")
        key = normalize_key(row_key)
        if key:
            for row_number, record in table.rows:
                if normalize_key(record.get(identifier_column)) == key:
                    return row_number, record
        raise RowNotFound(f"Record with ID '{row_key}' not found in sheet '{table.title}'.")

    def update(self, request: UpdateRequest) -> UpdateResult:
        kind = request.resource_kind
        handle: Optional[ResourceHandle] = None
        try:
            handle = self._acquire(kind)
            with self.locks.hold(handle.identity):
                self._verify(handle, kind)
                workbook, table = self._open_sheet(handle, kind)
                overrides = self._overrides(handle.name)

                self._enter(UpdateState.LOCATE_ROW, kind, request.row_key)
                row_number, _ = self.locate_row(table, request.row_key, overrides)

                self._enter(UpdateState.PATCH, kind, f"row {row_number}")
                result = UpdateResult(
                    resource_name=handle.name,
                    resource_kind=kind,
                    sheet_name=table.title,
                    row_key=request.row_key,
                    row_number=row_number,
                )
                for canonical, value in request.patch.items():
                    if value is None:
                        continue
                    column = resolve_target_column(canonical, table.headers, overrides.get(canonical))
                    if column is None:
                        logger.debug("No column for %s in %r; skipped", canonical.value, table.title)
                        result.skipped.append(canonical)
                        continue
                    try:
                        changed = table.set_value(row_number, column, value)
                    except AttributeError as exc:
                        raise WriteError(f"Cell '{column}' of row {row_number} is inside a merged range") from exc
                    if changed:
                        result.changed[column] = value

                if result.changed:
                    self._rewrite(handle, kind, workbook)
                    result.written = True
                else:
                    logger.info("Row %s in %s already has these values; nothing written", request.row_key, handle.name)
        except MerchantMatchError as exc:
            self._fail(exc, kind, handle, request.row_key)
            raise

        self._enter(UpdateState.SUCCESS, kind)
        logger.info(
            "Updated %d cell(s) of %s in %s (sheet %r)",
            len(result.changed),
            request.row_key,
            handle.name,
            table.title,
        )
        return result

    def append(self, kind: ResourceKind, records: Sequence[Mapping[str, Scalar]]) -> AppendResult:
        kind = ResourceKind.parse(kind)
        handle: Optional[ResourceHandle] = None
        try:
            handle = self._acquire(kind)
            with self.locks.hold(handle.identity):
                self._verify(handle, kind)
                workbook, table = self._open_sheet(handle, kind)

                self._enter(UpdateState.PATCH, kind, f"{len(records)} new row(s)")
                if table.rows:
                    columns = list(table.headers)
                else:
                    # No data yet: the new records define the header.
                    columns = columns_for_new_sheet(records)
                    table.write_headers(columns)
                overrides = self._overrides(handle.name)
                for record in records:
                    placed = map_record_to_columns(record, columns, overrides)
                    table.append([placed.get(column) for column in columns])

                if records:
                    self._rewrite(handle, kind, workbook)
        except MerchantMatchError as exc:
            self._fail(exc, kind, handle, None)
            raise

        self._enter(UpdateState.SUCCESS, kind)
        logger.info("Appended %d row(s) to sheet %r in %s", len(records), table.title, handle.name)
        return AppendResult(
            resource_name=handle.name,
            resource_kind=kind,
            sheet_name=table.title,
            rows_added=len(records),
            columns=columns,
        )
