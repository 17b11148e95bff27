"""openpyxl sheet access for linked resources and exports.

Linked workbooks are patched in place: only cells whose value changes are
assigned, so styles, formulas and the other sheets survive the rewrite.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
from typing import Iterable, Optional, Sequence
from zipfile import BadZipFile

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from merchant_match.errors import AmbiguousSheet, ResourceUnavailable
from merchant_match.keys import is_blank, normalize_key, safe_trim
from merchant_match.models import Record, ResourceKind, Scalar, coerce_scalar

EMPTY_HEADER = "__EMPTY"
HEADER_COLOR = "305496"


def load_workbook_bytes(data: bytes, resource_name: str) -> Workbook:
    try:
        return openpyxl.load_workbook(BytesIO(data))
    except (InvalidFileException, BadZipFile, KeyError, ValueError, OSError) as exc:
        raise ResourceUnavailable(
            f"{resource_name} is not a readable .xlsx workbook: {exc}",
            resource_name=resource_name,
        ) from exc


def workbook_to_bytes(workbook: Workbook) -> bytes:
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def select_sheet(workbook: Workbook, kind: ResourceKind, resource_name: str = "") -> Worksheet:
    """First sheet whose normalized title contains the kind's token, else the sole sheet."""
    token = kind.token
    for worksheet in workbook.worksheets:
        if token in normalize_key(worksheet.title):
            return worksheet
    if len(workbook.worksheets) == 1:
        return workbook.worksheets[0]
    raise AmbiguousSheet(
        f"{resource_name or 'Workbook'} has {len(workbook.worksheets)} sheets and none is named "
        f"like '{kind.value}': {', '.join(workbook.sheetnames)}",
        resource_name=resource_name or None,
        resource_kind=kind,
    )


def unique_headers(raw: Sequence[object]) -> list[str]:
    """Blank headers become ``__EMPTY``; repeats get ``_1``, ``_2`` suffixes."""
    headers: list[str] = []
    seen: dict[str, int] = {}
    for value in raw:
        base = safe_trim(value) or EMPTY_HEADER
        count = seen.get(base, 0)
        seen[base] = count + 1
        headers.append(base if count == 0 else f"{base}_{count}")
    return headers


@dataclass
class SheetTable:
    """Header-keyed view of one worksheet that writes straight back into its cells."""

    worksheet: Worksheet
    headers: list[str]
    rows: list[tuple[int, Record]] = field(default_factory=list)

    @property
    def title(self) -> str:
        return self.worksheet.title

    @property
    def last_row(self) -> int:
        return self.rows[-1][0] if self.rows else 1

    def column_number(self, header: str) -> int | None:
        try:
            return self.headers.index(header) + 1
        except ValueError:
            return None

    def set_value(self, row_number: int, header: str, value: Scalar) -> bool:
        """Assign one cell; returns False when the value is already there."""
        column = self.column_number(header)
        if column is None:
            raise KeyError(header)
        cell = self.worksheet.cell(row=row_number, column=column)
        if cell.value == value:
            return False
        cell.value = value
        return True

    def write_headers(self, headers: Sequence[str]) -> None:
        """Replace the header row; cells left over from a wider old header are cleared."""
        for column, header in enumerate(headers, start=1):
            self.worksheet.cell(row=1, column=column, value=header)
        for column in range(len(headers) + 1, len(self.headers) + 1):
            self.worksheet.cell(row=1, column=column, value=None)
        self.headers = list(headers)

    def append(self, values: Sequence[Scalar]) -> int:
        row_number = self.last_row + 1
        record: Record = {}
        for column, (header, value) in enumerate(zip(self.headers, values), start=1):
            if value is None or value == "":
                continue
            self.worksheet.cell(row=row_number, column=column, value=value)
            record[header] = value
        self.rows.append((row_number, record))
        return row_number


def read_sheet(worksheet: Worksheet) -> SheetTable:
    """Parse a worksheet using its first row as headers. Fully blank rows are skipped."""
    grid = [list(row) for row in worksheet.iter_rows(values_only=True)]
    if not grid:
        return SheetTable(worksheet=worksheet, headers=[])

    width = 0
    for row in grid:
        for position, value in enumerate(row, start=1):
            if not is_blank(value):
                width = max(width, position)
    if width == 0:
        return SheetTable(worksheet=worksheet, headers=[])

    header_cells = list(grid[0][:width]) + [None] * max(0, width - len(grid[0]))
    headers = unique_headers(header_cells)
    table = SheetTable(worksheet=worksheet, headers=headers)
    for offset, row in enumerate(grid[1:], start=2):
        record: Record = {}
        for header, value in zip(headers, row[:width]):
            if value is None or (isinstance(value, str) and value == ""):
                continue
            record[header] = coerce_scalar(value)
        if record:
            table.rows.append((offset, record))
    return table


def _style_header(worksheet: Worksheet, widths: Sequence[int]) -> None:
    fill = PatternFill("solid", fgColor=HEADER_COLOR)
    font = Font(bold=True, color="FFFFFF")
    for cell in worksheet[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center")
    worksheet.freeze_panes = "A2"
    for position, width in enumerate(widths, start=1):
        worksheet.column_dimensions[get_column_letter(position)].width = width


def _infer_widths(headers: Sequence[str], records: Iterable[Record], min_width: int = 10, max_width: int = 60) -> list[int]:
    widths = [len(header) + 2 for header in headers]
    for record in records:
        for position, header in enumerate(headers):
            widths[position] = max(widths[position], len(safe_trim(record.get(header))) + 2)
    return [max(min_width, min(max_width, width)) for width in widths]


def build_export_workbook(records: Sequence[Record], sheet_name: str = "Sheet1", headers: Optional[Sequence[str]] = None) -> Workbook:
    """Fresh single-sheet workbook; headers default to the union of record keys in first-seen order."""
    if headers is None:
        ordered: dict[str, None] = {}
        for record in records:
            for key in record:
                ordered.setdefault(key, None)
        headers = list(ordered)

    workbook = openpyxl.Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_name
    worksheet.append(list(headers))
    for record in records:
        worksheet.append([record.get(header) for header in headers])
    if headers:
        _style_header(worksheet, _infer_widths(headers, records))
    return workbook
