"""Ingest a spreadsheet export into a ``Table``.

Supports: .csv .tsv .txt .xlsx .xlsm .xls .ods, from disk or an http(s) URL.

The header row is the first of the leading rows that contains any known field
label or alias, so banner rows above the real header are skipped. Detection
reads the same alias table as column resolution.
"""

from __future__ import annotations

import csv
import io
import logging
import math
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import chardet
import pandas as pd
import requests

from merchant_match.fields import header_signal_keys
from merchant_match.keys import is_blank, normalize_key
from merchant_match.models import Record, Scalar, Table, coerce_scalar
from merchant_match.workbook import unique_headers

logger = logging.getLogger(__name__)

TEXT_FORMATS = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xlsm", ".xls"}
ODS_FORMATS = {".ods"}
ALL_FORMATS = TEXT_FORMATS | EXCEL_FORMATS | ODS_FORMATS

HEADER_SCAN_ROWS = 20
DEFAULT_REMOTE_NAME = "remote_database.xlsx"
REMOTE_TIMEOUT_SECONDS = 60
MAX_REMOTE_FILE_MB = 50
MAX_REMOTE_FILE_BYTES = MAX_REMOTE_FILE_MB * 1024 * 1024


# ══════════════════════════════════════════════════════════════════════════════
# DECODING
# ══════════════════════════════════════════════════════════════════════════════

def detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw)
    return result.get("encoding") or "utf-8"


def decode_text(raw: bytes) -> str:
    """UTF-8 first, then the chardet guess, then latin-1 which never fails."""
    for encoding in ("utf-8-sig", detect_encoding(raw), "latin-1"):
        try:
            return raw.decode(encoding).replace("\x00", "")
        except (LookupError, UnicodeDecodeError):
            continue
    return raw.decode("cp1252", errors="replace")


def detect_delimiter(text: str, suffix: str) -> str:
    if suffix == ".tsv":
        return "\t"
    sample = "\n".join(line for line in text.splitlines()[:50] if line.strip())
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
    except csv.Error:
        return ","


# ══════════════════════════════════════════════════════════════════════════════
# GRID → TABLE
# ══════════════════════════════════════════════════════════════════════════════

def cell_value(value: Any) -> Scalar:
    """pandas/numpy cell → record scalar. Dates become ISO strings, blanks become ``""``."""
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if value is pd.NaT:
        return ""
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, (datetime, date)):
        return coerce_scalar(value)
    if hasattr(value, "item") and not isinstance(value, (str, bytes)):
        # numpy scalar
        value = value.item()
        if isinstance(value, float) and math.isnan(value):
            return ""
    if isinstance(value, str):
        return value.strip()
    return coerce_scalar(value)


def detect_header_row(grid: list[list[Scalar]], scan_rows: int = HEADER_SCAN_ROWS) -> int:
    signals = header_signal_keys()
    for index, row in enumerate(grid[:scan_rows]):
        if any(normalize_key(value) in signals for value in row if not is_blank(value)):
            return index
    return 0


def grid_to_table(name: str, grid: list[list[Scalar]]) -> Table:
    if not grid:
        return Table(name=name, columns=[], rows=[])

    header_index = detect_header_row(grid)
    if header_index:
        logger.info("%s: header detected on row %d; %d row(s) above it dropped", name, header_index + 1, header_index)
    columns = unique_headers(grid[header_index])

    rows: list[Record] = []
    for raw in grid[header_index + 1:]:
        if all(is_blank(value) for value in raw):
            continue
        padded = list(raw) + [""] * max(0, len(columns) - len(raw))
        rows.append({column: padded[position] for position, column in enumerate(columns)})
    return Table(name=name, columns=columns, rows=rows)


def frame_to_grid(frame: pd.DataFrame) -> list[list[Scalar]]:
    return [[cell_value(value) for value in row] for row in frame.itertuples(index=False, name=None)]


# ══════════════════════════════════════════════════════════════════════════════
# READERS
# ══════════════════════════════════════════════════════════════════════════════

def _read_text(raw: bytes, suffix: str) -> pd.DataFrame:
    text = decode_text(raw)
    delimiter = detect_delimiter(text, suffix)
    try:
        return pd.read_csv(
            io.StringIO(text),
            header=None,
            dtype=str,
            keep_default_na=False,
            sep=delimiter,
            on_bad_lines="skip",
            engine="python",
        )
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except Exception as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc


def _read_workbook(raw: bytes, suffix: str) -> pd.DataFrame:
    engine = "odf" if suffix in ODS_FORMATS else None
    try:
        return pd.read_excel(io.BytesIO(raw), sheet_name=0, header=None, engine=engine)
    except ImportError:
        raise
    except Exception as exc:
        raise ValueError(f"Could not open workbook: {exc}") from exc


def load_table_bytes(raw: bytes, name: str) -> Table:
    suffix = Path(name).suffix.lower()
    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")

    if suffix in TEXT_FORMATS:
        frame = _read_text(raw, suffix)
    else:
        frame = _read_workbook(raw, suffix)

    table = grid_to_table(name, frame_to_grid(frame))
    logger.info("Loaded %s: %d row(s), %d column(s)", name, table.row_count, len(table.columns))
    return table


def load_table(path: str | Path, name: Optional[str] = None) -> Table:
    """Load the first sheet of a local file.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported or unreadable.
        ImportError        if .xls/.ods support (xlrd/odfpy) is missing.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return load_table_bytes(path.read_bytes(), name or path.name)


def remote_table_name(url: str, content: bytes) -> str:
    name = Path(urlparse(url).path).name
    if not name:
        return DEFAULT_REMOTE_NAME
    if Path(name).suffix.lower() in ALL_FORMATS:
        return name
    return f"{name}.xlsx" if content.startswith(b"PK") else f"{name}.csv"


def load_table_from_url(url: str) -> Table:
    parsed = urlparse(url.strip())
    if parsed.scheme not in {"http", "https"}:
        raise ValueError(f"Only http(s) URLs can be loaded, got '{url}'")

    try:
        response = requests.get(url.strip(), timeout=REMOTE_TIMEOUT_SECONDS, allow_redirects=True, stream=True)
    except requests.RequestException as exc:
        raise ValueError(f"Could not download {url}: {exc}") from exc
    try:
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise ValueError(f"Could not download {url}: {exc}") from exc
        chunks: list[bytes] = []
        downloaded = 0
        for chunk in response.iter_content(chunk_size=1024 * 1024):
            if not chunk:
                continue
            downloaded += len(chunk)
            if downloaded > MAX_REMOTE_FILE_BYTES:
                raise ValueError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
            chunks.append(chunk)
        content = b"".join(chunks)
    finally:
        response.close()

    return load_table_bytes(content, remote_table_name(url, content))
