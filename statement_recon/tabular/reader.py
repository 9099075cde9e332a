from __future__ import annotations

import csv
import io
import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from ..config.loader import LimitsConfig

"""Tabular statement decoder.

Turns uploaded statement bytes (CSV or XLSX) into an ordered header list and
string-keyed rows. Both formats produce the same shape so that everything
downstream is format agnostic:

- the first row is the header row (mandatory)
- every cell is a string, or None when the cell is absent
- fully empty rows are skipped

Size and row ceilings are enforced before any row is handed out, and the
caller may abort a long decode through ``should_abort``.
"""

__all__ = [
    "TabularData",
    "DecodeError",
    "UnreadableFileError",
    "UnsupportedFormatError",
    "HeaderRowError",
    "FileTooLargeError",
    "TooManyRowsError",
    "DecodeAbortedError",
    "detect_format",
    "parse_tabular",
    "read_tabular_file",
]

logger = logging.getLogger(__name__)


class DecodeError(Exception):
    """Base class for fatal decode failures (no rows are returned)."""


class UnreadableFileError(DecodeError):
    """Raised when the bytes cannot be read as the detected format."""


class UnsupportedFormatError(DecodeError):
    """Raised for formats the decoder does not handle."""


class HeaderRowError(DecodeError):
    """Raised when the header row is missing or blank."""


class FileTooLargeError(DecodeError):
    """Raised when the file exceeds the configured byte ceiling."""


class TooManyRowsError(DecodeError):
    """Raised when the file exceeds the configured row ceiling."""


class DecodeAbortedError(DecodeError):
    """Raised when the caller asked the decode to stop."""


@dataclass
class TabularData:
    headers: list[str]
    rows: list[dict[str, str | None]]  # header -> cell text
    file_format: str  # csv | xlsx


_XLSX_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"  # legacy .xls
_CSV_SUFFIXES = {".csv", ".txt", ".tsv"}
_XLSX_SUFFIXES = {".xlsx", ".xlsm"}
_DELIMITERS = ",;\t|"


def detect_format(data: bytes, file_name: str | None = None, declared: str | None = None) -> str:
    """Resolve the file format: declared > file extension > magic bytes.

    Returns:
        "csv" or "xlsx"

    Raises:
        UnsupportedFormatError: legacy .xls or an unknown declared format
    """
    if declared:
        fmt = declared.lower().lstrip(".")
        if fmt in ("csv", "txt", "tsv"):
            return "csv"
        if fmt in ("xlsx", "xlsm"):
            return "xlsx"
        raise UnsupportedFormatError(f"unsupported format: {declared}")

    suffix = Path(file_name).suffix.lower() if file_name else ""
    if suffix in _CSV_SUFFIXES:
        return "csv"
    if suffix in _XLSX_SUFFIXES:
        return "xlsx"
    if suffix in (".xls", ".xlsb") or data.startswith(_OLE_MAGIC):
        raise UnsupportedFormatError("legacy Excel workbooks are not supported, save the file as .xlsx")
    if data.startswith(_XLSX_MAGIC):
        return "xlsx"
    return "csv"


def _sniff_delimiter(sample: str) -> str:
    try:
        return csv.Sniffer().sniff(sample, delimiters=_DELIMITERS).delimiter
    except csv.Error:
        # single column files cannot be sniffed
        return ","


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        # older bank exports are cp1252 / latin-1
        return data.decode("latin-1")


def _header_width(text: str, delimiter: str) -> int:
    for fields in csv.reader(io.StringIO(text), delimiter=delimiter):
        if fields:
            return len(fields)
    return 0


def _fit_to_header(width: int) -> Callable[[list[str]], list[str]]:
    """on_bad_lines handler: cut rows longer than the header to its width."""

    def fit(fields: list[str]) -> list[str]:
        extra = [f for f in fields[width:] if f.strip()]
        if extra:
            logger.warning("row has %d value(s) past the last header column, dropped: %s", len(extra), extra)
        return fields[:width]

    return fit


def _read_csv(data: bytes, nrows: int) -> pd.DataFrame:
    text = _decode_text(data)
    if not text.strip():
        raise HeaderRowError("file is empty, a header row is required")
    delimiter = _sniff_delimiter(text[:4096])
    try:
        # only "" is NA: empty and missing cells both become None, "NA" stays text
        return pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            na_values=[""],
            skip_blank_lines=True,
            nrows=nrows,
            engine="python",
            on_bad_lines=_fit_to_header(_header_width(text, delimiter)),
        )
    except pd.errors.EmptyDataError as e:
        raise HeaderRowError("file is empty, a header row is required") from e
    except (pd.errors.ParserError, ValueError) as e:
        raise UnreadableFileError(f"could not read CSV: {e}") from e


def _read_xlsx(data: bytes, nrows: int, sheet_name: str | None) -> pd.DataFrame:
    try:
        return pd.read_excel(
            io.BytesIO(data),
            sheet_name=sheet_name if sheet_name is not None else 0,
            header=None,
            dtype=object,
            engine="openpyxl",
            nrows=nrows,
        )
    except Exception as e:  # openpyxl / zipfile raise a wide range of types
        raise UnreadableFileError(f"could not read workbook: {e}") from e


def _cell_to_text(value: Any) -> str | None:
    """Render a raw cell as text; NaN / None -> None."""
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        # 788123456.0 -> "788123456"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().isoformat()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return str(value)


def _dedupe_headers(raw_headers: Iterable[str | None]) -> list[str]:
    headers: list[str] = []
    seen: set[str] = set()
    for i, raw in enumerate(raw_headers):
        name = (raw or "").strip() or f"column_{i + 1}"
        candidate = name
        n = 2
        while candidate in seen:
            candidate = f"{name}_{n}"
            n += 1
        seen.add(candidate)
        headers.append(candidate)
    return headers


def _normalize_frame(
    df: pd.DataFrame,
    file_format: str,
    max_rows: int,
    null_sentinels: set[str] | None,
    should_abort: Callable[[], bool] | None,
) -> TabularData:
    """Apply the header row and stringify every data cell.

    Steps:
    1. Validate that a non-blank header row exists
    2. Enforce the row ceiling before building any row
    3. Convert each remaining row into header -> text, skipping empty rows
    """
    if df.shape[0] < 1:
        raise HeaderRowError("file has no header row")
    header_cells = [_cell_to_text(v) for v in df.iloc[0].tolist()]
    if all(c is None or not c.strip() for c in header_cells):
        raise HeaderRowError("header row is blank")
    headers = _dedupe_headers(header_cells)

    data_part = df.iloc[1:]
    if data_part.shape[0] > max_rows:
        raise TooManyRowsError(f"file has more than {max_rows} data rows")

    rows: list[dict[str, str | None]] = []
    for raw in data_part.itertuples(index=False, name=None):
        if should_abort is not None and should_abort():
            raise DecodeAbortedError("decode aborted by caller")
        row: dict[str, str | None] = {}
        for col, val in zip(headers, raw, strict=False):
            text = _cell_to_text(val)
            if text is not None and null_sentinels and text.strip().upper() in null_sentinels:
                text = None
            row[col] = text
        # fully empty row
        if all(v is None or not v.strip() for v in row.values()):
            continue
        rows.append(row)
    return TabularData(headers=headers, rows=rows, file_format=file_format)


def parse_tabular(
    data: bytes,
    *,
    file_name: str | None = None,
    file_format: str | None = None,
    limits: LimitsConfig | None = None,
    sheet_name: str | None = None,
    null_sentinels: Iterable[str] | None = None,
    should_abort: Callable[[], bool] | None = None,
) -> TabularData:
    """Decode statement bytes into headers and rows.

    Parameters
    ----------
    data: raw file bytes
    file_name: used for extension based format detection
    file_format: explicit format ("csv" / "xlsx"), wins over detection
    limits: byte / row ceilings (defaults when None)
    sheet_name: workbook sheet to read (first sheet when None)
    null_sentinels: cell texts treated as absent, compared upper-cased
    should_abort: polled before reading and once per row

    Raises
    ------
    DecodeError (or a subclass) for any fatal problem; never returns partial rows.
    """
    limits = limits or LimitsConfig()
    if len(data) > limits.max_file_bytes:
        raise FileTooLargeError(
            f"file is {len(data)} bytes, the limit is {limits.max_file_bytes} bytes"
        )
    if not data:
        raise HeaderRowError("file is empty, a header row is required")
    if should_abort is not None and should_abort():
        raise DecodeAbortedError("decode aborted by caller")

    fmt = detect_format(data, file_name, file_format)
    # header + ceiling + 1 so that an overflow is detectable without reading everything
    nrows = limits.max_rows + 2
    df = _read_csv(data, nrows) if fmt == "csv" else _read_xlsx(data, nrows, sheet_name)
    sentinels = {s.strip().upper() for s in null_sentinels} if null_sentinels else None
    return _normalize_frame(df, fmt, limits.max_rows, sentinels, should_abort)


def read_tabular_file(path: Path, **kwargs: Any) -> TabularData:
    """Read a statement file from disk, checking its size before loading it."""
    limits: LimitsConfig = kwargs.get("limits") or LimitsConfig()
    try:
        size = path.stat().st_size
    except OSError as e:
        raise UnreadableFileError(f"cannot read {path}: {e}") from e
    if size > limits.max_file_bytes:
        raise FileTooLargeError(f"file is {size} bytes, the limit is {limits.max_file_bytes} bytes")
    kwargs.setdefault("file_name", path.name)
    return parse_tabular(path.read_bytes(), **kwargs)
