"""
In-memory multi-sheet dataset and the cell coercion rules every handler shares.

A dataset arrives fully parsed from the upload side as ``{fileName, sheets}``;
nothing here decodes spreadsheet or CSV bytes. Numeric coercion is permissive
(currency prefix, thousands separators, trailing percent) but never turns an
unparseable or non-finite cell into zero: such cells are simply skipped.
A number followed by a unit or other text ("10 kg", "100 units") is not
read as its leading number; the whole cell must be numeric, so date-like
and code-like strings ("2024-01-05", "12A") never count as numbers.
"""
import datetime as dt
import math
import numbers
import re
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

Row = Dict[str, Any]

IDENTIFIER_FRAGMENTS = ("name", "title", "product", "item", "category", "region", "id")
DEFAULT_IDENTIFIER = "Item"
DATE_COLUMN_MIN_RATIO = 0.7
CATEGORY_MAX_DISTINCT_RATIO = 0.5

_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_THOUSANDS_RE = re.compile(r"^[+-]?\d{1,3}(?:,\d{3})+(?:\.\d+)?$")
_CURRENCY_PREFIXES = ("$", "€", "£", "¥", "₴")
_HAS_DIGIT_RE = re.compile(r"\d")


def _utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        num = float(value)
        return num if math.isfinite(num) else None
    if not isinstance(value, str):
        return None
    s = value.strip().replace("\xa0", "").replace(" ", "")
    if not s:
        return None
    sign = ""
    if s[0] in "+-":
        sign, s = s[0], s[1:]
    if s.startswith(_CURRENCY_PREFIXES):
        s = s[1:]
    if s.endswith("%"):
        s = s[:-1]
    s = sign + s
    if _THOUSANDS_RE.match(s):
        s = s.replace(",", "")
    if not _NUMBER_RE.match(s):
        return None
    try:
        num = float(s)
    except ValueError:
        return None
    return num if math.isfinite(num) else None


def to_timestamp(value: Any) -> Optional[pd.Timestamp]:
    if isinstance(value, (dt.datetime, dt.date, pd.Timestamp)):
        ts = pd.Timestamp(value)
    elif isinstance(value, str):
        s = value.strip()
        if not s or to_number(s) is not None or not _HAS_DIGIT_RE.search(s):
            return None
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", UserWarning)
                ts = pd.to_datetime(s, errors="coerce")
        except (ValueError, TypeError, OverflowError):
            return None
    else:
        return None
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def format_number(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.3f}".rstrip("0").rstrip(".")


def format_value(value: Any) -> str:
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        num = to_number(value)
        return format_number(num) if num is not None else str(value)
    return "" if value is None else str(value)


def sheet_headers(rows: Sequence[Row]) -> List[str]:
    seen: Dict[str, None] = {}
    for row in rows:
        for key in row.keys():
            seen.setdefault(str(key), None)
    return list(seen)


def column_numbers(rows: Sequence[Row], column: str) -> List[float]:
    out: List[float] = []
    for row in rows:
        num = to_number(row.get(column))
        if num is not None:
            out.append(num)
    return out


def numeric_columns(rows: Sequence[Row], headers: Optional[Sequence[str]] = None) -> List[str]:
    cols = list(headers) if headers is not None else sheet_headers(rows)
    return [c for c in cols if any(to_number(row.get(c)) is not None for row in rows)]


def date_columns(rows: Sequence[Row], headers: Optional[Sequence[str]] = None) -> List[str]:
    cols = list(headers) if headers is not None else sheet_headers(rows)
    out: List[str] = []
    for col in cols:
        values = [row.get(col) for row in rows if not is_blank(row.get(col))]
        if not values:
            continue
        parsed = sum(1 for v in values if to_timestamp(v) is not None)
        if parsed and parsed / len(values) >= DATE_COLUMN_MIN_RATIO:
            out.append(col)
    return out


def categorical_columns(rows: Sequence[Row], headers: Optional[Sequence[str]] = None) -> List[str]:
    # Near-unique text columns (names, ids) are not useful groupings.
    cols = list(headers) if headers is not None else sheet_headers(rows)
    out: List[str] = []
    for col in cols:
        first = next((row.get(col) for row in rows if not is_blank(row.get(col))), None)
        if not isinstance(first, str) or to_number(first) is not None:
            continue
        distinct = {str(row.get(col)) for row in rows if not is_blank(row.get(col))}
        if len(distinct) < len(rows) * CATEGORY_MAX_DISTINCT_RATIO:
            out.append(col)
    return out


def text_columns(rows: Sequence[Row], headers: Optional[Sequence[str]] = None) -> List[str]:
    cols = list(headers) if headers is not None else sheet_headers(rows)
    out: List[str] = []
    for col in cols:
        if any(isinstance(row.get(col), str) and to_number(row.get(col)) is None for row in rows):
            out.append(col)
    return out


def identifier_column(row: Row, headers: Sequence[str]) -> Optional[str]:
    for fragment in IDENTIFIER_FRAGMENTS:
        header = next((h for h in headers if fragment in str(h).lower()), None)
        if header is not None and not is_blank(row.get(header)):
            return header
    for header in headers:
        value = row.get(header)
        if not is_blank(value) and to_number(value) is None:
            return header
    return None


def row_identifier(row: Row, headers: Sequence[str], position: Optional[int] = None) -> str:
    column = identifier_column(row, headers)
    if column is not None:
        return format_value(row.get(column))
    if position is not None:
        return f"{DEFAULT_IDENTIFIER} {position}"
    return DEFAULT_IDENTIFIER


def _cell_from_frame(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (pd.Timestamp, dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value


@dataclass(frozen=True)
class Dataset:
    file_name: str
    sheets: Dict[str, List[Row]]
    uploaded_at: str = field(default_factory=_utc_now_iso)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Dataset":
        file_name = str(payload.get("fileName") or payload.get("file_name") or "")
        raw_sheets = payload.get("sheets") or {}
        if not isinstance(raw_sheets, Mapping):
            raise ValueError("dataset sheets must be a mapping of sheet name to rows")
        sheets: Dict[str, List[Row]] = {}
        for name, rows in raw_sheets.items():
            sheets[str(name)] = [dict(r) for r in (rows or []) if isinstance(r, Mapping)]
        uploaded_at = payload.get("uploadedAt") or payload.get("uploaded_at") or _utc_now_iso()
        return cls(file_name=file_name, sheets=sheets, uploaded_at=str(uploaded_at))

    @classmethod
    def from_frames(cls, file_name: str, frames: Mapping[str, pd.DataFrame]) -> "Dataset":
        sheets: Dict[str, List[Row]] = {}
        for name, df in frames.items():
            records = df.astype(object).where(pd.notna(df), None).to_dict(orient="records")
            sheets[str(name)] = [
                {str(k): _cell_from_frame(v) for k, v in record.items()} for record in records
            ]
        return cls(file_name=file_name, sheets=sheets)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "sheets": {name: [dict(r) for r in rows] for name, rows in self.sheets.items()},
            "uploadedAt": self.uploaded_at,
        }

    def iter_sheets(self) -> Iterator[Tuple[str, List[Row]]]:
        for name, rows in self.sheets.items():
            yield name, rows

    @property
    def total_rows(self) -> int:
        return sum(len(rows) for rows in self.sheets.values())
