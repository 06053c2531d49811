"""
Data preparation for the dashboard.

Raw CSV rows come in as string-to-string dicts.  They are typed once
(``convert_data_types``), kept as an immutable raw dataset, and turned
into the chart's display dataset by sorting on the X-axis key and
thinning the result to a fixed number of evenly spaced points.

Every function here is pure: inputs are never mutated and each call
returns fresh containers, except ``sample_data`` which hands back its
input unchanged when it is already small enough.  ``DisplayCache``
holds the only state, the last inputs and the last output.
"""

import io
import locale
import logging
import math
import re
from functools import cmp_to_key
from typing import Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

TypedValue = Union[float, str]
RawRecord = Dict[str, str]
TypedRecord = Dict[str, TypedValue]

DEFAULT_MAX_POINTS = 100
DEFAULT_EXCLUDED_KEYS = ("user_id",)
CSV_ENCODINGS = ("utf-8-sig", "utf-8", "latin-1")

_DECIMAL_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?\Z", re.ASCII)
_INFINITY_RE = re.compile(r"[+-]?Infinity\Z")
_RADIX_RE = re.compile(r"0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)\Z")


class InvalidArgument(ValueError):
    """Raised when a pipeline step is called with an unusable argument."""


class CSVParseError(ValueError):
    """The uploaded bytes could not be read as a CSV table."""


# ================== VALUE COERCION ==================
def parse_value(value):
    """Type one CSV field: a float if it is a number literal, else the original text.

    Empty strings are returned untouched, and so is whitespace-only text,
    so a blank cell never becomes ``0``.
    """
    if value is None or value == "":
        return value
    text = value.strip()
    if not text:
        return value
    if _DECIMAL_RE.match(text) or _INFINITY_RE.match(text):
        return float(text)
    if _RADIX_RE.match(text):
        try:
            return float(int(text, 0))
        except OverflowError:
            return math.inf
    return value


def format_number(value: float) -> str:
    """Render a number as it appears on axis labels and in lexical comparisons.

    Integral values drop the fractional part (``30.0`` -> ``"30"``); other
    values use the shortest round-trip digits.  Exponent notation is only
    used below ``1e-6`` or from ``1e21`` upwards.
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""

    mantissa, _, exp = repr(abs(value)).partition("e")
    int_part, _, frac = mantissa.partition(".")
    combined = int_part + frac
    stripped = combined.lstrip("0")
    # value == 0.<digits> * 10**point
    point = len(int_part) + int(exp or 0) - (len(combined) - len(stripped))
    digits = stripped.rstrip("0")
    k = len(digits)

    if k <= point <= 21:
        body = digits + "0" * (point - k)
    elif 0 < point <= 21:
        body = digits[:point] + "." + digits[point:]
    elif -6 < point <= 0:
        body = "0." + "0" * -point + digits
    else:
        e = point - 1
        head = digits if k == 1 else digits[0] + "." + digits[1:]
        body = f"{head}e{'+' if e > 0 else '-'}{abs(e)}"
    return sign + body


def to_jsonable(value):
    """JSON-safe form of a typed value: whole floats become ints, NaN/inf become None."""
    if isinstance(value, (np.floating, float)):
        value = float(value)
        if not math.isfinite(value):
            return None
        if value.is_integer() and abs(value) < 2 ** 53:
            return int(value)
        return value
    if isinstance(value, (np.integer,)):
        return int(value)
    return value


# ================== RECORD NORMALIZATION ==================
def convert_data_types(records: Iterable[RawRecord]) -> List[TypedRecord]:
    return [{key: parse_value(raw) for key, raw in row.items()} for row in records]


def selectable_keys(dataset: Sequence[TypedRecord],
                    excluded: Iterable[str] = DEFAULT_EXCLUDED_KEYS) -> List[str]:
    """Keys offered for axis selection, taken from the first record.

    Hidden keys are matched case-insensitively on the whole name.  They
    are only left out of the selection list, not out of the records.
    """
    if not dataset:
        return []
    hidden = {name.lower() for name in excluded}
    return [key for key in dataset[0] if key.lower() not in hidden]


# ================== KEY-AWARE COMPARATOR ==================
def _as_text(value) -> str:
    if value is None:
        return "undefined"
    if isinstance(value, float):
        return format_number(value)
    return str(value)


def compare_values(a, b) -> float:
    """Numbers compare numerically; any other pairing compares as collated text."""
    if isinstance(a, float) and isinstance(b, float):
        return a - b
    return locale.strcoll(_as_text(a), _as_text(b))


def sort_data_by_key(dataset: Iterable[TypedRecord], key: str) -> List[TypedRecord]:
    if not key:
        raise InvalidArgument("sort key must be a non-empty field name")
    # sorted() is stable, so ties keep their input order
    return sorted(dataset, key=cmp_to_key(lambda a, b: _sign(compare_values(a.get(key), b.get(key)))))


def _sign(x: float) -> int:
    # NaN (e.g. inf - inf) counts as a tie
    if x > 0:
        return 1
    if x < 0:
        return -1
    return 0


# ================== EVEN-STRIDE SAMPLER ==================
def sample_data(dataset: Sequence[TypedRecord], max_points: int = DEFAULT_MAX_POINTS):
    if max_points <= 0:
        raise InvalidArgument(f"max_points must be positive, got {max_points}")
    if len(dataset) <= max_points:
        return dataset

    stride = len(dataset) // max_points
    sampled = []
    for i in range(0, len(dataset), stride):
        sampled.append(dataset[i])
        if len(sampled) >= max_points:
            break
    return sampled


# ================== DERIVED-VIEW CACHE ==================
class DisplayCache:
    """Memoizes ``sample_data(sort_data_by_key(raw, x_key), max_points)``.

    The cached list is reused while the raw dataset is the same object
    and the X-axis key is equal.  A freshly loaded dataset always counts
    as a change, even if its content matches the previous one.
    """

    def __init__(self, max_points: int = DEFAULT_MAX_POINTS):
        if max_points <= 0:
            raise InvalidArgument(f"max_points must be positive, got {max_points}")
        self.max_points = max_points
        self.recompute_count = 0
        self._primed = False
        self._raw: Optional[Sequence[TypedRecord]] = None
        self._key: Optional[str] = None
        self._output: List[TypedRecord] = []

    def get(self, raw: Sequence[TypedRecord], x_key: Optional[str]) -> List[TypedRecord]:
        if self._primed and raw is self._raw and x_key == self._key:
            return self._output

        if not raw or not x_key:
            output = []
        else:
            output = sample_data(sort_data_by_key(raw, x_key), self.max_points)
        logger.debug("Display dataset recomputed: key=%r rows=%d points=%d",
                     x_key, len(raw or ()), len(output))

        self._raw, self._key, self._output = raw, x_key, output
        self._primed = True
        self.recompute_count += 1
        return output


# ================== CSV READING ==================
def _decode(data: bytes) -> str:
    for enc in CSV_ENCODINGS:
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    raise CSVParseError("File is not valid text in any supported encoding")


def read_csv_records(data: bytes) -> List[RawRecord]:
    """Parse CSV bytes with a header row into string-valued records.

    Every cell stays text; typing is left to ``convert_data_types``.
    Fields missing from short rows are left out of that row's record,
    and fields beyond the header width are dropped from long rows.
    """
    text = _decode(data)
    if not text.strip():
        return []

    long_rows = []

    def _truncate(fields):
        long_rows.append(len(fields))
        return fields[:width]

    try:
        width = len(pd.read_csv(io.StringIO(text), nrows=0, dtype=str).columns)
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            engine="python",
            on_bad_lines=_truncate,
        )
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, ValueError) as exc:
        raise CSVParseError(str(exc)) from exc

    if long_rows:
        logger.warning("Dropped extra fields from %d row(s) longer than the %d-column header",
                       len(long_rows), width)
    return [
        {str(key): val for key, val in row.items() if isinstance(val, str)}
        for row in df.to_dict(orient="records")
    ]


def humanize_key(key: str) -> str:
    return (key or "").replace("_", " ")


def display_title(file_name: str) -> str:
    """``daily_steps_2024.csv`` -> ``daily steps``."""
    name = (file_name or "").replace(".csv", "", 1).replace("_", " ")
    return re.sub(r"\s+\S+$", "", name)
