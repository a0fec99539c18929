"""
Column type codes (readr compact notation) and per-type value rendering.

    c  text            quoted, line breaks flattened
    i  integer         unquoted
    d  double          unquoted, 15 significant digits
    l  logical         TRUE / FALSE
    T  date-time       ISO-8601 UTC, e.g. 2019-01-01T12:00:00Z
    D  date            2019-01-01
    t  time of day     12:00:00
    _  skip            column dropped from the output (also '-')
"""

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable, List, Optional

from tidywh.errors import SchemaMismatch


MISSING_VALUES = ("", "NA")

TRUE_VALUES = ("T", "TRUE", "True", "true")
FALSE_VALUES = ("F", "FALSE", "False", "false")

_LINE_BREAKS = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class ColumnType:
    code: str
    name: str
    sql_type: Optional[str]
    quoted: bool
    render: Optional[Callable[[str], str]]

    @property
    def skipped(self) -> bool:
        return self.render is None


def flatten_line_breaks(value: str) -> str:
    """Replace every embedded line break with a single space."""
    return _LINE_BREAKS.sub(" ", value)


def quote(value: str) -> str:
    """Wrap in double quotes, doubling any inner quote (RFC 4180)."""
    return '"' + value.replace('"', '""') + '"'


def render_text(value: str) -> str:
    return quote(flatten_line_breaks(value))


def render_integer(value: str) -> str:
    return str(int(value.strip()))


def render_double(value: str) -> str:
    text = value.strip()
    if text in ("Inf", "-Inf", "NaN"):
        return text
    number = float(text)
    if math.isnan(number):
        return "NaN"
    if math.isinf(number):
        return "Inf" if number > 0 else "-Inf"
    return "%.15g" % number


def render_logical(value: str) -> str:
    text = value.strip()
    if text in TRUE_VALUES:
        return "TRUE"
    if text in FALSE_VALUES:
        return "FALSE"
    raise ValueError(f"not a logical value: {value!r}")


def render_datetime(value: str) -> str:
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    if parsed.microsecond:
        return parsed.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return parsed.strftime("%Y-%m-%dT%H:%M:%SZ")


def render_date(value: str) -> str:
    return date.fromisoformat(value.strip()).isoformat()


def render_time(value: str) -> str:
    parsed = time.fromisoformat(value.strip())
    if parsed.microsecond:
        return parsed.strftime("%H:%M:%S.%f")
    return parsed.strftime("%H:%M:%S")


COLUMN_TYPES = {
    "c": ColumnType("c", "text", "VARCHAR", True, render_text),
    "i": ColumnType("i", "integer", "NUMBER(38,0)", False, render_integer),
    "d": ColumnType("d", "double", "FLOAT", False, render_double),
    "l": ColumnType("l", "logical", "BOOLEAN", False, render_logical),
    "T": ColumnType("T", "datetime", "TIMESTAMP_NTZ", False, render_datetime),
    "D": ColumnType("D", "date", "DATE", False, render_date),
    "t": ColumnType("t", "time", "TIME", False, render_time),
    "_": ColumnType("_", "skip", None, False, None),
    "-": ColumnType("-", "skip", None, False, None),
}


def parse_col_types(col_types: str) -> List[ColumnType]:
    """Parse a compact type string such as "icccc" into ColumnTypes."""
    if not col_types:
        raise SchemaMismatch("Column type string is empty")

    parsed = []
    for position, code in enumerate(col_types, start=1):
        if code not in COLUMN_TYPES:
            raise SchemaMismatch(
                f"Unknown column type code '{code}' at position {position} "
                f"(expected one of {''.join(COLUMN_TYPES)})"
            )
        parsed.append(COLUMN_TYPES[code])
    return parsed


def sql_type_for(code_or_type: str) -> str:
    """Map a single type code to its warehouse type; other strings pass through."""
    column_type = COLUMN_TYPES.get(code_or_type)
    if column_type is None:
        return code_or_type
    if column_type.sql_type is None:
        raise SchemaMismatch(f"Column type code '{code_or_type}' has no warehouse type")
    return column_type.sql_type
