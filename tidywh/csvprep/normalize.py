"""CSV normalization for bulk loading.

Reads a raw CSV in a single streaming pass, flattens line breaks inside text
fields, quotes text columns, re-renders typed columns in an unambiguous form
and writes the result atomically (temporary file + rename).
"""

import csv
import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from tidywh.errors import MalformedRecord, SchemaMismatch
from tidywh.common.config import resolve_job_path
from .coltypes import MISSING_VALUES, ColumnType, parse_col_types, quote

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

LINE_TERMINATOR = "\n"


@dataclass
class NormalizeReport:
    """Outcome of one normalization run."""
    source: Path
    destination: Path
    rows: int
    columns: List[str]


def check_schema(header: Sequence[str], types: Sequence[ColumnType]) -> None:
    if len(types) != len(header):
        raise SchemaMismatch(
            f"{len(types)} column type(s) declared for {len(header)} column(s): "
            f"{', '.join(header)}"
        )


def normalize_record(row: Sequence[str], header: Sequence[str], types: Sequence[ColumnType],
                     line: Optional[int] = None) -> List[str]:
    """
    Render one raw record as output fields.

    Skipped columns are dropped, missing values become empty unquoted fields.

    Raises:
        MalformedRecord: wrong field count or a value that does not parse
    """
    if len(row) != len(header):
        raise MalformedRecord(f"expected {len(header)} fields, found {len(row)}", line=line)

    fields = []
    for name, column_type, value in zip(header, types, row):
        if column_type.skipped:
            continue
        if value in MISSING_VALUES:
            fields.append("")
            continue
        try:
            fields.append(column_type.render(value))
        except ValueError as e:
            raise MalformedRecord(
                f"column '{name}': cannot parse {value!r} as {column_type.name}",
                line=line
            ) from e
    return fields


def allow_long_fields() -> None:
    """Lift the csv module field size limit (131072 characters by default)."""
    limit = sys.maxsize
    while True:
        try:
            csv.field_size_limit(limit)
            return
        except OverflowError:
            # C long is 32 bits on some platforms
            limit //= 2


def read_records(reader, encoding: str):
    """Iterate csv rows, reporting undecodable or unparsable input as MalformedRecord."""
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except UnicodeDecodeError as e:
            raise MalformedRecord(
                f"cannot decode input as {encoding}: {e.reason}", line=reader.line_num + 1
            ) from e
        except csv.Error as e:
            raise MalformedRecord(str(e), line=reader.line_num) from e
        yield row


def output_mode(destination: Path) -> int:
    """Permission bits for the output: those of the file it replaces, else 0o666 less the umask."""
    if destination.exists():
        return destination.stat().st_mode & 0o777
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def normalize_csv(
    source: PathLike,
    destination: PathLike,
    col_types: str,
    columns: Optional[Iterable[str]] = None,
    encoding: str = "utf-8-sig",
) -> NormalizeReport:
    """
    Normalize a raw CSV file into a quoted, type-stable CSV.

    Args:
        source: Raw CSV file (never modified)
        destination: Output file, replaced atomically on success
        col_types: One type code per column, e.g. "icccc"
        columns: Column names when the source has no header row
        encoding: Source encoding ("utf-8-sig" strips a leading BOM)

    Returns:
        NormalizeReport with the number of data rows written

    Raises:
        SchemaMismatch: type codes do not match the header (before any data row)
        MalformedRecord: a data row cannot be decoded, parsed or normalized
    """
    source = Path(source)
    destination = Path(destination)
    types = parse_col_types(col_types)

    if not source.exists():
        raise FileNotFoundError(f"CSV file not found: {source}")
    if source.resolve() == destination.resolve():
        raise ValueError(f"Destination would overwrite the source file: {source}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    with open(source, "r", encoding=encoding, newline="") as src:
        allow_long_fields()
        reader = csv.reader(src)
        records = read_records(reader, encoding)

        if columns is not None:
            header = list(columns)
        else:
            header = next(records, None)
            if header is None:
                raise SchemaMismatch(f"{source} is empty, no header row found")

        check_schema(header, types)
        kept = [name for name, column_type in zip(header, types) if not column_type.skipped]
        logger.debug(f"Normalizing {source} ({', '.join(kept)})")

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", suffix=".tmp", dir=destination.parent
        )
        rows = 0
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as out:
                out.write(",".join(quote(name) for name in kept) + LINE_TERMINATOR)

                for row in records:
                    # Blank lines carry no record
                    if not row:
                        continue
                    fields = normalize_record(row, header, types, line=reader.line_num)
                    out.write(",".join(fields) + LINE_TERMINATOR)
                    rows += 1

            os.chmod(tmp_name, output_mode(destination))
            os.replace(tmp_name, destination)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    logger.info(f"Wrote {rows} rows to {destination}")
    return NormalizeReport(source=source, destination=destination, rows=rows, columns=kept)


def run_jobs(jobs: List[dict], encoding: str = "utf-8-sig",
             base_dir: Optional[Path] = None) -> List[NormalizeReport]:
    """
    Normalize every configured job in order.

    Each job is a mapping with source, destination and col_types keys, and an
    optional columns list. Stops at the first failing job.
    """
    reports = []
    for job in jobs:
        missing = [key for key in ("source", "destination", "col_types") if not job.get(key)]
        if missing:
            raise ValueError(f"csvprep job is missing {', '.join(missing)}: {job}")

        reports.append(normalize_csv(
            resolve_job_path(job["source"], base_dir),
            resolve_job_path(job["destination"], base_dir),
            job["col_types"],
            columns=job.get("columns"),
            encoding=job.get("encoding", encoding),
        ))
    return reports
