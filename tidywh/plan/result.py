"""Materialized query results."""

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence


@dataclass(frozen=True)
class ResultColumn:
    name: str
    type_name: Optional[str] = None


class MaterializedResult:
    """
    Local, in-memory result of an executed plan.

    Holds ordered column metadata and the fetched rows. Only ever built from a
    completed query.
    """

    def __init__(self, columns: Sequence[ResultColumn], rows: Sequence[Sequence[Any]]):
        self.columns = tuple(columns)
        self.rows = [tuple(row) for row in rows]

        width = len(self.columns)
        for row in self.rows:
            if len(row) != width:
                raise ValueError(f"Row has {len(row)} values for {width} columns")

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[tuple]:
        return iter(self.rows)

    def __repr__(self):
        return f"<MaterializedResult {len(self.rows)} rows x {len(self.columns)} columns>"

    def column(self, name: str) -> List[Any]:
        """All values of one column, in row order."""
        names = self.column_names
        if name not in names:
            raise KeyError(f"No column '{name}' in result (columns: {', '.join(names)})")
        index = names.index(name)
        return [row[index] for row in self.rows]

    def to_records(self) -> List[Dict[str, Any]]:
        names = self.column_names
        return [dict(zip(names, row)) for row in self.rows]

    def to_csv(self, output_path: Path) -> Path:
        """Save results as CSV file."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(self.column_names)
            writer.writerows(self.rows)
        return output_path

    def preview(self, limit: int = 5) -> str:
        """Fixed-width preview of the first rows."""
        lines = []
        lines.append(" | ".join(f"{col:<20}" for col in self.column_names))
        lines.append("-" * 100)
        for row in self.rows[:limit]:
            lines.append(" | ".join(
                f"{str(val):<20}" if val is not None else f"{'NULL':<20}" for val in row
            ))
        if len(self.rows) > limit:
            lines.append(f"... and {len(self.rows) - limit} more rows")
        return "\n".join(lines)
