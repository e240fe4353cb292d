"""Data-quality checks for (site, date) keyed time-series tables."""

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import pandas as pd

from ecoforecast.exceptions import SchemaError

logger = logging.getLogger(__name__)

SITE_COLUMN = "site_id"
DATE_COLUMN = "date"


@dataclass
class ValidationResult:
    """Result of data validation.

    Attributes:
        valid: Whether the data passed all validation checks
        total_rows: Total number of rows in the table
        missing_pct: Percentage of missing values across value columns (0-100)
        duplicate_keys: Number of rows whose key repeats an earlier row
        issues: List of validation issues found
        stats: Dictionary of summary statistics
    """

    valid: bool
    total_rows: int
    missing_pct: float
    duplicate_keys: int = 0
    issues: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        status = "VALID" if self.valid else "INVALID"
        return (
            f"ValidationResult({status}, "
            f"rows={self.total_rows}, "
            f"missing={self.missing_pct:.1f}%, "
            f"duplicate_keys={self.duplicate_keys})"
        )


def validate_time_series(
    table: pd.DataFrame,
    site_column: str = SITE_COLUMN,
    date_column: str = DATE_COLUMN,
    value_columns: Sequence[str] | None = None,
    max_missing_pct: float = 100.0,
) -> ValidationResult:
    """Check a TimeSeriesTable for key uniqueness and missing values.

    Duplicate (site, date) keys are reported, not raised: they are a
    data-quality condition of the source, and joins on such a table fan out.

    Args:
        table: Table keyed by site and date
        site_column: Site identifier column
        date_column: Calendar-day column
        value_columns: Columns counted for missing values. Defaults to every
            non-key column.
        max_missing_pct: Missing percentage above which the table is invalid

    Returns:
        ValidationResult with duplicate-key count, missing percentage and
        per-column null counts in stats["null_counts"]

    Raises:
        SchemaError: If the key columns are absent
    """
    missing = [c for c in (site_column, date_column) if c not in table.columns]
    if missing:
        raise SchemaError(f"Key column(s) {missing} not in table", missing=missing)

    issues = []
    if table.empty:
        return ValidationResult(valid=False, total_rows=0, missing_pct=0.0, issues=["Table is empty"])

    if value_columns is None:
        value_columns = [c for c in table.columns if c not in (site_column, date_column)]
    values = table[list(value_columns)]

    null_counts = values.isna().sum().to_dict()
    total_cells = values.size
    missing_pct = float(100.0 * values.isna().sum().sum() / total_cells) if total_cells else 0.0

    duplicate_keys = int(table.duplicated(subset=[site_column, date_column]).sum())
    if duplicate_keys:
        issues.append(f"{duplicate_keys} duplicate ({site_column}, {date_column}) keys")
        logger.warning(f"Table has {duplicate_keys} duplicate ({site_column}, {date_column}) keys")

    if table[site_column].isna().any() or table[date_column].isna().any():
        issues.append("Null values in key columns")

    if missing_pct > max_missing_pct:
        issues.append(f"Missing {missing_pct:.1f}% exceeds {max_missing_pct:.1f}%")

    stats = {
        "sites": int(table[site_column].nunique()),
        "start_date": table[date_column].min(),
        "end_date": table[date_column].max(),
        "null_counts": null_counts,
    }

    return ValidationResult(
        valid=missing_pct <= max_missing_pct,
        total_rows=len(table),
        missing_pct=missing_pct,
        duplicate_keys=duplicate_keys,
        issues=issues,
        stats=stats,
    )
