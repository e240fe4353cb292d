"""In-memory time-series tables: joining, reshaping and validation."""

from .join import join_all, join_tables
from .reshape import pivot_longer, pivot_wider
from .validation import DATE_COLUMN, SITE_COLUMN, ValidationResult, validate_time_series

__all__ = [
    "join_tables",
    "join_all",
    "pivot_wider",
    "pivot_longer",
    "validate_time_series",
    "ValidationResult",
    "SITE_COLUMN",
    "DATE_COLUMN",
]
