"""Join materialized time-series tables on shared keys.

Left vs inner is a modelling decision, not a detail:

- left keeps every row of the target table. A sparse covariate such as
  precipitation then shows up as nulls on most rows, and those rows are later
  excluded from fitting.
- inner keeps only dates where the covariate exists, which is what a model
  that requires that covariate as a non-null predictor actually sees.
"""

import logging
from typing import Sequence

import pandas as pd

from ecoforecast.exceptions import SchemaError
from ecoforecast.tables.validation import DATE_COLUMN, SITE_COLUMN

logger = logging.getLogger(__name__)

JOIN_HOWS = ("left", "inner")
DEFAULT_KEYS = (SITE_COLUMN, DATE_COLUMN)


def _align_key_dtypes(left: pd.DataFrame, right: pd.DataFrame, on: Sequence[str]) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Bring date-like keys on both sides to datetime64 when their dtypes differ."""
    for key in on:
        left_dtype, right_dtype = left[key].dtype, right[key].dtype
        if left_dtype == right_dtype:
            continue
        if pd.api.types.is_datetime64_any_dtype(left_dtype) or pd.api.types.is_datetime64_any_dtype(right_dtype):
            left = left.assign(**{key: pd.to_datetime(left[key]).astype("datetime64[ns]")})
            right = right.assign(**{key: pd.to_datetime(right[key]).astype("datetime64[ns]")})
    return left, right


def join_tables(
    left: pd.DataFrame,
    right: pd.DataFrame,
    on: Sequence[str] = DEFAULT_KEYS,
    how: str = "left",
    suffix: str = "_right",
) -> pd.DataFrame:
    """Join two TimeSeriesTables on key columns.

    Args:
        left: Target table (all rows kept for a left join)
        right: Covariate table
        on: Key columns present in both tables
        how: "left" or "inner"
        suffix: Appended to right-hand non-key columns that clash with left ones

    Returns:
        New DataFrame; neither input is modified

    Raises:
        SchemaError: If a key column is missing from either side
        ValueError: If how is not "left" or "inner"

    Example:
        >>> training = join_tables(oxygen, air_temperature, on=["site_id", "date"], how="inner")
    """
    if how not in JOIN_HOWS:
        raise ValueError(f"how must be one of {JOIN_HOWS}, got {how!r}")
    on = [on] if isinstance(on, str) else list(on)

    for side, table in (("left", left), ("right", right)):
        missing = [k for k in on if k not in table.columns]
        if missing:
            raise SchemaError(f"Join key(s) {missing} missing from {side} table", missing=missing)

    left, right = _align_key_dtypes(left, right, on)
    joined = left.merge(right, on=on, how=how, suffixes=("", suffix))

    right_columns = [c for c in joined.columns if c not in left.columns]
    if how == "left" and right_columns:
        unmatched = int(joined[right_columns].isna().all(axis=1).sum())
        if unmatched:
            logger.info(
                f"Left join kept {unmatched}/{len(joined)} rows with no match; "
                f"{right_columns} are null there"
            )
    logger.info(f"{how} join on {on}: left={len(left)}, right={len(right)}, result={len(joined)}")
    return joined


def join_all(
    target: pd.DataFrame,
    covariates: Sequence[pd.DataFrame | tuple[pd.DataFrame, str]],
    on: Sequence[str] = DEFAULT_KEYS,
    how: str = "left",
) -> pd.DataFrame:
    """Join several covariate tables onto a target, in order.

    Each covariate is a DataFrame (joined with ``how``) or a
    ``(DataFrame, how)`` pair overriding the join mode for that table.
    """
    result = target
    for covariate in covariates:
        table, covariate_how = covariate if isinstance(covariate, tuple) else (covariate, how)
        result = join_tables(result, table, on=on, how=covariate_how)
    return result
