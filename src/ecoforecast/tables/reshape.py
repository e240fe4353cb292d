"""Long <-> wide reshaping with a declared output schema.

Targets and weather drivers arrive in long format (one row per site, time and
variable). Models want one column per variable. pivot_wider never invents
columns from data values: the caller declares which variables become columns.
"""

import logging
from typing import Sequence

import numpy as np
import pandas as pd

from ecoforecast.exceptions import SchemaError

logger = logging.getLogger(__name__)


def _require_columns(table: pd.DataFrame, columns: Sequence[str]) -> None:
    missing = [c for c in columns if c not in table.columns]
    if missing:
        raise SchemaError(f"Column(s) {missing} not in table. Available: {list(table.columns)}", missing=missing)


def pivot_wider(
    table: pd.DataFrame,
    index: Sequence[str],
    names_from: str,
    values_from: str,
    columns: Sequence[str],
    aggfunc: str = "mean",
) -> pd.DataFrame:
    """Spread a long table into one column per declared variable.

    Args:
        table: Long table, e.g. (site_id, date, variable, observation)
        index: Columns identifying an output row
        names_from: Column whose values name the output columns
        values_from: Column holding the values
        columns: Declared output variables, in output order
        aggfunc: How repeated (index, name) pairs are combined

    Returns:
        DataFrame with ``index`` columns followed by exactly ``columns``.
        Declared variables absent from the data are all-null columns.

    Example:
        >>> wide = pivot_wider(targets, ["site_id", "date"], "variable", "observation",
        ...                    columns=["oxygen", "temperature"])
    """
    index = list(index)
    columns = list(columns)
    _require_columns(table, index + [names_from, values_from])

    undeclared = sorted(set(table[names_from].dropna().unique()) - set(columns))
    if undeclared:
        logger.info(f"pivot_wider dropping undeclared {names_from} values: {undeclared}")

    declared = table[table[names_from].isin(columns)]
    if declared.empty:
        wide = pd.DataFrame(columns=index)
    else:
        wide = (
            declared.groupby(index + [names_from])[values_from]
            .agg(aggfunc)
            .unstack(names_from)
            .reset_index()
        )
        wide.columns.name = None

    for column in columns:
        if column not in wide.columns:
            logger.info(f"pivot_wider: declared column {column!r} has no data, filling with nulls")
            wide[column] = np.nan

    return wide[index + columns]


def pivot_longer(
    table: pd.DataFrame,
    index: Sequence[str],
    columns: Sequence[str],
    names_to: str = "variable",
    values_to: str = "observation",
) -> pd.DataFrame:
    """Gather value columns into (variable, observation) rows."""
    index = list(index)
    columns = list(columns)
    _require_columns(table, index + columns)
    return table.melt(id_vars=index, value_vars=columns, var_name=names_to, value_name=values_to)
