"""Apply fitted models to future covariates.

The forecast table mirrors the rows of the covariate table it was made from:
one prediction per input row, in input order. Rows whose covariates are null
get a null prediction instead of disappearing, so alignment with the input's
time index is never silently broken.
"""

import logging
from typing import Any, Mapping, Sequence

import pandas as pd

from ecoforecast.exceptions import SchemaError, SchemaMismatchError
from ecoforecast.models.base import BaseModel
from ecoforecast.models.linear import LinearTimeSeriesModel
from ecoforecast.tables.validation import DATE_COLUMN, SITE_COLUMN

logger = logging.getLogger(__name__)

PREDICTION_COLUMN = "prediction"
VARIABLE_COLUMN = "variable"


def forecast(
    model: BaseModel,
    new_data: pd.DataFrame,
    level: Sequence[float] | None = None,
    keep_columns: Sequence[str] | None = None,
    site_column: str = SITE_COLUMN,
    date_column: str = DATE_COLUMN,
) -> pd.DataFrame:
    """Predict the response for every row of a future covariate table.

    Args:
        model: Fitted model
        new_data: Table with every column in ``model.required_columns()``:
            the fitted predictors, plus the date column when the model has
            a trend term
        level: Prediction-interval levels in percent, e.g. [80, 95]. Adds
            ``lower_<level>`` / ``upper_<level>`` columns.
        keep_columns: Extra columns of new_data to carry into the output
        site_column: Site key carried into the output when present
        date_column: Date key carried into the output when present

    Returns:
        DataFrame with the key columns, ``variable`` (the response name),
        ``prediction`` and any interval columns, one row per input row.

    Raises:
        SchemaMismatchError: If a required column is absent from new_data
        ValueError: If the model is not fitted

    Example:
        >>> fc = forecast(model, future_weather, level=[95])
        >>> fc.columns.tolist()
        ['site_id', 'date', 'variable', 'prediction', 'lower_95', 'upper_95']
    """
    # predict() checks the fitted state and required columns
    predictions = model.predict(new_data)

    carried = [c for c in (site_column, date_column) if c in new_data.columns]
    for column in keep_columns or ():
        if column not in new_data.columns:
            raise SchemaError(f"keep_columns entry {column!r} not in forecast input", missing=[column])
        if column not in carried:
            carried.append(column)

    result = new_data[carried].reset_index(drop=True).copy()
    result[VARIABLE_COLUMN] = model.response
    result[PREDICTION_COLUMN] = predictions

    for lvl in level or ():
        if not isinstance(model, LinearTimeSeriesModel):
            raise ValueError(f"{type(model).__name__} does not provide prediction intervals")
        lower, upper = model.prediction_interval(new_data, lvl)
        suffix = f"{lvl:g}"
        result[f"lower_{suffix}"] = lower
        result[f"upper_{suffix}"] = upper

    n_null = int(result[PREDICTION_COLUMN].isna().sum())
    if n_null:
        logger.warning(f"{n_null}/{len(result)} forecast rows have null covariates and no prediction")
    logger.info(f"Forecast {len(result)} rows of {model.response}")
    return result


def forecast_by_group(
    models: Mapping[Any, BaseModel],
    new_data: pd.DataFrame,
    group_column: str = SITE_COLUMN,
    **kwargs: Any,
) -> pd.DataFrame:
    """Forecast each group of new_data with its own model.

    Groups without a fitted model are skipped with a warning.

    Args:
        models: Mapping of group value to fitted model (see fit_by_group)
        new_data: Future covariates for all groups
        group_column: Column identifying the group
        **kwargs: Passed to forecast()

    Returns:
        Concatenated forecasts, groups in sorted order
    """
    if group_column not in new_data.columns:
        raise SchemaMismatchError(f"Group column {group_column!r} not in forecast input", missing=[group_column])

    keep = list(kwargs.pop("keep_columns", None) or [])
    if group_column not in keep and group_column != kwargs.get("site_column", SITE_COLUMN):
        keep.append(group_column)

    forecasts = []
    for key, group in new_data.groupby(group_column, sort=True):
        model = models.get(key)
        if model is None:
            logger.warning(f"No model for {group_column}={key}; skipping {len(group)} rows")
            continue
        forecasts.append(forecast(model, group, keep_columns=keep, **kwargs))

    if not forecasts:
        return pd.DataFrame(columns=[group_column, VARIABLE_COLUMN, PREDICTION_COLUMN])
    return pd.concat(forecasts, ignore_index=True)
