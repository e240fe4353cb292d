"""Linear time-series regression (ordinary least squares).

Fits ``response ~ predictors [+ trend]`` on a joined TimeSeriesTable with
scikit-learn's LinearRegression. Keeps enough of the fit (residual standard
error and the inverted normal matrix) to give OLS prediction intervals.

Null handling is an explicit policy because it decides which rows influence
the coefficients:

- "drop" (default): rows with a null response or predictor are excluded. The
  count is logged at WARNING level and kept in ``n_dropped``.
- "raise": any such row raises MissingValueError.
"""

import logging
import pickle
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression

from ecoforecast.exceptions import InsufficientDataError, MissingValueError, SchemaError
from ecoforecast.models.base import BaseModel
from ecoforecast.tables.validation import DATE_COLUMN

logger = logging.getLogger(__name__)

NULL_POLICIES = ("drop", "raise")
TREND_TERM = "trend"
INTERCEPT_TERM = "(Intercept)"


class LinearTimeSeriesModel(BaseModel):
    """OLS regression of one column on others, with an optional linear trend.

    Attributes:
        null_policy: "drop" or "raise" for rows with nulls at fit time.
        trend: Whether a linear trend (days since the first fitted date) is a regressor.
        date_column: Calendar-day column used for the trend.
        trend_origin: First date of the fitted rows (if trend).
        n_obs: Rows used in the fit.
        n_dropped: Rows excluded for nulls.
        sigma: Residual standard error.
        r_squared: Coefficient of determination on the fitted rows.

    Example:
        >>> model = LinearTimeSeriesModel().fit(training, "oxygen", ["air_temperature"])
        >>> model.coefficients()
                     term  estimate
        0     (Intercept)     11.83
        1 air_temperature     -0.17
    """

    def __init__(self, null_policy: str = "drop", trend: bool = False, date_column: str = DATE_COLUMN):
        """Initialize the model.

        Args:
            null_policy: "drop" (exclude and log) or "raise" for null rows.
            trend: Add a linear trend regressor.
            date_column: Date column the trend is computed from.
        """
        super().__init__()
        if null_policy not in NULL_POLICIES:
            raise ValueError(f"null_policy must be one of {NULL_POLICIES}, got {null_policy!r}")
        self.null_policy = null_policy
        self.trend = trend
        self.date_column = date_column
        self.trend_origin: pd.Timestamp | None = None
        self.n_obs = 0
        self.n_dropped = 0
        self.df_resid = 0
        self.sigma = float("nan")
        self.r_squared = float("nan")
        self._xtx_inv: np.ndarray | None = None

    def __repr__(self) -> str:
        status = "fitted" if self.is_fitted else "not fitted"
        terms = " + ".join(self.terms) if self.is_fitted else "?"
        return f"LinearTimeSeriesModel({status}, {self.response or '?'} ~ {terms}, null_policy={self.null_policy})"

    @property
    def terms(self) -> list[str]:
        """Regressor names in coefficient order (intercept excluded)."""
        terms = list(self.predictors or ())
        if self.trend:
            terms.append(TREND_TERM)
        return terms

    def required_columns(self) -> tuple[str, ...]:
        """Predictors, plus the date column when the trend is a regressor."""
        required = tuple(self.predictors or ())
        if self.trend:
            required += (self.date_column,)
        return required

    def _trend_values(self, table: pd.DataFrame) -> np.ndarray:
        days = (pd.to_datetime(table[self.date_column]) - self.trend_origin) / pd.Timedelta(days=1)
        return days.to_numpy(dtype=float, na_value=np.nan)

    def design_matrix(self, table: pd.DataFrame) -> np.ndarray:
        """Regressor matrix (without intercept column) for a table."""
        X = table[list(self.predictors)].to_numpy(dtype=float, na_value=np.nan)
        if self.trend:
            X = np.column_stack([X, self._trend_values(table)])
        return X

    def fit(self, table: pd.DataFrame, response: str, predictors: Sequence[str]) -> "LinearTimeSeriesModel":
        """Fit the model.

        Args:
            table: Training table (e.g. targets joined with daily weather).
            response: Response column.
            predictors: Predictor columns, in model order.

        Returns:
            self: The fitted model instance for method chaining.

        Raises:
            SchemaError: If response, a predictor or the date column is missing.
            MissingValueError: If null_policy="raise" and nulls are present.
            InsufficientDataError: If fewer usable rows than parameters remain.
        """
        predictors = (predictors,) if isinstance(predictors, str) else tuple(predictors)
        if not predictors and not self.trend:
            raise ValueError("At least one predictor (or trend=True) is required")
        if response in predictors:
            raise ValueError(f"Response {response!r} cannot also be a predictor")
        if len(set(predictors)) != len(predictors):
            raise ValueError(f"Duplicate predictors: {list(predictors)}")

        required = [response, *predictors] + ([self.date_column] if self.trend else [])
        self._validate_table(table, required)

        null_rows = table[required].isna().any(axis=1)
        n_null = int(null_rows.sum())
        if n_null:
            if self.null_policy == "raise":
                raise MissingValueError(
                    f"{n_null}/{len(table)} rows have null values in {required} (null_policy='raise')"
                )
            logger.warning(
                f"Excluding {n_null}/{len(table)} rows with null {response} or predictors from the fit"
            )
        complete = table.loc[~null_rows]

        n_params = len(predictors) + int(self.trend) + 1
        if len(complete) < n_params:
            raise InsufficientDataError(
                f"{len(complete)} usable rows (of {len(table)}) cannot fit {n_params} parameters "
                f"for {response} ~ {' + '.join(predictors) or TREND_TERM}"
            )

        self.response = response
        self.predictors = predictors
        if self.trend:
            self.trend_origin = pd.to_datetime(complete[self.date_column]).min()

        X = self.design_matrix(complete)
        y = complete[response].to_numpy(dtype=float)

        self.model = LinearRegression()
        self.model.fit(X, y)

        residuals = y - self.model.predict(X)
        ss_res = float(np.sum(residuals**2))
        ss_tot = float(np.sum((y - y.mean()) ** 2))

        self.n_obs = len(complete)
        self.n_dropped = n_null
        self.df_resid = self.n_obs - n_params
        self.sigma = float(np.sqrt(ss_res / self.df_resid)) if self.df_resid > 0 else float("nan")
        self.r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else float("nan")

        design = np.column_stack([np.ones(len(X)), X])
        self._xtx_inv = np.linalg.pinv(design.T @ design)

        self.is_fitted = True
        logger.info(
            f"Fitted {response} ~ {' + '.join(self.terms)} on {self.n_obs} rows "
            f"(dropped {self.n_dropped}), R^2={self.r_squared:.3f}"
        )
        return self

    def predict(self, table: pd.DataFrame) -> np.ndarray:
        """Point predictions, one per row; rows with null regressors give NaN.

        Raises:
            ValueError: If the model is not fitted.
            SchemaMismatchError: If table lacks a predictor (or the date column
                for a trend model).
        """
        self._validate_forecast_input(table)
        X = self.design_matrix(table)

        predictions = np.full(len(table), np.nan)
        valid = ~np.isnan(X).any(axis=1)
        if valid.any():
            predictions[valid] = self.model.predict(X[valid])
        return predictions

    def prediction_interval(self, table: pd.DataFrame, level: float = 95.0) -> tuple[np.ndarray, np.ndarray]:
        """OLS prediction interval for each row.

        Args:
            table: New data with the model's predictors.
            level: Coverage in percent, e.g. 80 or 95.

        Returns:
            (lower, upper) arrays; NaN where the interval is undefined.
        """
        if not 0 < level < 100:
            raise ValueError(f"level must be between 0 and 100, got {level}")
        mean = self.predict(table)
        if self.df_resid <= 0:
            nan = np.full(len(table), np.nan)
            return nan, nan.copy()

        design = np.column_stack([np.ones(len(table)), self.design_matrix(table)])
        leverage = np.einsum("ij,jk,ik->i", design, self._xtx_inv, design)
        se = self.sigma * np.sqrt(1.0 + leverage)
        q = stats.t.ppf(0.5 + level / 200.0, df=self.df_resid)
        return mean - q * se, mean + q * se

    def coefficients(self) -> pd.DataFrame:
        """Fitted coefficients as a (term, estimate) DataFrame, intercept first."""
        self._validate_fitted()
        return pd.DataFrame({
            "term": [INTERCEPT_TERM] + self.terms,
            "estimate": [float(self.model.intercept_)] + [float(c) for c in self.model.coef_],
        })

    def get_intercept(self) -> float:
        self._validate_fitted()
        return float(self.model.intercept_)

    def get_params(self) -> dict[str, Any]:
        """Get model parameters.

        Returns:
            Dictionary with null_policy, trend, date_column and, once fitted,
            response, predictors, n_obs, n_dropped, sigma and r_squared.
        """
        params: dict[str, Any] = {
            "null_policy": self.null_policy,
            "trend": self.trend,
            "date_column": self.date_column,
        }
        if self.is_fitted:
            params.update({
                "response": self.response,
                "predictors": list(self.predictors),
                "n_obs": self.n_obs,
                "n_dropped": self.n_dropped,
                "sigma": self.sigma,
                "r_squared": self.r_squared,
            })
        return params

    def save(self, path: str | Path) -> None:
        """Save the model to disk using pickle.

        Raises:
            ValueError: If model is not fitted.
        """
        self._validate_fitted()

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        state = {
            "model": self.model,
            "response": self.response,
            "predictors": self.predictors,
            "null_policy": self.null_policy,
            "trend": self.trend,
            "date_column": self.date_column,
            "trend_origin": self.trend_origin,
            "n_obs": self.n_obs,
            "n_dropped": self.n_dropped,
            "df_resid": self.df_resid,
            "sigma": self.sigma,
            "r_squared": self.r_squared,
            "xtx_inv": self._xtx_inv,
        }
        with open(path, "wb") as f:
            pickle.dump(state, f)

    @classmethod
    def load(cls, path: str | Path) -> "LinearTimeSeriesModel":
        """Load a model saved with save().

        Raises:
            FileNotFoundError: If model file does not exist.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {path}")

        with open(path, "rb") as f:
            state = pickle.load(f)

        instance = cls(
            null_policy=state["null_policy"],
            trend=state["trend"],
            date_column=state["date_column"],
        )
        instance.model = state["model"]
        instance.response = state["response"]
        instance.predictors = state["predictors"]
        instance.trend_origin = state["trend_origin"]
        instance.n_obs = state["n_obs"]
        instance.n_dropped = state["n_dropped"]
        instance.df_resid = state["df_resid"]
        instance.sigma = state["sigma"]
        instance.r_squared = state["r_squared"]
        instance._xtx_inv = state["xtx_inv"]
        instance.is_fitted = True
        return instance


def fit_by_group(
    table: pd.DataFrame,
    group_column: str,
    response: str,
    predictors: Sequence[str],
    **model_kwargs: Any,
) -> dict[Any, LinearTimeSeriesModel]:
    """Fit one model per group (e.g. per site).

    Args:
        table: Training table holding every group.
        group_column: Column whose values identify a series.
        response: Response column.
        predictors: Predictor columns.
        **model_kwargs: Passed to LinearTimeSeriesModel.

    Returns:
        Mapping of group value to fitted model.

    Raises:
        InsufficientDataError: If any group has too few usable rows.
    """
    if group_column not in table.columns:
        raise SchemaError(f"Group column {group_column!r} not in table", missing=[group_column])

    models = {}
    for key, group in table.groupby(group_column, sort=True):
        logger.info(f"Fitting {response} for {group_column}={key}")
        models[key] = LinearTimeSeriesModel(**model_kwargs).fit(group, response, predictors)
    return models
