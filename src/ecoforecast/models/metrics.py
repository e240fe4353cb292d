"""Accuracy metrics for point forecasts.

- RMSE: Root Mean Square Error
- MAE: Mean Absolute Error
- Bias: Mean Error (systematic over/under prediction)
- R^2: Share of variance explained

All metrics ignore pairs where either value is NaN.
"""

import logging
from typing import Callable

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _valid_pairs(
    y_true: np.ndarray | pd.Series,
    y_pred: np.ndarray | pd.Series,
    name: str,
) -> tuple[np.ndarray, np.ndarray] | None:
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    mask = ~(np.isnan(y_true) | np.isnan(y_pred))
    if not mask.any():
        logger.warning(f"No valid values for {name} calculation")
        return None
    return y_true[mask], y_pred[mask]


def rmse(y_true: np.ndarray | pd.Series, y_pred: np.ndarray | pd.Series) -> float:
    """Calculate Root Mean Square Error.

    Returns:
        RMSE value. Returns NaN if no valid pairs.

    Example:
        >>> rmse(np.array([10.0, 20.0, 30.0]), np.array([12.0, 18.0, 32.0]))
        2.0
    """
    pairs = _valid_pairs(y_true, y_pred, "RMSE")
    if pairs is None:
        return np.nan
    y_true, y_pred = pairs
    return float(np.sqrt(np.mean((y_true - y_pred) ** 2)))


def mae(y_true: np.ndarray | pd.Series, y_pred: np.ndarray | pd.Series) -> float:
    """Calculate Mean Absolute Error. Returns NaN if no valid pairs."""
    pairs = _valid_pairs(y_true, y_pred, "MAE")
    if pairs is None:
        return np.nan
    y_true, y_pred = pairs
    return float(np.mean(np.abs(y_true - y_pred)))


def bias(y_true: np.ndarray | pd.Series, y_pred: np.ndarray | pd.Series) -> float:
    """Calculate Mean Error (y_pred - y_true).

    Positive bias indicates systematic over-prediction.
    """
    pairs = _valid_pairs(y_true, y_pred, "bias")
    if pairs is None:
        return np.nan
    y_true, y_pred = pairs
    return float(np.mean(y_pred - y_true))


def r_squared(y_true: np.ndarray | pd.Series, y_pred: np.ndarray | pd.Series) -> float:
    """Coefficient of determination. NaN when y_true is constant or empty."""
    pairs = _valid_pairs(y_true, y_pred, "R^2")
    if pairs is None:
        return np.nan
    y_true, y_pred = pairs
    ss_tot = np.sum((y_true - y_true.mean()) ** 2)
    if ss_tot == 0:
        return np.nan
    return float(1.0 - np.sum((y_true - y_pred) ** 2) / ss_tot)


def evaluate_forecast(
    y_true: np.ndarray | pd.Series,
    y_pred: np.ndarray | pd.Series,
) -> dict[str, float]:
    """Compute every metric in one call.

    Returns:
        Dictionary with rmse, mae, bias, r_squared and n (valid pairs)
    """
    y_true_arr = np.asarray(y_true, dtype=float)
    y_pred_arr = np.asarray(y_pred, dtype=float)
    n = int((~(np.isnan(y_true_arr) | np.isnan(y_pred_arr))).sum())
    return {
        "rmse": rmse(y_true_arr, y_pred_arr),
        "mae": mae(y_true_arr, y_pred_arr),
        "bias": bias(y_true_arr, y_pred_arr),
        "r_squared": r_squared(y_true_arr, y_pred_arr),
        "n": n,
    }


# Metric registry for dynamic access
METRICS: dict[str, Callable] = {
    "rmse": rmse,
    "mae": mae,
    "bias": bias,
    "r_squared": r_squared,
}
