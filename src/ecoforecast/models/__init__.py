"""Time-series regression models.

Base classes:
- BaseModel: Abstract base class for all models

Model implementations:
- LinearTimeSeriesModel: OLS with optional trend and explicit null policy
- fit_by_group: One LinearTimeSeriesModel per site (or other key)

Metrics:
- rmse, mae, bias, r_squared, evaluate_forecast
"""

from ecoforecast.models.base import BaseModel
from ecoforecast.models.linear import NULL_POLICIES, LinearTimeSeriesModel, fit_by_group
from ecoforecast.models.metrics import METRICS, bias, evaluate_forecast, mae, r_squared, rmse

__all__ = [
    "BaseModel",
    "LinearTimeSeriesModel",
    "NULL_POLICIES",
    "fit_by_group",
    "METRICS",
    "rmse",
    "mae",
    "bias",
    "r_squared",
    "evaluate_forecast",
]
