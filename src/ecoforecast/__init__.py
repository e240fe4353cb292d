"""ecoforecast: weather-covariate forecasting pipeline for NEON targets.

Stages:
- storage: open partitioned datasets on S3-compatible storage, compose lazy
  queries, materialize them with DuckDB
- tables: join and reshape (site_id, date) keyed tables
- models: linear time-series regression
- forecasting: predictions (and intervals) from future covariates
- pipeline: the stages wired together
"""

from ecoforecast.config import StorageSettings, apply_environment
from ecoforecast.exceptions import (
    DatasetConnectionError,
    EcoforecastError,
    InsufficientDataError,
    MissingValueError,
    RemoteReadError,
    SchemaError,
    SchemaMismatchError,
)
from ecoforecast.forecasting import forecast, forecast_by_group
from ecoforecast.models import LinearTimeSeriesModel, fit_by_group
from ecoforecast.pipeline import CovariatePipeline, PipelineResult
from ecoforecast.storage import DatasetConnector, Query, Reducer, collect, count_rows, open_dataset
from ecoforecast.tables import join_tables, pivot_longer, pivot_wider, validate_time_series

__version__ = "0.1.0"

__all__ = [
    "StorageSettings",
    "apply_environment",
    "DatasetConnector",
    "open_dataset",
    "Query",
    "Reducer",
    "collect",
    "count_rows",
    "join_tables",
    "pivot_wider",
    "pivot_longer",
    "validate_time_series",
    "LinearTimeSeriesModel",
    "fit_by_group",
    "forecast",
    "forecast_by_group",
    "CovariatePipeline",
    "PipelineResult",
    "EcoforecastError",
    "DatasetConnectionError",
    "SchemaError",
    "SchemaMismatchError",
    "RemoteReadError",
    "InsufficientDataError",
    "MissingValueError",
]
