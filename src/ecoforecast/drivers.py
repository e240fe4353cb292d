"""NOAA weather drivers and NEON targets on the ecoforecast object store.

These helpers only choose remote paths and build queries; nothing here reads
row data until the returned Query is collected.

Example:
    >>> connector = DatasetConnector()
    >>> weather = open_noaa_stage3(connector)
    >>> temp = collect(daily_weather(weather, ["BART"], "air_temperature", celsius=True))
"""

import logging
from datetime import date
from typing import Sequence

import pandas as pd

from ecoforecast.config import NOAA_STAGE2_PATH, NOAA_STAGE3_PATH, TARGETS_URLS
from ecoforecast.storage.connector import DatasetConnector, RemoteDataset
from ecoforecast.storage.query import Query
from ecoforecast.tables.validation import DATE_COLUMN, SITE_COLUMN

logger = logging.getLogger(__name__)

# NOAA GEFS variables published in the drivers bucket
NOAA_VARIABLES = (
    "air_temperature",
    "air_pressure",
    "relative_humidity",
    "surface_downwelling_longwave_flux_in_air",
    "surface_downwelling_shortwave_flux_in_air",
    "precipitation_flux",
    "eastward_wind",
    "northward_wind",
)


def open_noaa_stage3(connector: DatasetConnector, endpoint: str | None = None) -> RemoteDataset:
    """Open the stage3 (historical, gap-filled) NOAA drivers, partitioned by site."""
    return connector.open_dataset(
        NOAA_STAGE3_PATH,
        partitioning=[SITE_COLUMN],
        endpoint=endpoint or connector.settings.endpoint,
    )


def open_noaa_stage2(
    connector: DatasetConnector,
    reference_date: date | str,
    endpoint: str | None = None,
) -> RemoteDataset:
    """Open the stage2 (forecast) NOAA drivers issued on reference_date."""
    reference = reference_date.isoformat() if isinstance(reference_date, date) else str(reference_date)
    return connector.open_dataset(
        f"{NOAA_STAGE2_PATH}/{reference}",
        partitioning=[SITE_COLUMN],
        endpoint=endpoint or connector.settings.endpoint,
    )


def open_targets(connector: DatasetConnector, theme: str = "aquatics") -> RemoteDataset:
    """Open the long-format targets file of a forecasting challenge theme."""
    if theme not in TARGETS_URLS:
        raise ValueError(f"Unknown theme {theme!r}. Must be one of {list(TARGETS_URLS)}")
    return connector.open_dataset(TARGETS_URLS[theme], file_format="csv")


def daily_weather(
    dataset: RemoteDataset,
    sites: Sequence[str],
    variable: str,
    name: str | None = None,
    celsius: bool = False,
    start_date: date | str | None = None,
) -> Query:
    """Daily ensemble-mean of one NOAA variable per site.

    Args:
        dataset: NOAA drivers dataset (stage2 or stage3)
        sites: Sites to keep (pruned at the partition level)
        variable: NOAA variable name, e.g. "air_temperature"
        name: Output column name; defaults to the variable name
        celsius: Convert Kelvin to Celsius before averaging
        start_date: Keep only timestamps on or after this date

    Returns:
        Query yielding (site_id, date, <name>)
    """
    value = "prediction"
    query = (
        Query(dataset)
        .filter(SITE_COLUMN, "in", list(sites))
        .filter("variable", "==", variable)
    )
    if start_date is not None:
        query = query.filter("datetime", ">=", pd.Timestamp(start_date).to_pydatetime())
    if celsius:
        query = query.derive(value, value, "kelvin_to_celsius")
    return (
        query.derive(DATE_COLUMN, "datetime", "date")
        .group_by(SITE_COLUMN, DATE_COLUMN)
        .aggregate(**{name or variable: ("mean", value)})
        .sort(SITE_COLUMN, DATE_COLUMN)
    )


def targets_query(
    dataset: RemoteDataset,
    sites: Sequence[str],
    variables: Sequence[str],
    start_date: date | str | None = None,
) -> Query:
    """Long-format targets for some sites and variables, with a date column.

    Returns:
        Query yielding (site_id, date, variable, observation), daily means
    """
    query = (
        Query(dataset)
        .filter(SITE_COLUMN, "in", list(sites))
        .filter("variable", "in", list(variables))
        .derive(DATE_COLUMN, "datetime", "date")
    )
    if start_date is not None:
        query = query.filter(DATE_COLUMN, ">=", pd.Timestamp(start_date).date())
    return (
        query.group_by(SITE_COLUMN, DATE_COLUMN, "variable")
        .aggregate(observation=("mean", "observation"))
        .sort(SITE_COLUMN, DATE_COLUMN)
    )
