"""Shared pytest fixtures for ecoforecast tests.

Test Tiers:
- unit: Fast tests on in-memory tables, no I/O
- integration: Tests against small partitioned datasets written to tmp_path
- live: Real endpoint tests, slow, requires network

Run live tests with: pytest -m live --run-live
"""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from ecoforecast.config import StorageSettings
from ecoforecast.storage import DatasetConnector

# Offset added to every air temperature of a site, in Kelvin
WEATHER_SITES = {"BART": 0.0, "HARV": 5.0}


def pytest_addoption(parser):
    """Add command line options for test configuration."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run live endpoint tests (slow, requires network)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: fast unit tests using fixtures")
    config.addinivalue_line("markers", "integration: tests with local datasets written to tmp_path")
    config.addinivalue_line("markers", "live: real endpoint tests (slow, requires network)")


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is specified."""
    if config.getoption("--run-live"):
        return

    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


def _weather_sql(offset: float) -> str:
    """Two days of 6-hourly weather, two ensemble members, two variables.

    Daily mean air temperature is 282.0 K on 2022-06-01 and 286.0 K on
    2022-06-02 (plus offset); daily mean precipitation is 9.5 and 33.5.
    """
    return f"""
        SELECT
            TIMESTAMP '2022-06-01 00:00:00' + to_hours(h) AS datetime,
            v.variable AS variable,
            CAST(m AS VARCHAR) AS parameter,
            CAST(
                CASE WHEN v.variable = 'air_temperature'
                     THEN 280.0 + {offset} + h / 6.0 + m
                     ELSE h + m
                END AS DOUBLE
            ) AS prediction
        FROM range(0, 48, 6) AS hours(h),
             range(0, 2) AS members(m),
             (VALUES ('air_temperature'), ('precipitation_flux')) AS v(variable)
    """


@pytest.fixture
def connector():
    """DatasetConnector that leaves the process environment alone."""
    settings = StorageSettings(disable_ec2_metadata=False, clear_default_region=False)
    with DatasetConnector(settings) as conn:
        yield conn


@pytest.fixture
def weather_dir(tmp_path, connector) -> Path:
    """Directory-partitioned weather dataset: ``<root>/<site>/part-0.parquet``."""
    root = tmp_path / "weather"
    for site, offset in WEATHER_SITES.items():
        site_dir = root / site
        site_dir.mkdir(parents=True)
        path = (site_dir / "part-0.parquet").as_posix()
        connector.conn.execute(f"COPY ({_weather_sql(offset)}) TO '{path}' (FORMAT PARQUET)")
    return root


@pytest.fixture
def hive_weather_dir(tmp_path, connector) -> Path:
    """Hive-partitioned weather dataset: ``<root>/site_id=<site>/*.parquet``."""
    root = tmp_path / "hive_weather"
    union = " UNION ALL ".join(
        f"SELECT *, '{site}' AS site_id FROM ({_weather_sql(offset)})"
        for site, offset in WEATHER_SITES.items()
    )
    connector.conn.execute(f"COPY ({union}) TO '{root.as_posix()}' (FORMAT PARQUET, PARTITION_BY (site_id))")
    return root


@pytest.fixture
def weather(connector, weather_dir):
    """Opened directory-partitioned weather dataset."""
    return connector.open_dataset(weather_dir, partitioning=["site_id"])


@pytest.fixture
def targets_csv(tmp_path) -> Path:
    """Long-format targets file (datetime, site_id, variable, observation)."""
    path = tmp_path / "targets.csv"
    pd.DataFrame({
        "datetime": ["2022-06-01", "2022-06-01", "2022-06-02", "2022-06-02", "2022-06-03", "2022-06-01"],
        "site_id": ["BART", "BART", "BART", "BART", "BART", "HARV"],
        "variable": ["temperature", "oxygen", "temperature", "oxygen", "temperature", "temperature"],
        "observation": [10.0, 8.0, 12.0, 7.5, 11.0, 15.0],
    }).to_csv(path, index=False)
    return path


@pytest.fixture
def training_table() -> pd.DataFrame:
    """Synthetic joined table: oxygen = 12 - 0.2 * air_temperature + noise."""
    rng = np.random.default_rng(42)
    n = 60
    air_temperature = rng.uniform(0, 30, n)
    return pd.DataFrame({
        "site_id": "BARC",
        "date": pd.date_range("2022-01-01", periods=n, freq="D"),
        "air_temperature": air_temperature,
        "oxygen": 12.0 - 0.2 * air_temperature + rng.normal(0, 0.1, n),
    })
