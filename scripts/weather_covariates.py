#!/usr/bin/env python3
"""Forecast a NEON target from NOAA weather covariates.

Walks the tutorial end to end against the public ecoforecast object store:
daily NEON targets, daily-mean NOAA stage3 weather as covariates, a linear
model of the target on the weather, and a forecast from the latest NOAA
stage2 ensemble.

Run with: python scripts/weather_covariates.py --help
"""

import argparse
import logging
from datetime import date, timedelta
from pathlib import Path
import sys

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ecoforecast.config import StorageSettings
from ecoforecast.drivers import (
    daily_weather,
    open_noaa_stage2,
    open_noaa_stage3,
    open_targets,
    targets_query,
)
from ecoforecast.pipeline import CovariatePipeline
from ecoforecast.storage import DatasetConnector, collect
from ecoforecast.tables import pivot_wider

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Forecast a NEON target from NOAA weather covariates")
    parser.add_argument("--site", action="append", help="NEON site id (repeatable). Default: BARC")
    parser.add_argument("--theme", default="aquatics", help="Targets theme")
    parser.add_argument("--variable", default="temperature", help="Target variable to forecast")
    parser.add_argument(
        "--covariate",
        action="append",
        help="NOAA variable used as a predictor (repeatable). Default: air_temperature",
    )
    parser.add_argument(
        "--join",
        choices=["left", "inner"],
        default="inner",
        help="How covariates are joined onto the targets",
    )
    parser.add_argument("--start-date", default="2021-01-01", help="First date of training data")
    parser.add_argument(
        "--reference-date",
        default=None,
        help="Issue date of the NOAA forecast used as future covariates (default: yesterday)",
    )
    parser.add_argument("--trend", action="store_true", help="Add a linear trend to the model")
    parser.add_argument("--output", type=Path, default=None, help="Write the forecast to this CSV file")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None):
    """Run the weather-covariate forecast."""
    args = parse_args(argv)
    sites = args.site or ["BARC"]
    covariates = args.covariate or ["air_temperature"]
    reference_date = args.reference_date or (date.today() - timedelta(days=1)).isoformat()

    settings = StorageSettings.from_env()
    with DatasetConnector(settings) as connector:
        logger.info(f"Loading {args.theme} targets for {sites}")
        targets = open_targets(connector, args.theme)
        target_long = collect(targets_query(targets, sites, [args.variable], start_date=args.start_date))
        target_table = pivot_wider(
            target_long,
            index=["site_id", "date"],
            names_from="variable",
            values_from="observation",
            columns=[args.variable],
        )

        logger.info(f"Loading NOAA stage3 covariates {covariates}")
        stage3 = open_noaa_stage3(connector)
        covariate_queries = [
            daily_weather(stage3, sites, variable, celsius=variable == "air_temperature", start_date=args.start_date)
            for variable in covariates
        ]

        logger.info(f"Loading NOAA stage2 forecast issued {reference_date}")
        stage2 = open_noaa_stage2(connector, reference_date)
        future = None
        for variable in covariates:
            query = daily_weather(stage2, sites, variable, celsius=variable == "air_temperature")
            future = query if future is None else future.join(query, on=["site_id", "date"], how="inner")

        pipeline = CovariatePipeline(
            target=target_table,
            covariates=covariate_queries,
            response=args.variable,
            predictors=covariates,
            join_how=args.join,
            trend=args.trend,
            level=[80, 95],
        )
        result = pipeline.run(future_covariates=future)

    logger.info(f"Coefficients:\n{result.model.coefficients()}")
    logger.info(f"In-sample: {result.stats['in_sample']}")
    print(result.forecast.to_string(index=False))

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        result.forecast.to_csv(args.output, index=False)
        logger.info(f"Forecast saved to {args.output}")

    return result


if __name__ == "__main__":
    main()
