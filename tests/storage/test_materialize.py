"""Tests for collect(), count_rows() and partition pruning."""

import numpy as np
import pandas as pd
import pytest

from ecoforecast.exceptions import RemoteReadError, SchemaError
from ecoforecast.storage import Query, Reducer, collect, count_rows, plan_files

pytestmark = pytest.mark.integration


def _daily(weather, variable, name=None):
    return (
        Query(weather)
        .filter("variable", "==", variable)
        .derive("date", "datetime", "date")
        .group_by("site_id", "date")
        .aggregate(**{name or variable: ("mean", "prediction")})
        .sort("site_id", "date")
    )


def _day_strings(column: pd.Series) -> list[str]:
    return pd.to_datetime(column).dt.strftime("%Y-%m-%d").tolist()


@pytest.fixture
def sparse_dataset(tmp_path, connector):
    """Unpartitioned dataset with nulls: A = [1, NULL], B = [2], C = [NULL]."""
    path = (tmp_path / "sparse" / "part-0.parquet")
    path.parent.mkdir()
    connector.conn.execute(f"""
        COPY (
            SELECT site, CAST(value AS DOUBLE) AS value
            FROM (VALUES ('A', 1.0), ('A', NULL), ('B', 2.0), ('C', NULL)) AS t(site, value)
        ) TO '{path.as_posix()}' (FORMAT PARQUET)
    """)
    return connector.open_dataset(path.parent)


class TestCollect:
    """Tests for materializing queries."""

    def test_daily_mean(self, weather):
        """Daily ensemble means should match the fixture values."""
        df = collect(_daily(weather, "air_temperature").filter("site_id", "==", "BART").sort("date"))

        assert list(df.columns) == ["site_id", "date", "air_temperature"]
        assert _day_strings(df["date"]) == ["2022-06-01", "2022-06-02"]
        np.testing.assert_allclose(df["air_temperature"], [282.0, 286.0])

    def test_kelvin_to_celsius(self, weather):
        """Derived Celsius values should be Kelvin minus 273.15."""
        query = (
            Query(weather)
            .filter("site_id", "==", "HARV")
            .filter("variable", "==", "air_temperature")
            .derive("prediction", "prediction", "kelvin_to_celsius")
            .derive("date", "datetime", "date")
            .group_by("site_id", "date")
            .aggregate(air_temperature=("mean", "prediction"))
            .sort("date")
        )
        df = collect(query)
        np.testing.assert_allclose(df["air_temperature"], [287.0 - 273.15, 291.0 - 273.15])

    def test_partition_column_values(self, weather):
        """Partition columns should carry the value from the file path."""
        df = collect(Query(weather).select("site_id").group_by("site_id").sort("site_id"))
        assert df["site_id"].tolist() == ["BART", "HARV"]

    def test_hive_matches_directory(self, connector, weather, hive_weather_dir):
        """Both layouts of the same data should give the same result."""
        hive = connector.open_dataset(hive_weather_dir, partitioning=["site_id"], partition_style="hive")
        pd.testing.assert_frame_equal(
            collect(_daily(hive, "precipitation_flux")),
            collect(_daily(weather, "precipitation_flux")),
        )

    def test_sort_descending_and_limit(self, weather):
        query = _daily(weather, "air_temperature").sort("air_temperature", descending=True).limit(1)
        df = collect(query)
        assert len(df) == 1
        assert df["site_id"].iloc[0] == "HARV"
        assert df["air_temperature"].iloc[0] == pytest.approx(291.0)

    def test_between_filter(self, weather):
        query = Query(weather).filter("prediction", "between", (280.0, 282.0))
        df = collect(query)
        assert df["prediction"].between(280.0, 282.0).all()
        assert len(df) > 0

    def test_empty_in_list(self, weather):
        """in [] should match nothing but keep the columns."""
        df = collect(Query(weather).filter("variable", "in", []))
        assert len(df) == 0
        assert list(df.columns) == weather.columns

    def test_count_rows(self, weather):
        """count_rows should agree with the collected row count."""
        query = Query(weather).filter("variable", "==", "air_temperature")
        assert count_rows(query) == 32
        assert count_rows(query) == len(collect(query))

    def test_does_not_consume_query(self, weather):
        """A query can be collected more than once with the same result."""
        query = _daily(weather, "air_temperature")
        pd.testing.assert_frame_equal(collect(query), collect(query))


class TestPruning:
    """Partition pruning should limit files without changing results."""

    def test_plan_files_restricted(self, weather):
        """A site filter should keep only that site's files."""
        files = plan_files(Query(weather).filter("site_id", "==", "BART"))
        assert len(files) == 1
        assert "/BART/" in files[0]

    def test_filter_matching_everything(self, weather):
        """A partition filter matching all rows returns the unfiltered row count."""
        everything = Query(weather).filter("site_id", "in", weather.partition_values("site_id"))
        assert count_rows(everything) == count_rows(Query(weather)) == 64

    def test_plan_files_unrestricted(self, weather):
        """Without partition filters every file is read."""
        files = plan_files(Query(weather).filter("variable", "==", "air_temperature"))
        assert files == list(weather.files)

    def test_pruning_is_result_neutral(self, weather):
        """Filtering a partition key before or after a barrier should agree."""
        pruned = (
            Query(weather)
            .filter("site_id", "==", "HARV")
            .filter("variable", "==", "air_temperature")
            .derive("date", "datetime", "date")
            .group_by("site_id", "date")
            .aggregate(air_temperature=("mean", "prediction"))
            .sort("date")
        )
        unpruned = _daily(weather, "air_temperature").filter("site_id", "==", "HARV").sort("date")

        assert plan_files(pruned) != plan_files(unpruned)
        pd.testing.assert_frame_equal(collect(pruned), collect(unpruned))

    def test_no_matching_partition(self, weather):
        """A filter matching no partition should give a typed empty table."""
        query = _daily(weather, "air_temperature").filter("site_id", "==", "NOPE")
        pruned = Query(weather).filter("site_id", "==", "NOPE")

        assert plan_files(pruned) == []
        assert collect(pruned).columns.tolist() == weather.columns
        assert len(collect(query)) == 0

    def test_typed_value_not_pruned_as_string(self, tmp_path, connector):
        """An integer filter on a zero-padded directory should still match it."""
        root = tmp_path / "monthly"
        for month in ("01", "02"):
            path = root / month / "part-0.parquet"
            path.parent.mkdir(parents=True)
            connector.conn.execute(
                f"COPY (SELECT * FROM range(2) AS t(i)) TO '{path.as_posix()}' (FORMAT PARQUET)"
            )
        monthly = connector.open_dataset(root, partitioning=["month"])

        pushed = Query(monthly).filter("month", "==", 1)
        after_barrier = Query(monthly).rename(i="row").filter("month", "==", 1)

        assert plan_files(pushed) == list(monthly.files)
        assert count_rows(pushed) == count_rows(after_barrier) == 2


class TestReducers:
    """Null handling in aggregations."""

    def test_skip_nulls(self, sparse_dataset):
        query = Query(sparse_dataset).group_by("site").aggregate(value=("mean", "value")).sort("site")
        df = collect(query)
        assert df["value"].iloc[:2].tolist() == [1.0, 2.0]

    def test_all_null_group(self, sparse_dataset):
        """An all-null group with null skipping reduces to null, not an error."""
        query = Query(sparse_dataset).filter("site", "==", "C").group_by("site").aggregate(value=("mean", "value"))
        df = collect(query)
        assert len(df) == 1
        assert pd.isna(df["value"].iloc[0])

    def test_propagate_nulls(self, sparse_dataset):
        """With skip_nulls=False a null input nulls the group result."""
        query = (
            Query(sparse_dataset)
            .group_by("site")
            .aggregate(value=Reducer("mean", "value", skip_nulls=False))
            .sort("site")
        )
        df = collect(query)
        assert np.isnan(df["value"].iloc[0])
        assert df["value"].iloc[1] == 2.0

    def test_single_row_group(self, sparse_dataset):
        """A group of one row reduces to that row's value."""
        query = (
            Query(sparse_dataset)
            .filter("site", "==", "B")
            .group_by("site")
            .aggregate(lo=("min", "value"), hi=("max", "value"), n=("count", "value"))
        )
        row = collect(query).iloc[0]
        assert row["lo"] == row["hi"] == 2.0
        assert row["n"] == 1

    def test_aggregate_without_group(self, sparse_dataset):
        """aggregate() alone should reduce the whole table to one row."""
        df = collect(Query(sparse_dataset).aggregate(total=("sum", "value")))
        assert df["total"].tolist() == [3.0]


class TestJoins:
    """Joins inside a query."""

    def test_join_queries(self, weather):
        """Two daily covariates should join on (site_id, date)."""
        query = _daily(weather, "air_temperature").join(
            _daily(weather, "precipitation_flux"), on=["site_id", "date"], how="inner"
        ).sort("site_id", "date")
        df = collect(query)

        assert list(df.columns) == ["site_id", "date", "air_temperature", "precipitation_flux"]
        assert len(df) == 4
        np.testing.assert_allclose(df["precipitation_flux"], [9.5, 33.5, 9.5, 33.5])

    def test_join_dataframe(self, weather, connector):
        """A materialized DataFrame can be joined and is unregistered afterwards."""
        sites = pd.DataFrame({"site_id": ["BART"], "elevation": [270.0]})
        query = _daily(weather, "air_temperature").join(sites, on=["site_id"], how="left").sort("site_id", "date")
        df = collect(query)

        assert df.loc[df["site_id"] == "BART", "elevation"].tolist() == [270.0, 270.0]
        assert df.loc[df["site_id"] == "HARV", "elevation"].isna().all()
        tables = connector.conn.execute("SHOW TABLES").fetchdf()
        assert not tables["name"].str.startswith("_ecoforecast_frame_").any()


class TestErrors:
    """Storage and schema failures surface as typed errors."""

    def test_schema_drift(self, connector, weather, weather_dir):
        """A column gone from the files since open should raise SchemaError."""
        for site in ("BART", "HARV"):
            path = (weather_dir / site / "part-0.parquet").as_posix()
            connector.conn.execute(f"COPY (SELECT 1 AS other) TO '{path}' (FORMAT PARQUET)")

        with pytest.raises(SchemaError):
            collect(Query(weather).select("prediction"))

    def test_missing_file(self, weather, weather_dir):
        """A file removed since open should raise RemoteReadError."""
        (weather_dir / "HARV" / "part-0.parquet").unlink()
        with pytest.raises(RemoteReadError):
            collect(Query(weather))
