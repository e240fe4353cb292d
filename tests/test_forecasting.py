"""Tests for forecast() and forecast_by_group()."""

import numpy as np
import pandas as pd
import pytest

from ecoforecast.exceptions import SchemaError, SchemaMismatchError
from ecoforecast.forecasting import forecast, forecast_by_group
from ecoforecast.models import LinearTimeSeriesModel, fit_by_group


@pytest.fixture
def fitted_model(training_table):
    return LinearTimeSeriesModel().fit(training_table, "oxygen", ["air_temperature"])


@pytest.fixture
def future_weather() -> pd.DataFrame:
    """Three forecast days of daily air temperature."""
    return pd.DataFrame({
        "site_id": "BARC",
        "date": pd.date_range("2022-03-02", periods=3, freq="D"),
        "air_temperature": [10.0, np.nan, 20.0],
        "parameter": [0, 0, 0],
    })


class TestForecastInputColumns:
    """Forecast input must supply every column the model requires."""

    def test_training_columns_pass(self, fitted_model, training_table):
        """Forecasting on exactly the training predictors should not raise."""
        result = forecast(fitted_model, training_table[["air_temperature"]])
        assert len(result) == len(training_table)

    def test_missing_predictor(self, fitted_model, future_weather):
        with pytest.raises(SchemaMismatchError) as excinfo:
            forecast(fitted_model, future_weather.drop(columns="air_temperature"))
        assert excinfo.value.missing == ["air_temperature"]
        assert "'oxygen'" in str(excinfo.value)

    def test_unfitted_model(self, future_weather):
        with pytest.raises(ValueError, match="Model is not fitted"):
            forecast(LinearTimeSeriesModel(), future_weather)

    def test_trend_model_requires_date(self, training_table):
        """A trend model counts the date column among its required columns."""
        model = LinearTimeSeriesModel(trend=True).fit(training_table, "oxygen", ["air_temperature"])
        assert model.required_columns() == ("air_temperature", "date")

        result = forecast(model, training_table[list(model.required_columns())])
        assert len(result) == len(training_table)

        with pytest.raises(SchemaMismatchError) as excinfo:
            forecast(model, training_table[["air_temperature"]])
        assert excinfo.value.missing == ["date"]


class TestForecast:
    """Tests for forecast."""

    def test_one_row_per_input_row(self, fitted_model, future_weather):
        result = forecast(fitted_model, future_weather)

        assert list(result.columns) == ["site_id", "date", "variable", "prediction"]
        assert len(result) == len(future_weather)
        assert (result["variable"] == "oxygen").all()
        pd.testing.assert_series_equal(result["date"], future_weather["date"])

    def test_null_covariate_keeps_alignment(self, fitted_model, future_weather):
        """A null covariate should give a null prediction in place."""
        result = forecast(fitted_model, future_weather)
        assert np.isnan(result["prediction"].iloc[1])
        assert result["prediction"].iloc[0] > result["prediction"].iloc[2]

    def test_prediction_intervals(self, fitted_model, future_weather):
        result = forecast(fitted_model, future_weather, level=[80, 95])

        assert {"lower_80", "upper_80", "lower_95", "upper_95"} <= set(result.columns)
        row = result.iloc[0]
        assert row["lower_95"] < row["lower_80"] < row["prediction"] < row["upper_80"] < row["upper_95"]

    def test_keep_columns(self, fitted_model, future_weather):
        result = forecast(fitted_model, future_weather, keep_columns=["parameter"])
        assert "parameter" in result.columns

    def test_keep_unknown_column(self, fitted_model, future_weather):
        with pytest.raises(SchemaError):
            forecast(fitted_model, future_weather, keep_columns=["ensemble"])

    def test_missing_predictor(self, fitted_model, future_weather):
        """A missing predictor should raise before any numeric work."""
        with pytest.raises(SchemaMismatchError):
            forecast(fitted_model, future_weather.rename(columns={"air_temperature": "air_temp"}))

    def test_unfitted(self, future_weather):
        with pytest.raises(ValueError, match="not fitted"):
            forecast(LinearTimeSeriesModel(), future_weather)

    def test_input_without_keys(self, fitted_model):
        result = forecast(fitted_model, pd.DataFrame({"air_temperature": [15.0]}))
        assert list(result.columns) == ["variable", "prediction"]


class TestForecastByGroup:
    """Tests for forecast_by_group."""

    def test_per_site_models(self, training_table, future_weather):
        other = training_table.assign(site_id="SUGG", oxygen=training_table["oxygen"] + 5.0)
        models = fit_by_group(pd.concat([training_table, other]), "site_id", "oxygen", ["air_temperature"])
        future = pd.concat([future_weather, future_weather.assign(site_id="SUGG")], ignore_index=True)

        result = forecast_by_group(models, future)

        assert result["site_id"].tolist() == ["BARC"] * 3 + ["SUGG"] * 3
        np.testing.assert_allclose(
            result["prediction"].iloc[3:].to_numpy() - result["prediction"].iloc[:3].to_numpy(),
            [5.0, np.nan, 5.0],
            atol=1e-6,
        )

    def test_site_without_model_skipped(self, fitted_model, future_weather):
        future = pd.concat([future_weather, future_weather.assign(site_id="SUGG")], ignore_index=True)
        result = forecast_by_group({"BARC": fitted_model}, future)
        assert set(result["site_id"]) == {"BARC"}

    def test_no_models(self, future_weather):
        result = forecast_by_group({}, future_weather)
        assert result.empty

    def test_missing_group_column(self, fitted_model, future_weather):
        with pytest.raises(SchemaMismatchError):
            forecast_by_group({"BARC": fitted_model}, future_weather, group_column="site")
