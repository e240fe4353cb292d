"""Tests for pivot_wider / pivot_longer."""

import pandas as pd
import pytest

from ecoforecast.exceptions import SchemaError
from ecoforecast.tables import pivot_longer, pivot_wider


@pytest.fixture
def long_targets() -> pd.DataFrame:
    """Long-format targets like the published aquatics file."""
    return pd.DataFrame({
        "site_id": ["BARC", "BARC", "BARC", "BARC", "SUGG"],
        "date": ["2022-06-01", "2022-06-01", "2022-06-02", "2022-06-02", "2022-06-01"],
        "variable": ["temperature", "oxygen", "temperature", "chla", "temperature"],
        "observation": [28.0, 7.1, 29.0, 3.3, 30.5],
    })


class TestPivotWider:
    """Tests for pivot_wider."""

    def test_declared_columns(self, long_targets):
        """Output should have the index and exactly the declared columns."""
        wide = pivot_wider(
            long_targets, ["site_id", "date"], "variable", "observation", columns=["temperature", "oxygen"]
        )

        assert list(wide.columns) == ["site_id", "date", "temperature", "oxygen"]
        assert len(wide) == 3
        barc = wide[(wide["site_id"] == "BARC") & (wide["date"] == "2022-06-01")].iloc[0]
        assert barc["temperature"] == 28.0
        assert barc["oxygen"] == 7.1

    def test_undeclared_values_dropped(self, long_targets):
        """Variables not declared should not become columns."""
        wide = pivot_wider(long_targets, ["site_id", "date"], "variable", "observation", columns=["temperature"])
        assert "chla" not in wide.columns

    def test_declared_but_absent(self, long_targets):
        """A declared variable with no data should be an all-null column."""
        wide = pivot_wider(
            long_targets, ["site_id", "date"], "variable", "observation", columns=["temperature", "depth"]
        )
        assert wide["depth"].isna().all()

    def test_nothing_declared_present(self, long_targets):
        """No matching rows should still give the declared schema."""
        wide = pivot_wider(long_targets, ["site_id", "date"], "variable", "observation", columns=["depth"])
        assert list(wide.columns) == ["site_id", "date", "depth"]
        assert len(wide) == 0

    def test_duplicates_aggregated(self, long_targets):
        """Repeated (index, variable) pairs should be combined with aggfunc."""
        doubled = pd.concat([long_targets, long_targets.assign(observation=long_targets["observation"] + 2)])
        wide = pivot_wider(doubled, ["site_id", "date"], "variable", "observation", columns=["temperature"])
        sugg = wide[wide["site_id"] == "SUGG"].iloc[0]
        assert sugg["temperature"] == 31.5

    def test_missing_column(self, long_targets):
        with pytest.raises(SchemaError):
            pivot_wider(long_targets, ["site_id", "day"], "variable", "observation", columns=["temperature"])


class TestPivotLonger:
    """Tests for pivot_longer."""

    def test_gathers_columns(self):
        wide = pd.DataFrame({"site_id": ["A"], "date": ["2022-06-01"], "temperature": [1.0], "oxygen": [2.0]})
        long = pivot_longer(wide, ["site_id", "date"], ["temperature", "oxygen"])

        assert list(long.columns) == ["site_id", "date", "variable", "observation"]
        assert long["variable"].tolist() == ["temperature", "oxygen"]
        assert long["observation"].tolist() == [1.0, 2.0]

    def test_inverse_of_pivot_wider(self, long_targets):
        """Gathering then spreading should recover the declared values."""
        columns = ["temperature", "oxygen"]
        wide = pivot_wider(long_targets, ["site_id", "date"], "variable", "observation", columns=columns)
        again = pivot_wider(
            pivot_longer(wide, ["site_id", "date"], columns),
            ["site_id", "date"], "variable", "observation", columns=columns,
        )
        pd.testing.assert_frame_equal(again, wide)
