"""Base model class for table-driven time-series regression.

Models are fitted from a table plus the names of the response and predictor
columns, and remember the exact ordered predictor set so forecasting can
validate its input before any numeric work.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import pandas as pd

from ecoforecast.exceptions import SchemaError, SchemaMismatchError


class BaseModel(ABC):
    """Abstract base class for all forecast models.

    Attributes:
        model: The underlying estimator (set after fitting).
        response: Response column name from training.
        predictors: Ordered predictor column names from training.
        is_fitted: Whether the model has been fitted.
    """

    def __init__(self):
        """Initialize the base model with default state."""
        self.model: Any | None = None
        self.response: str | None = None
        self.predictors: tuple[str, ...] | None = None
        self.is_fitted: bool = False

    def __repr__(self) -> str:
        """Return string representation of the model."""
        class_name = self.__class__.__name__
        status = "fitted" if self.is_fitted else "not fitted"
        n_predictors = len(self.predictors) if self.predictors else 0
        return f"{class_name}({status}, predictors={n_predictors})"

    # =========================================================================
    # Validation methods
    # =========================================================================

    def _validate_table(self, table: Any, columns: Sequence[str]) -> None:
        """Validate a training table.

        Raises:
            ValueError: If table is not a pandas DataFrame.
            SchemaError: If any of columns is absent.
        """
        if not isinstance(table, pd.DataFrame):
            raise ValueError(f"table must be a pandas DataFrame, got {type(table).__name__}")
        missing = [c for c in columns if c not in table.columns]
        if missing:
            raise SchemaError(f"Column(s) {missing} not in training table", missing=missing)

    def _validate_forecast_input(self, table: Any) -> None:
        """Validate that new data supplies every column the model needs.

        Raises:
            ValueError: If the model is not fitted or table is not a DataFrame.
            SchemaMismatchError: If a required column is absent.
        """
        self._validate_fitted()
        if not isinstance(table, pd.DataFrame):
            raise ValueError(f"new data must be a pandas DataFrame, got {type(table).__name__}")
        required = self.required_columns()
        missing = [c for c in required if c not in table.columns]
        if missing:
            raise SchemaMismatchError(
                f"Forecast input is missing column(s) {missing}; "
                f"the model for {self.response!r} was fitted with {list(required)}",
                missing=missing,
            )

    def _validate_fitted(self) -> None:
        """Validate that the model has been fitted.

        Raises:
            ValueError: If the model has not been fitted.
        """
        if not self.is_fitted:
            raise ValueError("Model is not fitted. Call fit() first.")

    def required_columns(self) -> tuple[str, ...]:
        """Columns new data must supply to be forecast."""
        return tuple(self.predictors or ())

    # =========================================================================
    # Abstract methods to be implemented by subclasses
    # =========================================================================

    @abstractmethod
    def fit(self, table: pd.DataFrame, response: str, predictors: Sequence[str]) -> "BaseModel":
        """Fit the model to a table.

        Args:
            table: Training table.
            response: Name of the response column.
            predictors: Names of the predictor columns, in model order.

        Returns:
            self: The fitted model instance for method chaining.
        """

    @abstractmethod
    def predict(self, table: pd.DataFrame) -> np.ndarray:
        """Predict the response for each row of table.

        Returns:
            Predicted values as a numpy array, one per row.
        """

    @abstractmethod
    def get_params(self) -> dict[str, Any]:
        """Get model parameters."""

    @abstractmethod
    def save(self, path: str | Path) -> None:
        """Save the fitted model to disk."""

    @classmethod
    @abstractmethod
    def load(cls, path: str | Path) -> "BaseModel":
        """Load a model from disk."""
