"""Error kinds raised by the ecoforecast pipeline.

Every error surfaces to the caller immediately. Nothing in the pipeline
retries or downgrades them; wrap materialization yourself if you need a
timeout or retry policy.
"""


class EcoforecastError(Exception):
    """Base class for all pipeline errors."""


class DatasetConnectionError(EcoforecastError, ConnectionError):
    """Endpoint unreachable or misconfigured, or the dataset path does not exist."""


class SchemaError(EcoforecastError, ValueError):
    """A referenced column is absent from the dataset or table."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])


class SchemaMismatchError(SchemaError):
    """Forecast input lacks a predictor the model was fitted with."""


class RemoteReadError(EcoforecastError, IOError):
    """Network or storage failure while materializing a query."""


class InsufficientDataError(EcoforecastError, ValueError):
    """Too few usable rows to fit the requested predictors."""


class MissingValueError(EcoforecastError, ValueError):
    """Null values present where the null policy forbids them."""
