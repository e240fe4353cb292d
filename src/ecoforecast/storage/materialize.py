"""Materialize a Query into an in-memory pandas DataFrame.

Materialization is the only step that reads row data. It lists the files the
query's partition filters leave in play, runs the compiled SQL on the
dataset's DuckDB connection and returns the whole result at once.

This is a blocking call with no timeout or retry of its own.
"""

import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

import duckdb
import pandas as pd

from ecoforecast.exceptions import RemoteReadError, SchemaError
from ecoforecast.storage.query import CompiledQuery, Query

logger = logging.getLogger(__name__)

T = TypeVar("T")


def plan_files(query: Query) -> list[str]:
    """List the data files a query would read after partition pruning.

    Args:
        query: Query to plan

    Returns:
        Sorted file paths; empty when the partition filters match nothing

    Raises:
        RemoteReadError: If listing the remote prefix fails
    """
    dataset = query.dataset
    filters = query.partition_filters()
    if not filters:
        return list(dataset.files)
    patterns = dataset.layout.patterns(filters)
    try:
        return dataset.connector.list_files(patterns)
    except duckdb.Error as e:
        raise RemoteReadError(f"Could not list partitions of {dataset.uri}: {e}") from e


def _resolve_pruned(query: Query) -> str:
    files = plan_files(query)
    if query.partition_filters():
        logger.debug(
            f"Pruned {query.dataset.uri} to {len(files)}/{len(query.dataset.files)} files "
            f"for {query.partition_filters()}"
        )
    return query.dataset.source_sql(files)


@contextmanager
def _registered(conn: duckdb.DuckDBPyConnection, compiled: CompiledQuery) -> Iterator[None]:
    for name, frame in compiled.frames.items():
        conn.register(name, frame)
    try:
        yield
    finally:
        for name in compiled.frames:
            conn.unregister(name)


def _run(query: Query, fetch: Callable[[duckdb.DuckDBPyConnection, CompiledQuery], T]) -> T:
    """Compile with pruning, register joined frames and translate DuckDB errors."""
    conn = query.dataset.connector.conn
    compiled = query.compile(_resolve_pruned)
    with _registered(conn, compiled):
        try:
            return fetch(conn, compiled)
        except duckdb.BinderException as e:
            raise SchemaError(f"Query on {query.dataset.uri} references a missing column: {e}") from e
        except (duckdb.IOException, duckdb.HTTPException) as e:
            raise RemoteReadError(f"Failed reading {query.dataset.uri}: {e}") from e


def collect(query: Query) -> pd.DataFrame:
    """Execute a query and return the full result.

    Args:
        query: Query to materialize

    Returns:
        DataFrame with the query's output columns, in order

    Raises:
        RemoteReadError: On network or storage failure
        SchemaError: If a referenced column is absent from the data files

    Example:
        >>> table = collect(Query(weather).filter("site_id", "==", "BART"))
    """
    start_time = time.time()
    df = _run(query, lambda conn, compiled: conn.execute(compiled.sql, compiled.params).fetchdf())
    duration_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"Materialized {len(df)} rows x {len(df.columns)} columns from {query.dataset.uri} in {duration_ms}ms"
    )
    return df


def count_rows(query: Query) -> int:
    """Number of rows a query would return, without fetching them."""
    row = _run(
        query,
        lambda conn, compiled: conn.execute(
            f"SELECT count(*) FROM ({compiled.sql}) AS counted", compiled.params
        ).fetchone(),
    )
    return int(row[0])
