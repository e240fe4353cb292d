"""Remote dataset connector backed by DuckDB.

Opens partitioned Parquet/CSV datasets that live in an S3-compatible object
store, behind a plain HTTPS URL, or on local disk. Opening a dataset only
touches metadata: the file listing and the schema stored in file footers.
Row data is read later, when a Query is collected.

Two partition layouts are supported:

- directory: bare values as path segments, e.g. ``.../stage3/parquet/BART/part-0.parquet``
- hive: ``key=value`` segments, e.g. ``.../site_id=BART/data_0.parquet``

In both cases partition columns are derived from the file path, so pruning on
them never needs to open a file.
"""

import itertools
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import duckdb

from ecoforecast.config import StorageSettings, apply_environment
from ecoforecast.exceptions import DatasetConnectionError

logger = logging.getLogger(__name__)

PARTITION_STYLES = ("directory", "hive")
FILE_FORMATS = ("parquet", "csv")

_DEFAULT_FILE_GLOBS = {
    "parquet": "*.parquet",
    "csv": "*.csv*",
}
_SINGLE_FILE_SUFFIXES = (".parquet", ".csv", ".csv.gz", ".csv.zst")
_REMOTE_SCHEMES = ("s3://", "http://", "https://")


def quote_identifier(name: str) -> str:
    """Quote a column or table name for DuckDB SQL."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a string literal for DuckDB SQL."""
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class PartitionLayout:
    """Physical layout of a partitioned dataset.

    Attributes:
        base_uri: Dataset root (no trailing slash), or a single file
        keys: Partition keys in path order
        style: "directory" or "hive"
        file_glob: Pattern matching data files inside the leaf directories
    """

    base_uri: str
    keys: tuple[str, ...] = ()
    style: str = "directory"
    file_glob: str = "*.parquet"

    @property
    def is_single_file(self) -> bool:
        return self.base_uri.endswith(_SINGLE_FILE_SUFFIXES)

    def _segment(self, key: str, value: str) -> str:
        if self.style == "hive":
            return f"{key}={value}"
        return value

    def patterns(self, values: dict[str, Sequence[str]] | None = None) -> list[str]:
        """Glob patterns covering the requested partition values.

        Keys without requested values match every partition.

        Args:
            values: Mapping of partition key to the values to keep

        Returns:
            One glob pattern per combination of requested values
        """
        if self.is_single_file:
            return [self.base_uri]

        values = values or {}
        choices = [
            [self._segment(key, v) for v in values[key]] if key in values else [self._segment(key, "*")]
            for key in self.keys
        ]
        return [
            "/".join([self.base_uri, *segments, self.file_glob])
            for segments in itertools.product(*choices)
        ]

    def parse(self, path: str) -> dict[str, str]:
        """Recover partition values from a data file path."""
        if not self.keys or not path.startswith(self.base_uri + "/"):
            return {}
        segments = path[len(self.base_uri) + 1:].split("/")
        parsed = {}
        for key, segment in zip(self.keys, segments[: len(self.keys)]):
            if self.style == "hive":
                _, _, segment = segment.partition("=")
            parsed[key] = segment
        return parsed

    def column_expression(self, key: str) -> str:
        """SQL expression deriving a partition column from DuckDB's ``filename``."""
        position = self.keys.index(key) + 1
        relative = f"substr(filename, {len(self.base_uri) + 2})"
        segment = f"split_part({relative}, '/', {position})"
        if self.style == "hive":
            segment = f"split_part({segment}, '=', 2)"
        return segment


@dataclass(frozen=True, eq=False)
class RemoteDataset:
    """Read-only handle on a partitioned columnar dataset.

    Holds the cached schema and file listing taken when the dataset was
    opened. Both are safe to reuse across any number of queries.

    Attributes:
        uri: Dataset root URI
        layout: Partition layout used for pruning and column derivation
        file_format: "parquet" or "csv"
        schema: Column name -> DuckDB type, partition columns included
        files: Data files found when the dataset was opened
        derived_keys: Partition keys taken from the path (not stored in files)
    """

    uri: str
    layout: PartitionLayout
    file_format: str
    schema: dict[str, str]
    files: tuple[str, ...]
    derived_keys: tuple[str, ...]
    connector: "DatasetConnector" = field(repr=False)

    @property
    def columns(self) -> list[str]:
        return list(self.schema)

    @property
    def partition_keys(self) -> tuple[str, ...]:
        return self.layout.keys

    def partition_values(self, key: str) -> list[str]:
        """Distinct values of a partition key, from the cached file listing."""
        if key not in self.layout.keys:
            raise KeyError(f"{key!r} is not a partition key of {self.uri}")
        return sorted({self.layout.parse(f).get(key, "") for f in self.files} - {""})

    def source_sql(self, paths: Sequence[str]) -> str:
        """SQL reading the given files (or glob patterns) of this dataset.

        With no paths the statement yields zero rows with this dataset's
        schema, so pruned queries that match no partition still have columns.
        """
        if not paths:
            columns = ", ".join(
                f"CAST(NULL AS {dtype}) AS {quote_identifier(name)}"
                for name, dtype in self.schema.items()
            )
            return f"SELECT {columns} WHERE false"
        return _reader_sql(self.layout, self.file_format, paths, self.derived_keys)

    def __repr__(self) -> str:
        return (
            f"RemoteDataset(uri={self.uri!r}, format={self.file_format}, "
            f"partitioning={list(self.layout.keys)}, columns={len(self.schema)}, "
            f"files={len(self.files)})"
        )


def _reader_sql(
    layout: PartitionLayout,
    file_format: str,
    paths: Sequence[str],
    derived_keys: Sequence[str],
) -> str:
    reader = "read_parquet" if file_format == "parquet" else "read_csv"
    file_list = "[" + ", ".join(quote_literal(p) for p in paths) + "]"
    projections = ["* EXCLUDE (filename)"]
    projections += [
        f"{layout.column_expression(key)} AS {quote_identifier(key)}" for key in derived_keys
    ]
    return (
        f"SELECT {', '.join(projections)} FROM {reader}({file_list}, "
        f"filename = true, union_by_name = true, hive_partitioning = false)"
    )


class DatasetConnector:
    """Owns the DuckDB connection that every dataset and query runs on.

    Example:
        >>> connector = DatasetConnector()
        >>> weather = connector.open_dataset(
        ...     "neon4cast-drivers/noaa/gefs-v12/stage3/parquet",
        ...     partitioning=["site_id"],
        ...     endpoint="data.ecoforecast.org",
        ... )
        >>> weather.partition_values("site_id")[:3]
        ['ABBY', 'BARC', 'BART']
    """

    def __init__(self, settings: StorageSettings | None = None, database: str = ":memory:"):
        """Initialize the connector.

        Args:
            settings: Storage settings. Defaults to StorageSettings.from_env().
            database: DuckDB database path; in-memory by default
        """
        self.settings = settings or StorageSettings.from_env()
        self.database = database
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._httpfs_loaded = False
        self._configured_buckets: set[str] = set()

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        """DuckDB connection (created on first use)."""
        if self._conn is None:
            try:
                self._conn = duckdb.connect(self.database)
                self._conn.execute("SET TimeZone = 'UTC'")
            except duckdb.Error as e:
                raise DatasetConnectionError(f"Could not open DuckDB database {self.database}: {e}") from e
        return self._conn

    def close(self) -> None:
        """Close the DuckDB connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._httpfs_loaded = False
            self._configured_buckets.clear()

    def __enter__(self) -> "DatasetConnector":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _ensure_httpfs(self) -> None:
        if self._httpfs_loaded:
            return
        apply_environment(self.settings)
        try:
            self.conn.execute("INSTALL httpfs")
            self.conn.execute("LOAD httpfs")
        except duckdb.Error as e:
            raise DatasetConnectionError(f"Could not load DuckDB httpfs extension: {e}") from e
        self._httpfs_loaded = True

    def _configure_bucket(self, bucket: str, endpoint: str | None, anonymous: bool) -> None:
        """Create a DuckDB S3 secret scoped to one bucket."""
        key = f"{bucket}@{endpoint}"
        if key in self._configured_buckets:
            return

        options = ["TYPE s3", f"SCOPE {quote_literal('s3://' + bucket)}"]
        if anonymous:
            options.append("PROVIDER config")
        else:
            # Credentials come from the AWS SDK chain (env vars, profiles)
            options.append("PROVIDER credential_chain")
        if endpoint:
            host, use_ssl = self.settings.split_endpoint(endpoint)
            options += [
                f"ENDPOINT {quote_literal(host)}",
                f"URL_STYLE {quote_literal(self.settings.url_style)}",
                f"USE_SSL {'true' if use_ssl else 'false'}",
            ]
        if self.settings.region:
            options.append(f"REGION {quote_literal(self.settings.region)}")

        name = "ecoforecast_" + re.sub(r"\W", "_", key)
        sql = f"CREATE OR REPLACE SECRET {name} ({', '.join(options)})"
        try:
            if not anonymous:
                self.conn.execute("INSTALL aws")
                self.conn.execute("LOAD aws")
            self.conn.execute(sql)
        except duckdb.Error as e:
            raise DatasetConnectionError(f"Could not configure access to s3://{bucket}: {e}") from e

        self._configured_buckets.add(key)
        logger.info(f"Configured {'anonymous ' if anonymous else ''}S3 access to {bucket} via {endpoint or 'AWS'}")

    def _resolve_uri(self, path: str, endpoint: str | None, anonymous: bool) -> str:
        path = str(path)
        if path.startswith("s3://"):
            self._ensure_httpfs()
            self._configure_bucket(path[len("s3://"):].split("/", 1)[0], endpoint, anonymous)
            return path.rstrip("/")
        if path.startswith(_REMOTE_SCHEMES):
            self._ensure_httpfs()
            return path.rstrip("/")
        if endpoint:
            self._ensure_httpfs()
            uri = "s3://" + path.strip("/")
            self._configure_bucket(path.strip("/").split("/", 1)[0], endpoint, anonymous)
            return uri

        local = Path(path).expanduser().resolve()
        if not local.exists():
            raise DatasetConnectionError(f"Dataset path does not exist: {local}")
        return local.as_posix()

    def list_files(self, patterns: Sequence[str]) -> list[str]:
        """Expand glob patterns into a sorted list of data files.

        Plain HTTP(S) URLs cannot be listed and are returned unchanged.
        """
        files: set[str] = set()
        for pattern in patterns:
            if pattern.startswith(("http://", "https://")):
                files.add(pattern)
                continue
            rows = self.conn.execute(f"SELECT file FROM glob({quote_literal(pattern)})").fetchall()
            files.update(row[0] for row in rows)
        return sorted(files)

    def open_dataset(
        self,
        path: str | Path,
        partitioning: Sequence[str] | None = None,
        *,
        endpoint: str | None = None,
        anonymous: bool = True,
        partition_style: str = "directory",
        file_format: str = "parquet",
        file_glob: str | None = None,
    ) -> RemoteDataset:
        """Open a partitioned dataset and cache its metadata.

        Args:
            path: ``bucket/prefix`` (with endpoint), an s3:// or https:// URL,
                or a local directory. May also point at a single file.
            partitioning: Partition keys in path order, e.g. ["site_id"]
            endpoint: S3-compatible endpoint host for ``bucket/prefix`` paths
            anonymous: Send unsigned requests (no credentials)
            partition_style: "directory" (bare values) or "hive" (key=value)
            file_format: "parquet" or "csv"
            file_glob: Pattern for data files in leaf directories

        Returns:
            RemoteDataset with cached schema and file listing

        Raises:
            DatasetConnectionError: If the endpoint is unreachable, the path
                does not exist, or it holds no data files
            ValueError: If partition_style or file_format is unknown
        """
        if partition_style not in PARTITION_STYLES:
            raise ValueError(f"partition_style must be one of {PARTITION_STYLES}, got {partition_style!r}")
        if file_format not in FILE_FORMATS:
            raise ValueError(f"file_format must be one of {FILE_FORMATS}, got {file_format!r}")

        uri = self._resolve_uri(str(path), endpoint, anonymous)
        layout = PartitionLayout(
            base_uri=uri,
            keys=tuple(partitioning or ()),
            style=partition_style,
            file_glob=file_glob or _DEFAULT_FILE_GLOBS[file_format],
        )

        try:
            files = self.list_files(layout.patterns())
        except duckdb.Error as e:
            raise DatasetConnectionError(f"Could not list {uri}: {e}") from e
        if not files:
            raise DatasetConnectionError(f"No {file_format} files found under {uri}")

        try:
            file_columns = self._describe(_reader_sql(layout, file_format, files[:1], ()))
            derived = tuple(k for k in layout.keys if k not in file_columns)
            schema = (
                self._describe(_reader_sql(layout, file_format, files[:1], derived))
                if derived
                else file_columns
            )
        except duckdb.Error as e:
            raise DatasetConnectionError(f"Could not read schema of {files[0]}: {e}") from e

        dataset = RemoteDataset(
            uri=uri,
            layout=layout,
            file_format=file_format,
            schema=schema,
            files=tuple(files),
            derived_keys=derived,
            connector=self,
        )
        logger.info(
            f"Opened {uri}: {len(files)} files, {len(schema)} columns, "
            f"partitioning={list(layout.keys)} ({partition_style})"
        )
        return dataset

    def _describe(self, sql: str) -> dict[str, str]:
        rows = self.conn.execute(f"DESCRIBE {sql}").fetchall()
        return {row[0]: row[1] for row in rows}


def open_dataset(
    path: str | Path,
    partitioning: Sequence[str] | None = None,
    *,
    connector: DatasetConnector | None = None,
    **kwargs,
) -> RemoteDataset:
    """Open a dataset on a new (or the given) DatasetConnector.

    See DatasetConnector.open_dataset for the keyword arguments.
    """
    connector = connector or DatasetConnector()
    return connector.open_dataset(path, partitioning, **kwargs)
