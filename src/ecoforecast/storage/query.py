"""Lazy query builder over a RemoteDataset.

A Query is an immutable value: every builder method returns a new Query with
one more step appended, and nothing touches the network until the query is
handed to ``ecoforecast.storage.materialize.collect``.

Column references are checked against the running output schema as steps are
added, so a typo fails where it was written rather than deep inside DuckDB.

Example:
    >>> daily_temp = (
    ...     Query(weather)
    ...     .filter("site_id", "==", "BART")
    ...     .filter("variable", "==", "air_temperature")
    ...     .derive("date", "datetime", "date")
    ...     .group_by("site_id", "date")
    ...     .aggregate(air_temperature=("mean", "prediction"))
    ... )
    >>> daily_temp.partition_filters()
    {'site_id': ('BART',)}
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence, Union

import pandas as pd

from ecoforecast.exceptions import SchemaError
from ecoforecast.storage.connector import RemoteDataset, quote_identifier

FILTER_OPS = ("==", "!=", "<", "<=", ">", ">=", "in", "not in", "between", "is_null", "not_null")
JOIN_HOWS = ("left", "inner")

# Named column transforms for derive(); {col} is the quoted source column
TRANSFORMS = {
    "identity": "{col}",
    "date": "CAST({col} AS DATE)",
    "hour": "date_trunc('hour', CAST({col} AS TIMESTAMP))",
    "year": "year({col})",
    "month": "month({col})",
    "day_of_year": "dayofyear({col})",
    "kelvin_to_celsius": "({col} - 273.15)",
}

REDUCERS = {
    "mean": "avg",
    "min": "min",
    "max": "max",
    "sum": "sum",
    "count": "count",
}

_SQL_OPS = {"==": "=", "!=": "<>", "<": "<", "<=": "<=", ">": ">", ">=": ">="}


@dataclass(frozen=True)
class Reducer:
    """Named aggregation of one column.

    Attributes:
        function: One of mean, min, max, sum, count
        column: Column to reduce
        skip_nulls: Ignore nulls (True) or let any null null the result (False)
    """

    function: str
    column: str
    skip_nulls: bool = True

    def __post_init__(self):
        if self.function not in REDUCERS:
            raise ValueError(f"Unknown reducer {self.function!r}. Must be one of {list(REDUCERS)}")

    def to_sql(self) -> str:
        col = quote_identifier(self.column)
        func = REDUCERS[self.function]
        if self.skip_nulls:
            return f"{func}({col})"
        if self.function == "count":
            return "count(*)"
        return f"CASE WHEN count(*) = count({col}) THEN {func}({col}) END"


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any = None


@dataclass(frozen=True)
class Derive:
    name: str
    column: str
    transform: str


@dataclass(frozen=True)
class GroupBy:
    keys: tuple[str, ...]


@dataclass(frozen=True)
class Aggregate:
    reducers: tuple[tuple[str, Reducer], ...]


@dataclass(frozen=True)
class Rename:
    mapping: tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class Select:
    columns: tuple[str, ...]


@dataclass(frozen=True, eq=False)
class Join:
    other: Union["Query", pd.DataFrame]
    on: tuple[str, ...]
    how: str


@dataclass(frozen=True)
class Sort:
    columns: tuple[str, ...]
    descending: bool = False


@dataclass(frozen=True)
class Limit:
    n: int


Step = Union[Filter, Derive, GroupBy, Aggregate, Rename, Select, Join, Sort, Limit]

# Steps after which partition values in the path no longer describe the rows
_PRUNING_BARRIERS = (GroupBy, Aggregate, Rename, Join, Limit)


@dataclass
class CompiledQuery:
    """SQL text plus everything needed to execute it."""

    sql: str
    params: list[Any] = field(default_factory=list)
    frames: dict[str, pd.DataFrame] = field(default_factory=dict)
    columns: list[str] = field(default_factory=list)


SourceResolver = Callable[["Query"], str]


def _missing(columns: Sequence[str], available: Sequence[str]) -> list[str]:
    return [c for c in columns if c not in available]


def _require(columns: Sequence[str], available: Sequence[str], context: str) -> None:
    missing = _missing(columns, available)
    if missing:
        raise SchemaError(
            f"{context}: column(s) {missing} not found. Available: {list(available)}",
            missing=missing,
        )


@dataclass(frozen=True, eq=False)
class Query:
    """Immutable, unevaluated sequence of steps over a RemoteDataset.

    Attributes:
        dataset: Dataset the query reads from
        steps: Steps in the order they were added
    """

    dataset: RemoteDataset
    steps: tuple[Step, ...] = ()

    # -------------------------------------------------------------------------
    # Schema tracking
    # -------------------------------------------------------------------------

    @property
    def columns(self) -> list[str]:
        """Output columns of the query as currently composed."""
        columns = self.dataset.columns
        for i, step in enumerate(self.steps):
            following = self.steps[i + 1] if i + 1 < len(self.steps) else None
            if isinstance(step, Derive):
                columns = [c for c in columns if c != step.name] + [step.name]
            elif isinstance(step, GroupBy):
                # Without an aggregate the group keys are the distinct rows
                if not isinstance(following, Aggregate):
                    columns = list(step.keys)
            elif isinstance(step, Aggregate):
                previous = self.steps[i - 1] if i > 0 else None
                keys = list(previous.keys) if isinstance(previous, GroupBy) else []
                columns = keys + [name for name, _ in step.reducers]
            elif isinstance(step, Rename):
                mapping = dict(step.mapping)
                columns = [mapping.get(c, c) for c in columns]
            elif isinstance(step, Select):
                columns = list(step.columns)
            elif isinstance(step, Join):
                right = [c for c in _other_columns(step.other) if c not in step.on]
                columns = columns + [_suffix(c, columns) for c in right]
        return columns

    def _append(self, step: Step) -> "Query":
        return Query(self.dataset, self.steps + (step,))

    # -------------------------------------------------------------------------
    # Builder operations
    # -------------------------------------------------------------------------

    def filter(self, column: str, op: str, value: Any = None) -> "Query":
        """Keep rows matching ``column <op> value``.

        Args:
            column: Column to test (partition columns included)
            op: One of ==, !=, <, <=, >, >=, in, not in, between, is_null, not_null
            value: Scalar, a sequence for in/not in, or a (low, high) pair for between

        Returns:
            New Query with the filter appended
        """
        if op not in FILTER_OPS:
            raise ValueError(f"Unknown filter op {op!r}. Must be one of {FILTER_OPS}")
        _require([column], self.columns, "filter")
        if op in ("in", "not in"):
            if isinstance(value, (set, frozenset)):
                value = sorted(value)
            elif isinstance(value, str) or not isinstance(value, Sequence):
                value = [value]
            value = tuple(value)
        elif op == "between":
            if not isinstance(value, Sequence) or len(value) != 2:
                raise ValueError("between requires a (low, high) pair")
            value = tuple(value)
        elif op in ("is_null", "not_null"):
            value = None
        return self._append(Filter(column, op, value))

    def derive(self, name: str, column: str, transform: str = "identity") -> "Query":
        """Compute a new column (or replace one) from an existing column.

        Args:
            name: Output column name
            column: Source column
            transform: One of TRANSFORMS, e.g. "date" truncates a timestamp to a day
        """
        if transform not in TRANSFORMS:
            raise ValueError(f"Unknown transform {transform!r}. Must be one of {list(TRANSFORMS)}")
        _require([column], self.columns, "derive")
        return self._append(Derive(name, column, transform))

    def group_by(self, *keys: str) -> "Query":
        """Group rows by key columns. Follow with aggregate()."""
        if not keys:
            raise ValueError("group_by requires at least one key")
        _require(keys, self.columns, "group_by")
        return self._append(GroupBy(tuple(keys)))

    def aggregate(self, **reducers: Reducer | tuple) -> "Query":
        """Reduce each group to one row.

        Each keyword names an output column; the value is a Reducer or a
        ``(function, column)`` / ``(function, column, skip_nulls)`` tuple.
        Without a preceding group_by() the whole table is one group.
        """
        if not reducers:
            raise ValueError("aggregate requires at least one reducer")
        parsed = []
        for name, spec in reducers.items():
            reducer = spec if isinstance(spec, Reducer) else Reducer(*spec)
            parsed.append((name, reducer))

        source_columns = self.columns
        if self.steps and isinstance(self.steps[-1], GroupBy):
            source_columns = Query(self.dataset, self.steps[:-1]).columns
        _require([r.column for _, r in parsed], source_columns, "aggregate")
        return self._append(Aggregate(tuple(parsed)))

    def rename(self, mapping: dict[str, str] | None = None, **renames: str) -> "Query":
        """Rename columns, ``rename(old="new")`` or ``rename({"old": "new"})``."""
        mapping = {**(mapping or {}), **renames}
        _require(list(mapping), self.columns, "rename")
        return self._append(Rename(tuple(mapping.items())))

    def select(self, *columns: str) -> "Query":
        """Keep only the given columns, in the given order."""
        _require(columns, self.columns, "select")
        return self._append(Select(tuple(columns)))

    def join(
        self,
        other: Union["Query", pd.DataFrame],
        on: Sequence[str],
        how: str = "left",
    ) -> "Query":
        """Join with another Query or a materialized DataFrame.

        Non-key columns present on both sides get a ``_right`` suffix.

        Args:
            other: Right-hand side
            on: Key columns present on both sides
            how: "left" keeps every row of this query, "inner" only matches
        """
        if how not in JOIN_HOWS:
            raise ValueError(f"how must be one of {JOIN_HOWS}, got {how!r}")
        on = (on,) if isinstance(on, str) else tuple(on)
        _require(on, self.columns, "join (left side)")
        _require(on, _other_columns(other), "join (right side)")
        return self._append(Join(other, on, how))

    def sort(self, *columns: str, descending: bool = False) -> "Query":
        _require(columns, self.columns, "sort")
        return self._append(Sort(tuple(columns), descending))

    def limit(self, n: int) -> "Query":
        if n < 0:
            raise ValueError(f"limit must be non-negative, got {n}")
        return self._append(Limit(int(n)))

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    def partition_filters(self) -> dict[str, tuple[str, ...]]:
        """Partition values the query is restricted to, for file pruning.

        Only ``==`` / ``in`` filters on partition keys that come before any
        group, aggregate, rename, join or limit step qualify. Several filters
        on the same key intersect. Filters with non-string values are left
        to SQL, since DuckDB casts the path segment to the value's type and
        ``str(1)`` does not match a ``01`` directory.
        """
        keys = set(self.dataset.partition_keys)
        restricted: dict[str, set[str]] = {}
        for step in self.steps:
            if isinstance(step, _PRUNING_BARRIERS):
                break
            if isinstance(step, Derive) and step.name in keys:
                keys.discard(step.name)
                continue
            if isinstance(step, Filter) and step.column in keys and step.op in ("==", "in"):
                values = {step.value} if step.op == "==" else set(step.value)
                if not all(isinstance(v, str) for v in values):
                    continue
                if step.column in restricted:
                    restricted[step.column] &= values
                else:
                    restricted[step.column] = values
        return {key: tuple(sorted(values)) for key, values in restricted.items()}

    def compile(self, resolve_source: SourceResolver | None = None) -> CompiledQuery:
        """Render the query (and any joined queries) to DuckDB SQL.

        Args:
            resolve_source: Returns the source SQL for a query's dataset. The
                materializer passes one that lists only the pruned files;
                the default reads the pruned glob patterns directly.
        """
        resolve_source = resolve_source or _pattern_source
        compiled = CompiledQuery(sql=resolve_source(self))
        columns = self.dataset.columns
        steps = list(self.steps)
        i = 0
        while i < len(steps):
            step = steps[i]
            inner = f"({compiled.sql}) AS t{i}"

            if isinstance(step, Filter):
                clause, params = _filter_sql(step)
                compiled.sql = f"SELECT * FROM {inner} WHERE {clause}"
                compiled.params.extend(params)

            elif isinstance(step, Derive):
                expr = TRANSFORMS[step.transform].format(col=quote_identifier(step.column))
                kept = [c for c in columns if c != step.name]
                select = [quote_identifier(c) for c in kept] + [f"{expr} AS {quote_identifier(step.name)}"]
                compiled.sql = f"SELECT {', '.join(select)} FROM {inner}"
                columns = kept + [step.name]

            elif isinstance(step, (GroupBy, Aggregate)):
                keys: list[str] = []
                reducers: tuple[tuple[str, Reducer], ...] = ()
                if isinstance(step, GroupBy):
                    keys = list(step.keys)
                    if i + 1 < len(steps) and isinstance(steps[i + 1], Aggregate):
                        reducers = steps[i + 1].reducers
                        i += 1
                else:
                    reducers = step.reducers
                key_sql = [quote_identifier(k) for k in keys]
                select = key_sql + [f"{r.to_sql()} AS {quote_identifier(name)}" for name, r in reducers]
                group = f" GROUP BY {', '.join(key_sql)}" if key_sql else ""
                compiled.sql = f"SELECT {', '.join(select)} FROM {inner}{group}"
                columns = keys + [name for name, _ in reducers]

            elif isinstance(step, Rename):
                mapping = dict(step.mapping)
                select = [
                    f"{quote_identifier(c)} AS {quote_identifier(mapping[c])}" if c in mapping else quote_identifier(c)
                    for c in columns
                ]
                compiled.sql = f"SELECT {', '.join(select)} FROM {inner}"
                columns = [mapping.get(c, c) for c in columns]

            elif isinstance(step, Select):
                compiled.sql = f"SELECT {', '.join(quote_identifier(c) for c in step.columns)} FROM {inner}"
                columns = list(step.columns)

            elif isinstance(step, Join):
                right_sql, right_columns = _join_right(step.other, compiled, resolve_source)
                right = [c for c in right_columns if c not in step.on]
                select = [f"l.{quote_identifier(c)}" for c in columns]
                select += [f"r.{quote_identifier(c)} AS {quote_identifier(_suffix(c, columns))}" for c in right]
                condition = " AND ".join(f"l.{quote_identifier(k)} = r.{quote_identifier(k)}" for k in step.on)
                compiled.sql = (
                    f"SELECT {', '.join(select)} FROM ({compiled.sql}) AS l "
                    f"{step.how.upper()} JOIN ({right_sql}) AS r ON {condition}"
                )
                columns = columns + [_suffix(c, columns) for c in right]

            elif isinstance(step, Sort):
                direction = " DESC" if step.descending else ""
                order = ", ".join(f"{quote_identifier(c)}{direction}" for c in step.columns)
                compiled.sql = f"SELECT * FROM {inner} ORDER BY {order}"

            elif isinstance(step, Limit):
                compiled.sql = f"SELECT * FROM {inner} LIMIT {step.n}"

            i += 1

        compiled.columns = columns
        return compiled

    def to_sql(self) -> str:
        """SQL text of the query, for inspection. Parameters appear as ``?``."""
        return self.compile().sql

    def __repr__(self) -> str:
        return f"Query(dataset={self.dataset.uri!r}, steps={len(self.steps)})"


def _pattern_source(query: Query) -> str:
    patterns = query.dataset.layout.patterns(query.partition_filters())
    return query.dataset.source_sql(patterns)


def _other_columns(other: Union[Query, pd.DataFrame]) -> list[str]:
    if isinstance(other, Query):
        return other.columns
    if isinstance(other, pd.DataFrame):
        return [str(c) for c in other.columns]
    raise TypeError(f"Can only join a Query or a pandas DataFrame, got {type(other).__name__}")


def _suffix(column: str, existing: Sequence[str]) -> str:
    return f"{column}_right" if column in existing else column


def _join_right(
    other: Union[Query, pd.DataFrame],
    compiled: CompiledQuery,
    resolve_source: SourceResolver,
) -> tuple[str, list[str]]:
    if isinstance(other, Query):
        right = other.compile(resolve_source)
        compiled.params.extend(right.params)
        compiled.frames.update(right.frames)
        return right.sql, right.columns
    name = f"_ecoforecast_frame_{id(other)}"
    compiled.frames[name] = other
    return f"SELECT * FROM {quote_identifier(name)}", [str(c) for c in other.columns]


def _filter_sql(step: Filter) -> tuple[str, list[Any]]:
    col = quote_identifier(step.column)
    if step.op in _SQL_OPS:
        return f"{col} {_SQL_OPS[step.op]} ?", [step.value]
    if step.op in ("in", "not in"):
        if not step.value:
            # Empty IN list: nothing matches, NOT IN matches everything
            return ("false" if step.op == "in" else "true"), []
        placeholders = ", ".join("?" for _ in step.value)
        keyword = "IN" if step.op == "in" else "NOT IN"
        return f"{col} {keyword} ({placeholders})", list(step.value)
    if step.op == "between":
        return f"{col} BETWEEN ? AND ?", list(step.value)
    if step.op == "is_null":
        return f"{col} IS NULL", []
    return f"{col} IS NOT NULL", []
