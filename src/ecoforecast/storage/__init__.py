"""Remote columnar dataset access.

- connector: open partitioned datasets on S3-compatible storage (metadata only)
- query: compose filter/derive/group/aggregate/rename/join steps lazily
- materialize: execute a query and pull the result into pandas
"""

from .connector import DatasetConnector, PartitionLayout, RemoteDataset, open_dataset
from .materialize import collect, count_rows, plan_files
from .query import Query, Reducer

__all__ = [
    "DatasetConnector",
    "PartitionLayout",
    "RemoteDataset",
    "open_dataset",
    "Query",
    "Reducer",
    "collect",
    "count_rows",
    "plan_files",
]
