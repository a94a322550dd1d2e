from powa_sentinel.reader.base import MetricsSource
from powa_sentinel.reader.environment import DetectOnce, Environment, SchemaGeneration
from powa_sentinel.reader.exceptions import (
    ConnectivityError,
    OptionalFeatureUnavailable,
    QueryError,
    ReaderError,
    SchemaDetectionError,
)
from powa_sentinel.reader.postgres import PowaReader
from powa_sentinel.reader.queries import (
    FlatSchemaQueries,
    HistoryQueries,
    NestedSchemaQueries,
    query_builder_for,
)

__all__ = [
    "ConnectivityError",
    "DetectOnce",
    "Environment",
    "FlatSchemaQueries",
    "HistoryQueries",
    "MetricsSource",
    "NestedSchemaQueries",
    "OptionalFeatureUnavailable",
    "PowaReader",
    "QueryError",
    "ReaderError",
    "SchemaDetectionError",
    "SchemaGeneration",
    "query_builder_for",
]
