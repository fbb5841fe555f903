"""Generic reactive collection store."""

from .backends import Backend, ChangeEvent, ChangeType, SQLiteBackend, Subscription, create_backend
from .collection import BulkResult, CollectionStore, DeleteOutcome, StoreState
from .query import CollectionQuery, FilterSpec, Operator, build_query, parse_filter_expression

__all__ = [
    "Backend",
    "ChangeEvent",
    "ChangeType",
    "SQLiteBackend",
    "Subscription",
    "create_backend",
    "BulkResult",
    "CollectionStore",
    "DeleteOutcome",
    "StoreState",
    "CollectionQuery",
    "FilterSpec",
    "Operator",
    "build_query",
    "parse_filter_expression",
]
