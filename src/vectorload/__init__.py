from .client import Client, connect
from .columns import Column, encode_batch
from .decoder import decode
from .exceptions import (
    VectorLoadError,
    SchemaError,
    UnsupportedTypeError,
    ValidationError,
    InconsistentVectorDimension,
    CountMismatchError,
    DecodeError,
    TimedOut,
    OperationCancelled,
    StoreConnectionError,
    IndexConfigError,
)
from .index import IndexConfig, IndexType, MetricType
from .insert import InsertCoordinator
from .metrics import MetricsSink
from .models import CollectionSchema, DataType, FieldSchema, SearchHit, SearchParams, SearchResults, WriteAck
from .recall import recall_at_k
from .schema import SchemaRegistry
from .search import SearchCoordinator
from .store import FlightStore, VectorStore

__all__ = [
    "Client",
    "connect",
    "Column",
    "encode_batch",
    "decode",
    "VectorLoadError",
    "SchemaError",
    "UnsupportedTypeError",
    "ValidationError",
    "InconsistentVectorDimension",
    "CountMismatchError",
    "DecodeError",
    "TimedOut",
    "OperationCancelled",
    "StoreConnectionError",
    "IndexConfigError",
    "IndexConfig",
    "IndexType",
    "MetricType",
    "InsertCoordinator",
    "MetricsSink",
    "CollectionSchema",
    "DataType",
    "FieldSchema",
    "SearchHit",
    "SearchParams",
    "SearchResults",
    "WriteAck",
    "recall_at_k",
    "SchemaRegistry",
    "SearchCoordinator",
    "FlightStore",
    "VectorStore",
]
