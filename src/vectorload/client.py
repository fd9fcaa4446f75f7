import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .columns import BatchRecord
from .exceptions import SchemaError, StoreConnectionError
from .index import IndexConfig, simple_index
from .insert import InsertCoordinator
from .metrics import CONNECTIONS, ERRORS, MetricsSink
from .models import CollectionSchema, SearchParams, SearchResults
from .recall import GroundTruth
from .schema import SchemaRegistry, simple_schema
from .search import SearchCoordinator
from .store import FlightStore, VectorStore
from .tasks import CancelToken, Deadline, wait_for

logger = logging.getLogger(__name__)


def connect(uri: str, metrics: MetricsSink, registry: Optional[SchemaRegistry] = None,
            api_key: Optional[str] = None, timeout: Optional[float] = None) -> "Client":
    """Open a Flight store connection and wrap it in a Client."""
    try:
        store = FlightStore(uri, api_key=api_key, timeout=timeout).connect()
    except StoreConnectionError:
        metrics.emit(ERRORS, 1, {"operation": "connect", "address": uri, "status": "error"})
        raise
    return Client(store, metrics, registry=registry, address=uri)


class Client:
    """Load-test facing API over one store connection.

    Each virtual user owns one Client. The schema registry and metrics sink may be
    shared between clients.
    """

    def __init__(self, store: VectorStore, metrics: MetricsSink, registry: Optional[SchemaRegistry] = None,
                 address: str = ""):
        self.store = store
        self.metrics = metrics
        self.registry = registry if registry is not None else SchemaRegistry()
        self.address = address
        self.metrics.emit(CONNECTIONS, 1, {"address": address})

    def close(self) -> None:
        """Close the store connection. Call at the end of each virtual user."""
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # =========================================================================
    # Collection lifecycle
    # =========================================================================

    def create_collection(self, schema: Union[CollectionSchema, str, Dict[str, Any]]) -> CollectionSchema:
        """Create a collection from a schema model, dict, or JSON definition."""
        schema = self.registry.register(schema)
        self.store.create_collection(schema)
        logger.info(f"Created collection {schema.name} with fields {schema.field_names}")
        return schema

    def create_collection_simple(self, collection: str, dimension: int) -> CollectionSchema:
        return self.create_collection(simple_schema(collection, dimension))

    def drop_collection(self, collection: str) -> None:
        self.store.drop_collection(collection)
        self.registry.drop(collection)

    def has_collection(self, collection: str) -> bool:
        return self.store.has_collection(collection)

    def load_collection(self, collection: str, timeout: Optional[float] = None,
                        cancel: Optional[CancelToken] = None) -> None:
        task = self.store.load_collection(collection)
        wait_for(task, Deadline(timeout), cancel, what=f"loading collection {collection}")
        logger.info(f"Loaded collection {collection}")

    def release_collection(self, collection: str) -> None:
        self.store.release_collection(collection)

    def create_index(self, collection: str, field_name: str,
                     index_params: Union[IndexConfig, Dict[str, Any], None] = None,
                     timeout: Optional[float] = None, cancel: Optional[CancelToken] = None) -> IndexConfig:
        """Build an index on a vector field and wait for the build to finish."""
        index = index_params if isinstance(index_params, IndexConfig) else IndexConfig.from_dict(index_params)
        schema = self.registry.get(collection)
        if schema is not None:
            field = schema.field(field_name)
            if field is None:
                raise SchemaError(f"collection '{collection}' has no field '{field_name}'")
            if not field.data_type.is_vector:
                raise SchemaError(f"field '{field_name}' is not a vector field")
        task = self.store.create_index(collection, field_name, index)
        wait_for(task, Deadline(timeout), cancel, what=f"building {index.index_type.value} index on {collection}.{field_name}")
        logger.info(f"Built {index.index_type.value} index on {collection}.{field_name}")
        return index

    def create_index_simple(self, collection: str, field_name: str, timeout: Optional[float] = None) -> IndexConfig:
        return self.create_index(collection, field_name, simple_index(), timeout=timeout)

    # =========================================================================
    # Data operations
    # =========================================================================

    def _id_field(self, collection: str) -> str:
        schema = self.registry.get(collection)
        if schema is not None and schema.primary_field is not None:
            return schema.primary_field.name
        return "id"

    def insert(self, collection: str, record: BatchRecord) -> List[int]:
        """Encode a batch record and insert it; returns the inserted ids."""
        coordinator = InsertCoordinator(self.store, self.metrics, collection, self.registry.get(collection))
        return coordinator.insert(record)

    def insert_vectors(self, collection: str, vectors: Sequence[Sequence[float]],
                       field_name: str = "vector") -> List[int]:
        return self.insert(collection, {field_name: vectors})

    def search(self, collection: str, vectors: Sequence[Sequence[float]], top_k: int,
               params: Union[SearchParams, Dict[str, Any], None] = None) -> SearchResults:
        if not isinstance(params, SearchParams):
            params = SearchParams.from_dict(params)
        coordinator = SearchCoordinator(self.store, self.metrics, collection, id_field=self._id_field(collection))
        return coordinator.search(vectors, top_k, params)

    def search_simple(self, collection: str, vectors: Sequence[Sequence[float]], top_k: int) -> SearchResults:
        return self.search(collection, vectors, top_k, SearchParams(vector_field="vector", output_fields=["id"]))

    def search_with_recall(self, collection: str, vectors: Sequence[Sequence[float]], top_k: int,
                           params: Union[SearchParams, Dict[str, Any], None] = None,
                           ground_truth: Optional[GroundTruth] = None) -> Tuple[SearchResults, Optional[float]]:
        if not isinstance(params, SearchParams):
            params = SearchParams.from_dict(params)
        coordinator = SearchCoordinator(self.store, self.metrics, collection, id_field=self._id_field(collection))
        return coordinator.search_with_recall(vectors, top_k, params, ground_truth)
