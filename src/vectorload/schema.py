import logging
import threading
from typing import Dict, List, Optional, Union

from .exceptions import SchemaError
from .models import CollectionSchema, DataType, FieldSchema

logger = logging.getLogger(__name__)


def simple_schema(collection_name: str, dimension: int,
                  description: str = "Simple collection for load testing") -> CollectionSchema:
    """Auto-id Int64 primary key ``id`` plus a FloatVector field ``vector``."""
    return CollectionSchema(
        name=collection_name,
        description=description,
        fields=(
            FieldSchema(name="id", data_type=DataType.INT64, is_primary_key=True, is_auto_id=True),
            FieldSchema(name="vector", data_type=DataType.FLOAT_VECTOR, dimension=dimension),
        ),
    )


class SchemaRegistry:
    """Holds the schemas of the collections a harness has defined."""

    def __init__(self):
        self._schemas: Dict[str, CollectionSchema] = {}
        self._lock = threading.Lock()

    def register(self, schema: Union[CollectionSchema, str, dict]) -> CollectionSchema:
        if isinstance(schema, str):
            schema = CollectionSchema.from_json(schema)
        elif isinstance(schema, dict):
            schema = CollectionSchema.from_dict(schema)
        if not schema.name:
            raise SchemaError("schema has no collection name")
        with self._lock:
            if schema.name in self._schemas and self._schemas[schema.name] != schema:
                logger.warning(f"Replacing schema for collection {schema.name}")
            self._schemas[schema.name] = schema
        return schema

    def get(self, collection: str) -> Optional[CollectionSchema]:
        with self._lock:
            return self._schemas.get(collection)

    def require(self, collection: str) -> CollectionSchema:
        schema = self.get(collection)
        if schema is None:
            raise SchemaError(f"no schema registered for collection '{collection}'")
        return schema

    def field(self, collection: str, name: str) -> FieldSchema:
        f = self.require(collection).field(name)
        if f is None:
            raise SchemaError(f"collection '{collection}' has no field '{name}'")
        return f

    def drop(self, collection: str) -> None:
        with self._lock:
            self._schemas.pop(collection, None)

    def collections(self) -> List[str]:
        with self._lock:
            return sorted(self._schemas)

    def __contains__(self, collection: str) -> bool:
        return self.get(collection) is not None
