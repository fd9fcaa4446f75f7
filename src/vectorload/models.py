import json
from collections.abc import Sequence
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import pandas as pd
import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .exceptions import SchemaError


class DataType(str, Enum):
    """Logical field types a collection schema can declare."""
    INT8 = "Int8"
    INT16 = "Int16"
    INT32 = "Int32"
    INT64 = "Int64"
    BOOL = "Bool"
    FLOAT = "Float"
    DOUBLE = "Double"
    STRING = "String"
    VARCHAR = "VarChar"
    JSON = "JSON"
    FLOAT_VECTOR = "FloatVector"
    BINARY_VECTOR = "BinaryVector"
    FLOAT16_VECTOR = "Float16Vector"
    BFLOAT16_VECTOR = "BFloat16Vector"
    SPARSE_FLOAT_VECTOR = "SparseFloatVector"

    @property
    def is_vector(self) -> bool:
        return self in VECTOR_TYPES

    @property
    def is_dense_vector(self) -> bool:
        return self in DENSE_VECTOR_TYPES

    @property
    def is_integer(self) -> bool:
        return self in INTEGER_TYPES


INTEGER_TYPES = frozenset({DataType.INT8, DataType.INT16, DataType.INT32, DataType.INT64})
DENSE_VECTOR_TYPES = frozenset({
    DataType.FLOAT_VECTOR,
    DataType.BINARY_VECTOR,
    DataType.FLOAT16_VECTOR,
    DataType.BFLOAT16_VECTOR,
})
VECTOR_TYPES = DENSE_VECTOR_TYPES | {DataType.SPARSE_FLOAT_VECTOR}


class FieldSchema(BaseModel):
    """Describes one field of a collection."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    data_type: DataType = Field(alias="dataType")
    is_primary_key: bool = Field(default=False, alias="isPrimaryKey")
    is_auto_id: bool = Field(default=False, alias="isAutoID")
    dimension: Optional[int] = None
    max_length: Optional[int] = Field(default=None, alias="maxLength")
    description: str = ""

    @field_validator("data_type", mode="before")
    @classmethod
    def _require_data_type(cls, v):
        if v is None or v == "":
            raise ValueError("field has empty dataType")
        return v

    @model_validator(mode="after")
    def _check_constraints(self) -> "FieldSchema":
        if self.data_type.is_dense_vector:
            if not self.dimension or self.dimension <= 0:
                raise ValueError(f"vector field '{self.name}' requires a positive dimension")
            if self.data_type == DataType.BINARY_VECTOR and self.dimension % 8 != 0:
                raise ValueError(f"binary vector field '{self.name}' dimension must be a multiple of 8")
        if self.data_type == DataType.VARCHAR and (not self.max_length or self.max_length <= 0):
            raise ValueError(f"VarChar field '{self.name}' requires a positive maxLength")
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldSchema":
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as e:
            raise SchemaError(f"invalid field {data.get('name', '?')!r}: {e}") from e


class CollectionSchema(BaseModel):
    """Ordered set of field descriptors plus collection name and description."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = ""
    description: str = ""
    fields: Tuple[FieldSchema, ...] = ()

    @model_validator(mode="after")
    def _check_fields(self) -> "CollectionSchema":
        seen = set()
        for f in self.fields:
            if f.name in seen:
                raise ValueError(f"duplicate field name '{f.name}'")
            seen.add(f.name)
        primaries = [f.name for f in self.fields if f.is_primary_key]
        if len(primaries) > 1:
            raise ValueError(f"more than one primary key field: {primaries}")
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionSchema":
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as e:
            raise SchemaError(f"invalid schema: {e}") from e

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "CollectionSchema":
        """Parse a schema from its JSON definition.

        Example:
            >>> CollectionSchema.from_json('{"name": "c", "fields": ['
            ...     '{"name": "id", "dataType": "Int64", "isPrimaryKey": true}]}')
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SchemaError(f"failed to parse schema JSON: {e}") from e
        if not isinstance(data, dict):
            raise SchemaError("schema JSON must be an object")
        return cls.from_dict(data)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def field(self, name: str) -> Optional[FieldSchema]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def primary_field(self) -> Optional[FieldSchema]:
        for f in self.fields:
            if f.is_primary_key:
                return f
        return None

    @property
    def vector_fields(self) -> List[FieldSchema]:
        return [f for f in self.fields if f.data_type.is_vector]


class SearchParams(BaseModel):
    """Parameters of a vector search call."""
    model_config = ConfigDict(populate_by_name=True)

    vector_field: str = Field(default="vector", alias="vectorField")
    output_fields: List[str] = Field(default_factory=lambda: ["id"], alias="outputFields")
    expr: Optional[str] = None
    # Reserved; passed through to the store untouched.
    search_params: Dict[str, Any] = Field(default_factory=dict, alias="searchParams")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchParams":
        if data is None:
            return cls()
        return cls.model_validate(data)


class SearchHit(BaseModel):
    """A single retrieved item."""
    id: int
    score: float
    fields: Dict[str, Any] = Field(default_factory=dict)


class WriteAck(BaseModel):
    """Store acknowledgement of a column write."""
    insert_count: int
    ids: List[int] = Field(default_factory=list)


class SearchResults(Sequence):
    """Flat, rank-ordered hits of a multi-query search with explicit query boundaries.

    Behaves as a read-only sequence of SearchHit over all queries in submission
    order; ``offsets[i]:offsets[i + 1]`` delimits the hits of query ``i``.
    """

    def __init__(self, hits: List[SearchHit], offsets: List[int]):
        if not offsets or offsets[0] != 0 or offsets[-1] != len(hits):
            raise ValueError("offsets must start at 0 and end at len(hits)")
        self._hits = list(hits)
        self._offsets = list(offsets)

    @classmethod
    def from_queries(cls, per_query: List[List[SearchHit]]) -> "SearchResults":
        hits = []
        offsets = [0]
        for query_hits in per_query:
            hits.extend(query_hits)
            offsets.append(len(hits))
        return cls(hits, offsets)

    def __getitem__(self, index):
        return self._hits[index]

    def __len__(self) -> int:
        return len(self._hits)

    def __iter__(self) -> Iterator[SearchHit]:
        return iter(self._hits)

    def __repr__(self) -> str:
        return f"SearchResults(num_queries={self.num_queries}, hits={len(self._hits)})"

    @property
    def offsets(self) -> List[int]:
        return list(self._offsets)

    @property
    def num_queries(self) -> int:
        return len(self._offsets) - 1

    def query_hits(self, query: int) -> List[SearchHit]:
        return self._hits[self._offsets[query]:self._offsets[query + 1]]

    def per_query(self) -> List[List[SearchHit]]:
        return [self.query_hits(i) for i in range(self.num_queries)]

    @property
    def ids(self) -> List[int]:
        return [h.id for h in self._hits]

    def to_pandas(self) -> pd.DataFrame:
        """One row per hit with ``query``, ``rank``, ``id``, ``score`` and output fields."""
        rows = []
        for q in range(self.num_queries):
            for rank, hit in enumerate(self.query_hits(q)):
                row = {"query": q, "rank": rank, "id": hit.id, "score": hit.score}
                row.update(hit.fields)
                rows.append(row)
        return pd.DataFrame(rows, columns=None if rows else ["query", "rank", "id", "score"])
