"""Pytest configuration and fixtures for vectorload tests."""
from concurrent.futures import Future
from typing import Dict, List, Optional

import numpy as np
import pyarrow as pa
import pytest

from vectorload.columns import columns_to_table
from vectorload.metrics import MetricsSink
from vectorload.models import CollectionSchema, WriteAck


def completed(value=None) -> Future:
    f = Future()
    f.set_result(value)
    return f


class FakeStore:
    """In-memory store: exact search over everything written, in write order."""

    def __init__(self, ack_offset: int = 0, return_ids: bool = False, fail_with: Optional[Exception] = None):
        self.ack_offset = ack_offset
        self.return_ids = return_ids
        self.fail_with = fail_with
        self.collections: Dict[str, CollectionSchema] = {}
        self.tables: Dict[str, List[pa.Table]] = {}
        self.loaded = set()
        self.indexes = {}
        self.pending_load: Optional[Future] = None
        self.closed = False
        self.queries = []

    def create_collection(self, schema):
        self.collections[schema.name] = schema
        self.tables[schema.name] = []

    def drop_collection(self, collection):
        self.collections.pop(collection, None)
        self.tables.pop(collection, None)

    def has_collection(self, collection):
        return collection in self.collections

    def release_collection(self, collection):
        self.loaded.discard(collection)

    def load_collection(self, collection):
        if self.pending_load is not None:
            return self.pending_load
        self.loaded.add(collection)
        return completed("Loaded")

    def create_index(self, collection, field_name, index):
        self.indexes[(collection, field_name)] = index
        return completed("Finished")

    def write(self, collection, columns):
        if self.fail_with is not None:
            raise self.fail_with
        table = columns_to_table(columns)
        self.tables.setdefault(collection, []).append(table)
        ids = []
        if self.return_ids:
            ids = list(range(1000, 1000 + table.num_rows))
        return WriteAck(insert_count=table.num_rows + self.ack_offset, ids=ids)

    def query(self, collection, vectors, top_k, params):
        if self.fail_with is not None:
            raise self.fail_with
        self.queries.append((collection, top_k, params))
        table = pa.concat_tables(self.tables[collection])
        rows = table.to_pylist()
        base = np.asarray([r[params.vector_field] for r in rows], dtype=np.float32)
        results = []
        for q in np.asarray(vectors, dtype=np.float32):
            dists = np.sum((base - q) ** 2, axis=1)
            order = np.argsort(dists, kind="stable")[:top_k]
            # Rows written without ids are keyed by write position.
            out = {"id": [rows[i].get("id", int(i)) for i in order], "score": [float(dists[i]) for i in order]}
            for name in params.output_fields:
                if name != "id" and name in table.column_names:
                    out[name] = [rows[i][name] for i in order]
            results.append(out)
        return results

    def close(self):
        self.closed = True


@pytest.fixture
def metrics():
    sink = MetricsSink()
    yield sink
    sink.close()


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def product_schema():
    """Schema with every scalar family plus a float vector."""
    return CollectionSchema.from_dict({
        "name": "products",
        "description": "catalog",
        "fields": [
            {"name": "id", "dataType": "Int64", "isPrimaryKey": True},
            {"name": "title", "dataType": "VarChar", "maxLength": 32},
            {"name": "price", "dataType": "Float"},
            {"name": "rating", "dataType": "Double"},
            {"name": "stock", "dataType": "Int32"},
            {"name": "in_stock", "dataType": "Bool"},
            {"name": "attrs", "dataType": "JSON"},
            {"name": "vector", "dataType": "FloatVector", "dimension": 4},
        ],
    })


@pytest.fixture
def product_batch():
    return {
        "id": [1, 2, 3],
        "title": ["lamp", "desk", "chair"],
        "price": [19.99, 120.5, 45.0],
        "rating": [4.123456789, 3.5, 4.0],
        "stock": [10, 0, 7],
        "in_stock": [True, False, True],
        "attrs": [{"color": "red"}, {"color": "oak"}, {}],
        "vector": [[0.1, 0.2, 0.3, 0.4], [0.5, 0.6, 0.7, 0.8], [0.9, 1.0, 1.1, 1.2]],
    }
