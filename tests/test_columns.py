"""Unit tests for the column encoder."""
import json

import numpy as np
import pandas as pd
import pyarrow as pa
import pytest

from vectorload import (
    CollectionSchema, DataType, InconsistentVectorDimension, SchemaError, UnsupportedTypeError, ValidationError,
    encode_batch,
)
from vectorload.columns import bfloat16_to_float32, columns_to_table, infer_field, row_count


def schema_of(*fields):
    return CollectionSchema.from_dict({"name": "c", "fields": list(fields)})


class TestSchemaDrivenEncoding:
    """Column types follow the declared schema."""

    def test_one_column_per_field_with_batch_length(self, product_schema, product_batch):
        columns = encode_batch(product_batch, product_schema)
        assert [c.name for c in columns] == list(product_batch)
        assert all(len(c) == 3 for c in columns)

    def test_declared_types_map_to_arrow_types(self, product_schema, product_batch):
        columns = {c.name: c for c in encode_batch(product_batch, product_schema)}
        assert columns["id"].array.type == pa.int64()
        assert columns["stock"].array.type == pa.int32()
        assert columns["price"].array.type == pa.float32()
        assert columns["rating"].array.type == pa.float64()
        assert columns["in_stock"].array.type == pa.bool_()
        assert columns["title"].array.type == pa.string()
        assert columns["vector"].array.type == pa.list_(pa.float32(), 4)
        assert columns["vector"].dimension == 4

    def test_numeric_precision_comes_from_schema_not_field_name(self):
        schema = schema_of({"name": "rating", "dataType": "Float"}, {"name": "score", "dataType": "Double"})
        columns = {c.name: c for c in encode_batch({"rating": [1.5], "score": [2.5]}, schema)}
        assert columns["rating"].data_type == DataType.FLOAT
        assert columns["score"].data_type == DataType.DOUBLE

    def test_json_values_are_serialized(self, product_schema, product_batch):
        columns = {c.name: c for c in encode_batch(product_batch, product_schema)}
        assert [json.loads(v) for v in columns["attrs"].to_pylist()] == product_batch["attrs"]

    def test_empty_fields_are_skipped(self, product_schema):
        columns = encode_batch({"id": [1, 2], "title": [], "vector": [[0.0] * 4, [1.0] * 4]}, product_schema)
        assert [c.name for c in columns] == ["id", "vector"]

    def test_all_empty_is_validation_error(self, product_schema):
        with pytest.raises(ValidationError, match="no valid columns"):
            encode_batch({"id": [], "vector": []}, product_schema)

    def test_unknown_field_is_schema_error(self, product_schema):
        with pytest.raises(SchemaError):
            encode_batch({"colour": ["red"]}, product_schema)

    def test_auto_id_values_rejected(self):
        schema = schema_of({"name": "id", "dataType": "Int64", "isPrimaryKey": True, "isAutoID": True},
                           {"name": "vector", "dataType": "FloatVector", "dimension": 2})
        with pytest.raises(ValidationError):
            encode_batch({"id": [1], "vector": [[0.0, 1.0]]}, schema)

    def test_inconsistent_lengths_rejected(self, product_schema):
        with pytest.raises(ValidationError, match="inconsistent lengths"):
            encode_batch({"id": [1, 2, 3], "title": ["a", "b"]}, product_schema)

    def test_varchar_max_length(self, product_schema):
        with pytest.raises(ValidationError, match="maxLength"):
            encode_batch({"title": ["x" * 33]}, product_schema)

    def test_integer_overflow_is_unsupported(self):
        schema = schema_of({"name": "small", "dataType": "Int8"})
        with pytest.raises(UnsupportedTypeError):
            encode_batch({"small": [1, 300]}, schema)

    def test_text_in_numeric_field_is_unsupported(self, product_schema):
        with pytest.raises(UnsupportedTypeError):
            encode_batch({"price": ["cheap"]}, product_schema)

    def test_null_values_rejected(self, product_schema):
        with pytest.raises(ValidationError, match="null"):
            encode_batch({"price": [1.0, None]}, product_schema)


class TestVectorEncoding:
    def test_mismatched_row_dimension(self, product_schema):
        with pytest.raises(InconsistentVectorDimension) as exc:
            encode_batch({"vector": [[0.0] * 4, [0.0] * 3]}, product_schema)
        assert exc.value.expected == 4
        assert exc.value.actual == 3
        assert exc.value.row == 1

    def test_numpy_matrix_with_wrong_width(self, product_schema):
        with pytest.raises(InconsistentVectorDimension):
            encode_batch({"vector": np.zeros((2, 5), dtype=np.float32)}, product_schema)

    def test_every_row_has_declared_dimension(self, product_schema):
        vectors = np.random.default_rng(0).random((10, 4))
        (column,) = encode_batch({"vector": vectors}, product_schema)
        assert all(len(row) == 4 for row in column.to_pylist())
        np.testing.assert_allclose(column.to_pylist(), vectors, rtol=1e-6)

    def test_float16_vectors(self):
        schema = schema_of({"name": "half", "dataType": "Float16Vector", "dimension": 2})
        (column,) = encode_batch({"half": [[0.5, 1.5], [2.0, -1.0]]}, schema)
        assert column.array.type == pa.list_(pa.float16(), 2)

    def test_bfloat16_vectors_round_trip(self):
        schema = schema_of({"name": "bf", "dataType": "BFloat16Vector", "dimension": 3})
        (column,) = encode_batch({"bf": [[1.0, -2.5, 0.15625]]}, schema)
        assert column.array.type == pa.binary(6)
        restored = bfloat16_to_float32(column.to_pylist()[0])
        np.testing.assert_allclose(restored, [1.0, -2.5, 0.15625], rtol=1e-2)

    def test_binary_vectors_from_bits_and_bytes(self):
        schema = schema_of({"name": "bits", "dataType": "BinaryVector", "dimension": 16})
        (column,) = encode_batch({"bits": [[1, 0, 0, 0, 0, 0, 0, 1] + [0] * 8, b"\xff\x00"]}, schema)
        assert column.array.type == pa.binary(2)
        assert column.to_pylist() == [b"\x81\x00", b"\xff\x00"]

    def test_binary_vector_wrong_byte_length(self):
        schema = schema_of({"name": "bits", "dataType": "BinaryVector", "dimension": 16})
        with pytest.raises(InconsistentVectorDimension):
            encode_batch({"bits": [b"\xff"]}, schema)

    def test_sparse_vectors(self):
        schema = schema_of({"name": "sparse", "dataType": "SparseFloatVector"})
        (column,) = encode_batch({"sparse": [{3: 0.5, 1: 0.25}, [(7, 1.0)]]}, schema)
        assert column.to_pylist() == [[(1, 0.25), (3, 0.5)], [(7, 1.0)]]

    def test_sparse_negative_index(self):
        schema = schema_of({"name": "sparse", "dataType": "SparseFloatVector"})
        with pytest.raises(ValidationError):
            encode_batch({"sparse": [{-1: 0.5}]}, schema)


class TestInferredEncoding:
    """Batches encoded without a schema."""

    def test_shape_inference(self):
        columns = {c.name: c for c in encode_batch({
            "vector": [[1, 2, 3], [4, 5, 6]],
            "title": ["a", "b"],
            "flag": [True, False],
            "count": [1, 2],
            "price": [1.5, 2.5],
            "meta": [{"a": 1}, {"b": 2}],
        })}
        assert columns["vector"].data_type == DataType.FLOAT_VECTOR
        assert columns["vector"].dimension == 3
        assert columns["title"].data_type == DataType.VARCHAR
        assert columns["flag"].data_type == DataType.BOOL
        assert columns["count"].data_type == DataType.INT64
        assert columns["price"].data_type == DataType.FLOAT
        assert columns["meta"].data_type == DataType.JSON

    def test_rating_is_not_special(self):
        (column,) = encode_batch({"rating": [4.5, 3.0]})
        assert column.data_type == DataType.FLOAT

    def test_mixed_ints_and_floats_widen_to_float(self):
        (column,) = encode_batch({"price": [1, 2.5]})
        assert column.data_type == DataType.FLOAT

    def test_numpy_dtypes(self):
        columns = {c.name: c for c in encode_batch({
            "d": np.array([1.0, 2.0], dtype=np.float64),
            "i": np.array([1, 2], dtype=np.int16),
            "h": np.zeros((2, 4), dtype=np.float16),
        })}
        assert columns["d"].data_type == DataType.DOUBLE
        assert columns["i"].data_type == DataType.INT16
        assert columns["h"].data_type == DataType.FLOAT16_VECTOR

    def test_inferred_vector_dimension_mismatch(self):
        with pytest.raises(InconsistentVectorDimension):
            encode_batch({"vector": [[1.0, 2.0], [1.0]]})

    def test_unrecognized_element(self):
        with pytest.raises(UnsupportedTypeError):
            encode_batch({"odd": [object(), object()]})

    def test_scalar_instead_of_sequence(self):
        with pytest.raises(UnsupportedTypeError):
            encode_batch({"title": "not a list"})

    def test_infer_field_binary_from_bytes(self):
        field = infer_field("bits", [b"\x00\x01"])
        assert field.data_type == DataType.BINARY_VECTOR
        assert field.dimension == 16


class TestRecordInputs:
    def test_dataframe_input(self, product_schema):
        df = pd.DataFrame({"id": [1, 2], "price": [1.0, 2.0]})
        df["vector"] = [[0.0] * 4, [1.0] * 4]
        columns = encode_batch(df, product_schema)
        assert [c.name for c in columns] == ["id", "price", "vector"]
        assert row_count(columns) == 2

    def test_arrow_table_input(self, product_schema):
        table = pa.table({"id": pa.array([5, 6], type=pa.int64()), "title": ["x", "y"]})
        columns = encode_batch(table, product_schema)
        assert columns[0].to_pylist() == [5, 6]

    def test_unsupported_record(self):
        with pytest.raises(UnsupportedTypeError):
            encode_batch([{"id": 1}])

    def test_columns_to_table_keeps_logical_types(self, product_schema, product_batch):
        table = columns_to_table(encode_batch(product_batch, product_schema))
        assert table.num_rows == 3
        logical = json.loads(table.schema.metadata[b"vectorload.types"])
        assert logical["attrs"] == "JSON"
        assert logical["title"] == "VarChar"
