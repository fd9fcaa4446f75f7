import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import pyarrow as pa

from .exceptions import InconsistentVectorDimension, SchemaError, UnsupportedTypeError, ValidationError
from .models import CollectionSchema, DataType, FieldSchema

logger = logging.getLogger(__name__)

BatchRecord = Union[Mapping, pd.DataFrame, pa.Table]

# Default VarChar length for fields whose type is inferred rather than declared.
INFERRED_MAX_LENGTH = 65535

SCALAR_ARROW_TYPES = {
    DataType.INT8: pa.int8(),
    DataType.INT16: pa.int16(),
    DataType.INT32: pa.int32(),
    DataType.INT64: pa.int64(),
    DataType.BOOL: pa.bool_(),
    DataType.FLOAT: pa.float32(),
    DataType.DOUBLE: pa.float64(),
}

_ARROW_ERRORS = (pa.ArrowInvalid, pa.ArrowTypeError, TypeError, ValueError, OverflowError)


@dataclass(frozen=True)
class Column:
    """A homogeneous typed sequence bound to one field name."""
    name: str
    data_type: DataType
    array: pa.Array
    dimension: Optional[int] = None

    def __len__(self) -> int:
        return len(self.array)

    @property
    def nbytes(self) -> int:
        return self.array.nbytes

    @property
    def arrow_field(self) -> pa.Field:
        return pa.field(self.name, self.array.type)

    def to_pylist(self) -> List[Any]:
        return self.array.to_pylist()


def float32_to_bfloat16(values: np.ndarray) -> np.ndarray:
    """Round float32 values to the nearest bfloat16 (ties to even), returned as uint16 bit patterns."""
    bits = np.ascontiguousarray(values, dtype=np.float32).view(np.uint32)
    rounding = np.uint32(0x7FFF) + ((bits >> np.uint32(16)) & np.uint32(1))
    return ((bits + rounding) >> np.uint32(16)).astype(np.uint16)


def bfloat16_to_float32(raw: bytes) -> np.ndarray:
    """Expand little-endian bfloat16 bytes back to float32."""
    halves = np.frombuffer(raw, dtype="<u2").astype(np.uint32)
    return (halves << np.uint32(16)).view(np.float32)


def _is_bool(value: Any) -> bool:
    return isinstance(value, (bool, np.bool_))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not _is_bool(value)


def _record_items(record: BatchRecord) -> List[Tuple[str, Any]]:
    if isinstance(record, pa.Table):
        return [(name, record.column(name).to_pylist()) for name in record.column_names]
    if isinstance(record, pd.DataFrame):
        return [(str(col), record[col]) for col in record.columns]
    if isinstance(record, Mapping):
        return list(record.items())
    raise UnsupportedTypeError(f"Unsupported batch record type: {type(record).__name__}")


def _as_values(name: str, values: Any) -> Union[np.ndarray, list]:
    if isinstance(values, pd.Series):
        if values.dtype == object:
            return values.tolist()
        return values.to_numpy()
    if isinstance(values, (pa.Array, pa.ChunkedArray)):
        return values.to_pylist()
    if isinstance(values, np.ndarray):
        return values
    if isinstance(values, (str, bytes, Mapping)) or not hasattr(values, "__iter__"):
        raise UnsupportedTypeError(
            f"field '{name}': expected a sequence of values, got {type(values).__name__}"
        )
    return list(values)


# =============================================================================
# Type inference (batches without a declared schema)
# =============================================================================

def _infer_from_dtype(name: str, values: np.ndarray) -> Tuple[DataType, Optional[int]]:
    kind = values.dtype.kind
    if values.ndim == 2:
        if values.dtype == np.float16:
            return DataType.FLOAT16_VECTOR, values.shape[1]
        if kind in "fiu":
            return DataType.FLOAT_VECTOR, values.shape[1]
        raise UnsupportedTypeError(f"field '{name}': unsupported 2-D array dtype {values.dtype}")
    if values.ndim != 1:
        raise UnsupportedTypeError(f"field '{name}': unsupported array with {values.ndim} dimensions")
    if kind == "b":
        return DataType.BOOL, None
    if kind == "i":
        return {1: DataType.INT8, 2: DataType.INT16, 4: DataType.INT32}.get(
            values.dtype.itemsize, DataType.INT64), None
    if kind == "u":
        return DataType.INT64, None
    if kind == "f":
        return (DataType.DOUBLE if values.dtype == np.float64 else DataType.FLOAT), None
    if kind == "U":
        return DataType.VARCHAR, None
    raise UnsupportedTypeError(f"field '{name}': unsupported array dtype {values.dtype}")


def infer_field(name: str, values: Union[np.ndarray, list]) -> FieldSchema:
    """Infer a field descriptor by inspecting the shape of a representative element."""
    if isinstance(values, np.ndarray) and values.dtype.kind != "O":
        data_type, dim = _infer_from_dtype(name, values)
    else:
        data_type, dim = _infer_from_element(name, list(values))

    max_length = INFERRED_MAX_LENGTH if data_type == DataType.VARCHAR else None
    if data_type == DataType.BINARY_VECTOR and not dim:
        raise UnsupportedTypeError(f"field '{name}': empty binary vector")
    return FieldSchema(name=name, data_type=data_type, dimension=dim, max_length=max_length)


def _infer_from_element(name: str, values: list) -> Tuple[DataType, Optional[int]]:
    first = values[0]
    if _is_bool(first):
        return DataType.BOOL, None
    if isinstance(first, (int, np.integer)):
        # A float anywhere in the batch widens the column.
        if any(isinstance(v, (float, np.floating)) for v in values):
            return DataType.FLOAT, None
        return DataType.INT64, None
    if isinstance(first, (float, np.floating)):
        return DataType.FLOAT, None
    if isinstance(first, str):
        return DataType.VARCHAR, None
    if isinstance(first, (bytes, bytearray)):
        return DataType.BINARY_VECTOR, len(first) * 8
    if isinstance(first, Mapping):
        return DataType.JSON, None
    if isinstance(first, np.ndarray) and first.ndim == 1:
        if first.dtype == np.float16:
            return DataType.FLOAT16_VECTOR, len(first)
        if first.dtype.kind in "fiu" and len(first) > 0:
            return DataType.FLOAT_VECTOR, len(first)
    if isinstance(first, (list, tuple)) and len(first) > 0 and _is_number(first[0]):
        return DataType.FLOAT_VECTOR, len(first)
    raise UnsupportedTypeError(
        f"unsupported element type for field {name}: {type(first).__name__}"
    )


# =============================================================================
# Per-type encoders
# =============================================================================

def _encode_scalar(field: FieldSchema, values) -> pa.Array:
    data_type = field.data_type
    if isinstance(values, np.ndarray):
        if values.ndim != 1:
            raise UnsupportedTypeError(f"field '{field.name}': expected a 1-D array for {data_type.value}")
        values = values.tolist()
    if data_type == DataType.BOOL:
        bad = next((v for v in values if v is not None and not _is_bool(v)), None)
    else:
        bad = next((v for v in values if v is not None and not _is_number(v)), None)
    if bad is not None:
        raise UnsupportedTypeError(
            f"field '{field.name}': cannot encode {type(bad).__name__} value as {data_type.value}"
        )
    try:
        return pa.array(values, type=SCALAR_ARROW_TYPES[data_type])
    except _ARROW_ERRORS as e:
        raise UnsupportedTypeError(f"field '{field.name}': cannot encode values as {data_type.value}: {e}") from e


def _encode_text(field: FieldSchema, values) -> pa.Array:
    values = list(values)
    for i, v in enumerate(values):
        if not isinstance(v, str):
            raise UnsupportedTypeError(
                f"field '{field.name}' row {i}: expected text, got {type(v).__name__}"
            )
        if field.max_length and len(v) > field.max_length:
            raise ValidationError(
                f"field '{field.name}' row {i}: length {len(v)} exceeds maxLength {field.max_length}"
            )
    return pa.array(values, type=pa.string())


def _encode_json(field: FieldSchema, values) -> pa.Array:
    encoded = []
    for i, v in enumerate(values):
        try:
            if isinstance(v, str):
                json.loads(v)
                encoded.append(v)
            else:
                encoded.append(json.dumps(v))
        except (TypeError, ValueError) as e:
            raise UnsupportedTypeError(f"field '{field.name}' row {i}: not JSON serializable: {e}") from e
    return pa.array(encoded, type=pa.string())


def _vector_matrix(field: FieldSchema, values, np_dtype) -> np.ndarray:
    dim = field.dimension
    if isinstance(values, np.ndarray) and values.ndim == 2:
        if values.shape[1] != dim:
            raise InconsistentVectorDimension(field.name, dim, values.shape[1], 0)
        matrix = values
    else:
        for i, row in enumerate(values):
            if isinstance(row, (str, bytes, Mapping)) or not hasattr(row, "__len__"):
                raise UnsupportedTypeError(
                    f"field '{field.name}' row {i}: expected a numeric vector, got {type(row).__name__}"
                )
            if len(row) != dim:
                raise InconsistentVectorDimension(field.name, dim, len(row), i)
        matrix = values
    try:
        matrix = np.asarray(matrix, dtype=np_dtype)
    except (TypeError, ValueError) as e:
        raise UnsupportedTypeError(f"field '{field.name}': vector values are not numeric: {e}") from e
    if matrix.ndim != 2:
        raise UnsupportedTypeError(f"field '{field.name}': vectors must be flat sequences of numbers")
    return matrix


def _encode_float_vector(field: FieldSchema, values) -> pa.Array:
    matrix = _vector_matrix(field, values, np.float32)
    return pa.FixedSizeListArray.from_arrays(pa.array(matrix.ravel()), field.dimension)


def _encode_float16_vector(field: FieldSchema, values) -> pa.Array:
    matrix = _vector_matrix(field, values, np.float16)
    return pa.FixedSizeListArray.from_arrays(pa.array(matrix.ravel(), type=pa.float16()), field.dimension)


def _encode_bfloat16_vector(field: FieldSchema, values) -> pa.Array:
    matrix = _vector_matrix(field, values, np.float32)
    packed = float32_to_bfloat16(matrix).astype("<u2")
    return pa.array([row.tobytes() for row in packed], type=pa.binary(2 * field.dimension))


def _encode_binary_vector(field: FieldSchema, values) -> pa.Array:
    dim = field.dimension
    nbytes = dim // 8
    rows = []
    for i, row in enumerate(values):
        if isinstance(row, (bytes, bytearray)):
            if len(row) != nbytes:
                raise InconsistentVectorDimension(field.name, dim, len(row) * 8, i)
            rows.append(bytes(row))
            continue
        if isinstance(row, (str, Mapping)) or not hasattr(row, "__len__"):
            raise UnsupportedTypeError(
                f"field '{field.name}' row {i}: expected bytes or a bit sequence, got {type(row).__name__}"
            )
        if len(row) != dim:
            raise InconsistentVectorDimension(field.name, dim, len(row), i)
        bits = np.asarray(row)
        if bits.dtype.kind not in "biu" or np.any((bits != 0) & (bits != 1)):
            raise UnsupportedTypeError(f"field '{field.name}' row {i}: bit vectors may only hold 0 and 1")
        rows.append(np.packbits(bits.astype(np.uint8)).tobytes())
    return pa.array(rows, type=pa.binary(nbytes))


def _sparse_row(field: FieldSchema, i: int, row) -> List[Tuple[int, float]]:
    if isinstance(row, Mapping):
        pairs = list(row.items())
    elif isinstance(row, (list, tuple)):
        pairs = list(row)
    else:
        raise UnsupportedTypeError(
            f"field '{field.name}' row {i}: expected a mapping of index to value, got {type(row).__name__}"
        )
    out = []
    for pair in pairs:
        try:
            idx, val = pair
            idx, val = int(idx), float(val)
        except (TypeError, ValueError) as e:
            raise UnsupportedTypeError(f"field '{field.name}' row {i}: bad sparse entry {pair!r}") from e
        if idx < 0:
            raise ValidationError(f"field '{field.name}' row {i}: negative sparse index {idx}")
        out.append((idx, val))
    out.sort()
    return out


def _encode_sparse_vector(field: FieldSchema, values) -> pa.Array:
    rows = [_sparse_row(field, i, row) for i, row in enumerate(values)]
    return pa.array(rows, type=pa.map_(pa.uint32(), pa.float32()))


_ENCODERS = {
    DataType.INT8: _encode_scalar,
    DataType.INT16: _encode_scalar,
    DataType.INT32: _encode_scalar,
    DataType.INT64: _encode_scalar,
    DataType.BOOL: _encode_scalar,
    DataType.FLOAT: _encode_scalar,
    DataType.DOUBLE: _encode_scalar,
    DataType.STRING: _encode_text,
    DataType.VARCHAR: _encode_text,
    DataType.JSON: _encode_json,
    DataType.FLOAT_VECTOR: _encode_float_vector,
    DataType.FLOAT16_VECTOR: _encode_float16_vector,
    DataType.BFLOAT16_VECTOR: _encode_bfloat16_vector,
    DataType.BINARY_VECTOR: _encode_binary_vector,
    DataType.SPARSE_FLOAT_VECTOR: _encode_sparse_vector,
}


def encode_column(field: FieldSchema, values: Union[np.ndarray, Sequence]) -> Column:
    """Encode one field's values according to its declared logical type."""
    array = _ENCODERS[field.data_type](field, values)
    if array.null_count:
        raise ValidationError(f"field '{field.name}' contains {array.null_count} null values")
    return Column(name=field.name, data_type=field.data_type, array=array, dimension=field.dimension)


def encode_batch(record: BatchRecord, schema: Optional[CollectionSchema] = None) -> List[Column]:
    """
    Convert a batch record into typed, length-consistent columns.

    Args:
        record: Mapping of field name to value sequence, a pandas DataFrame or a pyarrow Table.
        schema: Collection schema. When given, each column's type is the declared type of
            its field; otherwise the type is inferred from the values.

    Returns:
        One Column per non-empty field, in record order.
    """
    columns = []
    for name, raw in _record_items(record):
        values = _as_values(name, raw)
        if len(values) == 0:
            logger.debug(f"Skipping empty field {name}")
            continue

        if schema is not None:
            field = schema.field(name)
            if field is None:
                raise SchemaError(f"field '{name}' is not defined in collection '{schema.name}'")
            if field.is_auto_id:
                raise ValidationError(f"field '{name}' is auto-generated; values must not be supplied")
        else:
            field = infer_field(name, values)

        columns.append(encode_column(field, values))

    if not columns:
        raise ValidationError("no valid columns provided")

    lengths = {c.name: len(c) for c in columns}
    if len(set(lengths.values())) > 1:
        raise ValidationError(f"columns have inconsistent lengths: {lengths}")
    return columns


def row_count(columns: Sequence[Column]) -> int:
    return max((len(c) for c in columns), default=0)


def columns_to_table(columns: Sequence[Column]) -> pa.Table:
    """Assemble columns into the Arrow table written to the store.

    Logical types are kept in the schema metadata, since several of them
    (JSON, BFloat16Vector, BinaryVector) share an Arrow storage type.
    """
    schema = pa.schema([c.arrow_field for c in columns])
    logical: Dict[str, str] = {c.name: c.data_type.value for c in columns}
    schema = schema.with_metadata({b"vectorload.types": json.dumps(logical).encode()})
    return pa.Table.from_arrays([c.array for c in columns], schema=schema)
