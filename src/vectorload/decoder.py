import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Sequence, Union

import pandas as pd
import pyarrow as pa

from .exceptions import DecodeError
from .models import SearchHit, SearchResults

logger = logging.getLogger(__name__)

RawQueryHits = Union[pa.Table, pa.RecordBatch, pd.DataFrame, Mapping]

SCORE_COLUMNS = ("score", "distance")


def _as_table(query: int, raw: RawQueryHits) -> pa.Table:
    if isinstance(raw, pa.Table):
        return raw
    if isinstance(raw, pa.RecordBatch):
        return pa.Table.from_batches([raw])
    try:
        if isinstance(raw, pd.DataFrame):
            return pa.Table.from_pandas(raw, preserve_index=False)
        if isinstance(raw, Mapping):
            return pa.Table.from_pydict(dict(raw))
    except (pa.ArrowInvalid, pa.ArrowTypeError, TypeError, ValueError) as e:
        raise DecodeError(f"query {query}: malformed hit columns: {e}") from e
    raise DecodeError(f"query {query}: unsupported raw hit type {type(raw).__name__}")


def _decode_query(query: int, raw: RawQueryHits, output_fields: Sequence[str], id_field: str) -> List[SearchHit]:
    table = _as_table(query, raw)
    if table.num_rows == 0:
        return []
    if id_field not in table.column_names:
        raise DecodeError(f"query {query}: results have no '{id_field}' column")
    id_column = table.column(id_field)
    if not pa.types.is_integer(id_column.type):
        raise DecodeError(f"query {query}: ids must be integers, got {id_column.type}")

    score_name = next((c for c in SCORE_COLUMNS if c in table.column_names), None)
    if score_name is None:
        raise DecodeError(f"query {query}: results have no score column")

    ids = id_column.to_pylist()
    scores = table.column(score_name).to_pylist()
    if any(i is None for i in ids):
        raise DecodeError(f"query {query}: null id in results")

    # Requested fields missing from the results are left out.
    wanted: Dict[str, List[Any]] = {}
    for name in output_fields:
        if name == id_field or name in wanted:
            continue
        if name in table.column_names:
            wanted[name] = table.column(name).to_pylist()

    hits = []
    for rank, (hit_id, score) in enumerate(zip(ids, scores)):
        fields = {name: values[rank] for name, values in wanted.items()}
        hits.append(SearchHit(id=hit_id, score=float(score) if score is not None else 0.0, fields=fields))
    return hits


def decode(raw_hits_per_query: Sequence[RawQueryHits], output_fields: Sequence[str] = ("id",),
           id_field: str = "id") -> SearchResults:
    """
    Convert raw per-query hit columns into ranked SearchHits.

    Args:
        raw_hits_per_query: One entry per query, in submission order. Each entry holds the
            id column, a ``score`` (or ``distance``) column and any returned field columns,
            rows in the store's rank order.
        output_fields: Field names to copy into each hit's ``fields``.
        id_field: Name of the primary key column.

    Returns:
        SearchResults with hits concatenated across queries and per-query offsets recorded.
    """
    per_query = [
        _decode_query(q, raw, output_fields, id_field)
        for q, raw in enumerate(raw_hits_per_query)
    ]
    results = SearchResults.from_queries(per_query)
    logger.debug(f"Decoded {len(results)} hits for {results.num_queries} queries")
    return results
