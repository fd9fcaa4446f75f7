"""Unit tests for decoding raw search hits."""
import pandas as pd
import pyarrow as pa
import pytest

from vectorload import DecodeError, SearchResults, decode


class TestDecode:
    def test_hits_keep_rank_order_and_query_boundaries(self):
        results = decode([
            {"id": [7, 3], "score": [0.1, 0.4]},
            {"id": [5], "score": [0.2]},
        ])
        assert isinstance(results, SearchResults)
        assert results.ids == [7, 3, 5]
        assert results.offsets == [0, 2, 3]
        assert [h.score for h in results.query_hits(0)] == pytest.approx([0.1, 0.4])

    def test_output_fields_are_copied(self):
        results = decode(
            [{"id": [1, 2], "score": [0.5, 0.6], "title": ["a", "b"], "price": [1.0, 2.0]}],
            output_fields=["id", "title"],
        )
        assert [h.fields for h in results] == [{"title": "a"}, {"title": "b"}]

    def test_missing_output_fields_are_omitted(self):
        results = decode([{"id": [1], "score": [0.5]}], output_fields=["id", "absent"])
        assert results[0].fields == {}

    def test_distance_column_accepted(self):
        results = decode([{"id": [4], "distance": [1.25]}])
        assert results[0].score == 1.25

    def test_custom_id_field(self):
        results = decode([{"pk": [9], "score": [0.0], "id": [1]}], output_fields=["pk", "id"], id_field="pk")
        assert results[0].id == 9
        assert results[0].fields == {"id": 1}

    def test_empty_query_result(self):
        results = decode([{"id": [], "score": []}, {"id": [2], "score": [0.3]}])
        assert results.num_queries == 2
        assert results.query_hits(0) == []
        assert results.ids == [2]

    def test_no_queries(self):
        results = decode([])
        assert len(results) == 0
        assert results.num_queries == 0

    def test_arrow_and_pandas_inputs(self):
        table = pa.table({"id": pa.array([1, 2], type=pa.int64()), "score": [0.1, 0.2]})
        batch = table.to_batches()[0]
        frame = pd.DataFrame({"id": [3], "score": [0.3]})
        results = decode([table, batch, frame])
        assert results.ids == [1, 2, 1, 2, 3]
        assert results.offsets == [0, 2, 4, 5]

    def test_to_pandas(self):
        df = decode([{"id": [1, 2], "score": [0.1, 0.2], "title": ["x", "y"]}],
                    output_fields=["title"]).to_pandas()
        assert list(df.columns) == ["query", "rank", "id", "score", "title"]
        assert df["rank"].tolist() == [0, 1]


class TestDecodeErrors:
    def test_missing_id_column(self):
        with pytest.raises(DecodeError, match="query 0"):
            decode([{"score": [0.1]}])

    def test_non_integer_ids(self):
        with pytest.raises(DecodeError, match="integers"):
            decode([{"id": ["a"], "score": [0.1]}])

    def test_missing_score_column(self):
        with pytest.raises(DecodeError, match="score"):
            decode([{"id": [1]}])

    def test_null_id(self):
        with pytest.raises(DecodeError, match="null id"):
            decode([{"id": pa.array([1, None], type=pa.int64()), "score": [0.1, 0.2]}])

    def test_ragged_columns(self):
        with pytest.raises(DecodeError):
            decode([{"id": [1, 2], "score": [0.1]}])

    def test_unsupported_raw_type(self):
        with pytest.raises(DecodeError, match="query 1"):
            decode([{"id": [1], "score": [0.1]}, "garbage"])
