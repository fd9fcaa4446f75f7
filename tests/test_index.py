"""Unit tests for index configuration."""
import pytest

from vectorload import IndexConfig, IndexConfigError, IndexType, MetricType
from vectorload.index import simple_index


class TestIndexConfig:
    def test_defaults(self):
        config = IndexConfig.from_dict({})
        assert config.index_type == IndexType.FLAT
        assert config.metric_type == MetricType.L2
        assert config.nlist == 1024
        assert config.M == 16
        assert config.ef_construction == 200

    def test_simple_index(self):
        assert simple_index().to_params() == {"index_type": "FLAT", "metric_type": "L2"}

    @pytest.mark.parametrize("params,expected", [
        ({"indexType": "IVF_FLAT", "nlist": 128}, {"nlist": 128}),
        ({"indexType": "IVF_SQ8"}, {"nlist": 1024}),
        ({"indexType": "IVF_PQ", "m": 8}, {"nlist": 1024, "m": 8, "nbits": 8}),
        ({"indexType": "HNSW", "metricType": "COSINE", "M": 32},
         {"M": 32, "efConstruction": 200}),
    ])
    def test_only_relevant_params(self, params, expected):
        out = IndexConfig.from_dict(params).to_params()
        assert out.pop("index_type") == params["indexType"]
        out.pop("metric_type")
        assert out == expected

    def test_snake_case_keys(self):
        config = IndexConfig.from_dict({"index_type": "HNSW", "ef_construction": 64})
        assert config.to_params()["efConstruction"] == 64

    def test_unknown_index_type(self):
        with pytest.raises(IndexConfigError, match="DISKANN"):
            IndexConfig.from_dict({"indexType": "DISKANN"})

    def test_unknown_metric_type(self):
        with pytest.raises(IndexConfigError):
            IndexConfig.from_dict({"metricType": "HAMMING"})

    def test_out_of_range_parameter(self):
        with pytest.raises(IndexConfigError):
            IndexConfig.from_dict({"indexType": "IVF_PQ", "nbits": 64})
