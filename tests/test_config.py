"""Unit tests for harness configuration."""
import pydantic
import pytest

from vectorload.config import DEFAULT_URI, HarnessConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("URI", "API_KEY", "TIMEOUT", "COLLECTION", "VUS", "DURATION", "LOG_LEVEL",
                 "METRICS_JSON", "METRICS_URL"):
        monkeypatch.delenv(f"VECTORLOAD_{name}", raising=False)


class TestHarnessConfig:
    def test_defaults(self):
        config = HarnessConfig.from_env()
        assert config.uri == DEFAULT_URI
        assert config.index_type == "HNSW"
        assert config.metric_type == "L2"
        assert config.log_level == "INFO"
        assert config.drop_existing

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("VECTORLOAD_URI", "store.internal:19530")
        monkeypatch.setenv("VECTORLOAD_VUS", "16")
        monkeypatch.setenv("VECTORLOAD_DURATION", "30")
        monkeypatch.setenv("VECTORLOAD_LOG_LEVEL", "debug")
        monkeypatch.setenv("VECTORLOAD_TIMEOUT", "2.5")
        config = HarnessConfig.from_env()
        assert config.uri == "grpc://store.internal:19530"
        assert config.vus == 16
        assert config.duration == 30.0
        assert config.log_level == "DEBUG"
        assert config.call_timeout == 2.5

    def test_overrides_win_and_none_is_ignored(self, monkeypatch):
        monkeypatch.setenv("VECTORLOAD_COLLECTION", "from_env")
        config = HarnessConfig.from_env(collection="from_cli", vus=None)
        assert config.collection == "from_cli"
        assert config.vus == 4

    @pytest.mark.parametrize("overrides", [
        {"vus": 0},
        {"insert_ratio": 1.5},
        {"uri": ""},
        {"index_type": "DISKANN"},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(pydantic.ValidationError):
            HarnessConfig.from_env(**overrides)
