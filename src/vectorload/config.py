import os
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .index import IndexType, MetricType

DEFAULT_URI = "grpc://localhost:19530"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class HarnessConfig(BaseModel):
    """Settings of a load-test run."""
    model_config = ConfigDict(use_enum_values=True)

    # Connection
    uri: str = Field(default=DEFAULT_URI, description="Flight URI of the vector store")
    api_key: Optional[str] = None
    call_timeout: Optional[float] = Field(default=None, gt=0)

    # Workload
    collection: str = "vectorload"
    dim: int = Field(default=128, ge=1)
    rows: int = Field(default=10000, ge=0)
    batch_size: int = Field(default=1000, ge=1)
    top_k: int = Field(default=10, ge=1)
    queries_per_search: int = Field(default=1, ge=1)
    ground_truth_queries: int = Field(default=100, ge=0)
    index_type: IndexType = IndexType.HNSW
    metric_type: MetricType = MetricType.L2

    # Virtual users
    vus: int = Field(default=4, ge=1)
    duration: float = Field(default=60.0, gt=0)
    insert_ratio: float = Field(default=0.5, ge=0.0, le=1.0)

    # Long-running store tasks
    index_timeout: float = Field(default=600.0, gt=0)
    load_timeout: float = Field(default=300.0, gt=0)

    # Output
    log_level: LogLevel = LogLevel.INFO
    metrics_json: Optional[str] = None
    metrics_url: Optional[str] = None
    drop_existing: bool = True
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        if not v:
            raise ValueError("URI cannot be empty")
        if "://" not in v:
            v = f"grpc://{v}"
        return v

    @classmethod
    def from_env(cls, **overrides) -> "HarnessConfig":
        """Create configuration from ``VECTORLOAD_*`` environment variables, then apply overrides."""
        config_dict = {}

        uri = os.getenv("VECTORLOAD_URI")
        if uri:
            config_dict["uri"] = uri
        api_key = os.getenv("VECTORLOAD_API_KEY")
        if api_key:
            config_dict["api_key"] = api_key
        timeout = os.getenv("VECTORLOAD_TIMEOUT")
        if timeout:
            config_dict["call_timeout"] = float(timeout)
        collection = os.getenv("VECTORLOAD_COLLECTION")
        if collection:
            config_dict["collection"] = collection
        vus = os.getenv("VECTORLOAD_VUS")
        if vus:
            config_dict["vus"] = int(vus)
        duration = os.getenv("VECTORLOAD_DURATION")
        if duration:
            config_dict["duration"] = float(duration)
        log_level = os.getenv("VECTORLOAD_LOG_LEVEL")
        if log_level:
            config_dict["log_level"] = log_level.upper()
        metrics_json = os.getenv("VECTORLOAD_METRICS_JSON")
        if metrics_json:
            config_dict["metrics_json"] = metrics_json
        metrics_url = os.getenv("VECTORLOAD_METRICS_URL")
        if metrics_url:
            config_dict["metrics_url"] = metrics_url

        config_dict.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**config_dict)
