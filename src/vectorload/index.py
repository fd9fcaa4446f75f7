from enum import Enum
from typing import Any, Dict, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import IndexConfigError


class IndexType(str, Enum):
    FLAT = "FLAT"
    IVF_FLAT = "IVF_FLAT"
    IVF_SQ8 = "IVF_SQ8"
    IVF_PQ = "IVF_PQ"
    HNSW = "HNSW"


class MetricType(str, Enum):
    L2 = "L2"
    IP = "IP"
    COSINE = "COSINE"


IVF_TYPES = frozenset({IndexType.IVF_FLAT, IndexType.IVF_SQ8, IndexType.IVF_PQ})


class IndexConfig(BaseModel):
    """Vector index configuration; only the parameters of the chosen type are sent to the store."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, use_enum_values=False)

    index_type: IndexType = Field(default=IndexType.FLAT, alias="indexType")
    metric_type: MetricType = Field(default=MetricType.L2, alias="metricType")
    nlist: int = Field(default=1024, ge=1)
    m: int = Field(default=4, ge=1)
    nbits: int = Field(default=8, ge=1, le=16)
    M: int = Field(default=16, ge=1)
    ef_construction: int = Field(default=200, ge=1, alias="efConstruction")

    @classmethod
    def from_dict(cls, params: Optional[Dict[str, Any]] = None) -> "IndexConfig":
        """Build a config from user parameters, e.g. ``{"indexType": "HNSW", "M": 32}``."""
        params = dict(params or {})
        index_type = params.get("indexType", params.get("index_type", IndexType.FLAT.value))
        if index_type not in IndexType.__members__:
            raise IndexConfigError(f"unsupported index type: {index_type}")
        metric_type = params.get("metricType", params.get("metric_type", MetricType.L2.value))
        if metric_type not in MetricType.__members__:
            raise IndexConfigError(f"unsupported metric type: {metric_type}")
        try:
            return cls.model_validate(params)
        except pydantic.ValidationError as e:
            raise IndexConfigError(f"invalid index parameters: {e}") from e

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"index_type": self.index_type.value, "metric_type": self.metric_type.value}
        if self.index_type in IVF_TYPES:
            params["nlist"] = self.nlist
        if self.index_type == IndexType.IVF_PQ:
            params["m"] = self.m
            params["nbits"] = self.nbits
        if self.index_type == IndexType.HNSW:
            params["M"] = self.M
            params["efConstruction"] = self.ef_construction
        return params


def simple_index() -> IndexConfig:
    return IndexConfig(index_type=IndexType.FLAT, metric_type=MetricType.L2)
