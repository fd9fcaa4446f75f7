"""Process-wide metric sink shared by every virtual user of a run.

A MetricsSink is created once when the harness starts and passed by
reference to each client and coordinator. Producers append tagged samples
from any thread; ``summary()`` aggregates them per metric and tag set, and
``close()`` flushes the summary to the registered exporters.
"""
import json
import logging
import statistics
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import requests

logger = logging.getLogger(__name__)


class MetricKind(str, Enum):
    COUNTER = "counter"
    TREND = "trend"
    RATE = "rate"
    GAUGE = "gauge"


REQS = "vectorload_reqs"
DURATION = "vectorload_req_duration"
VECTORS = "vectorload_vectors"
DATA_SIZE = "vectorload_data_size"
ERRORS = "vectorload_errors"
CONNECTIONS = "vectorload_connections"
RECALL = "vectorload_recall"
PROCESS_RSS = "vectorload_process_rss"

METRIC_KINDS = {
    REQS: MetricKind.COUNTER,
    DURATION: MetricKind.TREND,
    VECTORS: MetricKind.COUNTER,
    DATA_SIZE: MetricKind.COUNTER,
    ERRORS: MetricKind.RATE,
    CONNECTIONS: MetricKind.GAUGE,
    RECALL: MetricKind.TREND,
    PROCESS_RSS: MetricKind.GAUGE,
}

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


def operation_tags(operation: str, collection: str, status: str, **extra: Any) -> Dict[str, str]:
    tags = {"operation": operation, "collection": collection, "status": status}
    for k, v in extra.items():
        tags[k] = str(v)
    return tags


@dataclass(frozen=True)
class Sample:
    metric: str
    value: float
    tags: Tuple[Tuple[str, str], ...]
    timestamp: float

    @property
    def tag_dict(self) -> Dict[str, str]:
        return dict(self.tags)


def _percentile(sorted_values: List[float], q: float) -> float:
    if not sorted_values:
        return 0.0
    idx = int(len(sorted_values) * q)
    return sorted_values[min(idx, len(sorted_values) - 1)]


@dataclass
class SeriesSummary:
    """Aggregate of all samples of one metric with one tag set."""
    metric: str
    kind: MetricKind
    tags: Dict[str, str]
    values: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"metric": self.metric, "kind": self.kind.value, "tags": self.tags,
                               "count": len(self.values)}
        if self.kind == MetricKind.COUNTER:
            out["sum"] = sum(self.values)
        elif self.kind == MetricKind.RATE:
            out["rate"] = (sum(1 for v in self.values if v) / len(self.values)) if self.values else 0.0
        elif self.kind == MetricKind.GAUGE:
            out["value"] = self.values[-1] if self.values else 0.0
        else:
            ordered = sorted(self.values)
            out.update({
                "avg": statistics.fmean(ordered) if ordered else 0.0,
                "min": ordered[0] if ordered else 0.0,
                "max": ordered[-1] if ordered else 0.0,
                "p50": statistics.median(ordered) if ordered else 0.0,
                "p95": _percentile(ordered, 0.95),
                "p99": _percentile(ordered, 0.99),
            })
        return out


class MetricsSink:
    """Append-only, thread-safe collection of tagged metric samples."""

    def __init__(self, base_tags: Optional[Mapping[str, str]] = None, exporters: Optional[List["Exporter"]] = None):
        self.base_tags = dict(base_tags or {})
        self.exporters = list(exporters or [])
        self._samples: List[Sample] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, metric: str, value: float, tags: Optional[Mapping[str, str]] = None) -> None:
        """Record one sample. Samples emitted after close() are dropped."""
        if metric not in METRIC_KINDS:
            raise ValueError(f"unknown metric '{metric}'")
        merged = dict(self.base_tags)
        if tags:
            merged.update(tags)
        sample = Sample(metric, float(value), tuple(sorted(merged.items())), time.time())
        with self._lock:
            if self._closed:
                logger.debug(f"Dropping {metric} sample emitted after close")
                return
            self._samples.append(sample)

    def samples(self, metric: Optional[str] = None, **tag_filter: str) -> List[Sample]:
        with self._lock:
            snapshot = list(self._samples)
        out = []
        for s in snapshot:
            if metric is not None and s.metric != metric:
                continue
            tags = s.tag_dict
            if all(tags.get(k) == v for k, v in tag_filter.items()):
                out.append(s)
        return out

    def summary(self) -> List[Dict[str, Any]]:
        series: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], SeriesSummary] = {}
        for s in self.samples():
            key = (s.metric, s.tags)
            if key not in series:
                series[key] = SeriesSummary(s.metric, METRIC_KINDS[s.metric], s.tag_dict)
            series[key].values.append(s.value)
        return [series[k].to_dict() for k in sorted(series)]

    def flush(self, exporter: Optional["Exporter"] = None) -> None:
        targets = [exporter] if exporter is not None else self.exporters
        if not targets:
            return
        summary = self.summary()
        samples = self.samples()
        for target in targets:
            target.export(summary, samples)

    def close(self) -> None:
        """Flush to the registered exporters and stop accepting samples."""
        if self._closed:
            return
        try:
            self.flush()
        finally:
            with self._lock:
                self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class Exporter:
    def export(self, summary: List[Dict[str, Any]], samples: List[Sample]) -> None:
        raise NotImplementedError


class JsonFileExporter(Exporter):
    """Write the metric summary (and optionally raw samples) to a JSON file."""

    def __init__(self, path: str, include_samples: bool = False):
        self.path = path
        self.include_samples = include_samples

    def export(self, summary, samples):
        data: Dict[str, Any] = {"summary": summary}
        if self.include_samples:
            data["samples"] = [
                {"metric": s.metric, "value": s.value, "tags": s.tag_dict, "timestamp": s.timestamp}
                for s in samples
            ]
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Metrics exported to {self.path}")


class HttpExporter(Exporter):
    """POST the metric summary as JSON to an observability endpoint."""

    def __init__(self, url: str, timeout: float = 10.0, headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}

    def export(self, summary, samples):
        response = requests.post(self.url, json={"summary": summary}, headers=self.headers, timeout=self.timeout)
        response.raise_for_status()
        logger.info(f"Metrics pushed to {self.url} ({len(summary)} series)")
