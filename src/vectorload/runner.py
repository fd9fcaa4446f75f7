"""Multi-user load runner.

Sets up a collection with a known dataset, then runs virtual users in
parallel threads until the configured duration elapses. Each virtual user
owns its own store connection and alternates inserts with
search-with-recall requests, one call in flight at a time.
"""
import logging
import os
import statistics
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np
import psutil

from .client import Client, connect
from .config import HarnessConfig
from .groundtruth import brute_force_ground_truth
from .index import IndexConfig
from .metrics import PROCESS_RSS, MetricsSink
from .models import CollectionSchema, DataType, FieldSchema, SearchParams
from .schema import SchemaRegistry

logger = logging.getLogger(__name__)

# Ids inserted by virtual user N start at (N + 1) * VU_ID_STRIDE, clear of the base dataset.
VU_ID_STRIDE = 1_000_000_000
QUERY_NOISE = 0.01


@dataclass
class RunResult:
    """Per-run totals gathered by the virtual users."""
    duration_seconds: float = 0.0
    inserts: int = 0
    searches: int = 0
    errors: int = 0
    latencies_ms: List[float] = field(default_factory=list)
    recalls: List[float] = field(default_factory=list)

    @property
    def iterations(self) -> int:
        return self.inserts + self.searches + self.errors

    @property
    def ops_per_sec(self) -> float:
        return self.iterations / self.duration_seconds if self.duration_seconds > 0 else 0.0

    @property
    def p50_ms(self) -> float:
        if not self.latencies_ms:
            return 0.0
        return statistics.median(self.latencies_ms)

    @property
    def p95_ms(self) -> float:
        if not self.latencies_ms:
            return 0.0
        sorted_lat = sorted(self.latencies_ms)
        idx = int(len(sorted_lat) * 0.95)
        return sorted_lat[min(idx, len(sorted_lat) - 1)]

    @property
    def mean_recall(self) -> float:
        if not self.recalls:
            return 0.0
        return statistics.fmean(self.recalls)


def generate_vectors(rows: int, dim: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    rng = rng or np.random.default_rng()
    return rng.random((rows, dim), dtype=np.float32)


def load_schema(config: HarnessConfig) -> CollectionSchema:
    return CollectionSchema(
        name=config.collection,
        description="vectorload benchmark collection",
        fields=(
            FieldSchema(name="id", data_type=DataType.INT64, is_primary_key=True),
            FieldSchema(name="vector", data_type=DataType.FLOAT_VECTOR, dimension=config.dim),
        ),
    )


class LoadRunner:
    def __init__(self, config: HarnessConfig, metrics: MetricsSink,
                 client_factory: Optional[Callable[[], Client]] = None, seed: int = 42):
        self.config = config
        self.metrics = metrics
        self.registry = SchemaRegistry()
        self.seed = seed
        self._client_factory = client_factory or self._connect
        self.query_vectors: Optional[np.ndarray] = None
        self.ground_truth: List[List[int]] = []
        self._lock = threading.Lock()

    def _connect(self) -> Client:
        return connect(self.config.uri, self.metrics, registry=self.registry,
                       api_key=self.config.api_key, timeout=self.config.call_timeout)

    # =========================================================================
    # Setup / teardown
    # =========================================================================

    def setup(self) -> None:
        """Create, fill, index and load the collection, then compute ground truth."""
        cfg = self.config
        rng = np.random.default_rng(self.seed)
        with self._client_factory() as client:
            if cfg.drop_existing and client.has_collection(cfg.collection):
                logger.info(f"Dropping existing collection {cfg.collection}")
                client.drop_collection(cfg.collection)
            client.create_collection(load_schema(cfg))

            base = generate_vectors(cfg.rows, cfg.dim, rng)
            for start in range(0, cfg.rows, cfg.batch_size):
                end = min(start + cfg.batch_size, cfg.rows)
                client.insert(cfg.collection, {"id": list(range(start, end)), "vector": base[start:end]})
            logger.info(f"Inserted {cfg.rows:,} base vectors of dimension {cfg.dim}")

            index = IndexConfig.from_dict({"indexType": cfg.index_type, "metricType": cfg.metric_type})
            client.create_index(cfg.collection, "vector", index, timeout=cfg.index_timeout)
            client.load_collection(cfg.collection, timeout=cfg.load_timeout)

        if cfg.rows and cfg.ground_truth_queries:
            picks = rng.integers(0, cfg.rows, size=cfg.ground_truth_queries)
            noise = rng.normal(0, QUERY_NOISE, size=(cfg.ground_truth_queries, cfg.dim)).astype(np.float32)
            self.query_vectors = base[picks] + noise
            self.ground_truth = brute_force_ground_truth(base, self.query_vectors, cfg.top_k, cfg.metric_type)
            logger.info(f"Computed ground truth for {cfg.ground_truth_queries} queries (k={cfg.top_k})")

    def teardown(self) -> None:
        with self._client_factory() as client:
            client.release_collection(self.config.collection)

    # =========================================================================
    # Virtual users
    # =========================================================================

    def _virtual_user(self, vu_id: int, stop_event: threading.Event, result: RunResult) -> None:
        cfg = self.config
        rng = np.random.default_rng(self.seed + vu_id + 1)
        next_id = (vu_id + 1) * VU_ID_STRIDE
        params = SearchParams(vector_field="vector", output_fields=["id"])

        local = RunResult()
        client = self._client_factory()
        try:
            while not stop_event.is_set():
                do_insert = self.query_vectors is None or rng.random() < cfg.insert_ratio
                start = time.time()
                try:
                    if do_insert:
                        vectors = generate_vectors(cfg.batch_size, cfg.dim, rng)
                        ids = list(range(next_id, next_id + cfg.batch_size))
                        next_id += cfg.batch_size
                        client.insert(cfg.collection, {"id": ids, "vector": vectors})
                        local.inserts += 1
                    else:
                        picks = rng.integers(0, len(self.query_vectors), size=cfg.queries_per_search)
                        truth = [self.ground_truth[i] for i in picks]
                        _, recall = client.search_with_recall(
                            cfg.collection, self.query_vectors[picks], cfg.top_k, params, truth)
                        local.searches += 1
                        if recall is not None:
                            local.recalls.append(recall)
                    local.latencies_ms.append((time.time() - start) * 1000)
                except Exception as e:
                    # A failed iteration never ends the run.
                    local.errors += 1
                    logger.warning(f"VU {vu_id}: {'insert' if do_insert else 'search'} failed: {e}")
                    time.sleep(0.01)
        finally:
            client.close()

        with self._lock:
            result.inserts += local.inserts
            result.searches += local.searches
            result.errors += local.errors
            result.latencies_ms.extend(local.latencies_ms)
            result.recalls.extend(local.recalls)

    def run(self) -> RunResult:
        cfg = self.config
        logger.info(f"Running {cfg.vus} virtual users for {cfg.duration}s against {cfg.collection}")

        stop_event = threading.Event()
        result = RunResult()
        process = psutil.Process(os.getpid())

        start = time.time()
        with ThreadPoolExecutor(max_workers=cfg.vus, thread_name_prefix="vu") as executor:
            futures = [executor.submit(self._virtual_user, i, stop_event, result) for i in range(cfg.vus)]
            while time.time() - start < cfg.duration:
                self.metrics.emit(PROCESS_RSS, process.memory_info().rss, {"collection": cfg.collection})
                if all(f.done() for f in futures):
                    break
                time.sleep(min(1.0, max(0.0, cfg.duration - (time.time() - start))))
            stop_event.set()
            wait(futures)
        result.duration_seconds = time.time() - start

        for f in futures:
            if f.exception() is not None:
                logger.error(f"Virtual user aborted: {f.exception()}")

        logger.info(
            f"Completed {result.iterations:,} iterations ({result.ops_per_sec:.2f} ops/s), "
            f"p50={result.p50_ms:.2f}ms p95={result.p95_ms:.2f}ms, errors={result.errors}, "
            f"mean recall={result.mean_recall:.4f}"
        )
        return result
