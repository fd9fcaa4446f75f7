import logging
import time
from typing import Optional, Sequence, Tuple

from .decoder import decode
from .metrics import (
    DURATION, ERRORS, RECALL, REQS, STATUS_ERROR, STATUS_SUCCESS, VECTORS, MetricsSink, operation_tags,
)
from .models import SearchParams, SearchResults
from .recall import GroundTruth, recall_at_k
from .store import VectorStore

logger = logging.getLogger(__name__)


class SearchCoordinator:
    """Runs searches against one collection, decodes the hits and scores recall."""

    def __init__(self, store: VectorStore, metrics: MetricsSink, collection: str, id_field: str = "id"):
        self.store = store
        self.metrics = metrics
        self.collection = collection
        self.id_field = id_field

    def search(self, vectors: Sequence[Sequence[float]], top_k: int,
               params: Optional[SearchParams] = None) -> SearchResults:
        params = params or SearchParams()
        start = time.time()
        try:
            raw = self.store.query(self.collection, vectors, top_k, params)
            results = decode(raw, params.output_fields, id_field=self.id_field)
        except Exception:
            tags = operation_tags("search", self.collection, STATUS_ERROR, topk=top_k)
            self.metrics.emit(ERRORS, 1, tags)
            self.metrics.emit(DURATION, (time.time() - start) * 1000, tags)
            raise

        duration_ms = (time.time() - start) * 1000
        tags = operation_tags("search", self.collection, STATUS_SUCCESS, topk=top_k)
        self.metrics.emit(REQS, 1, tags)
        self.metrics.emit(DURATION, duration_ms, tags)
        self.metrics.emit(VECTORS, len(vectors), tags)
        self.metrics.emit(ERRORS, 0, tags)
        return results

    def search_with_recall(self, vectors: Sequence[Sequence[float]], top_k: int,
                           params: Optional[SearchParams] = None,
                           ground_truth: Optional[GroundTruth] = None) -> Tuple[SearchResults, Optional[float]]:
        """
        Search, then score the hits against ground truth.

        Returns:
            The results and the recall, which is None when no ground truth was given.
        """
        results = self.search(vectors, top_k, params)
        if ground_truth is None or len(ground_truth) == 0:
            return results, None

        recall = recall_at_k(results, ground_truth, top_k, len(vectors))
        tags = operation_tags("search_with_recall", self.collection, STATUS_SUCCESS, topk=top_k)
        self.metrics.emit(RECALL, recall, tags)
        logger.debug(f"recall@{top_k} on {self.collection}: {recall:.4f}")
        return results, recall
