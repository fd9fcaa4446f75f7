"""recall@K of search results against externally supplied ground truth.

recall for one query = |retrieved top-K ∩ relevant| / |relevant|; the overall
score is the mean over queries whose ground truth is non-empty.
"""
import logging
from typing import Collection, List, Optional, Sequence, Union

from .models import SearchHit, SearchResults

logger = logging.getLogger(__name__)

GroundTruth = Sequence[Collection[int]]


def _chunks(hits: Union[SearchResults, Sequence[SearchHit]], k: int, num_queries: int) -> List[List[SearchHit]]:
    if isinstance(hits, SearchResults):
        return [hits.query_hits(q)[:k] for q in range(min(num_queries, hits.num_queries))]
    # Flat hits carry no boundaries: assume every query returned exactly k.
    return [list(hits[q * k:(q + 1) * k]) for q in range(num_queries)]


def per_query_recall(hits: Union[SearchResults, Sequence[SearchHit]], ground_truth: GroundTruth, k: int,
                     num_queries: Optional[int] = None) -> List[Optional[float]]:
    """Recall of each query; ``None`` for queries excluded because their ground truth is empty."""
    if num_queries is None:
        num_queries = hits.num_queries if isinstance(hits, SearchResults) else len(ground_truth)
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")

    chunks = _chunks(hits, k, num_queries)
    out: List[Optional[float]] = []
    for q in range(min(num_queries, len(ground_truth))):
        truth = set(ground_truth[q])
        if not truth:
            out.append(None)
            continue
        chunk = chunks[q] if q < len(chunks) else []
        retrieved = sum(1 for h in chunk if h.id in truth)
        out.append(retrieved / len(truth))
    return out


def recall_at_k(hits: Union[SearchResults, Sequence[SearchHit]], ground_truth: GroundTruth, k: int,
                num_queries: Optional[int] = None) -> float:
    """
    Mean recall@K over the queries that have ground truth.

    Args:
        hits: Decoded hits. A SearchResults is split on its recorded query boundaries;
            a plain flat sequence is split into consecutive chunks of ``k``.
        ground_truth: Relevant ids per query, in query order.
        k: Number of top hits per query to score.
        num_queries: Number of queries searched. Defaults to the number of queries in
            ``hits`` (or of ground truth sets for flat hits).

    Returns:
        A value in [0, 1]; 0.0 when nothing can be scored.
    """
    if num_queries is None:
        num_queries = hits.num_queries if isinstance(hits, SearchResults) else len(ground_truth)
    if len(hits) == 0 or len(ground_truth) == 0 or num_queries == 0:
        return 0.0

    scored = [r for r in per_query_recall(hits, ground_truth, k, num_queries) if r is not None]
    if not scored:
        logger.debug("No query had ground truth; recall is 0.0")
        return 0.0
    return sum(scored) / len(scored)
