from typing import List, Optional, Sequence

import numpy as np

from .index import MetricType


def _normalize_rows(x: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(x, axis=1, keepdims=True)
    norms = np.maximum(norms, 1e-12)
    return x / norms


def brute_force_ground_truth(base: np.ndarray, queries: np.ndarray, k: int,
                             metric: MetricType = MetricType.L2,
                             ids: Optional[Sequence[int]] = None) -> List[List[int]]:
    """
    Exact top-k neighbours of each query, best first.

    Args:
        base: (n, dim) matrix of stored vectors.
        queries: (q, dim) matrix of query vectors.
        k: Neighbours per query; capped at n.
        metric: L2 (smallest distance first), IP or COSINE (largest similarity first).
        ids: Store ids of the rows of ``base``; defaults to row positions.
    """
    base = np.asarray(base, dtype=np.float32)
    queries = np.asarray(queries, dtype=np.float32)
    if base.ndim != 2 or queries.ndim != 2 or base.shape[1] != queries.shape[1]:
        raise ValueError(f"incompatible shapes: base {base.shape}, queries {queries.shape}")
    metric = MetricType(metric)
    k = min(k, base.shape[0])
    if k <= 0:
        return [[] for _ in range(queries.shape[0])]

    if metric == MetricType.L2:
        # |q - b|^2 = |q|^2 - 2 q.b + |b|^2
        scores = -(np.sum(queries ** 2, axis=1)[:, None] - 2 * queries @ base.T + np.sum(base ** 2, axis=1)[None, :])
    elif metric == MetricType.COSINE:
        scores = _normalize_rows(queries) @ _normalize_rows(base).T
    else:
        scores = queries @ base.T

    top = np.argpartition(-scores, kth=k - 1, axis=1)[:, :k]
    order = np.take_along_axis(scores, top, axis=1).argsort(axis=1)[:, ::-1]
    top = np.take_along_axis(top, order, axis=1)

    id_map = np.asarray(ids) if ids is not None else None
    out = []
    for row in top:
        if id_map is not None:
            out.append([int(i) for i in id_map[row]])
        else:
            out.append([int(i) for i in row])
    return out
