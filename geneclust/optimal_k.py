"""
Silhouette-Based Selection of the Number of Clusters

For every candidate k in a bounded range, this module runs the seeded k-means
of ``geneclust.kmeans`` on the distance-matrix rows, scores the partition by
its average silhouette width, and picks the k with the highest score.

Key Concepts:
- Silhouette of point p in cluster C:
    a(p) = mean distance from p to the other members of C
    b(p) = smallest mean distance from p to the members of another cluster
    s(p) = (b(p) - a(p)) / max(a(p), b(p))
  s(p) is 0 when p is alone in its cluster or when max(a, b) is 0, so every
  value lies in [-1, 1].

- Distances used for the silhouette are Euclidean distances between
  distance-matrix rows, the same space the k-means partitions.

- Search range: k_min..min(k_max, n - 1). The best k maximizes the average
  silhouette; ties go to the smallest k. The whole score curve is returned,
  sorted by k, together with every candidate's partition.

- Each candidate is independent; with ``n_jobs > 1`` candidates are scored in
  a multiprocessing pool and the results re-ordered by k before selection.

Example Usage:
    >>> from geneclust.optimal_k import select_optimal_k
    >>> result = select_optimal_k(matrix, k_min=2, k_max=10, seed=123)
    >>> result.best_k
    3
    >>> [(s.k, round(s.average_silhouette, 2)) for s in result.scores]
    [(2, 0.61), (3, 0.74), (4, 0.52)]
"""

from dataclasses import dataclass
from functools import partial
from typing import Dict, Tuple
import logging
import multiprocessing as mp

import numpy as np
import pandas as pd
from scipy.spatial.distance import pdist, squareform

from .distance import DistanceMatrix
from .kmeans import CentroidPartition, cluster_kmeans, DEFAULT_MAX_ITER

logger = logging.getLogger(__name__)


class KSelectionError(Exception):
    """Base exception for cluster-count selection errors."""
    pass


class DegenerateInputError(KSelectionError):
    """Too few sequences for the requested range of cluster counts."""

    def __init__(self, n_sequences: int, k_min: int, gene: str = ""):
        self.n_sequences = n_sequences
        self.k_min = k_min
        self.gene = gene
        where = f"[{gene}] " if gene else ""
        super().__init__(
            f"{where}{n_sequences} sequences are too few to evaluate k >= {k_min} "
            f"(need at least {k_min + 1})"
        )


@dataclass(frozen=True)
class CandidateScore:
    """Average silhouette width of the partition for one candidate k."""
    k: int
    average_silhouette: float


@dataclass(frozen=True, eq=False)
class KSelectionResult:
    """
    Outcome of the silhouette scan.

    Attributes
    ----------
    best_k : int
        Selected number of clusters
    scores : Tuple[CandidateScore, ...]
        Score for every candidate, sorted by k
    partitions : Dict[int, CentroidPartition]
        The k-means partition behind each score
    seed : int
        Seed used for every candidate
    """
    best_k: int
    scores: Tuple[CandidateScore, ...]
    partitions: Dict[int, CentroidPartition]
    seed: int

    @property
    def best_score(self) -> float:
        return next(s.average_silhouette for s in self.scores if s.k == self.best_k)

    @property
    def best_partition(self) -> CentroidPartition:
        return self.partitions[self.best_k]

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for score in self.scores:
            partition = self.partitions[score.k]
            rows.append({
                'k': score.k,
                'average_silhouette': score.average_silhouette,
                'total_within_ss': partition.total_within_ss,
                'between_total_ratio': partition.between_total_ratio,
                'selected': score.k == self.best_k,
            })
        return pd.DataFrame(rows)


def coordinate_distances(matrix: DistanceMatrix) -> np.ndarray:
    """Euclidean distances between the rows of a distance matrix, square form."""
    return squareform(pdist(np.asarray(matrix.values, dtype=float), metric='euclidean'))


def silhouette_samples(dissimilarities: np.ndarray, cluster_ids: np.ndarray) -> np.ndarray:
    """
    Silhouette width of every point.

    Parameters
    ----------
    dissimilarities : np.ndarray
        (n, n) symmetric dissimilarities with zero diagonal
    cluster_ids : np.ndarray
        Cluster id per point

    Returns
    -------
    np.ndarray
        Values in [-1, 1]; 0 for points alone in their cluster, and for all
        points when there is a single cluster
    """
    d = np.asarray(dissimilarities, dtype=float)
    ids = np.asarray(cluster_ids)
    n = len(ids)
    scores = np.zeros(n, dtype=float)

    clusters = np.unique(ids)
    if len(clusters) < 2:
        return scores

    masks = {c: ids == c for c in clusters}
    sizes = {c: int(masks[c].sum()) for c in clusters}

    for p in range(n):
        own = ids[p]
        if sizes[own] == 1:
            continue
        a = d[p, masks[own]].sum() / (sizes[own] - 1)
        b = min(d[p, masks[c]].mean() for c in clusters if c != own)
        denom = max(a, b)
        if denom > 0:
            scores[p] = (b - a) / denom

    return np.clip(scores, -1.0, 1.0)


def average_silhouette(dissimilarities: np.ndarray, cluster_ids: np.ndarray) -> float:
    """Mean silhouette width over all points."""
    return float(silhouette_samples(dissimilarities, cluster_ids).mean())


def _score_candidate(
    k: int,
    matrix: DistanceMatrix,
    dissimilarities: np.ndarray,
    seed: int,
    max_iter: int,
) -> Tuple[CandidateScore, CentroidPartition]:
    partition = cluster_kmeans(matrix, k, seed, max_iter=max_iter)
    score = CandidateScore(k, average_silhouette(dissimilarities, partition.cluster_ids))
    logger.debug(f"[{matrix.name}] k={k}: average silhouette {score.average_silhouette:.4f}")
    return score, partition


def select_optimal_k(
    matrix: DistanceMatrix,
    k_min: int = 2,
    k_max: int = 10,
    seed: int = 123,
    max_iter: int = DEFAULT_MAX_ITER,
    n_jobs: int = 1,
) -> KSelectionResult:
    """
    Choose the number of k-means clusters by average silhouette width.

    Parameters
    ----------
    matrix : DistanceMatrix
        Pairwise distances for one gene
    k_min : int, optional
        Smallest candidate k (default: 2, minimum 2)
    k_max : int, optional
        Largest candidate k (default: 10); capped at n - 1
    seed : int, optional
        Seed passed to every k-means run (default: 123)
    max_iter : int, optional
        Maximum Lloyd iterations per run (default: 100)
    n_jobs : int, optional
        Worker processes for scoring candidates (default: 1)

    Returns
    -------
    KSelectionResult
        Best k, the full score curve sorted by k, and each partition

    Raises
    ------
    DegenerateInputError
        If the matrix has fewer than k_min + 1 sequences
    ValueError
        If k_min < 2 or k_max < k_min
    """
    if k_min < 2:
        raise ValueError(f"k_min must be at least 2, got {k_min}")
    if k_max < k_min:
        raise ValueError(f"k_max ({k_max}) must be >= k_min ({k_min})")

    n = len(matrix)
    if n < k_min + 1:
        raise DegenerateInputError(n, k_min, gene=matrix.name)

    upper = min(k_max, n - 1)
    candidates = list(range(k_min, upper + 1))
    if upper < k_max:
        logger.info(f"[{matrix.name}] k_max capped at {upper} (n={n})")

    logger.info(
        f"[{matrix.name}] Scoring k={k_min}..{upper} by average silhouette (seed={seed})"
    )

    dissimilarities = coordinate_distances(matrix)
    worker_func = partial(
        _score_candidate,
        matrix=matrix,
        dissimilarities=dissimilarities,
        seed=seed,
        max_iter=max_iter,
    )

    if n_jobs > 1 and len(candidates) > 1:
        with mp.Pool(processes=min(n_jobs, len(candidates))) as pool:
            scored = pool.map(worker_func, candidates)
    else:
        scored = list(map(worker_func, candidates))

    scored.sort(key=lambda item: item[0].k)
    scores = tuple(score for score, _ in scored)
    partitions = {score.k: partition for score, partition in scored}

    best = scores[0]
    for score in scores[1:]:
        if score.average_silhouette > best.average_silhouette:
            best = score

    logger.info(
        f"[{matrix.name}] Optimal k={best.k} (average silhouette {best.average_silhouette:.4f})"
    )

    return KSelectionResult(best_k=best.k, scores=scores, partitions=partitions, seed=seed)
